import pytest

from formula_engines.errors import ElementUnknown, InvalidExpressionSyntax
from formula_engines.evaluator import check_condition, evaluate, fold, resolve_conditionals, substitute
from formula_engines.models import DrawRecord


@pytest.fixture
def draw():
    # special 16, period 2026002
    return DrawRecord(period=2026002, numbers=(1, 2, 3, 4, 5, 6, 16), zodiac_year=7)


def test_substitute_and_add(draw):
    assert substitute("特号+期数尾", draw, False) == "16+2"
    assert evaluate("特号+期数尾", draw, False) == 18


@pytest.mark.parametrize("op", ["-", "*", "×", "/", "÷", "%"])
def test_inert_operators_separate_terms(draw, op):
    assert substitute(f"特号{op}期数尾", draw, False) == "16+2"
    assert evaluate(f"特号{op}期数尾", draw, False) == 18


def test_adjacent_operands_concatenate(draw):
    assert evaluate("特号期数尾", draw, False) == 162


def test_parentheses(draw):
    assert evaluate("(特号+期数尾)+平1号", draw, False) == 19
    assert evaluate("(特号-期数尾)", draw, False) == 18


def test_aliases_are_resolved_during_substitution(draw):
    assert evaluate("特码+平1", draw, False) == 17


def test_literal_numbers(draw):
    assert evaluate("特号+3", draw, False) == 19


def test_unknown_text_evaluates_to_zero(draw):
    with pytest.raises(ElementUnknown):
        substitute("特号+未知", draw, False)
    assert evaluate("特号+未知", draw, False) == 0


def test_broken_syntax_evaluates_to_zero(draw):
    assert evaluate("(特号+期数尾", draw, False) == 0
    assert evaluate("特号+abc", draw, False) == 0


def test_sort_flag(shuffled_draw):
    assert evaluate("平1号", shuffled_draw, True) == 5
    assert evaluate("平1号", shuffled_draw, False) == 30


def test_fold():
    assert fold("1+(2+3)") == 6
    assert fold("((4))") == 4
    for bad in ["", "1+", "1)", "2*3", "+"]:
        with pytest.raises(InvalidExpressionSyntax):
            fold(bad)


# ---------------------------
# conditions
# ---------------------------
def test_check_condition(draw):
    assert check_condition("特码小", draw)
    assert not check_condition("特码大", draw)
    assert check_condition("特码双", draw)
    assert check_condition("特尾大", draw)
    assert check_condition("特头单", draw)
    assert check_condition("特合大", draw)
    assert not check_condition("特码怪", draw)


def test_conditional_blocks(draw):
    assert evaluate("{特码大?特号:期数尾}", draw, False) == 2
    assert evaluate("{特码双?特号:期数尾}", draw, False) == 16
    # unknown conditions take the false branch
    assert evaluate("{特码怪?特号:期数尾}", draw, False) == 2


def test_nested_conditionals(draw):
    assert resolve_conditionals("{特码小?{特尾双?平1号:平2号}:期数}", draw) == "平1号"
    assert evaluate("{特码小?{特尾双?平1号:平2号}:期数}+特号", draw, False) == 17
