import pytest

from formula_engines.errors import DuplicateFormula, ParseError
from formula_engines.formula_parser import (
    add_line_numbers,
    chinese_to_number,
    extract_elements,
    format_formula,
    normalize_expression,
    parse_all,
    parse_formula,
    remove_line_numbers,
    renumber,
    to_halfwidth,
    try_parse,
)
from formula_engines import tables
from formula_engines.evaluator import evaluate
from formula_engines.models import DrawRecord, ResultType


def test_parse_basic_formula():
    f = parse_formula("[L尾数类]特码=1")
    assert f.rule == "L"
    assert f.result_type is ResultType.TAIL
    assert f.expression == "特号"
    assert f.offset == 0
    assert f.periods == 1
    assert (f.left_expand, f.right_expand) == (0, 0)
    assert not f.use_sort


def test_parse_all_fields():
    f = parse_formula("[D头数类]平一+期数尾+3=20左1右2")
    assert f.rule == "D"
    assert f.use_sort
    assert f.result_type is ResultType.HEAD
    assert f.expression == "平1号+期数尾"
    assert f.offset == 3
    assert f.periods == 20
    assert (f.left_expand, f.right_expand) == (1, 2)


def test_negative_offset_and_lowercase_rule():
    f = parse_formula("[l单特类]特号+平2-4=10")
    assert f.rule == "L"
    assert f.expression == "特号+平2号"
    assert f.offset == -4


def test_periods_default_to_15():
    assert parse_formula("[L尾数类]特号").periods == 15


def test_fullwidth_input():
    f = parse_formula("【L尾数类】特号＋期数尾＝１５")
    assert f.expression == "特号+期数尾"
    assert f.periods == 15


@pytest.mark.parametrize("prefix", ["[001]", "[001] ", "12.", "3、", "7) "])
def test_display_prefix_is_ignored(prefix):
    f = parse_formula(prefix + "[L尾数类]特号=15")
    assert f.expression == "特号"
    assert f.raw_text == "[L尾数类]特号=15"


def test_result_type_with_numeral_characters_survives():
    f = parse_formula("[L五行类]特码五行+平3五行=10")
    assert f.result_type is ResultType.FIVE_PHASE
    assert f.expression == "特行+平3行"


@pytest.mark.parametrize(
    "text, reason",
    [
        ("", "empty formula"),
        ("特号=15", "does not match"),
        ("[X尾数类]特号=15", "unknown rule"),
        ("[L未知类]特号=15", "unknown result type"),
        ("[L尾数类]特号=0", "periods must be positive"),
    ],
)
def test_parse_errors(text, reason):
    with pytest.raises(ParseError) as exc:
        parse_formula(text)
    assert reason in exc.value.reason


def test_try_parse():
    assert try_parse("garbage") is None
    assert try_parse("[L尾数类]特号=15") is not None


# ---------------------------
# normalization
# ---------------------------
def test_chinese_numbers():
    assert chinese_to_number("二十三") == "23"
    assert chinese_to_number("二十") == "20"
    assert chinese_to_number("十五") == "15"
    assert chinese_to_number("十") == "10"
    assert chinese_to_number("平六") == "平6"
    assert chinese_to_number("五行类") == "五行类"
    assert chinese_to_number("平三五行") == "平3五行"
    assert chinese_to_number("平五行") == "平5行"
    assert chinese_to_number("平五五行") == "平5五行"


def test_to_halfwidth():
    assert to_halfwidth("【Ｌ尾数类】１＋２") == "[L尾数类]1+2"


def test_normalization_is_idempotent():
    once = normalize_expression("特码 + 平一尾 + 总 + 期尾")
    assert once == "特号+平1尾+总分+期数尾"
    assert normalize_expression(once) == once


def test_conditions_are_kept_verbatim():
    expr = normalize_expression("{特码大?特码:平1}+期")
    assert expr == "{特码大?特号:平1号}+期数"


def test_extract_elements():
    assert extract_elements("特码+平1尾+特号") == ["特号", "平1尾"]
    assert extract_elements("{特码大?平1尾:平2尾}+期数") == ["平1尾", "平2尾", "期数"]


# ---------------------------
# batches
# ---------------------------
def test_parse_all_reports_every_line():
    text = "\n".join([
        "[L尾数类]特号=15",
        "",
        "not a formula",
        "[004][L尾数类]特码=15",
        "[D尾数类]特号=15",
    ])
    formulas, errors = parse_all(text)

    assert [f.line_index for f in formulas] == [0, 4]
    assert len(errors) == 2
    parse_error, duplicate = errors
    assert isinstance(parse_error, ParseError)
    assert parse_error.line == 3
    assert isinstance(duplicate, DuplicateFormula)
    assert duplicate.line == 4
    assert duplicate.first_line == 1


def test_expansion_makes_formulas_distinct():
    formulas, errors = parse_all("[L尾数类]特号=15\n[L尾数类]特号=15左1")
    assert len(formulas) == 2
    assert errors == []


# ---------------------------
# display helpers
# ---------------------------
@pytest.mark.parametrize(
    "text",
    ["[D头数类]平一+期数尾+3=20左1右2", "[L尾数类]特号=15", "[L单特类]特号-7=10右3"],
)
def test_format_then_parse_is_stable(text):
    parsed = parse_formula(text)
    again = parse_formula(format_formula(parsed))
    assert again.key == parsed.key
    assert format_formula(again) == format_formula(parsed)


def test_format_formula_text():
    assert format_formula(parse_formula("[L尾数类]特码=1")) == "[L尾数类]特号+0=1"
    assert format_formula(parse_formula("[D头数类]平一-2=20右2")) == "[D头数类]平1号-2=20右2"


def test_line_number_helpers():
    numbered = add_line_numbers("[L尾数类]特号=15\n\n[L尾数类]特尾=15")
    assert numbered == "[001][L尾数类]特号=15\n[002][L尾数类]特尾=15"
    assert remove_line_numbers(numbered) == "[L尾数类]特号=15\n[L尾数类]特尾=15"
    assert renumber(["[005] a", "", "b"]) == "[001] a\n[002] b"


def test_ping_five_phase_word_is_an_element():
    f = parse_formula("[D五行类]平五行+特码=15")
    assert f.result_type is ResultType.FIVE_PHASE
    assert f.expression == "平5行+特号"

    draw = DrawRecord(period=2026002, numbers=(1, 2, 3, 4, 5, 6, 16), zodiac_year=7)
    assert evaluate(f.expression, draw, False) == tables.five_phase(5, 7) + 16
