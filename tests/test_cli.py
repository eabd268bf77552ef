import json

import pytest

from formula_engines.cli import build_parser, main
from formula_engines.history import save_history_csv


@pytest.fixture
def files(tmp_path, two_draws, history):
    formulas = tmp_path / "formulas.txt"
    formulas.write_text("[L尾数类]特码=1\n[L尾数类]特码=1左1右1\nnot a formula\n", encoding="utf-8")
    two = tmp_path / "two.txt"
    two.write_text("2026002 1 2 3 4 5 6 7\n2026001 10 11 12 13 14 15 16\n", encoding="utf-8")
    long_csv = tmp_path / "history.csv"
    save_history_csv(history, str(long_csv))
    return {"formulas": str(formulas), "two": str(two), "csv": str(long_csv), "out": str(tmp_path / "out")}


def _read_json(path):
    with open(path, encoding="utf-8") as f:
        return json.load(f)


def test_parser_requires_a_command():
    with pytest.raises(SystemExit):
        build_parser().parse_args([])


def test_parse_command(files):
    assert main(["--log_level", "ERROR", "parse", "--formulas", files["formulas"], "--out", files["out"]]) == 0
    data = _read_json(files["out"])
    assert len(data["formulas"]) == 2
    assert data["errors"][0]["type"] == "ParseError"


def test_parse_strict_fails_on_diagnostics(files):
    assert main(["--log_level", "ERROR", "parse", "--formulas", files["formulas"], "--strict", "--out", files["out"]]) == 1


def test_verify_command_json(files):
    rc = main([
        "--log_level", "ERROR", "verify",
        "--formulas", files["formulas"],
        "--history", files["two"],
        "--target_period", "2026002",
        "--out", files["out"],
    ])
    assert rc == 0
    data = _read_json(files["out"])
    assert [r["hit_count"] for r in data] == [0, 1]


def test_verify_command_summary(files):
    rc = main([
        "--log_level", "ERROR", "verify",
        "--formulas", files["formulas"],
        "--history", files["two"],
        "--target_period", "2026002",
        "--summary",
        "--out", files["out"],
    ])
    assert rc == 0
    with open(files["out"], encoding="utf-8") as f:
        lines = f.read().splitlines()
    assert lines == ["[001]☆≡1中0次=6尾", "[002]★≡1中1次=5尾,6尾,7尾"]


def test_verify_override_from_cli(files):
    main([
        "--log_level", "ERROR", "verify",
        "--formulas", files["formulas"],
        "--history", files["two"],
        "--target_period", "2026002",
        "--offset", "1",
        "--out", files["out"],
    ])
    assert [r["hit_count"] for r in _read_json(files["out"])] == [1, 1]


def test_search_command(files):
    rc = main([
        "--log_level", "ERROR", "search",
        "--history", files["csv"],
        "--target_rate", "20",
        "--max_count", "2",
        "--seed", "1",
        "--out", files["out"],
    ])
    assert rc == 0
    data = _read_json(files["out"])
    assert len(data) <= 2
    for r in data:
        assert r["formula"].startswith("[")


@pytest.mark.parametrize("command", ["parse", "verify", "search"])
def test_out_option_help(command, capsys):
    with pytest.raises(SystemExit):
        build_parser().parse_args([command, "--help"])
    assert "output file (stdout when omitted)" in capsys.readouterr().out
