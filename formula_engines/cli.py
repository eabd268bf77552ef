from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Any, List

from loguru import logger

from formula_engines.config import get_config
from formula_engines.formula_parser import parse_all
from formula_engines.history import load_history_csv, parse_history_text
from formula_engines.logs import configure_logging
from formula_engines.models import DrawRecord, ResultType
from formula_engines.report import summary_lines
from formula_engines.search_engine import STRATEGIES, SearchParams, smart_search
from formula_engines.verify_engine import VerifyOverrides, verify_formulas


def _read_history(path: str, zodiac_year: int) -> List[DrawRecord]:
    p = Path(path)
    if p.suffix.lower() == ".csv":
        return load_history_csv(str(p), zodiac_year)
    return parse_history_text(p.read_text(encoding="utf-8"), zodiac_year)


def _emit(out: Any, dest: str) -> None:
    s = out if isinstance(out, str) else json.dumps(out, ensure_ascii=False, indent=2)
    if dest:
        with open(dest, "w", encoding="utf-8") as f:
            f.write(s)
    else:
        print(s)


def cmd_parse(args) -> int:
    formulas, errors = parse_all(Path(args.formulas).read_text(encoding="utf-8"))
    _emit({
        "formulas": [f.to_dict() for f in formulas],
        "errors": [{"type": type(e).__name__, "message": str(e)} for e in errors],
    }, args.out)
    return 1 if errors and args.strict else 0


def cmd_verify(args) -> int:
    history = _read_history(args.history, args.zodiac_year)
    formulas, errors = parse_all(Path(args.formulas).read_text(encoding="utf-8"))
    for e in errors:
        logger.warning("{}", e)
    overrides = VerifyOverrides(args.offset, args.periods, args.left, args.right)
    results = verify_formulas(formulas, history, overrides, args.target_period)

    if args.summary:
        _emit("\n".join(summary_lines(results)), args.out)
    else:
        _emit([r.to_dict() for r in results], args.out)
    return 0


def cmd_search(args) -> int:
    history = _read_history(args.history, args.zodiac_year)
    params = SearchParams(
        target_hit_rate=args.target_rate,
        max_count=args.max_count,
        strategy=args.strategy,
        result_types=[ResultType(rt) for rt in (args.result_type or [ResultType.TAIL.value])],
        offset=args.offset,
        periods=args.periods,
        left_expand=args.left,
        right_expand=args.right,
        seed=args.seed,
        time_budget=args.seconds,
    )

    def on_progress(current, total, found, _results):
        logger.debug("search progress {}/{} found={}", current, total, found)

    results = smart_search(history, params, on_progress=on_progress)
    _emit([r.to_dict() for r in results], args.out)
    return 0


def cmd_serve(args) -> int:
    import uvicorn

    uvicorn.run("formula_backend.app:app", host=args.host, port=args.port, reload=args.reload)
    return 0


OUT_HELP = "output file (stdout when omitted)"


def build_parser() -> argparse.ArgumentParser:
    cfg = get_config()
    ap = argparse.ArgumentParser(prog="formula-lab")
    ap.add_argument("--log_level", default=None)
    sub = ap.add_subparsers(dest="command", required=True)

    p = sub.add_parser("parse", help="parse a formula file and report diagnostics")
    p.add_argument("--formulas", required=True)
    p.add_argument("--strict", action="store_true", help="exit 1 if any line has a diagnostic")
    p.add_argument("--out", default="", help=OUT_HELP)
    p.set_defaults(func=cmd_parse)

    v = sub.add_parser("verify", help="backtest formulas against history")
    v.add_argument("--formulas", required=True)
    v.add_argument("--history", required=True, help=".csv (period,n1..n7) or text, one draw per line")
    v.add_argument("--target_period", type=int, default=None)
    v.add_argument("--offset", type=int, default=None)
    v.add_argument("--periods", type=int, default=None)
    v.add_argument("--left", type=int, default=None)
    v.add_argument("--right", type=int, default=None)
    v.add_argument("--zodiac_year", type=int, default=cfg.default_zodiac_year)
    v.add_argument("--summary", action="store_true", help="print [NNN]★☆≡..中..次=.. lines instead of JSON")
    v.add_argument("--out", default="", help=OUT_HELP)
    v.set_defaults(func=cmd_verify)

    s = sub.add_parser("search", help="search formulas near a target hit rate")
    s.add_argument("--history", required=True)
    s.add_argument("--target_rate", type=float, required=True, help="percent, 0-100")
    s.add_argument("--max_count", type=int, default=20)
    s.add_argument("--strategy", default="fast", choices=sorted(STRATEGIES))
    s.add_argument("--result_type", action="append", choices=[rt.value for rt in ResultType])
    s.add_argument("--offset", type=int, default=0)
    s.add_argument("--periods", type=int, default=15)
    s.add_argument("--left", type=int, default=0)
    s.add_argument("--right", type=int, default=0)
    s.add_argument("--seed", type=int, default=None)
    s.add_argument("--seconds", type=float, default=None)
    s.add_argument("--zodiac_year", type=int, default=cfg.default_zodiac_year)
    s.add_argument("--out", default="", help=OUT_HELP)
    s.set_defaults(func=cmd_search)

    sv = sub.add_parser("serve", help="run the HTTP API")
    sv.add_argument("--host", default="127.0.0.1")
    sv.add_argument("--port", type=int, default=8000)
    sv.add_argument("--reload", action="store_true")
    sv.set_defaults(func=cmd_serve)
    return ap


def main(argv: List[str] = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(args.log_level)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
