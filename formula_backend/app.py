from __future__ import annotations

import json
from contextlib import asynccontextmanager
from typing import Any, Dict, Iterator, List, Optional

from fastapi import Depends, FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import StreamingResponse
from loguru import logger
from pydantic import BaseModel

from formula_engines.config import get_config
from formula_engines.errors import HistoryError
from formula_engines.formula_parser import format_formula, parse_all
from formula_engines.history import HistoryStore
from formula_engines.logs import configure_logging
from formula_engines.protocol import DrawModel, SearchRequest, VerifyRequest, to_history
from formula_engines.report import summary_line
from formula_engines.verify_engine import VerifyOverrides, verify_formulas
from formula_engines.worker import WorkerSupervisor

configure_logging()

_SUPERVISOR: Optional[WorkerSupervisor] = None


@asynccontextmanager
async def lifespan(_app: FastAPI):
    yield
    if _SUPERVISOR is not None:
        _SUPERVISOR.shutdown()


app = FastAPI(title="formula-lab", lifespan=lifespan)

# --- CORS ---
app.add_middleware(
    CORSMiddleware,
    allow_origins=get_config().allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ============================================================
# Shared state
# ============================================================
HISTORY = HistoryStore()

_history_csv = get_config().data_dir / "history.csv"
if _history_csv.exists():
    try:
        HISTORY.import_csv(str(_history_csv), get_config().default_zodiac_year)
    except HistoryError as e:
        logger.warning("history.csv not loaded: {}", e)


def _persist_history() -> None:
    _history_csv.parent.mkdir(parents=True, exist_ok=True)
    HISTORY.save_csv(_history_csv)


HISTORY.subscribe(_persist_history)


def get_history_store() -> HistoryStore:
    return HISTORY


def get_search_runner():
    """Returns a callable request -> iterator of worker messages."""
    global _SUPERVISOR
    if _SUPERVISOR is None:
        _SUPERVISOR = WorkerSupervisor()

    def run(req: SearchRequest) -> Iterator[Dict[str, Any]]:
        return _SUPERVISOR.submit(req).messages()

    return run


# ============================================================
# Schemas
# ============================================================
class ParseRequest(BaseModel):
    text: str


class HistoryImport(BaseModel):
    text: Optional[str] = None
    draws: List[DrawModel] = []
    zodiac_year: int = 7


def _history_or_400(draws: List[DrawModel], store: HistoryStore):
    if not draws:
        return store.get_history()
    try:
        return to_history(draws)
    except HistoryError as e:
        raise HTTPException(status_code=400, detail=str(e))


# ============================================================
# Formulas
# ============================================================
@app.post("/formulas/parse")
def formulas_parse(body: ParseRequest):
    formulas, errors = parse_all(body.text)
    return {
        "formulas": [{**f.to_dict(), "text": format_formula(f)} for f in formulas],
        "errors": [{"type": type(e).__name__, "message": str(e), "line": e.line} for e in errors],
    }


@app.post("/verify")
def verify(body: VerifyRequest, store: HistoryStore = Depends(get_history_store)):
    history = _history_or_400(body.history, store)
    if not history:
        raise HTTPException(status_code=400, detail="no draw history")

    formulas, errors = parse_all("\n".join(body.formulas))
    overrides = VerifyOverrides(body.offset, body.periods, body.left_expand, body.right_expand)
    # each request memoizes into its own resolver cache
    results = verify_formulas(formulas, history, overrides, body.target_period)
    return {
        "results": [r.to_dict() for r in results],
        "summary": [summary_line(i, r) for i, r in enumerate(results)],
        "errors": [{"type": type(e).__name__, "message": str(e), "line": e.line} for e in errors],
    }


@app.post("/search")
def search(
    body: SearchRequest,
    store: HistoryStore = Depends(get_history_store),
    runner=Depends(get_search_runner),
):
    history = _history_or_400(body.history, store)
    if not history:
        raise HTTPException(status_code=400, detail="no draw history")
    req = body.model_copy(update={"history": [DrawModel.from_record(r) for r in history]})

    def stream() -> Iterator[str]:
        for msg in runner(req):
            yield json.dumps(msg, ensure_ascii=False) + "\n"

    return StreamingResponse(stream(), media_type="application/x-ndjson")


# ============================================================
# History
# ============================================================
@app.get("/history")
def history_list(limit: int = Query(100, ge=1, le=5000), store: HistoryStore = Depends(get_history_store)):
    return [r.to_dict() for r in store.get_history()[:limit]]


@app.get("/history/latest")
def history_latest(store: HistoryStore = Depends(get_history_store)):
    latest = store.latest()
    if latest is None:
        raise HTTPException(status_code=404, detail="no draw history")
    return latest.to_dict()


@app.post("/history/import")
def history_import(body: HistoryImport, store: HistoryStore = Depends(get_history_store)):
    added = 0
    if body.text:
        added += store.import_text(body.text, body.zodiac_year)
    if body.draws:
        try:
            added += store.merge(to_history(body.draws))
        except HistoryError as e:
            raise HTTPException(status_code=400, detail=str(e))
    return {"added": added, "total": len(store)}


# ============================================================
# Favorites / settings (imported from favorites.py)
# ============================================================
from formula_backend.favorites import router as favorites_router
app.include_router(favorites_router)
