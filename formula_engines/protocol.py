from __future__ import annotations

"""protocol.py

Message shapes exchanged with workers (and the HTTP layer).

request  : {"kind": "verify", ...} | {"kind": "search", ...}
response : {"kind": "progress", ...}*  then  {"kind": "complete", ...} | {"kind": "error", ...}
"""

from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter

from formula_engines.models import DEFAULT_PERIODS, DrawRecord, ResultType


class DrawModel(BaseModel):
    period: int
    numbers: List[int]
    zodiac_year: int = 7
    weekday: Optional[int] = None
    stem_branch: Optional[str] = None

    def to_record(self) -> DrawRecord:
        # DrawRecord validates and raises HistoryError
        return DrawRecord(
            period=self.period,
            numbers=tuple(self.numbers),
            zodiac_year=self.zodiac_year,
            weekday=self.weekday,
            stem_branch=self.stem_branch,
        )

    @classmethod
    def from_record(cls, record: DrawRecord) -> "DrawModel":
        return cls(**record.to_dict())


def to_history(draws: List[DrawModel]) -> List[DrawRecord]:
    """Records sorted newest first."""
    return sorted((d.to_record() for d in draws), key=lambda r: r.period, reverse=True)


class VerifyRequest(BaseModel):
    kind: Literal["verify"] = "verify"
    formulas: List[str]
    history: List[DrawModel] = Field(default_factory=list)
    target_period: Optional[int] = None
    offset: Optional[int] = None
    periods: Optional[int] = Field(default=None, ge=1)
    left_expand: Optional[int] = Field(default=None, ge=0)
    right_expand: Optional[int] = Field(default=None, ge=0)


class SearchRequest(BaseModel):
    kind: Literal["search"] = "search"
    history: List[DrawModel] = Field(default_factory=list)
    target_hit_rate: float = Field(ge=0, le=100)
    max_count: int = Field(default=20, ge=1, le=1000)
    strategy: Literal["fast", "standard", "deep"] = "fast"
    result_types: List[ResultType] = Field(default_factory=lambda: [ResultType.TAIL])
    offset: int = 0
    periods: int = Field(default=DEFAULT_PERIODS, ge=1)
    left_expand: int = Field(default=0, ge=0)
    right_expand: int = Field(default=0, ge=0)
    seed: Optional[int] = None


WorkerRequest = Annotated[Union[VerifyRequest, SearchRequest], Field(discriminator="kind")]
REQUEST_ADAPTER = TypeAdapter(WorkerRequest)


class ProgressMessage(BaseModel):
    kind: Literal["progress"] = "progress"
    current: int
    total: int
    found: Optional[int] = None
    results: Optional[List[Dict[str, Any]]] = None


class CompleteMessage(BaseModel):
    kind: Literal["complete"] = "complete"
    results: List[Dict[str, Any]]
    errors: List[Dict[str, Any]] = Field(default_factory=list)


class ErrorMessage(BaseModel):
    kind: Literal["error"] = "error"
    message: str


WorkerMessage = Annotated[Union[ProgressMessage, CompleteMessage, ErrorMessage], Field(discriminator="kind")]
MESSAGE_ADAPTER = TypeAdapter(WorkerMessage)

TERMINAL_KINDS = ("complete", "error")


def parse_request(data: Union[Dict[str, Any], VerifyRequest, SearchRequest]) -> Union[VerifyRequest, SearchRequest]:
    if isinstance(data, (VerifyRequest, SearchRequest)):
        return data
    return REQUEST_ADAPTER.validate_python(data)


def is_terminal(message: Dict[str, Any]) -> bool:
    return message.get("kind") in TERMINAL_KINDS
