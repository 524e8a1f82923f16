from datetime import UTC, datetime
from typing import Literal

from pydantic import BaseModel, Field

ScanStatus = Literal["processing", "completed", "flagged", "error"]
ScanVerdict = Literal["clean", "suspicious", "malicious"]

TERMINAL_STATUSES: frozenset[str] = frozenset({"completed", "flagged", "error"})


def now_ms() -> int:
    return int(datetime.now(UTC).timestamp() * 1000)


class ScanSummary(BaseModel):
    verdict: ScanVerdict
    score: int | None = Field(default=None, ge=0, le=100)
    reasons: list[str] = Field(default_factory=list)


class ScanRecord(BaseModel):
    id: str
    filename: str
    size: int = Field(ge=0)
    mime: str | None = None
    fields: dict[str, str] | None = None
    status: ScanStatus = "processing"
    summary: ScanSummary | None = None
    ts: int = Field(default_factory=now_ms)


class User(BaseModel):
    id: str
    name: str


class ChatMessage(BaseModel):
    id: str
    chatId: str
    userId: str
    text: str
    ts: int = Field(default_factory=now_ms)


class Chat(BaseModel):
    id: str
    title: str
    messages: list[ChatMessage] = Field(default_factory=list)


class NameIn(BaseModel):
    name: str | None = None


class TitleIn(BaseModel):
    title: str | None = None


class MessageIn(BaseModel):
    userId: str | None = None
    text: str | None = None


class IdsIn(BaseModel):
    ids: list | None = None
