"""Dataclasses shared by the query pipeline. No I/O, no third-party deps."""

import mimetypes
from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal

OutcomeStatus = Literal["success", "error", "timeout"]
ProgressState = Literal["pending", "querying", "success", "error", "timeout"]
JobStatus = Literal["queued", "in_progress", "completed", "failed", "cancelled"]
Tier = Literal["fast", "slow", "background"]

TERMINAL_STATES: frozenset[str] = frozenset({"success", "error", "timeout"})
TERMINAL_JOB_STATUSES: frozenset[str] = frozenset({"completed", "failed", "cancelled"})


@dataclass(frozen=True)
class ModelDescriptor:
    model_id: str          # registry key, e.g. "gpt-5.2"
    provider: str          # capability tag, e.g. "openai", "gemini-deep"
    api_model: str         # identifier sent to the provider
    display_name: str
    timeout_sec: int
    vision: bool = False
    slow: bool = False
    background: bool = False
    poll_interval_sec: float = 10.0
    max_tokens: int | None = None
    web_search: bool = False

    @property
    def tier(self) -> Tier:
        if self.background:
            return "background"
        return "slow" if self.slow else "fast"


@dataclass(frozen=True)
class Citation:
    title: str
    url: str


@dataclass(frozen=True)
class QueryOutcome:
    model: str
    status: OutcomeStatus
    response: str | None = None
    error: str | None = None
    latency_sec: float | None = None
    token_count: int | None = None
    request_id: str | None = None
    citations: tuple[Citation, ...] = ()

    def __post_init__(self) -> None:
        if self.status == "success":
            if self.response is None or self.error is not None:
                raise ValueError(f"{self.model}: a successful outcome needs a response and no error")
        elif self.status in ("error", "timeout"):
            if not self.error:
                raise ValueError(f"{self.model}: a {self.status} outcome needs an error message")
        else:
            raise ValueError(f"{self.model}: unknown outcome status {self.status!r}")

    @property
    def ok(self) -> bool:
        return self.status == "success"


@dataclass(frozen=True)
class JobProgressEvent:
    model: str
    status: JobStatus
    elapsed_sec: float
    job_id: str | None = None


@dataclass(frozen=True)
class JobSnapshot:
    """One observation of a remote background job."""

    job_id: str
    status: JobStatus
    text: str | None = None
    citations: tuple[Citation, ...] = ()
    error: str | None = None


@dataclass
class ModelProgress:
    model: str
    display_name: str
    tier: Tier
    state: ProgressState = "pending"
    started_at: float | None = None
    finished_at: float | None = None
    detail: str | None = None   # last remote job status for background models

    @property
    def done(self) -> bool:
        return self.state in TERMINAL_STATES


@dataclass(frozen=True)
class Generation:
    text: str
    token_count: int | None = None


@dataclass(frozen=True)
class ImageAttachment:
    path: Path
    data: bytes
    media_type: str

    @classmethod
    def from_path(cls, path: Path) -> "ImageAttachment":
        media_type, _ = mimetypes.guess_type(path.name)
        if media_type not in ("image/png", "image/gif", "image/webp"):
            media_type = "image/jpeg"
        return cls(path=path, data=path.read_bytes(), media_type=media_type)


@dataclass
class QueryRecord:
    """What gets persisted for one query: prompt, timestamp, ordered outcomes."""

    prompt: str
    timestamp: str
    outcomes: list[QueryOutcome] = field(default_factory=list)


@dataclass
class RunResult:
    outcomes: list[QueryOutcome]
    warnings: list[str] = field(default_factory=list)
    triggers: list[str] = field(default_factory=list)  # in firing order
    synthesis: str | None = None
    synthesis_final: bool = False
