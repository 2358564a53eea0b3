"""
Domain models for the recycle flow.

RecycleSession is transient process state; the event and account models
mirror the rows kept by the event store.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class SessionStep(str, Enum):
    """Ordered checkpoints of a recycle session."""

    PRODUCT = "product"
    BIN = "bin"
    VIDEO = "video"
    DONE = "done"

    @property
    def order(self) -> int:
        return _STEP_ORDER[self]

    def next(self) -> "SessionStep":
        return _STEP_SEQUENCE[min(self.order + 1, len(_STEP_SEQUENCE) - 1)]


_STEP_SEQUENCE = [SessionStep.PRODUCT, SessionStep.BIN, SessionStep.VIDEO, SessionStep.DONE]
_STEP_ORDER = {step: index for index, step in enumerate(_STEP_SEQUENCE)}


@dataclass(slots=True)
class RecycleSession:
    """Short-lived, single-use record of one user's progress through the flow."""

    session_id: str
    owner_identity: str
    user_id: str
    created_at_ms: int
    step: SessionStep = SessionStep.PRODUCT
    product_barcode: str | None = None
    bin_barcode: str | None = None

    def age_ms(self, now_ms: int) -> int:
        return now_ms - self.created_at_ms

    def is_expired(self, now_ms: int, ttl_ms: int) -> bool:
        return self.age_ms(now_ms) > ttl_ms


class UserAccount(BaseModel):
    """Reward account keyed by email identity."""

    id: str
    name: str
    email: str
    points: int = 0
    created_at: datetime | None = None


class RecycleEvent(BaseModel):
    """Durable record of one barcode -> barcode -> video attempt."""

    model_config = ConfigDict(extra="ignore")

    id: str | None = None
    user_id: str
    product_barcode: str
    bin_barcode: str
    video_url: str
    video_hash: str
    verified: bool = False
    ai_confidence: float = 0.0
    ai_verdict: dict[str, Any] | None = None
    points_awarded: int = 0
    timestamp: datetime


class DisposalEvent(BaseModel):
    """Durable record of one simple image upload."""

    model_config = ConfigDict(extra="ignore")

    id: str | None = None
    user_id: str
    item_type: str
    image_url: str
    image_hash: str
    verified: bool = False
    points_awarded: int = 0
    timestamp: datetime


class VerificationFailure(str, Enum):
    """Why the inference collaborator could not produce a usable verdict."""

    NOT_CONFIGURED = "not_configured"
    NO_FRAMES = "no_frames"
    TIMEOUT = "timeout"
    API_ERROR = "api_error"
    MALFORMED_RESPONSE = "malformed_response"


class VerificationResult(BaseModel):
    """Normalized outcome of a verification attempt. Never an exception."""

    verified: bool = False
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    verdict: dict[str, Any] = Field(default_factory=dict)
    failure: VerificationFailure | None = None

    @classmethod
    def rejected(cls, failure: VerificationFailure, notes: str) -> "VerificationResult":
        return cls(
            verified=False,
            confidence=0.0,
            verdict={"pass": False, "notes": notes},
            failure=failure,
        )

    @property
    def notes(self) -> str | None:
        return self.verdict.get("notes")


@dataclass(slots=True)
class VideoSubmissionOutcome:
    """What the video step produced, handed back to the API layer."""

    verification: VerificationResult
    points_awarded: int
    video_url: str
    event: RecycleEvent
    new_points: int | None = None
