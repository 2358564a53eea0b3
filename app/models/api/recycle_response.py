# app/models/api/recycle_response.py
from typing import Any, Literal

from pydantic import BaseModel, Field

from app.models.domain.recycle_domain import DisposalEvent, RecycleEvent, UserAccount


class StartSessionResponse(BaseModel):
    """Response for POST /api/recycle/session/start"""

    session_id: str
    step: Literal["product"] = "product"
    expires_in_ms: int


class ProductStepResponse(BaseModel):
    ok: bool = True
    step: Literal["bin"] = "bin"
    product_barcode: str


class BinStepResponse(BaseModel):
    ok: bool = True
    step: Literal["video"] = "video"
    bin_barcode: str


class VideoStepResponse(BaseModel):
    """Response for POST /api/recycle/session/{id}/video"""

    ok: bool = True
    verified: bool
    confidence: float
    points_awarded: int
    verdict: dict[str, Any] = Field(default_factory=dict)
    video_url: str
    new_points: int | None = None


class UploadResponse(BaseModel):
    """Response for POST /api/upload"""

    success: bool = True
    verified: bool
    confidence: float
    note: str | None = None
    points_awarded: int
    new_points: int | None = None
    image_url: str


class UserResponse(BaseModel):
    user: UserAccount


class HistoryResponse(BaseModel):
    recycle_events: list[RecycleEvent]
    disposal_events: list[DisposalEvent]


class RedeemResponse(BaseModel):
    success: bool = True
    new_points: int
