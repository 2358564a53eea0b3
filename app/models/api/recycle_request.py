# app/models/api/recycle_request.py
from pydantic import BaseModel, Field, field_validator


class StartSessionRequest(BaseModel):
    """Request body for POST /api/recycle/session/start"""

    email: str = Field(..., min_length=3, max_length=320, description="Owner identity")

    @field_validator("email")
    @classmethod
    def email_must_look_like_one(cls, v: str) -> str:
        v = v.strip().lower()
        if "@" not in v:
            raise ValueError("email must contain '@'")
        return v


class BarcodeRequest(BaseModel):
    """Request body for the product and bin steps."""

    barcode: str = Field(..., min_length=1, max_length=128)

    @field_validator("barcode")
    @classmethod
    def barcode_not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("barcode must not be blank")
        return v


class RedeemRequest(BaseModel):
    """Request body for POST /api/redeem"""

    email: str = Field(..., min_length=3, max_length=320)
    dollars: int = Field(..., gt=0, description="Whole dollars to redeem")
