"""
users.py
--------
Purpose:
    Account endpoints for the rewards wallet.

Usage:
    GET  /api/user/{email}     - balance and profile
    GET  /api/history/{email}  - recycle and disposal events, newest first
    POST /api/redeem           - convert points to dollars (100 points = $1)
"""

from fastapi import APIRouter, Depends

from app.infrastructure.observability.logging import get_logger
from app.models.api.recycle_request import RedeemRequest
from app.models.api.recycle_response import HistoryResponse, RedeemResponse, UserResponse
from app.services.container import ServiceContainer, get_container
from app.services.recycle_errors import RecycleFlowError, to_http_exception

router = APIRouter(prefix="/api", tags=["users"])
logger = get_logger(__name__)


@router.get("/user/{email}", response_model=UserResponse)
async def get_user(email: str, container: ServiceContainer = Depends(get_container)):
    try:
        user = await container.accounts.get_user(email)
    except RecycleFlowError as e:
        raise to_http_exception(e) from e
    return UserResponse(user=user)


@router.get("/history/{email}", response_model=HistoryResponse)
async def get_history(email: str, container: ServiceContainer = Depends(get_container)):
    try:
        recycle_events, disposal_events = await container.accounts.get_history(email)
    except RecycleFlowError as e:
        raise to_http_exception(e) from e
    return HistoryResponse(recycle_events=recycle_events, disposal_events=disposal_events)


@router.post("/redeem", response_model=RedeemResponse)
async def redeem(body: RedeemRequest, container: ServiceContainer = Depends(get_container)):
    """
    Raises:
        400: not enough points
        404: unknown email
    """
    try:
        new_points = await container.accounts.redeem(body.email, body.dollars)
    except RecycleFlowError as e:
        logger.info("Redemption rejected", error=e.error_code)
        raise to_http_exception(e) from e
    return RedeemResponse(new_points=new_points)
