"""
recycle.py
----------
Purpose:
    API endpoints for the barcode -> barcode -> video recycle flow.

Usage:
    1. POST /api/recycle/session/start         - open a session for an email
    2. POST /api/recycle/session/{id}/product  - scan the product barcode
    3. POST /api/recycle/session/{id}/bin      - scan the bin barcode
    4. POST /api/recycle/session/{id}/video    - upload the clip + 2-3 frames

Every endpoint is rate limited per "<ip>|<identity>". Flow rejections are
returned as {"detail": {"error": ..., "message": ...}} with the matching
status code (404, 409, 410, 429).
"""

from fastapi import APIRouter, Depends, File, Form, UploadFile

from app.infrastructure.observability.logging import get_logger
from app.middleware.rate_limit_dependencies import rate_limit_recycle
from app.models.api.recycle_request import BarcodeRequest, StartSessionRequest
from app.models.api.recycle_response import (
    BinStepResponse,
    ProductStepResponse,
    StartSessionResponse,
    VideoStepResponse,
)
from app.services.container import ServiceContainer, get_container
from app.services.recycle_errors import RecycleFlowError, to_http_exception
from app.services.verification_service import parse_frames
from app.utils.http_errors import bad_request, read_limited

router = APIRouter(prefix="/api/recycle", tags=["recycle"])
logger = get_logger(__name__)


@router.post(
    "/session/start",
    response_model=StartSessionResponse,
    dependencies=[Depends(rate_limit_recycle)],
)
async def start_session(
    body: StartSessionRequest,
    container: ServiceContainer = Depends(get_container),
):
    """Open a new session at the product step, creating the account if needed."""
    session = await container.recycle.start_session(body.email)

    logger.info("Recycle session started", session_id=session.session_id, user_id=session.user_id)
    return StartSessionResponse(
        session_id=session.session_id,
        expires_in_ms=container.config.SESSION_TTL_MS,
    )


@router.post(
    "/session/{session_id}/product",
    response_model=ProductStepResponse,
    dependencies=[Depends(rate_limit_recycle)],
)
async def submit_product(
    session_id: str,
    body: BarcodeRequest,
    container: ServiceContainer = Depends(get_container),
):
    try:
        session = await container.recycle.submit_product(session_id, body.barcode)
    except RecycleFlowError as e:
        logger.info("Product step rejected", session_id=session_id, error=e.error_code)
        raise to_http_exception(e) from e

    return ProductStepResponse(product_barcode=session.product_barcode)


@router.post(
    "/session/{session_id}/bin",
    response_model=BinStepResponse,
    dependencies=[Depends(rate_limit_recycle)],
)
async def submit_bin(
    session_id: str,
    body: BarcodeRequest,
    container: ServiceContainer = Depends(get_container),
):
    try:
        session = await container.recycle.submit_bin(session_id, body.barcode)
    except RecycleFlowError as e:
        logger.info("Bin step rejected", session_id=session_id, error=e.error_code)
        raise to_http_exception(e) from e

    return BinStepResponse(bin_barcode=session.bin_barcode)


@router.post(
    "/session/{session_id}/video",
    response_model=VideoStepResponse,
    dependencies=[Depends(rate_limit_recycle)],
)
async def submit_video(
    session_id: str,
    video: UploadFile | None = File(None),
    frames: str | None = Form(None),
    container: ServiceContainer = Depends(get_container),
):
    """
    Verify the disposal clip for a session at the video step.

    Returns:
        VideoStepResponse: verdict, confidence and points (0 when unverified)

    Raises:
        400: video or frames missing
        404/410/409: session unknown, expired, at the wrong step, or duplicate video
        413: video larger than MAX_VIDEO_BYTES
        429: rate limit or cooldown active (Retry-After set)
    """
    if video is None:
        raise bad_request("missing_video", "No video file uploaded")

    frame_list = parse_frames(frames, max_frames=container.config.VERIFICATION_MAX_FRAMES)
    if not frame_list:
        raise bad_request("missing_frames", "No video frames provided for verification")

    content = await read_limited(video, container.config.MAX_VIDEO_BYTES, "Video")
    if not content:
        raise bad_request("missing_video", "Uploaded video is empty")

    try:
        outcome = await container.recycle.submit_video(
            session_id,
            content,
            frame_list,
            filename=video.filename,
            content_type=video.content_type,
        )
    except RecycleFlowError as e:
        logger.info("Video step rejected", session_id=session_id, error=e.error_code)
        raise to_http_exception(e) from e

    return VideoStepResponse(
        verified=outcome.verification.verified,
        confidence=outcome.verification.confidence,
        points_awarded=outcome.points_awarded,
        verdict=outcome.verification.verdict,
        video_url=outcome.video_url,
        new_points=outcome.new_points,
    )
