"""
uploads.py
----------
Purpose:
    POST /api/upload - single photo disposal submission.

    The photo is verified by the same model as the video flow; points depend
    on the claimed item type (bottle, can, food, other) and are only credited
    when verified. Re-uploading the same image bytes returns 409.
"""

from fastapi import APIRouter, Depends, File, Form, UploadFile

from app.infrastructure.observability.logging import get_logger
from app.middleware.rate_limit_dependencies import rate_limit_recycle
from app.models.api.recycle_response import UploadResponse
from app.services.container import ServiceContainer, get_container
from app.services.recycle_errors import RecycleFlowError, to_http_exception
from app.utils.http_errors import bad_request, read_limited

router = APIRouter(prefix="/api", tags=["uploads"])
logger = get_logger(__name__)


@router.post("/upload", response_model=UploadResponse, dependencies=[Depends(rate_limit_recycle)])
async def upload_image(
    image: UploadFile | None = File(None),
    item_type: str = Form("other"),
    email: str | None = Form(None),
    container: ServiceContainer = Depends(get_container),
):
    if image is None:
        raise bad_request("missing_image", "No image uploaded")
    if not email or "@" not in email:
        raise bad_request("missing_email", "A valid email is required")

    content = await read_limited(image, container.config.MAX_IMAGE_BYTES, "Image")
    if not content:
        raise bad_request("missing_image", "Uploaded image is empty")

    try:
        outcome = await container.uploads.submit_image(
            email,
            item_type,
            content,
            filename=image.filename,
            content_type=image.content_type,
        )
    except RecycleFlowError as e:
        logger.info("Upload rejected", error=e.error_code)
        raise to_http_exception(e) from e

    return UploadResponse(
        verified=outcome.verification.verified,
        confidence=outcome.verification.confidence,
        note=outcome.verification.notes,
        points_awarded=outcome.points_awarded,
        new_points=outcome.new_points,
        image_url=outcome.image_url,
    )
