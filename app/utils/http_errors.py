"""Small HTTP helpers shared by the upload-handling routes."""

from fastapi import HTTPException, UploadFile, status


def bad_request(error: str, message: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_400_BAD_REQUEST,
        detail={"error": error, "message": message},
    )


async def read_limited(upload: UploadFile, max_bytes: int, label: str) -> bytes:
    """Read an upload, rejecting it with 413 once it exceeds max_bytes."""
    content = await upload.read(max_bytes + 1)
    if len(content) > max_bytes:
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail={
                "error": "payload_too_large",
                "message": f"{label} exceeds {max_bytes} bytes",
                "max_bytes": max_bytes,
            },
        )
    return content
