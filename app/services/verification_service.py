"""
Verification Service - AI confirmation that a disposal actually happened.

Sends up to three still frames to a multimodal model behind OpenRouter's
OpenAI-compatible API and turns the reply into a pass/fail verdict.

Verification is fail-closed: a missing credential, a timeout, an API error or
an unparseable reply all produce verified=False with an explanatory note.
verify_frames() never raises.
"""

import asyncio
import json
from typing import Any

import openai
from openai import AsyncOpenAI

from app.config import settings
from app.infrastructure.observability.logging import get_logger
from app.models.domain.recycle_domain import VerificationFailure, VerificationResult

logger = get_logger(__name__)

REQUIRED_CHECKS = ("bin_visible", "bottle_visible", "disposal_action", "item_enters_bin")

SYSTEM_MESSAGE = "\n".join(
    [
        "You are a recycling verification system.",
        "You will receive 2-3 camera frames from a short verification video.",
        "Return ONLY strict JSON (no markdown, no extra text).",
        "Required keys: bin_visible (boolean), bottle_visible (boolean), "
        "disposal_action (boolean), item_enters_bin (boolean), "
        "confidence (number 0..1), notes (string).",
        "item_enters_bin should be true if the item (bottle/container) actually goes INTO "
        "the trash can or breaks the plane of the bin opening. It should be false if the "
        "item is just held near the bin or thrown away from it.",
        "Also include pass (boolean) where pass=true only if all 4 booleans are true "
        "and confidence >= 0.65.",
    ]
)

USER_PROMPT = (
    "Analyze these video frames and verify: 1) A recycling bin/trash can is visible, "
    "2) A bottle or container is visible, 3) A disposal action is happening "
    "(person throwing/disposing), and 4) The item actually enters the trash can or "
    "breaks the plane of the bin opening (not just held near it or thrown away). "
    "Return JSON with bin_visible, bottle_visible, disposal_action, item_enters_bin "
    "(all booleans), confidence (0-1), notes, and pass."
)


def parse_frames(raw: Any, max_frames: int = 3) -> list[str]:
    """
    Accept a JSON array (or list) of embedded images and keep at most
    max_frames entries that are data:image/... URLs.
    """
    if not raw:
        return []
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError:
            return []
    if not isinstance(raw, list):
        return []
    frames = [f for f in raw if isinstance(f, str) and f.startswith("data:image/")]
    return frames[:max_frames]


def _balanced_object_candidates(text: str):
    """Yield every balanced {...} substring in order of its opening brace."""
    start = text.find("{")
    while start != -1:
        depth = 0
        in_string = False
        escaped = False
        for index in range(start, len(text)):
            char = text[index]
            if in_string:
                if escaped:
                    escaped = False
                elif char == "\\":
                    escaped = True
                elif char == '"':
                    in_string = False
                continue
            if char == '"':
                in_string = True
            elif char == "{":
                depth += 1
            elif char == "}":
                depth -= 1
                if depth == 0:
                    yield text[start : index + 1]
                    break
        start = text.find("{", start + 1)


def extract_json_object(text: str | None) -> dict[str, Any] | None:
    """
    Recover a JSON object from model output.

    Tries the whole text first, then the first balanced {...} substring that
    parses. Returns None when nothing usable is found.
    """
    if not text or not isinstance(text, str):
        return None

    try:
        parsed = json.loads(text)
        if isinstance(parsed, dict):
            return parsed
    except json.JSONDecodeError:
        pass

    for candidate in _balanced_object_candidates(text):
        try:
            parsed = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        if isinstance(parsed, dict):
            return parsed
    return None


def _as_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() == "true"
    return False


def _as_confidence(value: Any) -> float:
    try:
        confidence = float(value)
    except (TypeError, ValueError):
        return 0.0
    if confidence != confidence:  # NaN
        return 0.0
    return min(1.0, max(0.0, confidence))


def evaluate_verdict(payload: dict[str, Any], threshold: float) -> VerificationResult:
    """
    Apply the pass rule to a parsed model payload.

    verified requires every check in REQUIRED_CHECKS to be true (a missing key
    counts as false) and confidence >= threshold. The model's own "pass" is
    kept for audit only and overwritten by the computed result.
    """
    checks = {name: _as_bool(payload.get(name)) for name in REQUIRED_CHECKS}
    confidence = _as_confidence(payload.get("confidence"))
    verified = all(checks.values()) and confidence >= threshold

    verdict = dict(payload)
    verdict["model_pass"] = payload.get("pass")
    verdict.update(checks)
    verdict["confidence"] = confidence
    verdict["pass"] = verified

    return VerificationResult(verified=verified, confidence=confidence, verdict=verdict)


class VerificationService:
    """
    Bounded-timeout client for the multimodal verification model.

    The timeout is enforced here with asyncio.wait_for; on expiry the in-flight
    request is cancelled and the attempt is reported as unverified.
    """

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        timeout_seconds: float | None = None,
        confidence_threshold: float | None = None,
        client: AsyncOpenAI | None = None,
    ):
        self.api_key = api_key if api_key is not None else settings.OPENROUTER_API_KEY
        self.model = model or settings.OPENROUTER_MODEL
        self.timeout_seconds = (
            timeout_seconds if timeout_seconds is not None else settings.VERIFICATION_TIMEOUT_SECONDS
        )
        self.confidence_threshold = (
            confidence_threshold
            if confidence_threshold is not None
            else settings.VERIFICATION_CONFIDENCE_THRESHOLD
        )
        self.client = client
        if self.client is None and self.api_key:
            self.client = AsyncOpenAI(
                api_key=self.api_key,
                base_url=settings.OPENROUTER_BASE_URL,
                timeout=self.timeout_seconds,
                max_retries=0,
                default_headers={
                    "HTTP-Referer": settings.OPENROUTER_SITE_URL,
                    "X-Title": settings.OPENROUTER_APP_TITLE,
                },
            )

    @property
    def configured(self) -> bool:
        return bool(self.api_key) and self.client is not None

    async def verify_frames(self, frames: list[str]) -> VerificationResult:
        """
        Ask the model whether the frames show a completed disposal.

        Returns:
            VerificationResult; failure is set whenever no model verdict was obtained.
        """
        if not self.configured:
            logger.error("Verification credential not configured; failing closed")
            return VerificationResult.rejected(
                VerificationFailure.NOT_CONFIGURED,
                "OPENROUTER_API_KEY not set; verification disabled.",
            )

        if not frames:
            return VerificationResult.rejected(
                VerificationFailure.NO_FRAMES, "No video frames provided for verification"
            )

        logger.info("Calling verification model", model=self.model, frames=len(frames))

        try:
            text = await asyncio.wait_for(self._call_model(frames), timeout=self.timeout_seconds)
        except (TimeoutError, openai.APITimeoutError):
            logger.error("Verification model timed out", timeout_seconds=self.timeout_seconds)
            return VerificationResult.rejected(
                VerificationFailure.TIMEOUT,
                "Verification timeout - API took too long to respond",
            )
        except openai.APIError as e:
            logger.error("Verification model API error", error=str(e), error_type=type(e).__name__)
            return VerificationResult.rejected(
                VerificationFailure.API_ERROR, f"Verification API error: {e}"
            )
        except Exception as e:
            logger.exception("Unexpected verification error", error_type=type(e).__name__)
            return VerificationResult.rejected(
                VerificationFailure.API_ERROR, f"Verification service error: {e}"
            )

        payload = extract_json_object(text)
        if payload is None:
            preview = (text or "empty")[:100]
            logger.error("Verification model returned malformed output", preview=preview)
            return VerificationResult.rejected(
                VerificationFailure.MALFORMED_RESPONSE,
                f"Model response was not valid JSON. Response: {preview}",
            )

        result = evaluate_verdict(payload, self.confidence_threshold)
        logger.info(
            "Verification checks evaluated",
            verified=result.verified,
            confidence=result.confidence,
            **{name: result.verdict[name] for name in REQUIRED_CHECKS},
        )
        return result

    async def _call_model(self, frames: list[str]) -> str | None:
        user_content: list[dict[str, Any]] = [{"type": "text", "text": USER_PROMPT}]
        user_content.extend({"type": "image_url", "image_url": {"url": url}} for url in frames)

        response = await self.client.chat.completions.create(
            model=self.model,
            temperature=0,
            messages=[
                {"role": "system", "content": SYSTEM_MESSAGE},
                {"role": "user", "content": user_content},
            ],
        )

        if not response.choices:
            return None
        return response.choices[0].message.content

    def health_check(self) -> dict[str, Any]:
        return {
            "ok": True,
            "configured": self.configured,
            "model": self.model,
            "timeout_seconds": self.timeout_seconds,
            "confidence_threshold": self.confidence_threshold,
        }
