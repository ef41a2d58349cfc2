from __future__ import annotations

import json
import logging
from http import client as http_client
from dataclasses import dataclass
from typing import Any, Protocol
from urllib import error as urllib_error
from urllib import parse as urllib_parse
from urllib import request as urllib_request

from attendance_engine.errors import ApiError, FaceCompareError
from attendance_engine.settings import get_settings, is_face_service_configured

logger = logging.getLogger("attendance_engine.face_compare")


@dataclass(frozen=True, slots=True)
class FaceCompareResult:
    confidence: float
    suggested_threshold: float | None = None


class FaceComparer(Protocol):
    def compare(self, captured_image_url: str, reference_image_url: str) -> FaceCompareResult: ...


class FacePlusPlusComparer:
    """Face++ ``compare`` API client.

    Raises ``FaceCompareError`` for anything short of a usable score so the
    matcher can skip the candidate.
    """

    def __init__(
        self,
        *,
        api_key: str,
        api_secret: str,
        compare_url: str,
        timeout_seconds: int = 15,
        threshold_key: str = "1e-3",
    ) -> None:
        self.api_key = api_key
        self.api_secret = api_secret
        self.compare_url = compare_url
        self.timeout_seconds = max(1, int(timeout_seconds))
        self.threshold_key = threshold_key

    def _post_form(self, fields: dict[str, str]) -> dict[str, Any]:
        body = urllib_parse.urlencode(fields).encode("utf-8")
        request = urllib_request.Request(
            url=self.compare_url,
            data=body,
            method="POST",
            headers={"Content-Type": "application/x-www-form-urlencoded"},
        )
        try:
            with urllib_request.urlopen(request, timeout=self.timeout_seconds) as response:
                raw = response.read().decode("utf-8", errors="ignore")
        except urllib_error.HTTPError as exc:
            error_body = exc.read(1024).decode("utf-8", errors="ignore")
            raise FaceCompareError(f"HTTP {exc.code}: {_error_message(error_body) or exc.reason}") from exc
        except (urllib_error.URLError, TimeoutError, OSError) as exc:
            raise FaceCompareError(f"transport error: {exc}") from exc
        except (http_client.HTTPException, ValueError) as exc:
            # Truncated or malformed HTTP response.
            raise FaceCompareError(f"bad response from face service: {exc!r}") from exc

        try:
            payload = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise FaceCompareError("invalid JSON from face service") from exc
        if not isinstance(payload, dict):
            raise FaceCompareError("unexpected payload from face service")
        return payload

    def compare(self, captured_image_url: str, reference_image_url: str) -> FaceCompareResult:
        payload = self._post_form(
            {
                "api_key": self.api_key,
                "api_secret": self.api_secret,
                "image_url1": captured_image_url,
                "image_url2": reference_image_url,
            }
        )
        if payload.get("error_message"):
            raise FaceCompareError(str(payload["error_message"]))

        confidence = payload.get("confidence")
        if not isinstance(confidence, (int, float)):
            # Face++ omits confidence when either image has no detectable face.
            confidence = 0.0

        thresholds = payload.get("thresholds")
        suggested: float | None = None
        if isinstance(thresholds, dict):
            raw_threshold = thresholds.get(self.threshold_key)
            if isinstance(raw_threshold, (int, float)):
                suggested = float(raw_threshold)

        return FaceCompareResult(confidence=float(confidence), suggested_threshold=suggested)


def _error_message(raw_body: str) -> str | None:
    try:
        payload = json.loads(raw_body)
    except json.JSONDecodeError:
        return raw_body.strip() or None
    if isinstance(payload, dict) and payload.get("error_message"):
        return str(payload["error_message"])
    return None


def get_face_comparer() -> FaceComparer:
    if not is_face_service_configured():
        raise ApiError(
            status_code=500,
            code="FACE_SERVICE_NOT_CONFIGURED",
            message="Face comparison credentials are not configured.",
        )
    settings = get_settings()
    return FacePlusPlusComparer(
        api_key=settings.facepp_api_key,
        api_secret=settings.facepp_api_secret,
        compare_url=settings.facepp_compare_url,
        timeout_seconds=settings.facepp_timeout_seconds,
        threshold_key=settings.face_match_provider_threshold_key,
    )
