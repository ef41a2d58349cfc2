from __future__ import annotations

import logging
from collections.abc import Sequence
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any

from attendance_engine.errors import FaceCompareError, FaceServiceUnavailableError
from attendance_engine.services.face_compare import FaceComparer, FaceCompareResult
from attendance_engine.settings import get_settings

logger = logging.getLogger("attendance_engine.matcher")

POLICY_FIXED = "fixed"
POLICY_PROVIDER = "provider"


@dataclass(frozen=True, slots=True)
class AcceptancePolicy:
    mode: str = POLICY_FIXED
    fixed_threshold: float = 70.0
    provider_fallback_threshold: float = 62.327

    def __post_init__(self) -> None:
        if self.mode not in {POLICY_FIXED, POLICY_PROVIDER}:
            raise ValueError(f"unknown face match policy: {self.mode!r}")

    def threshold_for(self, result: FaceCompareResult) -> float:
        if self.mode == POLICY_PROVIDER:
            if result.suggested_threshold is not None:
                return result.suggested_threshold
            return self.provider_fallback_threshold
        return self.fixed_threshold

    def accepts(self, result: FaceCompareResult) -> bool:
        return result.confidence > self.threshold_for(result)


def acceptance_policy_from_settings() -> AcceptancePolicy:
    settings = get_settings()
    return AcceptancePolicy(
        mode=(settings.face_match_policy or POLICY_FIXED).strip().lower(),
        fixed_threshold=settings.face_match_fixed_threshold,
        provider_fallback_threshold=settings.face_match_provider_fallback_threshold,
    )


@dataclass(frozen=True, slots=True)
class IdentityMatch:
    candidate: Any
    confidence: float
    threshold: float
    comparisons: int


def _evaluate(
    *,
    candidate: Any,
    outcome: FaceCompareResult | Exception,
    policy: AcceptancePolicy,
) -> tuple[bool, float | None]:
    candidate_id = getattr(candidate, "id", None)
    if isinstance(outcome, Exception):
        logger.warning(
            "face_compare_candidate_failed",
            extra={"candidate_id": candidate_id, "error": str(outcome)},
        )
        return False, None

    threshold = policy.threshold_for(outcome)
    accepted = policy.accepts(outcome)
    logger.info(
        "face_compare_candidate_scored",
        extra={
            "candidate_id": candidate_id,
            "confidence": outcome.confidence,
            "threshold": threshold,
            "accepted": accepted,
        },
    )
    return accepted, threshold


def _compare_safely(
    comparer: FaceComparer,
    captured_image_url: str,
    candidate: Any,
) -> FaceCompareResult | Exception:
    try:
        return comparer.compare(captured_image_url, candidate.photo_url)
    except FaceCompareError as exc:
        return exc


def match_identity(
    captured_image_url: str,
    candidates: Sequence[Any],
    comparer: FaceComparer,
    policy: AcceptancePolicy,
    *,
    parallelism: int = 1,
) -> IdentityMatch | None:
    """Return the first candidate, in pool order, whose score clears the policy.

    Candidates need ``id`` and ``photo_url``. With ``parallelism > 1`` the
    comparisons of each window run concurrently but results are still read in
    pool order, so the winner is the same as in a sequential scan.

    Raises ``FaceServiceUnavailableError`` when every attempted comparison
    failed, which means the capability itself is down rather than the face
    being unknown.
    """
    comparisons = 0
    failures = 0
    window = max(1, int(parallelism))

    if window == 1:
        for candidate in candidates:
            comparisons += 1
            outcome = _compare_safely(comparer, captured_image_url, candidate)
            if isinstance(outcome, Exception):
                failures += 1
            accepted, threshold = _evaluate(candidate=candidate, outcome=outcome, policy=policy)
            if accepted and threshold is not None and isinstance(outcome, FaceCompareResult):
                return IdentityMatch(
                    candidate=candidate,
                    confidence=outcome.confidence,
                    threshold=threshold,
                    comparisons=comparisons,
                )
    else:
        with ThreadPoolExecutor(max_workers=window, thread_name_prefix="face-compare") as executor:
            for start in range(0, len(candidates), window):
                batch = list(candidates[start : start + window])
                futures: list[Future[FaceCompareResult | Exception]] = [
                    executor.submit(_compare_safely, comparer, captured_image_url, candidate)
                    for candidate in batch
                ]
                comparisons += len(futures)
                for candidate, future in zip(batch, futures):
                    outcome = future.result()
                    if isinstance(outcome, Exception):
                        failures += 1
                    accepted, threshold = _evaluate(candidate=candidate, outcome=outcome, policy=policy)
                    if accepted and threshold is not None and isinstance(outcome, FaceCompareResult):
                        for pending in futures:
                            pending.cancel()
                        return IdentityMatch(
                            candidate=candidate,
                            confidence=outcome.confidence,
                            threshold=threshold,
                            comparisons=comparisons,
                        )

    if comparisons and failures == comparisons:
        logger.error(
            "face_compare_all_candidates_failed",
            extra={"comparisons": comparisons},
        )
        raise FaceServiceUnavailableError()

    logger.info("face_match_not_found", extra={"comparisons": comparisons, "failures": failures})
    return None
