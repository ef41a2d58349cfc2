from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from datetime import time
from typing import Any

from attendance_engine.services.location import Coordinate, parse_location
from attendance_engine.settings import get_settings

logger = logging.getLogger("attendance_engine.policy")


class PolicySource(str, enum.Enum):
    GROUP = "GROUP"
    DEPARTMENT = "DEPARTMENT"
    NONE = "NONE"


@dataclass(frozen=True, slots=True)
class EffectivePolicy:
    source: PolicySource
    source_id: int | None
    center: Coordinate | None
    radius_m: int
    start_time: time | None
    end_time: time | None

    @property
    def has_geofence(self) -> bool:
        return self.center is not None

    def to_flags(self) -> dict[str, Any]:
        return {
            "policy_source": self.source.value,
            "policy_source_id": self.source_id,
            "radius_m": self.radius_m,
            "start_time": self.start_time.strftime("%H:%M") if self.start_time else None,
            "end_time": self.end_time.strftime("%H:%M") if self.end_time else None,
        }


def _parse_center(holder: Any) -> Coordinate | None:
    raw = getattr(holder, "location", None)
    if not raw:
        return None
    try:
        return parse_location(raw)
    except ValueError:
        logger.warning(
            "policy_location_unparseable",
            extra={"holder": type(holder).__name__, "holder_id": getattr(holder, "id", None), "raw": raw},
        )
        return None


def _policy_from(holder: Any, source: PolicySource) -> EffectivePolicy:
    radius = getattr(holder, "geofence_radius_m", None)
    return EffectivePolicy(
        source=source,
        source_id=getattr(holder, "id", None),
        center=_parse_center(holder),
        radius_m=int(radius) if radius else get_settings().default_geofence_radius_m,
        start_time=getattr(holder, "start_time", None),
        end_time=getattr(holder, "end_time", None),
    )


def resolve_effective_policy(member: Any) -> EffectivePolicy:
    """Pick the one policy that applies to ``member``.

    The group wins over the department as a whole; fields are never mixed
    between the two. A group without a usable location defers the whole policy
    to the department, and is used only when the department has no location
    either.
    """
    group = getattr(member, "group", None)
    department = getattr(member, "department", None)

    group_policy = _policy_from(group, PolicySource.GROUP) if group is not None else None
    department_policy = (
        _policy_from(department, PolicySource.DEPARTMENT) if department is not None else None
    )

    if group_policy is not None and group_policy.has_geofence:
        return group_policy
    if department_policy is not None and department_policy.has_geofence:
        return department_policy
    if group_policy is not None:
        return group_policy
    if department_policy is not None:
        return department_policy

    return EffectivePolicy(
        source=PolicySource.NONE,
        source_id=None,
        center=None,
        radius_m=get_settings().default_geofence_radius_m,
        start_time=None,
        end_time=None,
    )
