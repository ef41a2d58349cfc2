from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from attendance_engine.settings import is_allowed_image_url


class UserLocation(BaseModel):
    latitude: float = Field(ge=-90, le=90, strict=True)
    longitude: float = Field(ge=-180, le=180, strict=True)


class ScanRequest(BaseModel):
    captured_image_url: str = Field(alias="capturedImageUrl", min_length=1, max_length=2048)
    user_location: UserLocation = Field(alias="userLocation")

    model_config = ConfigDict(populate_by_name=True)

    @field_validator("captured_image_url")
    @classmethod
    def validate_image_host(cls, value: str) -> str:
        normalized = value.strip()
        if not is_allowed_image_url(normalized):
            raise ValueError("Image URL must be an http(s) URL on an allow-listed image host.")
        return normalized


class ScanUser(BaseModel):
    user_id: int
    first_name: str
    last_name: str


class ScanResponse(BaseModel):
    match: bool
    user: ScanUser | None = None
    confidence: float | None = None
    action: Literal["check-in", "check-out"] | None = None
    status: Literal["present", "late", "early_out"] | None = None
    error: str | None = None
    message: str | None = None


class ReconciliationResponse(BaseModel):
    archived: int
    updated: int
    checked: int
    deleted: int
    skipped_existing: int
    no_checkout_ids: list[int] = Field(default_factory=list)
    archived_dates: list[str]
    ran_at_utc: datetime
