"""
Domain models (Pydantic).

These types represent the stable "contract" between layers:
- stored documents (`Store`, `Item`, `Report`, `FlagRecord`)
- inputs from API/CLI callers (`CreateReportData`, `NewItem`)
- derived, never-stored summaries (`ReportStats`, `VerificationStats`, `VerificationStatus`)

Documents are written to the store with `model_dump(mode="json")` and re-validated
on every read, so downstream code can assume a consistent shape.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from finditfast.core.time import ensure_utc


class Location(BaseModel):
    """A geographic point in decimal degrees."""

    model_config = ConfigDict(frozen=True, allow_inf_nan=False)

    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)


class ItemPosition(BaseModel):
    """Floorplan-local pin coordinates (not geodesic)."""

    x: float
    y: float


class ReportType(str, Enum):
    MISSING = "missing"
    MOVED = "moved"
    FOUND = "found"
    CONFIRM = "confirm"

    @property
    def is_negative(self) -> bool:
        return self in (ReportType.MISSING, ReportType.MOVED)


class Store(BaseModel):
    """A physical store shoppers can be ranked against."""

    id: str
    name: str
    address: str = ""
    location: Location | None = None
    owner_id: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class NewItem(BaseModel):
    """Owner-supplied item fields; ids, verification and timestamps are assigned on create."""

    name: str = Field(..., min_length=1)
    store_id: str = Field(..., min_length=1)
    position: ItemPosition
    image_url: str | None = None
    price_image_url: str | None = None
    price: float | None = Field(default=None, ge=0)


class Item(NewItem):
    """A located item inside a store, with its trust fields."""

    id: str
    verified: bool = False
    verified_at: datetime | None = None
    report_count: int = Field(default=0, ge=0)
    created_at: datetime
    updated_at: datetime

    @field_validator("verified_at", "created_at", "updated_at")
    @classmethod
    def _normalize_tz(cls, value: datetime | None) -> datetime | None:
        return ensure_utc(value) if value is not None else None

    @model_validator(mode="after")
    def _verified_needs_timestamp(self) -> "Item":
        if self.verified and self.verified_at is None:
            raise ValueError("verified items must carry verified_at")
        return self


class CreateReportData(BaseModel):
    """Payload for a crowd report about an item."""

    item_id: str = Field(..., min_length=1)
    store_id: str = Field(..., min_length=1)
    type: ReportType
    comment: str | None = None
    user_id: str | None = None
    location: Location | None = None


class Report(BaseModel):
    """An immutable crowd report."""

    model_config = ConfigDict(frozen=True)

    id: str
    item_id: str
    store_id: str
    type: ReportType
    timestamp: datetime
    comment: str | None = None
    user_id: str | None = None
    location: Location | None = None

    @field_validator("timestamp")
    @classmethod
    def _normalize_tz(cls, value: datetime) -> datetime:
        return ensure_utc(value)


class ReportStats(BaseModel):
    total: int = 0
    missing: int = 0
    moved: int = 0
    found: int = 0
    confirmed: int = 0

    @property
    def negative(self) -> int:
        return self.missing + self.moved

    @property
    def positive(self) -> int:
        return self.found + self.confirmed


class FlagRecord(BaseModel):
    """An item handed off for administrative review."""

    id: str
    item_id: str
    reason: str
    timestamp: datetime
    status: Literal["pending_review"] = "pending_review"


class VerificationState(str, Enum):
    UNVERIFIED = "unverified"
    VERIFIED = "verified"
    VERIFIED_NEEDS_REVIEW = "verified_needs_review"
    VERIFIED_EXPIRED = "verified_expired"


class VerificationStats(BaseModel):
    total: int = 0
    verified: int = 0
    unverified: int = 0
    needs_review: int = 0


class VerificationStatus(BaseModel):
    verified: bool
    verified_at: datetime | None
    updated_at: datetime
