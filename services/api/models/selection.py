# services/api/models/selection.py
from __future__ import annotations

import json
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

# Persisted collection / table / sheet-tab name
PAGE_SELECTIONS = "pageSelections"

# Fixed policy: shareable links live for 7 days
SELECTION_TTL = timedelta(days=7)

# Storage keys, in the order Sheets/JSON rows are written
STORAGE_FIELDS = [
    "id",
    "email",
    "productId",
    "sourceUrl",
    "sourceName",
    "selectedPages",
    "createdAt",
    "expiresAt",
    "accessCount",
]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class SelectionRecord(BaseModel):
    """
    Durable record of one page-delivery request; `id` is the public viewer key.

    Immutable once created. The only field that changes after creation is
    accessCount, and that happens in the store (increment_access), never on
    an instance.
    """
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    id: str = Field(..., min_length=1)
    email: str = Field(..., min_length=1)
    product_id: Optional[str] = Field(None, alias="productId")
    source_url: Optional[str] = Field(None, alias="sourceUrl")
    source_name: Optional[str] = Field(None, alias="sourceName")
    selected_pages: List[int] = Field(..., min_length=1, alias="selectedPages")
    created_at: datetime = Field(..., alias="createdAt")
    expires_at: datetime = Field(..., alias="expiresAt")
    access_count: int = Field(0, ge=0, alias="accessCount")

    @model_validator(mode="before")
    @classmethod
    def _default_expiry(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        if data.get("expiresAt") or data.get("expires_at"):
            return data
        created = data.get("createdAt") or data.get("created_at")
        if isinstance(created, str):
            created = datetime.fromisoformat(created.replace("Z", "+00:00"))
        if isinstance(created, datetime):
            data = {**data, "expiresAt": _as_utc(created) + SELECTION_TTL}
        return data

    @field_validator("email")
    @classmethod
    def _strip_email(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("email must not be empty")
        return v

    @field_validator("product_id", "source_url", "source_name", mode="before")
    @classmethod
    def _blank_to_none(cls, v: Any) -> Any:
        # Sheets hands back "" for empty cells
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @field_validator("selected_pages", mode="before")
    @classmethod
    def _parse_pages(cls, v: Any) -> Any:
        if isinstance(v, str):
            return json.loads(v)
        return v

    @field_validator("selected_pages")
    @classmethod
    def _positive_pages(cls, v: List[int]) -> List[int]:
        bad = [p for p in v if p < 1]
        if bad:
            raise ValueError(f"page numbers must be positive, got {bad}")
        return v

    @field_validator("access_count", mode="before")
    @classmethod
    def _blank_count(cls, v: Any) -> Any:
        if v is None or (isinstance(v, str) and not v.strip()):
            return 0
        return v

    @field_validator("created_at", "expires_at")
    @classmethod
    def _utc(cls, v: datetime) -> datetime:
        return _as_utc(v)

    @model_validator(mode="after")
    def _expiry_policy(self) -> "SelectionRecord":
        if self.expires_at != self.created_at + SELECTION_TTL:
            raise ValueError("expiresAt must be exactly 7 days after createdAt")
        return self

    # ---------- construction ----------

    @classmethod
    def new(
        cls,
        *,
        email: str,
        selected_pages: List[int],
        product_id: Optional[str] = None,
        source_url: Optional[str] = None,
        source_name: Optional[str] = None,
        now: Optional[datetime] = None,
        selection_id: Optional[str] = None,
    ) -> "SelectionRecord":
        created = _as_utc(now or utcnow())
        return cls(
            id=selection_id or str(uuid.uuid4()),
            email=email,
            product_id=product_id,
            source_url=source_url,
            source_name=source_name,
            selected_pages=list(selected_pages),
            created_at=created,
            expires_at=created + SELECTION_TTL,
            access_count=0,
        )

    # ---------- behaviour ----------

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return _as_utc(now or utcnow()) > self.expires_at

    # ---------- storage mapping ----------

    def to_storage(self) -> Dict[str, Any]:
        """camelCase persisted shape; timestamps as ISO-8601 strings."""
        return {
            "id": self.id,
            "email": self.email,
            "productId": self.product_id,
            "sourceUrl": self.source_url,
            "sourceName": self.source_name,
            "selectedPages": list(self.selected_pages),
            "createdAt": self.created_at.isoformat(),
            "expiresAt": self.expires_at.isoformat(),
            "accessCount": self.access_count,
        }

    @classmethod
    def from_storage(cls, row: Dict[str, Any]) -> "SelectionRecord":
        return cls.model_validate(row)
