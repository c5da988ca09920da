# Copyright (C) 2025 LaZone Contributors
#
# This file is part of LaZone Core.
#
# LaZone Core is free software: you can redistribute it and/or modify
# it under the terms of the GNU Affero General Public License as published
# by the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.

"""Consumption journal.

Every credit debit writes one `ConsumptionEntry` in the same atomic step as the
unit update. The entry is keyed by listing, so a listing can be paid for at
most once whatever the source.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict

from lazone_core.entitlements.periods import to_utc, utc_now
from lazone_core.entitlements.types import ConsumedFrom, CreditSourceKind
from lazone_core.schema.settings import ListingMode


@dataclass(frozen=True, slots=True)
class ConsumptionEntry:
    idempotency_key: str
    user_id: str
    mode: ListingMode
    listing_id: str
    source_kind: CreditSourceKind
    unit_id: str
    created_at: datetime = field(default_factory=utc_now)
    meta: dict[str, Any] = field(default_factory=dict)

    def to_consumed(self, *, replayed: bool = False) -> ConsumedFrom:
        return ConsumedFrom(
            source_kind=self.source_kind,
            unit_id=self.unit_id,
            listing_id=self.listing_id,
            replayed=replayed,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for persistence."""
        return {
            "idempotency_key": self.idempotency_key,
            "user_id": self.user_id,
            "listing_type": self.mode.value,
            "listing_id": self.listing_id,
            "source_kind": self.source_kind.value,
            "unit_id": self.unit_id,
            "created_at": self.created_at,
            "meta": self.meta,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ConsumptionEntry":
        """Load from dictionary."""
        return cls(
            idempotency_key=data.get("idempotency_key", ""),
            user_id=data.get("user_id", ""),
            mode=ListingMode.parse(data.get("listing_type")),
            listing_id=data.get("listing_id", ""),
            source_kind=CreditSourceKind(data.get("source_kind", CreditSourceKind.CREDIT_PACK.value)),
            unit_id=data.get("unit_id", ""),
            created_at=to_utc(data.get("created_at")) or utc_now(),
            meta=data.get("meta") or {},
        )


def build_idempotency_key(*parts: str) -> str:
    cleaned = [p.strip() for p in parts if p and p.strip()]
    return ":".join(cleaned)


def build_consumption_key(listing_id: str) -> str:
    """Stable key for the debit that paid for `listing_id`."""
    return build_idempotency_key("listing", listing_id, "consume", "v1")
