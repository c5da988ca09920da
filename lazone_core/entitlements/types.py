# Copyright (C) 2025 LaZone Contributors
#
# This file is part of LaZone Core.
#
# LaZone Core is free software: you can redistribute it and/or modify
# it under the terms of the GNU Affero General Public License as published
# by the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Mapping, Optional, Tuple

from lazone_core.entitlements.periods import to_utc
from lazone_core.schema.settings import ListingMode, Money, SubscriptionTier, is_subscription_product

logger = logging.getLogger(__name__)


# -----------------------------------------------------------------------------
# Credit sources
# -----------------------------------------------------------------------------

class CreditSourceKind(str, Enum):
    SUBSCRIPTION = "subscription"
    CREDIT_PACK = "credit_pack"
    LEGACY_PAYMENT = "legacy_payment"


# Subscription allowances lapse at period end, so they go first; packs and
# legacy credits never expire and are drained oldest-first.
CREDIT_SOURCE_PRIORITY: Tuple[CreditSourceKind, ...] = (
    CreditSourceKind.SUBSCRIPTION,
    CreditSourceKind.CREDIT_PACK,
    CreditSourceKind.LEGACY_PAYMENT,
)

PURCHASE_STATUS_ACTIVE = "active"
PAYMENT_STATUS_COMPLETED = "completed"


# -----------------------------------------------------------------------------
# Persisted records
# -----------------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class ModeUsage:
    """Subscription allowance consumed in one billing period for one mode."""
    period_start: datetime
    used: int = 0

    def to_dict(self) -> dict:
        return {"period_start": self.period_start.isoformat(), "used": self.used}

    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> "ModeUsage":
        return cls(period_start=to_utc(d["period_start"]), used=int(d.get("used", 0)))


def _parse_tier(raw: Any, *, purchase_id: Any) -> Optional[SubscriptionTier]:
    # Unknown stored tiers fall back to the product id.
    if not raw:
        return None
    try:
        return SubscriptionTier(str(raw).strip().lower())
    except ValueError:
        logger.warning("[Ledger] Purchase %s has unknown tier %r, deriving it from the product id", purchase_id, raw)
        return None


@dataclass(frozen=True, slots=True)
class PurchaseRecord:
    """A store purchase: either a credit pack or a subscription."""
    id: str
    user_id: str
    product_id: str
    purchase_date: Optional[datetime]
    status: str = PURCHASE_STATUS_ACTIVE
    is_subscription: bool = False
    credits_amount: int = 0
    credits_used: int = 0
    expiration_date: Optional[datetime] = None
    tier: Optional[SubscriptionTier] = None
    mode_usage: Mapping[ListingMode, ModeUsage] = field(default_factory=dict)

    @property
    def subscription_tier(self) -> Optional[SubscriptionTier]:
        if not self.is_subscription:
            return None
        return self.tier or SubscriptionTier.from_product_id(self.product_id, subscription=True)

    def is_active_at(self, now: datetime) -> bool:
        if self.status != PURCHASE_STATUS_ACTIVE:
            return False
        return self.expiration_date is None or self.expiration_date > now

    @property
    def pack_remaining(self) -> int:
        return max(0, self.credits_amount - self.credits_used)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "product_id": self.product_id,
            "purchase_date": self.purchase_date.isoformat() if self.purchase_date else None,
            "status": self.status,
            "is_subscription": self.is_subscription,
            "credits_amount": self.credits_amount,
            "credits_used": self.credits_used,
            "expiration_date": self.expiration_date.isoformat() if self.expiration_date else None,
            "tier": self.tier.value if self.tier else None,
            "mode_usage": {mode.value: usage.to_dict() for mode, usage in self.mode_usage.items()},
        }

    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> "PurchaseRecord":
        product_id = str(d.get("product_id") or "")
        if d.get("is_subscription") is None:
            is_subscription = is_subscription_product(product_id)
        else:
            is_subscription = bool(d["is_subscription"])
        return cls(
            id=str(d["id"]),
            user_id=str(d["user_id"]),
            product_id=product_id,
            purchase_date=to_utc(d.get("purchase_date") or d.get("created_at")),
            status=str(d.get("status") or PURCHASE_STATUS_ACTIVE),
            is_subscription=is_subscription,
            credits_amount=int(d.get("credits_amount") or 0),
            credits_used=int(d.get("credits_used") or 0),
            expiration_date=to_utc(d.get("expiration_date")),
            tier=_parse_tier(d.get("tier"), purchase_id=d["id"]),
            mode_usage={
                ListingMode.parse(mode): ModeUsage.from_dict(usage)
                for mode, usage in (d.get("mode_usage") or {}).items()
            },
        )


@dataclass(frozen=True, slots=True)
class LegacyPayment:
    """A one-off completed payment worth exactly one listing in its mode."""
    id: str
    user_id: str
    mode: ListingMode = ListingMode.LONG_TERM
    status: str = PAYMENT_STATUS_COMPLETED
    bound_listing_id: Optional[str] = None
    completed_at: Optional[datetime] = None

    @property
    def is_available(self) -> bool:
        return self.status == PAYMENT_STATUS_COMPLETED and not self.bound_listing_id

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "listing_type": self.mode.value,
            "status": self.status,
            "property_id": self.bound_listing_id,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }

    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> "LegacyPayment":
        return cls(
            id=str(d["id"]),
            user_id=str(d["user_id"]),
            mode=ListingMode.parse(d.get("listing_type")),
            status=str(d.get("status") or ""),
            bound_listing_id=d.get("property_id") or None,
            completed_at=to_utc(d.get("completed_at") or d.get("created_at")),
        )


@dataclass(frozen=True, slots=True)
class ListingRecord:
    id: str
    user_id: str
    mode: ListingMode = ListingMode.LONG_TERM
    is_active: bool = True
    is_sponsored: bool = False
    sponsored_until: Optional[datetime] = None
    sponsored_by: Optional[str] = None

    def is_sponsored_at(self, now: datetime) -> bool:
        """Expiry is lazy: a lapsed `sponsored_until` reads as unsponsored."""
        return self.is_sponsored and self.sponsored_until is not None and self.sponsored_until > now

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "listing_type": self.mode.value,
            "is_active": self.is_active,
            "is_sponsored": self.is_sponsored,
            "sponsored_until": self.sponsored_until.isoformat() if self.sponsored_until else None,
            "sponsored_by": self.sponsored_by,
        }

    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> "ListingRecord":
        return cls(
            id=str(d["id"]),
            user_id=str(d["user_id"]),
            mode=ListingMode.parse(d.get("listing_type")),
            is_active=bool(d.get("is_active", True)),
            is_sponsored=bool(d.get("is_sponsored", False)),
            sponsored_until=to_utc(d.get("sponsored_until")),
            sponsored_by=d.get("sponsored_by"),
        )


# -----------------------------------------------------------------------------
# Ledger view & candidate units
# -----------------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class CreditUnit:
    """A concrete debitable unit, carrying the state it was read at.

    `expected_used` / `expected_period_start` are the raw stored values the
    conditional write compares against; `period_start` is the billing period
    the debit lands in.
    """
    kind: CreditSourceKind
    unit_id: str
    remaining: int
    acquired_at: Optional[datetime] = None
    expected_used: int = 0
    expected_period_start: Optional[datetime] = None
    limit: int = 1
    period_start: Optional[datetime] = None
    tier: Optional[SubscriptionTier] = None

    @property
    def used_in_period(self) -> int:
        if self.expected_period_start is None or self.expected_period_start != self.period_start:
            return 0
        return self.expected_used


@dataclass(frozen=True, slots=True)
class CreditLedgerView:
    """Remaining credit per source for one user/mode. Read fresh, never cached."""
    subscription_remaining: int = 0
    pack_remaining: int = 0
    legacy_remaining: int = 0
    subscription_tier: Optional[SubscriptionTier] = None
    degraded_sources: Tuple[CreditSourceKind, ...] = ()

    def __post_init__(self):
        for name in ("subscription_remaining", "pack_remaining", "legacy_remaining"):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must be >= 0")

    @property
    def total(self) -> int:
        return self.subscription_remaining + self.pack_remaining + self.legacy_remaining

    @property
    def is_degraded(self) -> bool:
        return bool(self.degraded_sources)

    def remaining_for(self, kind: CreditSourceKind) -> int:
        if kind is CreditSourceKind.SUBSCRIPTION:
            return self.subscription_remaining
        if kind is CreditSourceKind.CREDIT_PACK:
            return self.pack_remaining
        return self.legacy_remaining

    def preferred_source(self) -> Optional[CreditSourceKind]:
        for kind in CREDIT_SOURCE_PRIORITY:
            if self.remaining_for(kind) > 0:
                return kind
        return None

    def to_dict(self) -> dict:
        return {
            "subscription_remaining": self.subscription_remaining,
            "pack_remaining": self.pack_remaining,
            "legacy_remaining": self.legacy_remaining,
            "total": self.total,
            "subscription_tier": self.subscription_tier.value if self.subscription_tier else None,
            "degraded_sources": [k.value for k in self.degraded_sources],
        }


# -----------------------------------------------------------------------------
# Decisions & outcomes
# -----------------------------------------------------------------------------

class DecisionKind(str, Enum):
    FREE = "free"
    USE_CREDIT = "use_credit"
    PAYMENT_REQUIRED = "payment_required"


@dataclass(frozen=True, slots=True)
class EntitlementDecision:
    kind: DecisionKind
    source: Optional[CreditSourceKind] = None
    price: Optional[Money] = None
    free_limit: int = 0
    active_count: int = 0
    ledger: Optional[CreditLedgerView] = None

    @classmethod
    def free(cls, *, free_limit: int = 0, active_count: int = 0) -> "EntitlementDecision":
        return cls(kind=DecisionKind.FREE, free_limit=free_limit, active_count=active_count)

    @classmethod
    def use_credit(
        cls,
        source: CreditSourceKind,
        *,
        free_limit: int = 0,
        active_count: int = 0,
        ledger: CreditLedgerView | None = None,
    ) -> "EntitlementDecision":
        return cls(
            kind=DecisionKind.USE_CREDIT,
            source=source,
            free_limit=free_limit,
            active_count=active_count,
            ledger=ledger,
        )

    @classmethod
    def payment_required(
        cls,
        price: Money,
        *,
        free_limit: int = 0,
        active_count: int = 0,
        ledger: CreditLedgerView | None = None,
    ) -> "EntitlementDecision":
        return cls(
            kind=DecisionKind.PAYMENT_REQUIRED,
            price=price,
            free_limit=free_limit,
            active_count=active_count,
            ledger=ledger,
        )

    @property
    def remaining_free(self) -> int:
        return max(0, self.free_limit - self.active_count)

    def to_dict(self) -> dict:
        d: dict[str, Any] = {
            "decision": self.kind.value,
            "free_limit": self.free_limit,
            "active_count": self.active_count,
            "remaining_free": self.remaining_free,
        }
        if self.source is not None:
            d["source"] = self.source.value
        if self.price is not None:
            d["amount"] = str(self.price.amount)
            d["currency"] = self.price.currency
        if self.ledger is not None:
            d["ledger"] = self.ledger.to_dict()
        return d


@dataclass(frozen=True, slots=True)
class ConsumedFrom:
    """Which concrete unit paid for a listing."""
    source_kind: CreditSourceKind
    unit_id: str
    listing_id: str
    replayed: bool = False

    def to_dict(self) -> dict:
        return {
            "source": self.source_kind.value,
            "unit_id": self.unit_id,
            "listing_id": self.listing_id,
            "replayed": self.replayed,
        }


@dataclass(frozen=True, slots=True)
class PublishOutcome:
    decision: EntitlementDecision
    consumed: Optional[ConsumedFrom] = None

    @property
    def allowed(self) -> bool:
        return self.decision.kind is DecisionKind.FREE or self.consumed is not None

    def to_dict(self) -> dict:
        return {
            "allowed": self.allowed,
            "decision": self.decision.to_dict(),
            "consumed": self.consumed.to_dict() if self.consumed else None,
        }


# -----------------------------------------------------------------------------
# Sponsorship
# -----------------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class SponsorshipQuota:
    tier: Optional[SubscriptionTier]
    quota: int
    used: int
    period: str
    active_listing_ids: Tuple[str, ...] = ()

    @property
    def remaining(self) -> int:
        return max(0, self.quota - self.used)

    def to_dict(self) -> dict:
        return {
            "tier": self.tier.value if self.tier else None,
            "quota": self.quota,
            "used": self.used,
            "remaining": self.remaining,
            "period": self.period,
            "active_listing_ids": list(self.active_listing_ids),
        }
