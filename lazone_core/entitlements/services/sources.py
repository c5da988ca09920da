# Copyright (C) 2025 LaZone Contributors
#
# This file is part of LaZone Core.
#
# LaZone Core is free software: you can redistribute it and/or modify
# it under the terms of the GNU Affero General Public License as published
# by the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.

"""Credit source strategies.

Each provider exposes `peek` (read the debitable units of one source, oldest
first) and `try_consume` (one conditional write against a unit read by
`peek`). `build_default_providers` returns them in the fixed priority order:
subscription allowance, then credit packs, then legacy payments.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Iterable, List, Optional, Protocol

from lazone_core.entitlements.ledger import ConsumptionEntry
from lazone_core.entitlements.periods import billing_period_start
from lazone_core.entitlements.stores import LegacyPaymentStore, PurchaseStore
from lazone_core.entitlements.types import (
    PURCHASE_STATUS_ACTIVE,
    CreditSourceKind,
    CreditUnit,
    ModeUsage,
    PurchaseRecord,
)
from lazone_core.schema.settings import ListingMode

if TYPE_CHECKING:
    from lazone_core.entitlements.services.settings import SettingsProvider

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


class CreditSourceProvider(Protocol):
    kind: CreditSourceKind

    def peek(self, user_id: str, mode: ListingMode, now: datetime) -> List[CreditUnit]:
        """Units of this source, oldest first. May include exhausted units."""
        ...

    def try_consume(self, unit: CreditUnit, entry: ConsumptionEntry) -> bool:
        """Debit one credit from `unit` iff it still holds the state it was read at."""
        ...


def select_active_subscription(purchases: Iterable[PurchaseRecord], now: datetime) -> Optional[PurchaseRecord]:
    """The subscription in force at `now`.

    Overlapping subscriptions are a data anomaly; the higher tier wins, then
    the most recent purchase.
    """
    candidates = [
        p for p in purchases
        if p.is_subscription and p.is_active_at(now) and p.subscription_tier is not None
    ]
    if not candidates:
        return None
    return max(candidates, key=lambda p: (p.subscription_tier.rank, p.purchase_date or _EPOCH))


class SubscriptionAllowanceSource:
    kind = CreditSourceKind.SUBSCRIPTION

    def __init__(self, store: PurchaseStore, settings: "SettingsProvider"):
        self.store = store
        self.settings = settings

    def peek(self, user_id: str, mode: ListingMode, now: datetime) -> List[CreditUnit]:
        subscription = select_active_subscription(self.store.list_purchases(user_id), now)
        if subscription is None:
            return []
        tier = subscription.subscription_tier
        limit = self.settings.get_mode_config(mode).monthly_limit_for(tier)
        # Without a purchase date the period falls back to the calendar month.
        period_start = billing_period_start(subscription.purchase_date or _EPOCH, now)
        usage = subscription.mode_usage.get(mode)
        unit = CreditUnit(
            kind=self.kind,
            unit_id=subscription.id,
            remaining=0,
            acquired_at=subscription.purchase_date,
            expected_used=usage.used if usage else 0,
            expected_period_start=usage.period_start if usage else None,
            limit=limit,
            period_start=period_start,
            tier=tier,
        )
        return [replace(unit, remaining=max(0, limit - unit.used_in_period))]

    def try_consume(self, unit: CreditUnit, entry: ConsumptionEntry) -> bool:
        new = ModeUsage(period_start=unit.period_start, used=unit.used_in_period + 1)
        if new.used > unit.limit:
            return False
        expected = None
        if unit.expected_period_start is not None:
            expected = ModeUsage(period_start=unit.expected_period_start, used=unit.expected_used)
        return self.store.try_debit_subscription(
            unit.unit_id,
            mode=entry.mode,
            expected=expected,
            new=new,
            entry=entry,
        )


class CreditPackSource:
    kind = CreditSourceKind.CREDIT_PACK

    def __init__(self, store: PurchaseStore):
        self.store = store

    def peek(self, user_id: str, mode: ListingMode, now: datetime) -> List[CreditUnit]:
        # Packs are not mode-scoped and never expire.
        packs = [
            p for p in self.store.list_purchases(user_id)
            if not p.is_subscription and p.status == PURCHASE_STATUS_ACTIVE and p.pack_remaining > 0
        ]
        packs.sort(key=lambda p: (p.purchase_date or _EPOCH, p.id))
        return [
            CreditUnit(
                kind=self.kind,
                unit_id=p.id,
                remaining=p.pack_remaining,
                acquired_at=p.purchase_date,
                expected_used=p.credits_used,
                limit=p.credits_amount,
            )
            for p in packs
        ]

    def try_consume(self, unit: CreditUnit, entry: ConsumptionEntry) -> bool:
        return self.store.try_debit_pack(unit.unit_id, expected_used=unit.expected_used, entry=entry)


class LegacyPaymentSource:
    kind = CreditSourceKind.LEGACY_PAYMENT

    def __init__(self, store: LegacyPaymentStore):
        self.store = store

    def peek(self, user_id: str, mode: ListingMode, now: datetime) -> List[CreditUnit]:
        payments = [
            p for p in self.store.list_legacy_payments(user_id, mode)
            if p.is_available and p.mode is mode
        ]
        payments.sort(key=lambda p: (p.completed_at or _EPOCH, p.id))
        return [
            CreditUnit(kind=self.kind, unit_id=p.id, remaining=1, acquired_at=p.completed_at)
            for p in payments
        ]

    def try_consume(self, unit: CreditUnit, entry: ConsumptionEntry) -> bool:
        return self.store.try_bind_legacy_payment(unit.unit_id, listing_id=entry.listing_id, entry=entry)


def build_default_providers(store, settings: "SettingsProvider") -> List[CreditSourceProvider]:
    """Providers in consumption priority order. `store` must be a PurchaseStore and a LegacyPaymentStore."""
    return [
        SubscriptionAllowanceSource(store, settings),
        CreditPackSource(store),
        LegacyPaymentSource(store),
    ]
