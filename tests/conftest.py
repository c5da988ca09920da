# Copyright (C) 2025 LaZone Contributors
#
# This file is part of LaZone Core.
#
# LaZone Core is free software: you can redistribute it and/or modify
# it under the terms of the GNU Affero General Public License as published
# by the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.


from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

import pytest

from lazone_core.entitlements.adapters.memory import InMemoryEntitlementsStore
from lazone_core.entitlements.config import EntitlementsConfig
from lazone_core.entitlements.facade import EntitlementsFacade
from lazone_core.entitlements.types import (
    LegacyPayment,
    ListingRecord,
    ModeUsage,
    PurchaseRecord,
)
from lazone_core.schema.settings import ListingMode, SubscriptionTier


NOW = datetime(2026, 3, 15, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    """Settable UTC clock."""

    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@dataclass
class Seeder:
    """Shorthand for putting records into an in-memory store."""

    store: InMemoryEntitlementsStore
    user_id: str = "user-1"

    def listings(self, count: int, *, mode: ListingMode = ListingMode.LONG_TERM, prefix: str = "lst") -> list[str]:
        ids = []
        for i in range(count):
            listing_id = f"{prefix}-{mode.value}-{i}"
            self.store.add_listing(ListingRecord(id=listing_id, user_id=self.user_id, mode=mode))
            ids.append(listing_id)
        return ids

    def pack(self, purchase_id: str, credits: int, *, used: int = 0, days_ago: int = 10) -> PurchaseRecord:
        record = PurchaseRecord(
            id=purchase_id,
            user_id=self.user_id,
            product_id="com.lazone.credits.5",
            purchase_date=NOW - timedelta(days=days_ago),
            credits_amount=credits,
            credits_used=used,
        )
        self.store.add_purchase(record)
        return record

    def subscription(
        self,
        purchase_id: str = "sub-1",
        *,
        tier: SubscriptionTier = SubscriptionTier.PRO,
        purchase_date: datetime = datetime(2026, 3, 1, tzinfo=timezone.utc),
        expires: datetime | None = datetime(2026, 4, 1, tzinfo=timezone.utc),
        usage: dict[ListingMode, int] | None = None,
    ) -> PurchaseRecord:
        record = PurchaseRecord(
            id=purchase_id,
            user_id=self.user_id,
            product_id=f"com.lazone.sub.{tier.value}.monthly",
            purchase_date=purchase_date,
            is_subscription=True,
            expiration_date=expires,
            mode_usage={
                mode: ModeUsage(period_start=purchase_date, used=used)
                for mode, used in (usage or {}).items()
            },
        )
        self.store.add_purchase(record)
        return record

    def payment(
        self,
        payment_id: str,
        *,
        mode: ListingMode = ListingMode.LONG_TERM,
        days_ago: int = 30,
        bound_to: str | None = None,
    ) -> LegacyPayment:
        record = LegacyPayment(
            id=payment_id,
            user_id=self.user_id,
            mode=mode,
            bound_listing_id=bound_to,
            completed_at=NOW - timedelta(days=days_ago),
        )
        self.store.add_legacy_payment(record)
        return record


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    return InMemoryEntitlementsStore()


@pytest.fixture
def seed(store):
    return Seeder(store)


@pytest.fixture
def config():
    # No settings caching unless a test asks for it.
    return EntitlementsConfig(settings_cache_ttl_s=0.0, max_consume_attempts=20)


@pytest.fixture
def facade(store, config, clock):
    return EntitlementsFacade(store=store, config=config, clock=clock)
