# Copyright (C) 2025 LaZone Contributors
#
# This file is part of LaZone Core.
#
# LaZone Core is free software: you can redistribute it and/or modify
# it under the terms of the GNU Affero General Public License as published
# by the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.

"""Sponsorship quota.

Subscribers may boost a number of their listings each calendar month (UTC):
the quota comes from the subscription tier, the counter from the
`sponsorship_usage` record of the current period. Sponsorship expiry is lazy,
and an expired or withdrawn sponsorship does not give its slot back before the
period rolls over.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime
from typing import Callable, Optional

from lazone_core.entitlements.config import EntitlementsConfig
from lazone_core.entitlements.errors import ListingNotFound, QuotaExceeded, SponsorError, SubscriptionRequired
from lazone_core.entitlements.periods import calendar_period_key, utc_now
from lazone_core.entitlements.services.sources import select_active_subscription
from lazone_core.entitlements.stores import ListingStore, PurchaseStore, SponsorshipStore
from lazone_core.entitlements.types import ListingRecord, SponsorshipQuota
from lazone_core.schema.settings import SubscriptionTier

logger = logging.getLogger(__name__)


class SponsorshipQuotaEngine:
    def __init__(
        self,
        purchases: PurchaseStore,
        listings: ListingStore,
        usage: SponsorshipStore,
        cfg: EntitlementsConfig | None = None,
        *,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.purchases = purchases
        self.listings = listings
        self.usage = usage
        self.cfg = cfg or EntitlementsConfig()
        self.clock = clock

    def _tier(self, user_id: str, now: datetime) -> Optional[SubscriptionTier]:
        subscription = select_active_subscription(self.purchases.list_purchases(user_id), now)
        return subscription.subscription_tier if subscription else None

    def evaluate(self, user_id: str) -> SponsorshipQuota:
        now = self.clock()
        tier = self._tier(user_id, now)
        period = calendar_period_key(now)
        active = tuple(
            listing.id
            for listing in self.listings.list_sponsored_listings(user_id)
            if listing.is_sponsored_at(now)
        )
        return SponsorshipQuota(
            tier=tier,
            quota=self.cfg.sponsorship_quota_for(tier),
            used=self.usage.get_sponsorship_usage(user_id, period),
            period=period,
            active_listing_ids=active,
        )

    def _owned_listing(self, user_id: str, listing_id: str) -> ListingRecord:
        listing = self.listings.get_listing(listing_id)
        if listing is None or listing.user_id != user_id:
            raise ListingNotFound(f"Listing {listing_id} not found for user {user_id}")
        return listing

    def sponsor(self, user_id: str, listing_id: str) -> ListingRecord:
        """Sponsor `listing_id` for `sponsorship_duration` and count it against this month's quota."""
        now = self.clock()
        listing = self._owned_listing(user_id, listing_id)
        if listing.is_sponsored_at(now):
            logger.info("[Sponsor] Listing %s already sponsored until %s", listing_id, listing.sponsored_until)
            return listing

        tier = self._tier(user_id, now)
        quota = self.cfg.sponsorship_quota_for(tier)
        if quota <= 0:
            raise SubscriptionRequired("An active subscription is required to sponsor listings")

        period = calendar_period_key(now)
        until = now + self.cfg.sponsorship_duration
        for attempt in range(1, self.cfg.max_sponsor_attempts + 1):
            used = self.usage.get_sponsorship_usage(user_id, period)
            if used >= quota:
                raise QuotaExceeded(f"Sponsorship quota reached ({used}/{quota}) for {period}")
            if self.usage.try_sponsor_listing(
                user_id, period, listing_id, expected_used=used, sponsored_until=until
            ):
                break
            logger.debug("[Sponsor] Usage counter moved for user=%s (attempt %d)", user_id, attempt)
        else:
            raise SponsorError("Sponsorship counter is contended, retry later")

        logger.info("[Sponsor] user=%s listing=%s sponsored until %s", user_id, listing_id, until.isoformat())
        return replace(listing, is_sponsored=True, sponsored_until=until, sponsored_by=user_id)

    def unsponsor(self, user_id: str, listing_id: str) -> ListingRecord:
        listing = self._owned_listing(user_id, listing_id)
        self.listings.set_listing_sponsorship(
            listing_id,
            sponsored=False,
            sponsored_until=None,
            sponsored_by=None,
        )
        return replace(listing, is_sponsored=False, sponsored_until=None, sponsored_by=None)
