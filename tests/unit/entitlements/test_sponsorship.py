# Copyright (C) 2025 LaZone Contributors
#
# This file is part of LaZone Core.
#
# LaZone Core is free software: you can redistribute it and/or modify
# it under the terms of the GNU Affero General Public License as published
# by the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.

"""Unit tests for SponsorshipQuotaEngine."""

from datetime import timedelta

import pytest

from lazone_core.entitlements.errors import (
    ListingNotFound,
    PersistenceFailure,
    QuotaExceeded,
    SponsorError,
    SubscriptionRequired,
)
from lazone_core.entitlements.types import ListingRecord
from lazone_core.schema.settings import SubscriptionTier


class TestSponsorshipQuota:
    def test_no_subscription_means_no_quota(self, facade, seed):
        seed.listings(1)
        quota = facade.sponsorship_quota("user-1")
        assert quota.tier is None
        assert quota.quota == 0
        assert quota.period == "2026-03"

        with pytest.raises(SubscriptionRequired):
            facade.sponsor("user-1", "lst-long_term-0")

    def test_pro_quota(self, facade, seed):
        seed.subscription(tier=SubscriptionTier.PRO)
        quota = facade.sponsorship_quota("user-1")
        assert quota.quota == 2
        assert quota.remaining == 2

    def test_scenario_e_expiry_does_not_refund(self, facade, seed, clock):
        seed.subscription(tier=SubscriptionTier.PREMIUM, expires=None)
        listing_ids = seed.listings(5)

        for listing_id in listing_ids[:4]:
            sponsored = facade.sponsor("user-1", listing_id)
            assert sponsored.sponsored_until == clock() + timedelta(days=3)

        quota = facade.sponsorship_quota("user-1")
        assert quota.used == 4
        assert quota.remaining == 0
        assert len(quota.active_listing_ids) == 4

        with pytest.raises(QuotaExceeded):
            facade.sponsor("user-1", listing_ids[4])

        clock.advance(days=3, seconds=1)
        quota = facade.sponsorship_quota("user-1")
        assert quota.active_listing_ids == ()
        assert quota.used == 4
        assert quota.remaining == 0
        with pytest.raises(QuotaExceeded):
            facade.sponsor("user-1", listing_ids[4])

        clock.advance(days=14)  # April
        quota = facade.sponsorship_quota("user-1")
        assert quota.period == "2026-04"
        assert quota.used == 0
        facade.sponsor("user-1", listing_ids[4])
        assert facade.sponsorship_quota("user-1").used == 1

    def test_sponsor_marks_listing(self, facade, seed, store, clock):
        seed.subscription(tier=SubscriptionTier.PRO)
        listing_id = seed.listings(1)[0]

        facade.sponsor("user-1", listing_id)

        listing = store.get_listing(listing_id)
        assert listing.is_sponsored is True
        assert listing.sponsored_by == "user-1"
        assert listing.is_sponsored_at(clock())
        assert not listing.is_sponsored_at(clock() + timedelta(days=3))

    def test_responsoring_active_listing_is_free(self, facade, seed):
        seed.subscription(tier=SubscriptionTier.PRO)
        listing_id = seed.listings(1)[0]

        first = facade.sponsor("user-1", listing_id)
        again = facade.sponsor("user-1", listing_id)

        assert again.sponsored_until == first.sponsored_until
        assert facade.sponsorship_quota("user-1").used == 1

    def test_unsponsor_does_not_refund(self, facade, seed, store):
        seed.subscription(tier=SubscriptionTier.PRO)
        listing_id = seed.listings(1)[0]
        facade.sponsor("user-1", listing_id)

        facade.unsponsor("user-1", listing_id)

        assert store.get_listing(listing_id).is_sponsored is False
        quota = facade.sponsorship_quota("user-1")
        assert quota.used == 1
        assert quota.remaining == 1
        assert quota.active_listing_ids == ()

    def test_listing_of_other_user(self, facade, seed, store):
        seed.subscription(tier=SubscriptionTier.PRO)
        store.add_listing(ListingRecord(id="lst-x", user_id="user-2"))

        with pytest.raises(ListingNotFound):
            facade.sponsor("user-1", "lst-x")
        with pytest.raises(ListingNotFound):
            facade.sponsor("user-1", "missing")
        with pytest.raises(ListingNotFound):
            facade.unsponsor("user-1", "lst-x")

    def test_contended_counter_gives_up(self, facade, seed, store, monkeypatch):
        seed.subscription(tier=SubscriptionTier.PRO)
        listing_id = seed.listings(1)[0]
        monkeypatch.setattr(store, "try_sponsor_listing", lambda *a, **kw: False)

        with pytest.raises(SponsorError):
            facade.sponsor("user-1", listing_id)
        assert store.get_listing(listing_id).is_sponsored is False

    def test_failed_listing_write_spends_no_slot(self, facade, seed, store, monkeypatch):
        seed.subscription(tier=SubscriptionTier.PRO)
        listing_id = seed.listings(1)[0]

        def broken(*args, **kwargs):
            raise PersistenceFailure("listing write failed")

        monkeypatch.setattr(store, "_flag_listing", broken)
        with pytest.raises(PersistenceFailure):
            facade.sponsor("user-1", listing_id)

        quota = facade.sponsorship_quota("user-1")
        assert quota.used == 0
        assert quota.active_listing_ids == ()

    def test_listing_deleted_mid_sponsor_spends_no_slot(self, facade, seed, store, monkeypatch):
        seed.subscription(tier=SubscriptionTier.PRO)
        ghost = ListingRecord(id="lst-gone", user_id="user-1")
        monkeypatch.setattr(store, "get_listing", lambda listing_id: ghost)

        with pytest.raises(ListingNotFound):
            facade.sponsor("user-1", "lst-gone")
        assert facade.sponsorship_quota("user-1").used == 0

    def test_quota_serialises(self, facade, seed):
        seed.subscription(tier=SubscriptionTier.PREMIUM)
        data = facade.sponsorship_quota("user-1").to_dict()
        assert data == {
            "tier": "premium",
            "quota": 4,
            "used": 0,
            "remaining": 4,
            "period": "2026-03",
            "active_listing_ids": [],
        }
