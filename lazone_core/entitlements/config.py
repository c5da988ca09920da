# Copyright (C) 2025 LaZone Contributors
#
# This file is part of LaZone Core.
#
# LaZone Core is free software: you can redistribute it and/or modify
# it under the terms of the GNU Affero General Public License as published
# by the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.

from __future__ import annotations

import os
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Mapping

from lazone_core.schema.settings import BASE_CURRENCY, SubscriptionTier


def _env_int(name: str, *, default: int, lo: int, hi: int) -> int:
    raw = (os.getenv(name) or "").strip()
    try:
        value = int(raw) if raw else default
    except ValueError:
        value = default
    return max(lo, min(hi, value))


def _env_float(name: str, *, default: float, lo: float, hi: float) -> float:
    raw = (os.getenv(name) or "").strip()
    try:
        value = float(raw) if raw else default
    except ValueError:
        value = default
    return max(lo, min(hi, value))


def _env_str(name: str, *, default: str) -> str:
    return (os.getenv(name) or "").strip() or default


def _default_sponsorship_quota() -> Mapping[SubscriptionTier, int]:
    return {SubscriptionTier.PRO: 2, SubscriptionTier.PREMIUM: 4}


@dataclass(frozen=True, slots=True)
class EntitlementsConfig:
    """Configuration for the entitlement & credit engine."""

    # Firestore paths
    settings_collection: str = "app_settings"
    settings_doc_id: str = "listing_limit"
    listings_collection: str = "properties"
    purchases_collection: str = "storekit_purchases"
    legacy_payments_collection: str = "listing_payments"
    consumptions_collection: str = "listing_consumptions"
    sponsorship_usage_collection: str = "sponsorship_usage"

    base_currency: str = BASE_CURRENCY

    # Settings read cache (staleness only moves quota numbers)
    settings_cache_ttl_s: float = 30.0
    # Admin read-modify-write retries when the settings revision moved
    settings_write_retries: int = 3

    # Conditional-write attempts per consumption before giving up
    max_consume_attempts: int = 8

    # Sponsorship
    sponsorship_duration: timedelta = timedelta(days=3)
    sponsorship_quota: Mapping[SubscriptionTier, int] = field(default_factory=_default_sponsorship_quota)
    max_sponsor_attempts: int = 5

    def sponsorship_quota_for(self, tier: SubscriptionTier | None) -> int:
        if tier is None:
            return 0
        return int(self.sponsorship_quota.get(tier, 0))

    @staticmethod
    def load_from_env() -> "EntitlementsConfig":
        d = EntitlementsConfig()
        return EntitlementsConfig(
            settings_collection=_env_str("LAZONE_SETTINGS_COLLECTION", default=d.settings_collection),
            settings_doc_id=_env_str("LAZONE_SETTINGS_DOC_ID", default=d.settings_doc_id),
            listings_collection=_env_str("LAZONE_LISTINGS_COLLECTION", default=d.listings_collection),
            purchases_collection=_env_str("LAZONE_PURCHASES_COLLECTION", default=d.purchases_collection),
            legacy_payments_collection=_env_str(
                "LAZONE_LEGACY_PAYMENTS_COLLECTION", default=d.legacy_payments_collection
            ),
            consumptions_collection=_env_str("LAZONE_CONSUMPTIONS_COLLECTION", default=d.consumptions_collection),
            sponsorship_usage_collection=_env_str(
                "LAZONE_SPONSORSHIP_USAGE_COLLECTION", default=d.sponsorship_usage_collection
            ),
            base_currency=_env_str("LAZONE_BASE_CURRENCY", default=d.base_currency).upper(),
            settings_cache_ttl_s=_env_float("LAZONE_SETTINGS_CACHE_TTL_S", default=30.0, lo=0.0, hi=3600.0),
            settings_write_retries=_env_int("LAZONE_SETTINGS_WRITE_RETRIES", default=3, lo=1, hi=20),
            max_consume_attempts=_env_int("LAZONE_MAX_CONSUME_ATTEMPTS", default=8, lo=1, hi=100),
            sponsorship_duration=timedelta(days=_env_int("LAZONE_SPONSORSHIP_DAYS", default=3, lo=1, hi=90)),
            sponsorship_quota={
                SubscriptionTier.PRO: _env_int("LAZONE_SPONSOR_QUOTA_PRO", default=2, lo=0, hi=100),
                SubscriptionTier.PREMIUM: _env_int("LAZONE_SPONSOR_QUOTA_PREMIUM", default=4, lo=0, hi=100),
            },
            max_sponsor_attempts=_env_int("LAZONE_MAX_SPONSOR_ATTEMPTS", default=5, lo=1, hi=50),
        )
