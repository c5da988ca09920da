# Copyright (C) 2025 LaZone Contributors
#
# This file is part of LaZone Core.
#
# LaZone Core is free software: you can redistribute it and/or modify
# it under the terms of the GNU Affero General Public License as published
# by the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.

"""Unit tests for the listing settings schema and its legacy migration."""

from decimal import Decimal

import pytest
from pydantic import ValidationError

from lazone_core.schema.settings import (
    GlobalSettings,
    ListingMode,
    ModeQuotaConfig,
    SubscriptionTier,
    UserCategory,
    default_settings,
    is_subscription_product,
)


class TestEnums:
    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("individual", UserCategory.INDIVIDUAL),
            ("particulier", UserCategory.INDIVIDUAL),
            ("Proprietaire", UserCategory.OWNER),
            ("propriétaire", UserCategory.OWNER),
            ("demarcheur", UserCategory.BROKER),
            ("agence", UserCategory.AGENCY),
            (" AGENCY ", UserCategory.AGENCY),
        ],
    )
    def test_category_aliases(self, raw, expected):
        assert UserCategory.parse(raw) is expected

    def test_unknown_or_empty_category_is_none(self):
        assert UserCategory.parse(None) is None
        assert UserCategory.parse("") is None
        assert UserCategory.parse("landlord") is None

    def test_missing_mode_is_long_term(self):
        assert ListingMode.parse(None) is ListingMode.LONG_TERM
        assert ListingMode.parse("") is ListingMode.LONG_TERM
        assert ListingMode.parse("short_term") is ListingMode.SHORT_TERM

    def test_invalid_mode_rejected(self):
        with pytest.raises(ValueError):
            ListingMode.parse("weekly")

    def test_tier_from_product_id(self):
        assert SubscriptionTier.from_product_id("com.lazone.sub.premium.monthly") is SubscriptionTier.PREMIUM
        assert SubscriptionTier.from_product_id("com.lazone.sub.pro.monthly") is SubscriptionTier.PRO
        assert SubscriptionTier.from_product_id("com.lazone.credits.5") is None
        # "pro" must be a whole token, not a substring of "property"
        assert SubscriptionTier.from_product_id("com.lazone.property.boost") is None

    def test_known_subscription_defaults_to_pro(self):
        assert SubscriptionTier.from_product_id("com.lazone.agency.monthly", subscription=True) is SubscriptionTier.PRO
        assert SubscriptionTier.from_product_id("com.lazone.agency.monthly") is None
        assert (
            SubscriptionTier.from_product_id("com.lazone.agency.premiumplus", subscription=True)
            is SubscriptionTier.PREMIUM
        )

    def test_subscription_products(self):
        assert is_subscription_product("com.lazone.sub.pro.monthly")
        assert is_subscription_product("com.lazone.agency.monthly")
        assert not is_subscription_product("com.lazone.listing.pack5")
        assert not is_subscription_product(None)


class TestModeQuotaConfig:
    def test_defaults(self):
        cfg = ModeQuotaConfig()
        assert cfg.free_limit_for(UserCategory.INDIVIDUAL) == 3
        assert cfg.free_limit_for(UserCategory.AGENCY) == 1
        assert cfg.free_limit_for(None) == 3
        assert cfg.price_per_extra_listing.amount == Decimal("1000")
        assert cfg.price_per_extra_listing.currency == "XOF"
        assert cfg.monthly_limit_for(SubscriptionTier.PRO) == 15
        assert cfg.monthly_limit_for(SubscriptionTier.PREMIUM) == 30
        assert cfg.monthly_limit_for(None) == 0

    def test_missing_category_falls_back_to_default(self):
        cfg = ModeQuotaConfig(free_listings_by_category={"agence": 2}, free_listings_default=7)
        assert cfg.free_limit_for(UserCategory.AGENCY) == 2
        assert cfg.free_limit_for(UserCategory.BROKER) == 7

    def test_negative_values_rejected(self):
        with pytest.raises(ValidationError):
            ModeQuotaConfig(free_listings_default=-1)
        with pytest.raises(ValidationError):
            ModeQuotaConfig(free_listings_by_category={"owner": -2})
        with pytest.raises(ValidationError):
            ModeQuotaConfig(subscription_monthly_limit={"pro": -1})
        with pytest.raises(ValidationError):
            ModeQuotaConfig.from_dict({"price_per_extra_listing": {"amount": "-5"}})

    def test_unknown_category_key_rejected(self):
        with pytest.raises(ValidationError):
            ModeQuotaConfig(free_listings_by_category={"landlord": 2})

    def test_dict_round_trip_uses_plain_keys(self):
        data = ModeQuotaConfig().to_dict()
        assert data["free_listings_by_category"]["agency"] == 1
        assert data["subscription_monthly_limit"]["premium"] == 30
        assert ModeQuotaConfig.from_dict(data).to_dict() == data


class TestGlobalSettingsMigration:
    def test_flat_fields_become_per_mode_config(self):
        settings = GlobalSettings.load(
            {
                "free_listings_particulier": 5,
                "free_listings_agence": 2,
                "price_per_extra": 1500,
                "currency": "xof",
            }
        )
        assert not settings.has_legacy_fields()
        for mode in ListingMode:
            cfg = settings.mode_config(mode)
            assert cfg.free_limit_for(UserCategory.INDIVIDUAL) == 5
            assert cfg.free_limit_for(UserCategory.AGENCY) == 2
            assert cfg.free_limit_for(UserCategory.OWNER) == 3
            assert cfg.price_per_extra_listing.amount == Decimal("1500")
            assert cfg.price_per_extra_listing.currency == "XOF"

    def test_flat_free_listings_applies_to_all_but_agency(self):
        settings = GlobalSettings.load({"free_listings": 4})
        cfg = settings.mode_config(ListingMode.LONG_TERM)
        assert cfg.free_limit_for(UserCategory.BROKER) == 4
        assert cfg.free_limit_for(None) == 4
        assert cfg.free_limit_for(UserCategory.AGENCY) == 1

    def test_present_mode_config_wins_over_flat_fields(self):
        settings = GlobalSettings.load(
            {
                "free_listings_particulier": 9,
                "short_term": {"free_listings_by_category": {"individual": 0}},
            }
        )
        assert settings.mode_config(ListingMode.SHORT_TERM).free_limit_for(UserCategory.INDIVIDUAL) == 0
        assert settings.mode_config(ListingMode.LONG_TERM).free_limit_for(UserCategory.INDIVIDUAL) == 9

    def test_migrated_document_has_no_flat_fields(self):
        data = GlobalSettings.load({"free_listings_agence": 2}).to_dict()
        assert "free_listings_agence" not in data
        assert data["long_term"]["free_listings_by_category"]["agency"] == 2
        assert data["version"] == 2

    def test_default_settings_enabled(self):
        settings = default_settings()
        assert settings.enabled is True
        assert settings.mode_config(ListingMode.SHORT_TERM).to_dict() == ModeQuotaConfig().to_dict()

    def test_unknown_keys_ignored(self):
        settings = GlobalSettings.load({"enabled": False, "banner_text": "hello"})
        assert settings.enabled is False
