# Copyright (C) 2025 LaZone Contributors
#
# This file is part of LaZone Core.
#
# LaZone Core is free software: you can redistribute it and/or modify
# it under the terms of the GNU Affero General Public License as published
# by the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.

"""
Listing quota & price settings.

Persisted as a single JSON document (`app_settings/listing_limit`). Older app
builds wrote flat fields (`free_listings_agence`, `price_per_extra`, ...);
`GlobalSettings.load()` migrates those into per-mode `ModeQuotaConfig` blocks
once, at load time. Nothing downstream reads the flat fields.
"""

from __future__ import annotations

import re
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, Optional

from pydantic import Field, field_validator, model_validator

from lazone_core import SETTINGS_SCHEMA_VERSION
from lazone_core.schema.serialization import SchemaModel

if TYPE_CHECKING:
    from typing import Self


BASE_CURRENCY = "XOF"


# ─────────────────────────────────────────────────────────────────────────────
# Enums
# ─────────────────────────────────────────────────────────────────────────────

class ListingMode(str, Enum):
    """Listing mode; quotas and prices are configured per mode."""
    LONG_TERM = "long_term"
    """Traditional real-estate sale / rental."""

    SHORT_TERM = "short_term"
    """Short-stay rental."""

    @classmethod
    def parse(cls, raw: Any) -> "ListingMode":
        """Parse a stored `listing_type`; records written before modes existed are long-term."""
        if isinstance(raw, cls):
            return raw
        s = str(raw or "").strip().lower()
        if not s:
            return cls.LONG_TERM
        return cls(s)


class UserCategory(str, Enum):
    """User classification that determines the free-listing allowance."""
    INDIVIDUAL = "individual"
    OWNER = "owner"
    BROKER = "broker"
    AGENCY = "agency"

    @classmethod
    def parse(cls, raw: Any) -> Optional["UserCategory"]:
        """Accept English names and the French names stored in user profiles.

        Unknown or empty input returns None (the category-default applies).
        """
        if isinstance(raw, cls):
            return raw
        s = str(raw or "").strip().lower()
        if not s:
            return None
        try:
            return cls(s)
        except ValueError:
            return _CATEGORY_ALIASES.get(s)


_CATEGORY_ALIASES: dict[str, UserCategory] = {
    "particulier": UserCategory.INDIVIDUAL,
    "proprietaire": UserCategory.OWNER,
    "propriétaire": UserCategory.OWNER,
    "demarcheur": UserCategory.BROKER,
    "démarcheur": UserCategory.BROKER,
    "agence": UserCategory.AGENCY,
}


class SubscriptionTier(str, Enum):
    PRO = "pro"
    PREMIUM = "premium"

    @property
    def rank(self) -> int:
        return 2 if self is SubscriptionTier.PREMIUM else 1

    @classmethod
    def from_product_id(cls, product_id: str | None, *, subscription: bool = False) -> Optional["SubscriptionTier"]:
        """Derive the tier from a store product id such as `com.lazone.sub.premium.monthly`.

        With `subscription=True` the product is known to be a subscription, so
        anything that is not premium is pro (`com.lazone.agency.monthly`).
        """
        lowered = (product_id or "").lower()
        tokens = set(re.split(r"[._\-]", lowered))
        if "premium" in tokens or (subscription and "premium" in lowered):
            return cls.PREMIUM
        if "pro" in tokens or subscription:
            return cls.PRO
        return None


_SUBSCRIPTION_PRODUCT_MARKERS = ("sub.", "agency.")


def is_subscription_product(product_id: str | None) -> bool:
    lowered = (product_id or "").lower()
    return any(marker in lowered for marker in _SUBSCRIPTION_PRODUCT_MARKERS)


# ─────────────────────────────────────────────────────────────────────────────
# Defaults
# ─────────────────────────────────────────────────────────────────────────────

DEFAULT_FREE_LISTINGS: dict[UserCategory, int] = {
    UserCategory.INDIVIDUAL: 3,
    UserCategory.OWNER: 3,
    UserCategory.BROKER: 3,
    UserCategory.AGENCY: 1,
}
DEFAULT_FREE_LISTINGS_FALLBACK = 3
DEFAULT_PRICE_PER_EXTRA = Decimal("1000")
DEFAULT_MONTHLY_LIMITS: dict[SubscriptionTier, int] = {
    SubscriptionTier.PRO: 15,
    SubscriptionTier.PREMIUM: 30,
}


# ─────────────────────────────────────────────────────────────────────────────
# Models
# ─────────────────────────────────────────────────────────────────────────────

class Money(SchemaModel):
    amount: Decimal = Field(ge=0)
    currency: str = BASE_CURRENCY

    @field_validator("currency", mode="before")
    @classmethod
    def _upper_currency(cls, v: Any) -> Any:
        return str(v).strip().upper() if v is not None else BASE_CURRENCY


def _default_price() -> Money:
    return Money(amount=DEFAULT_PRICE_PER_EXTRA, currency=BASE_CURRENCY)


class ModeQuotaConfig(SchemaModel):
    """Free quota, overage price and subscription allowance for one listing mode."""

    free_listings_by_category: Dict[UserCategory, int] = Field(
        default_factory=lambda: dict(DEFAULT_FREE_LISTINGS)
    )
    free_listings_default: int = Field(default=DEFAULT_FREE_LISTINGS_FALLBACK, ge=0)
    price_per_extra_listing: Money = Field(default_factory=_default_price)
    subscription_monthly_limit: Dict[SubscriptionTier, int] = Field(
        default_factory=lambda: dict(DEFAULT_MONTHLY_LIMITS)
    )

    @field_validator("free_listings_by_category", mode="before")
    @classmethod
    def _normalize_category_keys(cls, v: Any) -> Any:
        if not isinstance(v, dict):
            return v
        out: dict[UserCategory, Any] = {}
        for key, value in v.items():
            category = UserCategory.parse(key)
            if category is None:
                raise ValueError(f"Unknown user category: {key!r}")
            out[category] = value
        return out

    @model_validator(mode="after")
    def validate_non_negative(self) -> Self:
        for category, value in self.free_listings_by_category.items():
            if value < 0:
                raise ValueError(f"free_listings_by_category[{category.value}] must be >= 0")
        for tier, value in self.subscription_monthly_limit.items():
            if value < 0:
                raise ValueError(f"subscription_monthly_limit[{tier.value}] must be >= 0")
        return self

    def free_limit_for(self, category: UserCategory | None) -> int:
        if category is None:
            return self.free_listings_default
        return self.free_listings_by_category.get(category, self.free_listings_default)

    def monthly_limit_for(self, tier: SubscriptionTier | None) -> int:
        if tier is None:
            return 0
        return self.subscription_monthly_limit.get(tier, 0)


class GlobalSettings(SchemaModel):
    version: int = SETTINGS_SCHEMA_VERSION
    enabled: bool = True
    long_term: Optional[ModeQuotaConfig] = None
    short_term: Optional[ModeQuotaConfig] = None

    # Flat fields written by older app builds; only read by `migrated()`.
    free_listings: Optional[int] = Field(default=None, ge=0)
    free_listings_default: Optional[int] = Field(default=None, ge=0)
    free_listings_agence: Optional[int] = Field(default=None, ge=0)
    free_listings_particulier: Optional[int] = Field(default=None, ge=0)
    free_listings_proprietaire: Optional[int] = Field(default=None, ge=0)
    free_listings_demarcheur: Optional[int] = Field(default=None, ge=0)
    price_per_extra: Optional[Decimal] = Field(default=None, ge=0)
    currency: Optional[str] = None

    @classmethod
    def load(cls, data: dict[str, Any]) -> "GlobalSettings":
        """Validate a persisted document and migrate it to the per-mode layout."""
        return cls.from_dict(data).migrated()

    def has_legacy_fields(self) -> bool:
        return any(
            getattr(self, name) is not None
            for name in _LEGACY_FIELDS
        )

    def migrated(self) -> "GlobalSettings":
        if self.long_term is not None and self.short_term is not None and not self.has_legacy_fields():
            return self
        legacy = self._legacy_mode_config()
        update: dict[str, Any] = {name: None for name in _LEGACY_FIELDS}
        update["version"] = SETTINGS_SCHEMA_VERSION
        update["long_term"] = self.long_term or legacy
        update["short_term"] = self.short_term or legacy.model_copy(deep=True)
        return self.model_copy(update=update)

    def mode_config(self, mode: ListingMode) -> ModeQuotaConfig:
        cfg = self.long_term if mode is ListingMode.LONG_TERM else self.short_term
        if cfg is None:
            return self.migrated().mode_config(mode)
        return cfg

    def _legacy_mode_config(self) -> ModeQuotaConfig:
        flat = self.free_listings
        fallback = self.free_listings_default if self.free_listings_default is not None else flat

        def _pick(value: Optional[int], default: int) -> int:
            if value is not None:
                return value
            if flat is not None:
                return flat
            return default

        return ModeQuotaConfig(
            free_listings_by_category={
                UserCategory.INDIVIDUAL: _pick(self.free_listings_particulier, 3),
                UserCategory.OWNER: _pick(self.free_listings_proprietaire, 3),
                UserCategory.BROKER: _pick(self.free_listings_demarcheur, 3),
                # Agencies never inherited the flat value.
                UserCategory.AGENCY: (
                    self.free_listings_agence
                    if self.free_listings_agence is not None
                    else DEFAULT_FREE_LISTINGS[UserCategory.AGENCY]
                ),
            },
            free_listings_default=fallback if fallback is not None else DEFAULT_FREE_LISTINGS_FALLBACK,
            price_per_extra_listing=Money(
                amount=self.price_per_extra if self.price_per_extra is not None else DEFAULT_PRICE_PER_EXTRA,
                currency=self.currency or BASE_CURRENCY,
            ),
        )


_LEGACY_FIELDS = (
    "free_listings",
    "free_listings_default",
    "free_listings_agence",
    "free_listings_particulier",
    "free_listings_proprietaire",
    "free_listings_demarcheur",
    "price_per_extra",
    "currency",
)


def default_settings() -> GlobalSettings:
    """Built-in settings used whenever the persisted document is unavailable."""
    return GlobalSettings(
        enabled=True,
        long_term=ModeQuotaConfig(),
        short_term=ModeQuotaConfig(),
    )
