# Copyright (C) 2025 LaZone Contributors
#
# This file is part of LaZone Core.
#
# LaZone Core is free software: you can redistribute it and/or modify
# it under the terms of the GNU Affero General Public License as published
# by the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.

from __future__ import annotations

import copy
import threading
from dataclasses import replace
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from lazone_core.entitlements.errors import ListingNotFound
from lazone_core.entitlements.ledger import ConsumptionEntry
from lazone_core.entitlements.types import (
    PURCHASE_STATUS_ACTIVE,
    LegacyPayment,
    ListingRecord,
    ModeUsage,
    PurchaseRecord,
)
from lazone_core.schema.settings import ListingMode


class InMemoryEntitlementsStore:
    """Process-local store. Conditional writes are serialised by one lock."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._settings: Dict[str, Any] | None = None
        self._settings_revision = 0
        self._listings: Dict[str, ListingRecord] = {}
        self._purchases: Dict[str, PurchaseRecord] = {}
        self._payments: Dict[str, LegacyPayment] = {}
        self._consumptions: Dict[str, ConsumptionEntry] = {}
        self._sponsorship_usage: Dict[Tuple[str, str], int] = {}

    # ------------------------------------------------------------------
    # Seeding
    # ------------------------------------------------------------------

    @classmethod
    def from_fixture(cls, data: Dict[str, Any]) -> "InMemoryEntitlementsStore":
        """Build a store from a JSON fixture (settings, listings, purchases, legacy_payments)."""
        store = cls()
        if data.get("settings") is not None:
            store.set_settings_document(data["settings"])
        for row in data.get("listings") or []:
            store.add_listing(ListingRecord.from_dict(row))
        for row in data.get("purchases") or []:
            store.add_purchase(PurchaseRecord.from_dict(row))
        for row in data.get("legacy_payments") or []:
            store.add_legacy_payment(LegacyPayment.from_dict(row))
        for key, used in (data.get("sponsorship_usage") or {}).items():
            user_id, _, period = key.rpartition(":")
            store._sponsorship_usage[(user_id, period)] = int(used)
        return store

    def to_fixture(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "settings": copy.deepcopy(self._settings),
                "listings": [r.to_dict() for r in self._listings.values()],
                "purchases": [r.to_dict() for r in self._purchases.values()],
                "legacy_payments": [r.to_dict() for r in self._payments.values()],
                "sponsorship_usage": {f"{u}:{p}": n for (u, p), n in self._sponsorship_usage.items()},
            }

    def set_settings_document(self, value: Dict[str, Any]) -> None:
        with self._lock:
            self._settings = copy.deepcopy(value)
            self._settings_revision += 1

    def add_listing(self, listing: ListingRecord) -> None:
        with self._lock:
            self._listings[listing.id] = listing

    def add_purchase(self, purchase: PurchaseRecord) -> None:
        with self._lock:
            self._purchases[purchase.id] = purchase

    def add_legacy_payment(self, payment: LegacyPayment) -> None:
        with self._lock:
            self._payments[payment.id] = payment

    def get_purchase(self, purchase_id: str) -> Optional[PurchaseRecord]:
        return self._purchases.get(purchase_id)

    def get_legacy_payment(self, payment_id: str) -> Optional[LegacyPayment]:
        return self._payments.get(payment_id)

    def list_consumptions(self, user_id: str | None = None) -> List[ConsumptionEntry]:
        with self._lock:
            entries = list(self._consumptions.values())
        if user_id is not None:
            entries = [e for e in entries if e.user_id == user_id]
        return sorted(entries, key=lambda e: e.created_at)

    # ------------------------------------------------------------------
    # SettingsStore
    # ------------------------------------------------------------------

    def read_settings(self) -> Tuple[Optional[Dict[str, Any]], int]:
        with self._lock:
            return copy.deepcopy(self._settings), self._settings_revision

    def compare_and_set_settings(self, expected_revision: int, value: Dict[str, Any]) -> bool:
        with self._lock:
            if self._settings_revision != expected_revision:
                return False
            self._settings = copy.deepcopy(value)
            self._settings_revision += 1
            return True

    # ------------------------------------------------------------------
    # ListingStore
    # ------------------------------------------------------------------

    def count_active_listings(self, user_id: str, mode: ListingMode) -> int:
        with self._lock:
            return sum(
                1 for r in self._listings.values()
                if r.user_id == user_id and r.mode is mode and r.is_active
            )

    def get_listing(self, listing_id: str) -> Optional[ListingRecord]:
        return self._listings.get(listing_id)

    def list_sponsored_listings(self, user_id: str) -> List[ListingRecord]:
        with self._lock:
            return [r for r in self._listings.values() if r.user_id == user_id and r.is_sponsored]

    def set_listing_sponsorship(
        self,
        listing_id: str,
        *,
        sponsored: bool,
        sponsored_until: Optional[datetime],
        sponsored_by: Optional[str],
    ) -> None:
        with self._lock:
            self._flag_listing(listing_id, sponsored, sponsored_until, sponsored_by)

    def _flag_listing(
        self,
        listing_id: str,
        sponsored: bool,
        sponsored_until: Optional[datetime],
        sponsored_by: Optional[str],
    ) -> None:
        # Caller holds the lock.
        listing = self._listings.get(listing_id)
        if listing is None:
            raise ListingNotFound(f"Listing {listing_id} not found")
        self._listings[listing_id] = replace(
            listing,
            is_sponsored=sponsored,
            sponsored_until=sponsored_until,
            sponsored_by=sponsored_by,
        )

    # ------------------------------------------------------------------
    # PurchaseStore
    # ------------------------------------------------------------------

    def list_purchases(self, user_id: str) -> List[PurchaseRecord]:
        with self._lock:
            return [p for p in self._purchases.values() if p.user_id == user_id]

    def try_debit_pack(self, purchase_id: str, *, expected_used: int, entry: ConsumptionEntry) -> bool:
        with self._lock:
            if entry.idempotency_key in self._consumptions:
                return False
            purchase = self._purchases.get(purchase_id)
            if purchase is None or purchase.is_subscription or purchase.status != PURCHASE_STATUS_ACTIVE:
                return False
            if purchase.credits_used != expected_used or purchase.credits_used >= purchase.credits_amount:
                return False
            self._purchases[purchase_id] = replace(purchase, credits_used=expected_used + 1)
            self._consumptions[entry.idempotency_key] = entry
            return True

    def try_debit_subscription(
        self,
        purchase_id: str,
        *,
        mode: ListingMode,
        expected: Optional[ModeUsage],
        new: ModeUsage,
        entry: ConsumptionEntry,
    ) -> bool:
        with self._lock:
            if entry.idempotency_key in self._consumptions:
                return False
            purchase = self._purchases.get(purchase_id)
            if purchase is None or not purchase.is_subscription:
                return False
            if purchase.mode_usage.get(mode) != expected:
                return False
            usage = dict(purchase.mode_usage)
            usage[mode] = new
            self._purchases[purchase_id] = replace(purchase, mode_usage=usage)
            self._consumptions[entry.idempotency_key] = entry
            return True

    # ------------------------------------------------------------------
    # LegacyPaymentStore
    # ------------------------------------------------------------------

    def list_legacy_payments(self, user_id: str, mode: ListingMode) -> List[LegacyPayment]:
        with self._lock:
            return [p for p in self._payments.values() if p.user_id == user_id and p.mode is mode]

    def find_payment_bound_to(self, listing_id: str) -> Optional[LegacyPayment]:
        with self._lock:
            for payment in self._payments.values():
                if payment.bound_listing_id == listing_id:
                    return payment
        return None

    def try_bind_legacy_payment(self, payment_id: str, *, listing_id: str, entry: ConsumptionEntry) -> bool:
        with self._lock:
            if entry.idempotency_key in self._consumptions:
                return False
            payment = self._payments.get(payment_id)
            if payment is None or not payment.is_available:
                return False
            self._payments[payment_id] = replace(payment, bound_listing_id=listing_id)
            self._consumptions[entry.idempotency_key] = entry
            return True

    # ------------------------------------------------------------------
    # ConsumptionJournal / SponsorshipStore
    # ------------------------------------------------------------------

    def get_consumption(self, idempotency_key: str) -> Optional[ConsumptionEntry]:
        return self._consumptions.get(idempotency_key)

    def get_sponsorship_usage(self, user_id: str, period: str) -> int:
        return self._sponsorship_usage.get((user_id, period), 0)

    def try_sponsor_listing(
        self,
        user_id: str,
        period: str,
        listing_id: str,
        *,
        expected_used: int,
        sponsored_until: datetime,
    ) -> bool:
        with self._lock:
            if self._sponsorship_usage.get((user_id, period), 0) != expected_used:
                return False
            self._flag_listing(listing_id, True, sponsored_until, user_id)
            self._sponsorship_usage[(user_id, period)] = expected_used + 1
            return True
