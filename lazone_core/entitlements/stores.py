# Copyright (C) 2025 LaZone Contributors
#
# This file is part of LaZone Core.
#
# LaZone Core is free software: you can redistribute it and/or modify
# it under the terms of the GNU Affero General Public License as published
# by the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.

"""Storage protocols for the entitlement engine.

Reads return plain records. Every mutation that spends something is a
conditional write: it returns False when the stored value no longer matches
what the caller read (a lost race), and raises `PersistenceFailure` when the
backend is unreachable.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, List, Optional, Protocol, Tuple, runtime_checkable

from lazone_core.entitlements.ledger import ConsumptionEntry
from lazone_core.entitlements.types import LegacyPayment, ListingRecord, ModeUsage, PurchaseRecord
from lazone_core.schema.settings import ListingMode


@runtime_checkable
class SettingsStore(Protocol):
    def read_settings(self) -> Tuple[Optional[dict[str, Any]], int]:
        """Return (settings document or None, revision)."""
        ...

    def compare_and_set_settings(self, expected_revision: int, value: dict[str, Any]) -> bool:
        """Replace the whole document iff its revision is still `expected_revision`."""
        ...


@runtime_checkable
class ListingStore(Protocol):
    def count_active_listings(self, user_id: str, mode: ListingMode) -> int:
        ...

    def get_listing(self, listing_id: str) -> Optional[ListingRecord]:
        ...

    def list_sponsored_listings(self, user_id: str) -> List[ListingRecord]:
        """Listings flagged sponsored, including lapsed ones."""
        ...

    def set_listing_sponsorship(
        self,
        listing_id: str,
        *,
        sponsored: bool,
        sponsored_until: Optional[datetime],
        sponsored_by: Optional[str],
    ) -> None:
        ...


@runtime_checkable
class PurchaseStore(Protocol):
    def list_purchases(self, user_id: str) -> List[PurchaseRecord]:
        ...

    def try_debit_pack(self, purchase_id: str, *, expected_used: int, entry: ConsumptionEntry) -> bool:
        """credits_used: expected_used -> expected_used + 1, iff unchanged and below credits_amount."""
        ...

    def try_debit_subscription(
        self,
        purchase_id: str,
        *,
        mode: ListingMode,
        expected: Optional[ModeUsage],
        new: ModeUsage,
        entry: ConsumptionEntry,
    ) -> bool:
        """mode_usage[mode]: expected -> new, iff the stored usage still equals `expected`."""
        ...


@runtime_checkable
class LegacyPaymentStore(Protocol):
    def list_legacy_payments(self, user_id: str, mode: ListingMode) -> List[LegacyPayment]:
        ...

    def find_payment_bound_to(self, listing_id: str) -> Optional[LegacyPayment]:
        ...

    def try_bind_legacy_payment(self, payment_id: str, *, listing_id: str, entry: ConsumptionEntry) -> bool:
        """property_id: None -> listing_id, iff still unbound."""
        ...


@runtime_checkable
class ConsumptionJournal(Protocol):
    def get_consumption(self, idempotency_key: str) -> Optional[ConsumptionEntry]:
        ...


@runtime_checkable
class SponsorshipStore(Protocol):
    def get_sponsorship_usage(self, user_id: str, period: str) -> int:
        ...

    def try_sponsor_listing(
        self,
        user_id: str,
        period: str,
        listing_id: str,
        *,
        expected_used: int,
        sponsored_until: datetime,
    ) -> bool:
        """Count one sponsorship for `period` and flag the listing, both or neither.

        Returns False when the period counter is no longer `expected_used`;
        raises `ListingNotFound` when the listing is gone.
        """
        ...


@runtime_checkable
class EntitlementsStore(
    SettingsStore,
    ListingStore,
    PurchaseStore,
    LegacyPaymentStore,
    ConsumptionJournal,
    SponsorshipStore,
    Protocol,
):
    """Everything one backend provides."""
