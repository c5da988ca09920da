# Copyright (C) 2025 LaZone Contributors
#
# This file is part of LaZone Core.
#
# LaZone Core is free software: you can redistribute it and/or modify
# it under the terms of the GNU Affero General Public License as published
# by the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.

"""Credit Consumer.

Commits a `UseCredit` decision by debiting exactly one unit. The debit is a
conditional write paired with a journal entry keyed by listing, so:

- two concurrent publishes cannot spend the same unit (the loser re-reads
  and moves on),
- replaying a publish for a listing that was already paid for returns the
  original binding without spending again.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, Optional

from lazone_core.entitlements.config import EntitlementsConfig
from lazone_core.entitlements.errors import (
    ConcurrentConsumptionConflict,
    InvalidDecisionSequence,
    NoCreditAvailable,
)
from lazone_core.entitlements.ledger import ConsumptionEntry, build_consumption_key
from lazone_core.entitlements.periods import utc_now
from lazone_core.entitlements.services.credit_ledger import CreditLedger
from lazone_core.entitlements.services.sources import CreditSourceProvider
from lazone_core.entitlements.stores import ConsumptionJournal, LegacyPaymentStore
from lazone_core.entitlements.types import (
    ConsumedFrom,
    CreditSourceKind,
    CreditUnit,
    DecisionKind,
    EntitlementDecision,
)
from lazone_core.schema.settings import ListingMode

logger = logging.getLogger(__name__)


class CreditConsumer:
    def __init__(
        self,
        ledger: CreditLedger,
        journal: ConsumptionJournal,
        legacy_payments: LegacyPaymentStore,
        cfg: EntitlementsConfig | None = None,
        *,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.ledger = ledger
        self.journal = journal
        self.legacy_payments = legacy_payments
        self.cfg = cfg or EntitlementsConfig()
        self.clock = clock

    def find_existing(self, user_id: str, listing_id: str) -> Optional[ConsumedFrom]:
        """The unit that already paid for `listing_id`, if any."""
        entry = self.journal.get_consumption(build_consumption_key(listing_id))
        if entry is not None:
            if entry.user_id != user_id:
                logger.warning(
                    "[Consume] Listing %s was paid by user=%s, not user=%s",
                    listing_id, entry.user_id, user_id,
                )
                return None
            return entry.to_consumed(replayed=True)

        # Bindings made before the journal existed live only on the payment row.
        payment = self.legacy_payments.find_payment_bound_to(listing_id)
        if payment is not None and payment.user_id == user_id:
            return ConsumedFrom(
                source_kind=CreditSourceKind.LEGACY_PAYMENT,
                unit_id=payment.id,
                listing_id=listing_id,
                replayed=True,
            )
        return None

    def consume(
        self,
        user_id: str,
        mode: ListingMode | str,
        listing_id: str,
        decision: EntitlementDecision,
    ) -> ConsumedFrom:
        if decision is None or decision.kind is not DecisionKind.USE_CREDIT:
            kind = decision.kind.value if decision is not None else None
            raise InvalidDecisionSequence(f"consume requires a use_credit decision, got {kind}")
        if not user_id or not listing_id:
            raise ValueError("user_id and listing_id are required")
        mode = ListingMode.parse(mode)

        for attempt in range(1, self.cfg.max_consume_attempts + 1):
            existing = self.find_existing(user_id, listing_id)
            if existing is not None:
                logger.info("[Consume] Listing %s already paid by %s/%s", listing_id,
                            existing.source_kind.value, existing.unit_id)
                return existing

            candidates = self.ledger.list_candidates(user_id, mode)
            if not candidates:
                raise NoCreditAvailable(f"No credit left for user={user_id} mode={mode.value}")

            for provider, unit in candidates:
                try:
                    return self._debit(provider, unit, user_id, mode, listing_id)
                except ConcurrentConsumptionConflict as exc:
                    logger.debug("[Consume] %s (attempt %d)", exc, attempt)
                    # Units below this one were read in the same pass; re-read first.
                    break

        raise NoCreditAvailable(
            f"Gave up after {self.cfg.max_consume_attempts} contended attempts for listing {listing_id}"
        )

    def _debit(
        self,
        provider: CreditSourceProvider,
        unit: CreditUnit,
        user_id: str,
        mode: ListingMode,
        listing_id: str,
    ) -> ConsumedFrom:
        entry = ConsumptionEntry(
            idempotency_key=build_consumption_key(listing_id),
            user_id=user_id,
            mode=mode,
            listing_id=listing_id,
            source_kind=unit.kind,
            unit_id=unit.unit_id,
            created_at=self.clock(),
        )
        if not provider.try_consume(unit, entry):
            raise ConcurrentConsumptionConflict(f"{unit.kind.value}/{unit.unit_id} changed since read")
        logger.info(
            "[Consume] user=%s listing=%s paid by %s/%s",
            user_id, listing_id, unit.kind.value, unit.unit_id,
        )
        return entry.to_consumed()
