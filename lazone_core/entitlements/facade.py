# Copyright (C) 2025 LaZone Contributors
#
# This file is part of LaZone Core.
#
# LaZone Core is free software: you can redistribute it and/or modify
# it under the terms of the GNU Affero General Public License as published
# by the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.

from __future__ import annotations

from datetime import datetime
from typing import Any, Callable, Mapping

from lazone_core.entitlements.config import EntitlementsConfig
from lazone_core.entitlements.errors import NoCreditAvailable
from lazone_core.entitlements.periods import utc_now
from lazone_core.entitlements.services.consumer import CreditConsumer
from lazone_core.entitlements.services.credit_ledger import CreditLedger
from lazone_core.entitlements.services.evaluator import EntitlementEvaluator
from lazone_core.entitlements.services.listing_counter import ListingCounter
from lazone_core.entitlements.services.settings import SettingsProvider
from lazone_core.entitlements.services.sources import build_default_providers
from lazone_core.entitlements.services.sponsorship import SponsorshipQuotaEngine
from lazone_core.entitlements.stores import EntitlementsStore
from lazone_core.entitlements.types import (
    ConsumedFrom,
    CreditLedgerView,
    DecisionKind,
    EntitlementDecision,
    ListingRecord,
    PublishOutcome,
    SponsorshipQuota,
)
from lazone_core.schema.settings import GlobalSettings, ListingMode, ModeQuotaConfig, UserCategory


class EntitlementsFacade:
    def __init__(
        self,
        *,
        store: EntitlementsStore,
        config: EntitlementsConfig | None = None,
        clock: Callable[[], datetime] | None = None,
        settings: SettingsProvider | None = None,
    ) -> None:
        self._store = store
        self._config = config or EntitlementsConfig()
        self._clock = clock or utc_now

        self.settings = settings or SettingsProvider(store, self._config)
        self.counter = ListingCounter(store)
        self.ledger = CreditLedger(build_default_providers(store, self.settings), clock=self._clock)
        self.evaluator = EntitlementEvaluator(self.settings, self.counter, self.ledger)
        self.consumer = CreditConsumer(self.ledger, store, store, self._config, clock=self._clock)
        self.sponsorship = SponsorshipQuotaEngine(store, store, store, self._config, clock=self._clock)

    # Settings

    def get_settings(self) -> GlobalSettings:
        return self.settings.get_settings()

    def get_mode_config(self, mode: ListingMode | str) -> ModeQuotaConfig:
        return self.settings.get_mode_config(mode)

    def update_config(self, partial: Mapping[str, Any], mode: ListingMode | str | None = None) -> GlobalSettings:
        return self.settings.update_config(partial, mode)

    # Listing entitlement

    def count_active(self, user_id: str, mode: ListingMode | str) -> int:
        return self.counter.count_active(user_id, mode)

    def get_ledger(self, user_id: str, mode: ListingMode | str) -> CreditLedgerView:
        return self.ledger.get_ledger(user_id, mode)

    def evaluate(self, user_id: str, category: UserCategory | str | None, mode: ListingMode | str) -> EntitlementDecision:
        return self.evaluator.evaluate(user_id, category, mode)

    def consume(
        self,
        user_id: str,
        mode: ListingMode | str,
        listing_id: str,
        decision: EntitlementDecision,
    ) -> ConsumedFrom:
        return self.consumer.consume(user_id, mode, listing_id, decision)

    def authorize_publish(
        self,
        user_id: str,
        category: UserCategory | str | None,
        mode: ListingMode | str,
        listing_id: str,
    ) -> PublishOutcome:
        """
        Evaluate and, when a credit applies, debit it for `listing_id`.

        A listing that was already paid for is authorized again without a
        second debit. When every candidate unit is lost to concurrent
        publishes the outcome degrades to PaymentRequired.
        """
        mode = ListingMode.parse(mode)
        existing = self.consumer.find_existing(user_id, listing_id)
        if existing is not None:
            return PublishOutcome(
                decision=EntitlementDecision.use_credit(existing.source_kind),
                consumed=existing,
            )

        decision = self.evaluator.evaluate(user_id, category, mode)
        if decision.kind is not DecisionKind.USE_CREDIT:
            return PublishOutcome(decision=decision)

        try:
            consumed = self.consumer.consume(user_id, mode, listing_id, decision)
        except NoCreditAvailable:
            price = self.settings.get_mode_config(mode).price_per_extra_listing
            return PublishOutcome(
                decision=EntitlementDecision.payment_required(
                    price,
                    free_limit=decision.free_limit,
                    active_count=decision.active_count,
                ),
            )
        return PublishOutcome(decision=decision, consumed=consumed)

    # Sponsorship

    def sponsorship_quota(self, user_id: str) -> SponsorshipQuota:
        return self.sponsorship.evaluate(user_id)

    def sponsor(self, user_id: str, listing_id: str) -> ListingRecord:
        return self.sponsorship.sponsor(user_id, listing_id)

    def unsponsor(self, user_id: str, listing_id: str) -> ListingRecord:
        return self.sponsorship.unsponsor(user_id, listing_id)
