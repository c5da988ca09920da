# Copyright (C) 2025 LaZone Contributors
#
# This file is part of LaZone Core.
#
# LaZone Core is free software: you can redistribute it and/or modify
# it under the terms of the GNU Affero General Public License as published
# by the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.

"""Entitlement Evaluator.

Classifies a publish attempt as Free, UseCredit(source) or PaymentRequired.
Read-only: showing the decision to the user and committing it are separate
steps (see CreditConsumer).

Steps:
1. Settings disabled -> Free
2. free_limit for the user's category in this mode
3. active listing count for this mode
4. Within the free quota -> Free (a zero quota is always exceeded)
5. Otherwise the fresh ledger picks the source, or PaymentRequired
"""

from __future__ import annotations

import logging
from typing import Any

from lazone_core.entitlements.errors import PersistenceFailure
from lazone_core.entitlements.services.credit_ledger import CreditLedger
from lazone_core.entitlements.services.listing_counter import ListingCounter
from lazone_core.entitlements.services.settings import SettingsProvider
from lazone_core.entitlements.types import EntitlementDecision
from lazone_core.schema.settings import ListingMode, UserCategory

logger = logging.getLogger(__name__)


def is_free_quota_exceeded(free_limit: int, active_count: int) -> bool:
    # No implicit "first one free": a zero quota is exceeded at zero listings.
    return free_limit == 0 or active_count >= free_limit


class EntitlementEvaluator:
    def __init__(self, settings: SettingsProvider, counter: ListingCounter, ledger: CreditLedger):
        self.settings = settings
        self.counter = counter
        self.ledger = ledger

    def evaluate(self, user_id: str, category: UserCategory | str | None, mode: ListingMode | str) -> EntitlementDecision:
        mode = ListingMode.parse(mode)
        user_category = UserCategory.parse(category)

        settings = self.settings.get_settings()
        if not settings.enabled:
            return EntitlementDecision.free()

        config = settings.mode_config(mode)
        free_limit = config.free_limit_for(user_category)
        active_count = self.counter.count_active(user_id, mode)

        if not is_free_quota_exceeded(free_limit, active_count):
            return EntitlementDecision.free(free_limit=free_limit, active_count=active_count)

        ledger = self.ledger.get_ledger(user_id, mode)
        source = ledger.preferred_source()
        if source is None:
            if ledger.is_degraded:
                # A source we could not read may hold credit; do not bill the user for our outage.
                raise PersistenceFailure(
                    "Credit ledger degraded (%s); cannot decide payment"
                    % ", ".join(k.value for k in ledger.degraded_sources)
                )
            logger.debug(
                "[Evaluate] user=%s mode=%s over free quota (%d/%d) with no credit",
                user_id, mode.value, active_count, free_limit,
            )
            return EntitlementDecision.payment_required(
                config.price_per_extra_listing,
                free_limit=free_limit,
                active_count=active_count,
                ledger=ledger,
            )

        return EntitlementDecision.use_credit(
            source,
            free_limit=free_limit,
            active_count=active_count,
            ledger=ledger,
        )

    def explain(self, user_id: str, category: Any, mode: ListingMode | str) -> dict:
        """Evaluate and return a JSON-ready summary (read-only)."""
        mode = ListingMode.parse(mode)
        decision = self.evaluate(user_id, category, mode)
        out = decision.to_dict()
        out["mode"] = mode.value
        out["user_id"] = user_id
        return out
