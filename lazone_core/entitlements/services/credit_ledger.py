# Copyright (C) 2025 LaZone Contributors
#
# This file is part of LaZone Core.
#
# LaZone Core is free software: you can redistribute it and/or modify
# it under the terms of the GNU Affero General Public License as published
# by the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.

"""Credit Ledger.

Aggregates remaining credit across the three sources for a user/mode pair.
Balances are always read fresh.

For display and evaluation a single failing source is tolerated: it counts as
zero and is reported in `degraded_sources`. Candidate selection for a debit is
strict: any failing source aborts, otherwise a lower-priority unit could be
spent while a higher-priority one was merely unreadable.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, List, Sequence, Tuple

from lazone_core.entitlements.errors import PersistenceFailure
from lazone_core.entitlements.periods import utc_now
from lazone_core.entitlements.services.sources import CreditSourceProvider
from lazone_core.entitlements.types import CreditLedgerView, CreditSourceKind, CreditUnit
from lazone_core.schema.settings import ListingMode

logger = logging.getLogger(__name__)


class CreditLedger:
    def __init__(
        self,
        providers: Sequence[CreditSourceProvider],
        *,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.providers = list(providers)
        self.clock = clock

    def get_ledger(self, user_id: str, mode: ListingMode) -> CreditLedgerView:
        mode = ListingMode.parse(mode)
        now = self.clock()
        remaining: dict[CreditSourceKind, int] = {}
        degraded: list[CreditSourceKind] = []
        tier = None

        for provider in self.providers:
            try:
                units = provider.peek(user_id, mode, now)
            except PersistenceFailure as exc:
                logger.warning(
                    "[Ledger] %s source unavailable for user=%s mode=%s, counting it as 0: %s",
                    provider.kind.value, user_id, mode.value, exc,
                )
                degraded.append(provider.kind)
                remaining[provider.kind] = 0
                continue
            remaining[provider.kind] = remaining.get(provider.kind, 0) + sum(max(0, u.remaining) for u in units)
            if provider.kind is CreditSourceKind.SUBSCRIPTION and units:
                tier = units[0].tier

        if self.providers and len(degraded) == len(self.providers):
            raise PersistenceFailure(f"All credit sources unavailable for user={user_id}")

        return CreditLedgerView(
            subscription_remaining=remaining.get(CreditSourceKind.SUBSCRIPTION, 0),
            pack_remaining=remaining.get(CreditSourceKind.CREDIT_PACK, 0),
            legacy_remaining=remaining.get(CreditSourceKind.LEGACY_PAYMENT, 0),
            subscription_tier=tier,
            degraded_sources=tuple(degraded),
        )

    def list_candidates(self, user_id: str, mode: ListingMode) -> List[Tuple[CreditSourceProvider, CreditUnit]]:
        """Debitable units in consumption order. Raises PersistenceFailure on any read error."""
        mode = ListingMode.parse(mode)
        now = self.clock()
        out: List[Tuple[CreditSourceProvider, CreditUnit]] = []
        for provider in self.providers:
            for unit in provider.peek(user_id, mode, now):
                if unit.remaining > 0:
                    out.append((provider, unit))
        return out
