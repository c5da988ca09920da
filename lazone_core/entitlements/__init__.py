# Copyright (C) 2025 LaZone Contributors
#
# This file is part of LaZone Core.
#
# LaZone Core is free software: you can redistribute it and/or modify
# it under the terms of the GNU Affero General Public License as published
# by the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.

from lazone_core.entitlements.config import EntitlementsConfig
from lazone_core.entitlements.errors import (
    ConcurrentConsumptionConflict,
    ConfigError,
    ConfigurationDegraded,
    EntitlementError,
    InvalidDecisionSequence,
    ListingNotFound,
    NoCreditAvailable,
    PersistenceFailure,
    QuotaExceeded,
    SponsorError,
    SubscriptionRequired,
)
from lazone_core.entitlements.facade import EntitlementsFacade
from lazone_core.entitlements.ledger import ConsumptionEntry, build_consumption_key
from lazone_core.entitlements.adapters.firestore import FirestoreEntitlementsStore
from lazone_core.entitlements.adapters.memory import InMemoryEntitlementsStore
from lazone_core.entitlements.types import (
    ConsumedFrom,
    CreditLedgerView,
    CreditSourceKind,
    DecisionKind,
    EntitlementDecision,
    LegacyPayment,
    ListingRecord,
    ModeUsage,
    PublishOutcome,
    PurchaseRecord,
    SponsorshipQuota,
)

__all__ = [
    "EntitlementsConfig",
    "EntitlementsFacade",
    "ConsumptionEntry",
    "build_consumption_key",
    "FirestoreEntitlementsStore",
    "InMemoryEntitlementsStore",
    # Errors
    "EntitlementError",
    "ConfigurationDegraded",
    "ConfigError",
    "PersistenceFailure",
    "NoCreditAvailable",
    "ConcurrentConsumptionConflict",
    "InvalidDecisionSequence",
    "SponsorError",
    "QuotaExceeded",
    "SubscriptionRequired",
    "ListingNotFound",
    # Types
    "ConsumedFrom",
    "CreditLedgerView",
    "CreditSourceKind",
    "DecisionKind",
    "EntitlementDecision",
    "LegacyPayment",
    "ListingRecord",
    "ModeUsage",
    "PublishOutcome",
    "PurchaseRecord",
    "SponsorshipQuota",
]
