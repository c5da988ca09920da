# Copyright (C) 2025 LaZone Contributors
#
# This file is part of LaZone Core.
#
# LaZone Core is free software: you can redistribute it and/or modify
# it under the terms of the GNU Affero General Public License as published
# by the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.

from lazone_core.entitlements.services.settings import (
    SettingsProvider,
    SettingsSnapshot,
)
from lazone_core.entitlements.services.listing_counter import ListingCounter
from lazone_core.entitlements.services.sources import (
    CreditPackSource,
    CreditSourceProvider,
    LegacyPaymentSource,
    SubscriptionAllowanceSource,
    build_default_providers,
    select_active_subscription,
)
from lazone_core.entitlements.services.credit_ledger import CreditLedger
from lazone_core.entitlements.services.evaluator import (
    EntitlementEvaluator,
    is_free_quota_exceeded,
)
from lazone_core.entitlements.services.consumer import CreditConsumer
from lazone_core.entitlements.services.sponsorship import SponsorshipQuotaEngine

__all__ = [
    # Reads
    "SettingsProvider",
    "SettingsSnapshot",
    "ListingCounter",
    "CreditLedger",
    # Credit sources
    "CreditSourceProvider",
    "SubscriptionAllowanceSource",
    "CreditPackSource",
    "LegacyPaymentSource",
    "build_default_providers",
    "select_active_subscription",
    # Decisions & mutations
    "EntitlementEvaluator",
    "is_free_quota_exceeded",
    "CreditConsumer",
    "SponsorshipQuotaEngine",
]
