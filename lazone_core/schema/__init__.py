# Copyright (C) 2025 LaZone Contributors
#
# This file is part of LaZone Core.
#
# LaZone Core is free software: you can redistribute it and/or modify
# it under the terms of the GNU Affero General Public License as published
# by the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.

from lazone_core.schema.serialization import SchemaModel, deep_merge
from lazone_core.schema.settings import (
    DEFAULT_FREE_LISTINGS,
    DEFAULT_MONTHLY_LIMITS,
    GlobalSettings,
    ListingMode,
    ModeQuotaConfig,
    Money,
    SubscriptionTier,
    UserCategory,
    default_settings,
)

__all__ = [
    "SchemaModel",
    "deep_merge",
    "DEFAULT_FREE_LISTINGS",
    "DEFAULT_MONTHLY_LIMITS",
    "GlobalSettings",
    "ListingMode",
    "ModeQuotaConfig",
    "Money",
    "SubscriptionTier",
    "UserCategory",
    "default_settings",
]
