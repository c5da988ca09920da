# Copyright (C) 2025 LaZone Contributors
#
# This file is part of LaZone Core.
#
# LaZone Core is free software: you can redistribute it and/or modify
# it under the terms of the GNU Affero General Public License as published
# by the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.

from __future__ import annotations

from lazone_core.entitlements.stores import ListingStore
from lazone_core.schema.settings import ListingMode


class ListingCounter:
    """Counts a user's active listings per mode. Always reads through; no cache."""

    def __init__(self, store: ListingStore):
        self.store = store

    def count_active(self, user_id: str, mode: ListingMode) -> int:
        return max(0, int(self.store.count_active_listings(user_id, ListingMode.parse(mode))))
