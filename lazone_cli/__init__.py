# Copyright (C) 2025 LaZone Contributors
#
# This file is part of LaZone Core.
#
# LaZone Core is free software: you can redistribute it and/or modify
# it under the terms of the GNU Affero General Public License as published
# by the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.

"""
LaZone CLI Module

Command-line tools for the listing entitlement engine.

Usage:
    python -m lazone_cli show-config --fixture data.json
    python -m lazone_cli update-config --fixture data.json --mode short_term --patch '{"price_per_extra_listing": {"amount": "1500"}}' --write
    python -m lazone_cli evaluate user-1 --category agence --fixture data.json
    python -m lazone_cli ledger user-1 --mode short_term --firestore
"""

from lazone_cli.entitlements_cmd import main

__all__ = ["main"]
