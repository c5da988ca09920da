# Copyright (C) 2025 LaZone Contributors
#
# This file is part of LaZone Core.
#
# LaZone Core is free software: you can redistribute it and/or modify
# it under the terms of the GNU Affero General Public License as published
# by the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.

"""
LaZone Core
===========

Listing entitlement, credit ledger and sponsorship quota engine.
"""

__version__ = "0.4.0"

# Bump when the persisted settings layout changes.
SETTINGS_SCHEMA_VERSION = 2
