# Copyright (C) 2025 LaZone Contributors
#
# This file is part of LaZone Core.
#
# LaZone Core is free software: you can redistribute it and/or modify
# it under the terms of the GNU Affero General Public License as published
# by the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.

"""Billing-period arithmetic. All datetimes are timezone-aware UTC."""

from __future__ import annotations

import calendar
from datetime import datetime, timezone
from typing import Any


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_utc(value: Any) -> datetime | None:
    """Coerce stored timestamps (datetime, ISO string, Firestore timestamp) to aware UTC."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    elif hasattr(value, "to_datetime"):
        dt = value.to_datetime()
    elif isinstance(value, str):
        s = value.strip()
        if s.endswith("Z"):
            s = s[:-1] + "+00:00"
        dt = datetime.fromisoformat(s)
    else:
        raise TypeError(f"Unsupported timestamp value: {value!r}")
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def add_months(dt: datetime, months: int) -> datetime:
    """Shift by whole months, clamping the day (Jan 31 + 1 month -> Feb 28/29)."""
    month_index = dt.month - 1 + months
    year = dt.year + month_index // 12
    month = month_index % 12 + 1
    day = min(dt.day, calendar.monthrange(year, month)[1])
    return dt.replace(year=year, month=month, day=day)


def billing_period_start(anchor: datetime, now: datetime) -> datetime:
    """Start of the monthly billing period containing `now`, anchored on the purchase date."""
    if now <= anchor:
        return anchor
    months = (now.year - anchor.year) * 12 + (now.month - anchor.month)
    start = add_months(anchor, months)
    if start > now:
        start = add_months(anchor, months - 1)
    return start


def calendar_period_key(now: datetime) -> str:
    """Calendar-month key used by the sponsorship quota (`YYYY-MM`, UTC)."""
    return f"{now.year:04d}-{now.month:02d}"
