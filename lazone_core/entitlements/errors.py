# Copyright (C) 2025 LaZone Contributors
#
# This file is part of LaZone Core.
#
# LaZone Core is free software: you can redistribute it and/or modify
# it under the terms of the GNU Affero General Public License as published
# by the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.

from __future__ import annotations


class EntitlementError(RuntimeError):
    pass


class ConfigurationDegraded(EntitlementError):
    """Settings could not be read; defaults were served instead.

    Never raised to callers of the evaluator; it is logged and carried as the
    `cause` of the degraded read.
    """


class ConfigError(EntitlementError):
    """An administrative settings update was rejected."""


class PersistenceFailure(EntitlementError):
    """The backing store is unreachable. Retryable, never "no credit"."""

    retryable = True


class NoCreditAvailable(EntitlementError):
    """Every candidate unit was exhausted or lost a race; payment is required."""


class ConcurrentConsumptionConflict(EntitlementError):
    """A conditional write lost a race. Recovered by moving to the next unit."""


class InvalidDecisionSequence(EntitlementError):
    """`consume` was called without a matching `UseCredit` decision."""


class SponsorError(EntitlementError):
    pass


class QuotaExceeded(SponsorError):
    pass


class SubscriptionRequired(SponsorError):
    pass


class ListingNotFound(SponsorError):
    pass
