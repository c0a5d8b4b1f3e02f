"""Wellbeing engine exceptions.

Insufficient data, cooldowns and already-terminal support requests are
expected conditions; callers report them as tagged results rather than
failures.
"""

from __future__ import annotations

from datetime import datetime


class WellbeingError(Exception):
    """Base class for expected wellbeing-engine conditions."""

    status = "error"


class InsufficientDataError(WellbeingError):
    """No day in the requested range had any usable data."""

    status = "insufficient_data"


class InsufficientBaselineError(WellbeingError):
    """Too few historical samples to form a baseline."""

    status = "insufficient_baseline"

    def __init__(self, metric: str, sample_count: int, required: int) -> None:
        super().__init__(
            f"Baseline for {metric} needs {required} samples, found {sample_count}"
        )
        self.metric = metric
        self.sample_count = sample_count
        self.required = required


class CooldownActiveError(WellbeingError):
    """A check-in was attempted while the user's timer is cooling."""

    status = "cooldown_active"

    def __init__(self, next_available_at: datetime) -> None:
        super().__init__(f"Check-in cooling down until {next_available_at.isoformat()}")
        self.next_available_at = next_available_at


class SupportRequestError(WellbeingError):
    """Base class for support request state conflicts."""

    def __init__(self, request_id: str, message: str) -> None:
        super().__init__(message)
        self.request_id = request_id


class AlreadyClaimedError(SupportRequestError):
    status = "already_claimed"

    def __init__(self, request_id: str, claimed_by: str | None = None) -> None:
        super().__init__(request_id, f"Support request {request_id} is already claimed")
        self.claimed_by = claimed_by


class AlreadyExpiredError(SupportRequestError):
    status = "already_expired"

    def __init__(self, request_id: str) -> None:
        super().__init__(request_id, f"Support request {request_id} has expired")


class SupportRequestNotFoundError(SupportRequestError):
    status = "not_found"

    def __init__(self, request_id: str) -> None:
        super().__init__(request_id, f"Support request {request_id} not found")


class ValidationError(WellbeingError):
    """Malformed input rejected before it enters the pipeline."""

    status = "invalid"


class PermissionDeniedError(WellbeingError):
    """A privileged operation was requested without the privilege."""

    status = "forbidden"
