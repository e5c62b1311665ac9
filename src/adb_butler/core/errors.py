"""
Error taxonomy for the reconciliation controller.

Failures are contained at the smallest unit: a single action, then a single
authority. Only total inventory unavailability escalates to the pass.
"""

from typing import Dict, Optional


class ButlerError(Exception):
    """Base class for all adb-butler errors."""
    pass


class AuthorityUnavailable(ButlerError):
    """Raised when one inventory source cannot be queried."""

    def __init__(self, authority: str, reason: str):
        self.authority = authority
        self.reason = reason
        super().__init__(f"{authority} unavailable: {reason}")


class PartialInventoryFailure(ButlerError):
    """Raised when no inventory source could be read for a pass."""

    def __init__(self, failures: Optional[Dict[str, str]] = None):
        self.failures = failures or {}
        detail = ", ".join(f"{k}: {v}" for k, v in sorted(self.failures.items()))
        super().__init__(f"No inventory authority readable ({detail or 'no readers'})")


class TransientError(ButlerError):
    """A failure worth retrying (connection refused, timeout, not settled yet)."""
    pass


class CallTimeout(TransientError):
    """An external call exceeded its timeout."""
    pass


class AdbServerUnavailable(TransientError):
    """The ADB server could not be reached."""
    pass


class DirectoryUnavailable(TransientError):
    """The directory store could not be reached."""
    pass


class DeviceNotFound(ButlerError):
    """The targeted device is gone; callers treat this as a benign race."""
    pass


class ActionFailed(ButlerError):
    """A recovery action failed for good (retries exhausted or not retryable)."""

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(reason)


class ConfigurationMissing(ButlerError):
    """Required environment input is absent; callers skip instead of failing."""

    def __init__(self, setting: str):
        self.setting = setting
        super().__init__(f"{setting} is not configured")
