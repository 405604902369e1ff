"""
Custom exceptions for the BloodWatch alerting pipeline.

Remote notifier failures are reported as outcomes rather than raised, so the
notifier exceptions here exist for channel implementations that prefer to
raise internally and convert at their boundary.
"""


class BloodWatchError(Exception):
    """Base exception for all BloodWatch errors."""

    pass


class AdapterError(BloodWatchError):
    """
    Snapshot fetch failed.

    Raised by data source adapters; retries against the remote source are the
    adapter's responsibility, the ingestion cycle only logs and moves on.
    """

    def __init__(self, message: str, adapter_key: str | None = None):
        super().__init__(message)
        self.adapter_key = adapter_key


class AdapterNotRegisteredError(AdapterError):
    """No adapter is registered for the requested source key."""

    pass


class NotifierError(BloodWatchError):
    """Base exception for notifier channel errors."""

    pass


class TransientNotifierError(NotifierError):
    """
    Temporary channel error that should be retried.

    Used for rate limiting, server errors (5xx) and network timeouts.
    """

    pass


class PermanentNotifierError(NotifierError):
    """
    Channel error that will not resolve by retrying.

    Used for authentication failures, unknown targets and malformed targets.
    """

    pass


class RepositoryError(BloodWatchError):
    """Raised when a persistence operation fails."""

    pass
