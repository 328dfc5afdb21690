"""Domain exceptions shared by services, engines and routes."""

import re

# Error text that points at missing/invalid connection credentials or URLs
_CONFIG_ERROR_PATTERN = re.compile(
    r"api[_ ]?key|credential|password authentication|invalid url|"
    r"could not translate host|name or service not known|"
    r"no such host|invalid dsn|jwt|unauthorized|\b401\b",
    re.IGNORECASE,
)


class ClassHubError(Exception):
    """Base class for ClassHub errors."""


class ConfigurationError(ClassHubError):
    """Backend credential or URL is missing or malformed. Terminal for the session."""


class SyncWarning(ClassHubError):
    """A state fetch partially failed or hit a transient error. Non-fatal."""


class StorageError(ClassHubError):
    """Media upload to object storage failed."""


class ChatWriteError(ClassHubError):
    """A user-initiated chat write (send, delete, react) failed."""


class PermissionDenied(ClassHubError):
    """The current identity may not perform this action."""


class AssistantUnavailable(ClassHubError):
    """The completion endpoint failed, is rate limited, unconfigured or returned nothing."""


class RecorderError(ClassHubError):
    """Invalid voice recorder transition or microphone failure."""


class ClipTooShort(RecorderError):
    """Recorded clip is below the minimum byte size."""


def classify_sync_error(error: Exception) -> ClassHubError:
    """
    Classify a failed state fetch.

    Credential/URL-shaped failures become a terminal ConfigurationError,
    everything else is a SyncWarning shown as a dismissible banner.
    """
    if isinstance(error, ConfigurationError):
        return error
    message = str(error) or error.__class__.__name__
    if _CONFIG_ERROR_PATTERN.search(message):
        return ConfigurationError(message)
    return SyncWarning(message)


class ConflictError(ClassHubError):
    """A write collided with an existing row (duplicate email or id)."""
