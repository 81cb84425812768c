"""
Error types and error logging utilities for larder.

Logs full stack traces for debugging while showing clean messages to users.
"""

import os
import traceback
from datetime import datetime, timezone
from pathlib import Path


class LarderError(Exception):
    """Base class for larder errors."""


class UnsupportedSchemaError(LarderError):
    """A persisted payload was written by a newer larder."""


class AttachmentError(LarderError, ValueError):
    """An attachment is empty, oversize, or otherwise unusable."""


class BackendUnavailable(LarderError, RuntimeError):
    """No generative backend is configured."""


class BackendError(LarderError, RuntimeError):
    """The generative backend failed or returned nothing usable."""


class GatewayError(LarderError):
    """A gateway request failed. The original error is chained as __cause__."""


class ValidationError(LarderError, ValueError):
    """A pending form failed required-field validation.

    Attributes:
        errors: Mapping of field name to message
    """

    def __init__(self, errors: dict[str, str]):
        self.errors = dict(errors)
        fields = ", ".join(sorted(self.errors))
        super().__init__(f"Invalid fields: {fields}")


def _error_log_path() -> Path:
    """Resolve error log path, respecting LARDER_STORE_PATH."""
    store = os.environ.get("LARDER_STORE_PATH")
    if store:
        return Path(store) / "larder-errors.log"
    return Path.home() / ".larder" / "larder-errors.log"


def log_exception(exc: Exception, context: str = "") -> Path:
    """
    Log exception with full traceback to file.

    Args:
        exc: The exception that occurred
        context: Optional context string (e.g., command name)

    Returns:
        Path to the error log file
    """
    log_path = _error_log_path()
    timestamp = datetime.now(timezone.utc).isoformat()
    try:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(log_path, os.O_WRONLY | os.O_CREAT | os.O_APPEND, 0o600)
        with os.fdopen(fd, "a") as f:
            f.write(f"\n{'='*60}\n")
            f.write(f"[{timestamp}]")
            if context:
                f.write(f" {context}")
            f.write("\n")
            f.write("".join(traceback.format_exception(type(exc), exc, exc.__traceback__)))
    except OSError:
        pass  # Can't write error log; don't crash over it
    return log_path
