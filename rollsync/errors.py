# rollsync/errors.py

"""
Exception taxonomy for the roll sync engine.

Transport failures halt or bound reconnection, contract violations fail at
registration time, and handler errors carry the failing handler's name up to
whoever called dispatch.
"""


class RollSyncError(Exception):
    """Base class for every error raised by the engine."""


class TransportError(RollSyncError):
    """Connecting to or talking with the remote platform failed."""


class CredentialExpiredError(TransportError):
    """The remote platform rejected our credential (HTTP 401/403)."""

    def __init__(self, status_code: int, message: str = "Credential expired or invalid"):
        super().__init__(f"{message} (HTTP {status_code})")
        self.status_code = status_code


class ContractViolation(RollSyncError):
    """A handler registered with a dispatcher lacks the required interface."""


class HandlerError(RollSyncError):
    """A handler raised while processing a dispatched event."""

    def __init__(self, handler_name: str, original: Exception):
        super().__init__(f"Handler {handler_name} failed: {original}")
        self.handler_name = handler_name
        self.original = original


class SettingsError(RollSyncError):
    """Required settings are missing."""

    def __init__(self, missing: list[str], message: str):
        super().__init__(message)
        self.missing = missing


class PromptNotFound(RollSyncError):
    """No pending dice prompt exists with the given id."""
