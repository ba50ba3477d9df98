"""Error taxonomy for command dispatch and record retrieval.

Each error carries an ``ErrorKind`` so the dispatcher can turn it into a
failed ``CommandOutcome`` without string matching, and a user-facing
message the presentation layer can show verbatim.
"""

from __future__ import annotations

from enum import StrEnum


class ErrorKind(StrEnum):
    UNKNOWN_COMMAND = "unknown_command"
    DUPLICATE_COMMAND = "duplicate_command"
    INSUFFICIENT_QUOTA = "insufficient_quota"
    UNKNOWN_IDENTITY = "unknown_identity"
    NOT_PRIVILEGED = "not_privileged"
    INVALID_INPUT = "invalid_input"
    ACQUISITION_FAILED = "acquisition_failed"
    AUTH_REJECTED = "auth_rejected"
    DATA_NOT_FOUND = "data_not_found"
    UPSTREAM_UNAVAILABLE = "upstream_unavailable"
    INTERNAL_ERROR = "internal_error"


class OsintrixError(Exception):
    """Base for every failure that ends a command invocation. Never fatal to the loop."""

    kind: ErrorKind = ErrorKind.INTERNAL_ERROR
    default_message = "Something went wrong while handling the command."

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class UnknownCommand(OsintrixError):
    kind = ErrorKind.UNKNOWN_COMMAND
    default_message = "Unknown command. Send /menu to list the available commands."


class DuplicateCommand(OsintrixError):
    """Raised by the registry when a command name is already taken."""

    kind = ErrorKind.DUPLICATE_COMMAND
    default_message = "A command with this name is already registered."


class InsufficientQuota(OsintrixError):
    kind = ErrorKind.INSUFFICIENT_QUOTA
    default_message = "Your remaining limit is not enough for this command."


class NotPrivileged(OsintrixError):
    kind = ErrorKind.NOT_PRIVILEGED
    default_message = "This command is reserved for the bot owner."


class InvalidInput(OsintrixError):
    kind = ErrorKind.INVALID_INPUT
    default_message = "Invalid input."


class AcquisitionFailed(OsintrixError):
    """Browser launch, navigation or search-control failure while acquiring a token."""

    kind = ErrorKind.ACQUISITION_FAILED
    default_message = "Could not open the lookup page. Please try again later."


class AuthRejected(OsintrixError):
    """The backend refused the acquisition token. Not the same as a missing record."""

    kind = ErrorKind.AUTH_REJECTED
    default_message = "The lookup service rejected our access token. Please try again later."


class DataNotFound(OsintrixError):
    kind = ErrorKind.DATA_NOT_FOUND
    default_message = "No record was found for this key."


class UpstreamUnavailable(OsintrixError):
    kind = ErrorKind.UPSTREAM_UNAVAILABLE
    default_message = "The lookup service is unreachable right now. Please try again later."


class InternalError(OsintrixError):
    kind = ErrorKind.INTERNAL_ERROR
