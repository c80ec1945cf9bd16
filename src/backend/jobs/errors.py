"""Error taxonomy for completion actions.

Every error here is scoped to a single completion action; none of them should
take the application down.
"""

from __future__ import annotations


class CompletionError(Exception):
    """Base class for completion workflow errors."""


class ValidationFailure(CompletionError):
    """Raised before any remote call when the completion gate rejects input."""

    def __init__(self, check_id: str, message: str) -> None:
        super().__init__(message)
        self.check_id = check_id
        self.message = message


class ConfirmationDeclined(CompletionError):
    """The operator declined an explicit-consent prompt."""


class CompletionInProgress(CompletionError):
    """A second run was started while the same action is still running."""


class RemoteCallError(CompletionError):
    """Transport or server error from the remote procedure layer."""

    def __init__(
        self,
        procedure: str,
        message: str,
        *,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.procedure = procedure
        self.message = message
        self.status_code = status_code


class RemoteCallFailure(CompletionError):
    """A chained remote step failed; earlier steps remain committed."""

    def __init__(self, step: str, cause: BaseException) -> None:
        super().__init__(f"{step} failed: {cause}")
        self.step = step
        self.cause = cause


class DecodeFailure(CompletionError):
    """The generated document could not be decoded or saved."""

    def __init__(self, kind: str, cause: BaseException) -> None:
        super().__init__(f"Could not save {kind} document: {cause}")
        self.kind = kind
        self.cause = cause
