"""Exception hierarchy for dispatch operations.

Three families are distinguishable by callers:

* ``DispatchValidationError`` / ``NotFoundError``: the request was malformed
  or referenced something that does not exist; nothing was written.
* ``StateConflictError``: the request was well formed but the ticket or
  timer is in the wrong state for it; nothing was written.
* ``StoreUnavailableError``: the outcome could not be determined (read
  failed, transaction rolled back).  Safe to retry.
"""

from __future__ import annotations


class DispatchError(Exception):
    """Base class for every error raised by the engine."""

    status_code = 400
    retryable = False

    def __init__(
        self,
        detail: str,
        *,
        ticket_id: str | None = None,
        ticket_number: str | None = None,
    ) -> None:
        super().__init__(detail)
        self.detail = detail
        self.ticket_id = ticket_id
        self.ticket_number = ticket_number

    @property
    def reason(self) -> str | None:
        return None

    def to_dict(self) -> dict:
        return {
            "error": type(self).__name__,
            "reason": self.reason,
            "detail": self.detail,
            "ticket_id": self.ticket_id,
            "ticket_number": self.ticket_number,
            "retryable": self.retryable,
        }


class DispatchValidationError(DispatchError):
    status_code = 422

    def __init__(self, field: str, detail: str, **kwargs) -> None:
        super().__init__(detail, **kwargs)
        self.field = field

    @property
    def reason(self) -> str:
        return f"invalid_{self.field}"


class NotFoundError(DispatchError):
    status_code = 404


class StateConflictError(DispatchError):
    status_code = 409

    def __init__(self, reason: str, detail: str, **kwargs) -> None:
        super().__init__(detail, **kwargs)
        self._reason = reason

    @property
    def reason(self) -> str:
        return self._reason


class StoreUnavailableError(DispatchError):
    status_code = 503
    retryable = True


class ConflictCheckUnavailableError(StoreUnavailableError):
    """Conflict status is unknown; must not be read as "no conflict"."""


class TransactionFailedError(StoreUnavailableError):
    pass
