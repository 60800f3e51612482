"""Base exception for domain failures reported across module boundaries."""

from __future__ import annotations


class DomainError(Exception):
    """A failure with a stable machine-readable ``code``.

    ``retryable`` tells the caller whether repeating the same request may
    succeed (``True`` for conflicts and transient unavailability).
    """

    code = "error"
    retryable = False

    def __init__(self, detail: str = "") -> None:
        super().__init__(detail)
        self.detail = detail or self.__class__.__doc__ or self.code

    def as_dict(self) -> dict:
        return {"code": self.code, "detail": self.detail, "retryable": self.retryable}
