"""Typed build error model with stable, machine-readable error codes."""

from __future__ import annotations

from collections.abc import Mapping
from enum import StrEnum
from typing import TYPE_CHECKING, ClassVar

if TYPE_CHECKING:
    from rootstock.bundle import Bundle


class ErrorCode(StrEnum):
    """Stable error identifiers used across API surfaces."""

    CONFIG = "E_CONFIG"
    TRANSIENT = "E_TRANSIENT"
    CANCELLED = "E_CANCELLED"
    FATAL = "E_FATAL"
    BACKEND_STATE = "E_BACKEND_STATE"


class RootstockError(Exception):
    """Base error class that carries code, optional hint, and context."""

    retryable: ClassVar[bool] = False

    code: str
    hint: str | None
    context: dict[str, str]
    bundle: Bundle | None

    def __init__(
        self,
        message: str,
        *,
        code: ErrorCode,
        hint: str | None = None,
        context: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code.value
        self.hint = hint
        self.context = dict(context or {})
        self.bundle = None

    def __str__(self) -> str:
        parts = [super().__str__()]
        if self.hint:
            parts.append(f"Hint: {self.hint}")
        if self.context:
            for k, v in self.context.items():
                if v:
                    parts.append(f"  {k}: {v}")
        return "\n".join(parts)

    def add_context(self, **values: str) -> RootstockError:
        """Attach context keys that are not already set by the raiser."""
        for key, value in values.items():
            self.context.setdefault(key, value)
        return self

    def to_dict(self) -> dict[str, object]:
        payload: dict[str, object] = {
            "code": self.code,
            "message": self.message,
            "retryable": self.retryable,
            "context": dict(self.context),
        }
        if self.hint is not None:
            payload["hint"] = self.hint
        return payload


class ConfigError(RootstockError):
    """Bad or missing definition parameters. Fix the definition, do not retry."""

    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        context: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(message, code=ErrorCode.CONFIG, hint=hint, context=context)


class TransientError(RootstockError):
    """Network, registry, or package-manager failure; the whole build may be retried."""

    retryable = True

    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        context: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(message, code=ErrorCode.TRANSIENT, hint=hint, context=context)


class CancelledError(RootstockError):
    def __init__(
        self,
        message: str = "Build was cancelled.",
        *,
        reason: str = "cancelled",
        hint: str | None = None,
        context: Mapping[str, str] | None = None,
    ) -> None:
        merged = {"reason": reason, **dict(context or {})}
        super().__init__(message, code=ErrorCode.CANCELLED, hint=hint, context=merged)
        self.reason = reason


class FatalError(RootstockError):
    """Host environment failure (permissions, disk, missing tools)."""

    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        context: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(message, code=ErrorCode.FATAL, hint=hint, context=context)


class BackendStateError(RootstockError):
    """A backend phase was invoked out of order."""

    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        context: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(message, code=ErrorCode.BACKEND_STATE, hint=hint, context=context)


__all__ = [
    "BackendStateError",
    "CancelledError",
    "ConfigError",
    "ErrorCode",
    "FatalError",
    "RootstockError",
    "TransientError",
]
