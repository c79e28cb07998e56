# infallible_alloc/errors.py
"""
Error types for the infallible-allocation lint.

The analysis core has no fatal conditions: truncated accessors and missing
spans are handled as missing information.  Everything in this module is
raised at the edges of the pipeline (reading a collector dump, parsing an
instance path, loading configuration) and is surfaced by the CLI as a
one-line message with exit status 2.

Error Hierarchy:
────────────────
┌───────────────────────────────────────────────────────────────┐
│  InfallibleAllocError (base)                                  │
│  ├── DumpFormatError      - malformed collector dump          │
│  ├── InstancePathError    - unparsable instance path string   │
│  └── ConfigError          - bad configuration file or value   │
└───────────────────────────────────────────────────────────────┘

Error Codes:
────────────
Each error carries a code of the form ``IAL-NNNN``:
  - 0001-0999: dump format errors
  - 1000-1999: instance path errors
  - 2000-2999: configuration errors
"""

from __future__ import annotations

from enum import Enum, unique
from typing import Any, Dict, Optional


@unique
class ErrorPhase(Enum):
    """Pipeline phase where an error was raised."""

    LOAD = "load"
    PARSE = "parse"
    CONFIG = "config"


class ErrorCode:
    """
    Structured error code ``PREFIX-NNNN``.

    Two codes compare equal when prefix and number match; a code also
    compares equal to its string form.
    """

    __slots__ = ("prefix", "number", "phase")

    def __init__(self, prefix: str, number: int, phase: ErrorPhase) -> None:
        self.prefix = prefix
        self.number = number
        self.phase = phase

    @property
    def code(self) -> str:
        return f"{self.prefix}-{self.number:04d}"

    def __str__(self) -> str:
        return self.code

    def __repr__(self) -> str:
        return f"ErrorCode({self.code!r}, {self.phase.name})"

    def __hash__(self) -> int:
        return hash((self.prefix, self.number))

    def __eq__(self, other: object) -> bool:
        if isinstance(other, ErrorCode):
            return self.prefix == other.prefix and self.number == other.number
        if isinstance(other, str):
            return self.code == other
        return False


class ErrorCodes:
    """Predefined error codes."""

    # ── dump format (0001-0999) ─────────────────────────────────────
    MALFORMED_DUMP = ErrorCode("IAL", 1, ErrorPhase.LOAD)
    UNKNOWN_ITEM = ErrorCode("IAL", 2, ErrorPhase.LOAD)
    DUPLICATE_ITEM = ErrorCode("IAL", 3, ErrorPhase.LOAD)
    INVALID_SPAN = ErrorCode("IAL", 4, ErrorPhase.LOAD)
    INVALID_ITEM_KIND = ErrorCode("IAL", 5, ErrorPhase.LOAD)
    UNKNOWN_DUMP_FORMAT = ErrorCode("IAL", 6, ErrorPhase.LOAD)

    # ── instance paths (1000-1999) ──────────────────────────────────
    INVALID_INSTANCE_PATH = ErrorCode("IAL", 1000, ErrorPhase.PARSE)

    # ── configuration (2000-2999) ───────────────────────────────────
    UNKNOWN_CONFIG_KEY = ErrorCode("IAL", 2000, ErrorPhase.CONFIG)
    INVALID_CONFIG_VALUE = ErrorCode("IAL", 2001, ErrorPhase.CONFIG)
    UNREADABLE_CONFIG = ErrorCode("IAL", 2002, ErrorPhase.CONFIG)


class InfallibleAllocError(Exception):
    """
    Base exception for all errors raised by this package.

    Carries a structured :class:`ErrorCode` and an optional hint shown
    under the message by the CLI.
    """

    default_code: ErrorCode = ErrorCodes.MALFORMED_DUMP

    def __init__(
        self,
        message: str,
        code: Optional[ErrorCode] = None,
        hint: str = "",
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.hint = hint

    def with_hint(self, hint: str) -> "InfallibleAllocError":
        """Attach a hint to this error."""
        self.hint = hint
        return self

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "code": self.code.code,
            "phase": self.code.phase.value,
            "message": self.message,
        }
        if self.hint:
            result["hint"] = self.hint
        return result

    def __str__(self) -> str:
        return f"error[{self.code}]: {self.message}"


class DumpFormatError(InfallibleAllocError):
    """A collector dump could not be understood."""

    default_code = ErrorCodes.MALFORMED_DUMP

    def __init__(
        self,
        message: str,
        code: Optional[ErrorCode] = None,
        hint: str = "",
        source: str = "",
    ) -> None:
        super().__init__(message, code, hint)
        self.source = source

    def __str__(self) -> str:
        prefix = f"{self.source}: " if self.source else ""
        return f"{prefix}error[{self.code}]: {self.message}"


class InstancePathError(InfallibleAllocError):
    """An instance path string does not match the path grammar."""

    default_code = ErrorCodes.INVALID_INSTANCE_PATH

    def __init__(self, message: str, text: str = "", position: int = -1) -> None:
        super().__init__(message)
        self.text = text
        self.position = position


class ConfigError(InfallibleAllocError):
    """Configuration file or value is invalid."""

    default_code = ErrorCodes.INVALID_CONFIG_VALUE


__all__ = [
    "ErrorPhase",
    "ErrorCode",
    "ErrorCodes",
    "InfallibleAllocError",
    "DumpFormatError",
    "InstancePathError",
    "ConfigError",
]
