"""Error and warning types for FragMap grid loading."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional


class GridParseError(ValueError):
    """Raised when a grid file header or data section cannot be understood."""

    def __init__(self, message: str, source: Optional[str] = None):
        self.source = source
        self.detail = message
        super().__init__(f"{source}: {message}" if source else message)


class FatalGridError(ValueError):
    """Raised when a parsed grid violates an invariant required for sampling."""

    invariant = "grid"

    def __init__(self, message: str, source: Optional[str] = None):
        self.source = source
        self.detail = message
        super().__init__(f"{source}: {message}" if source else message)


class InvalidDimensionsError(FatalGridError):
    invariant = "dimensions"


class InvalidSpacingError(FatalGridError):
    invariant = "spacing"


class NonFiniteValueError(FatalGridError):
    invariant = "finite_values"

    def __init__(self, index: int, value: float, source: Optional[str] = None):
        self.index = int(index)
        self.value = float(value)
        super().__init__(f"non-finite grid value {value!r} at flat index {index}", source=source)


@dataclass(frozen=True)
class GridWarning:
    """Non-fatal finding collected while parsing or validating a grid."""
    kind: str
    message: str
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "message": self.message,
            "details": dict(self.details),
        }

    def __str__(self) -> str:
        return self.message
