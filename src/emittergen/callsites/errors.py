# src/emittergen/callsites/errors.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True, order=True)
class SourceLocation:
    filename: str
    line: int
    column: int = 0

    def __str__(self) -> str:
        return f"{self.filename}:{self.line}"

    def with_column(self) -> str:
        return f"{self.filename}:{self.line}:{self.column}"


# ==============================================================================
# Typed errors
# ==============================================================================


class GeneratorError(Exception):
    """
    Base for every error the generator surfaces to its caller.
    ``code`` is stable and machine-readable; ``str(err)`` is a single line.
    """
    def __init__(self, code: str, message: str, *, detail: Optional[str] = None) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.detail = detail

    def __str__(self) -> str:
        return self.message


class LoaderError(GeneratorError):
    """The package could not be loaded (missing, empty, ambiguous or unparsable)."""


class ParserError(LoaderError):
    """A single module failed to read, decode or parse."""
    def __init__(
        self,
        code: str,
        message: str,
        *,
        path: str = "",
        line: Optional[int] = None,
        detail: Optional[str] = None,
    ) -> None:
        super().__init__(code, message, detail=detail)
        self.path = path
        self.line = line


class ScanError(GeneratorError):
    """Fatal error raised by the call-site analysis itself."""


class NonLiteralEventNameError(ScanError):
    def __init__(self, location: SourceLocation, method: str, got: str) -> None:
        super().__init__(
            "NON_LITERAL_EVENT",
            f"event name at {location.with_column()} must be a string literal (got {got} in {method}())",
        )
        self.location = location
        self.method = method
        self.got = got


class DuplicateEventError(ScanError):
    def __init__(self, event_name: str, first: SourceLocation, second: SourceLocation) -> None:
        super().__init__(
            "DUPLICATE_EVENT",
            f"duplicate event name {event_name!r}: already defined at {first}, found again at {second}",
        )
        self.event_name = event_name
        self.first = first
        self.second = second


class WriteError(GeneratorError):
    """The generated module or the manifest could not be written."""
