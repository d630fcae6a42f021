from __future__ import annotations


class ToolManagerError(Exception):
    """Base class for errors raised by the reconciliation pipeline."""


class WorkspaceFatal(ToolManagerError):
    """Raised when the session workspace cannot be created; aborts the scan."""


class CopyError(ToolManagerError):
    """Raised when a source file cannot be read while staging it."""

    def __init__(self, source: str, reason: str) -> None:
        super().__init__(f"cannot stage {source}: {reason}")
        self.source = source
        self.reason = reason


class ExtractionError(ToolManagerError):
    """Raised when an inventory spreadsheet has no recognisable header row."""


class ParseError(ToolManagerError):
    """Raised when a parsed usage document is not a JSON object."""


class ParseFatal(ToolManagerError):
    """Raised when usage text is still invalid JSON after sanitising."""

    def __init__(self, message: str, *, line: int | None = None, column: int | None = None) -> None:
        super().__init__(message)
        self.line = line
        self.column = column


class AggregationInvariantViolation(ToolManagerError):
    """Raised when aggregated totals disagree with the underlying records."""


class DiscoveryWarning(UserWarning):
    """Emitted when a directory cannot be read during discovery."""
