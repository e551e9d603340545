"""Exception taxonomy shared by the import, grid and export layers."""

from __future__ import annotations


class PlacementDeskError(Exception):
    """Base class for every error surfaced to a user."""


class ConfigError(PlacementDeskError):
    pass


class ParseError(PlacementDeskError):
    """The input could not be read; nothing was applied."""


class UnsupportedFileError(ParseError):
    pass


class ClipboardEmptyError(ParseError):
    pass


class HeaderNotFoundError(ParseError):
    pass


class MissingEngineError(ParseError):
    """A spreadsheet engine needed for this file type is not installed."""


class NoValidRowsError(PlacementDeskError):
    """The input was read but produced no usable records."""

    def __init__(self, message: str, dropped: int = 0) -> None:
        super().__init__(message)
        self.dropped = dropped


class ImportCancelled(PlacementDeskError):
    pass


class RemoteError(PlacementDeskError):
    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class BatchInsertError(RemoteError):
    """A batch failed after earlier batches were already committed."""

    def __init__(
        self,
        message: str,
        *,
        committed: int,
        failed_batch: int,
        total_batches: int,
        status: int | None = None,
    ) -> None:
        super().__init__(message, status)
        self.committed = committed
        self.failed_batch = failed_batch
        self.total_batches = total_batches


class ColumnError(PlacementDeskError):
    pass


class SelectionError(PlacementDeskError):
    pass


class ExportError(PlacementDeskError):
    pass
