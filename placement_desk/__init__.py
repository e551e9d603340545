"""Placement cell records: spreadsheet import, grid editing, filtering and export."""

__version__ = "0.3.0"
