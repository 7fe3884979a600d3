"""Exceptions raised while reading or building a taxonomy."""

from __future__ import annotations


class TaxonomyError(Exception):
    """Base class for taxonomy errors."""


class MalformedHeaderError(TaxonomyError):
    """A taxonomy table is missing a required column."""

    def __init__(self, column: str):
        self.column = column
        super().__init__(f"when reading taxonomy header: expecting {column!r} field")


class MalformedRowError(TaxonomyError):
    """A taxonomy table row has an invalid field.

    Attributes:
        line: Line number of the row in the table
        field: Name of the offending column, if known
    """

    def __init__(self, line: int, field: str | None, message: str):
        self.line = line
        self.field = field
        if field:
            super().__init__(f"taxonomy: row {line}: {field!r}: {message}")
        else:
            super().__init__(f"taxonomy: row {line}: {message}")


class AmbiguousNameError(TaxonomyError):
    """A name matched several GBIF records and none could be picked.

    Attributes:
        name: The searched name
        ids: GBIF keys of every candidate
    """

    def __init__(self, name: str, ids: list[int]):
        self.name = name
        self.ids = list(ids)
        super().__init__(f"ambiguous taxon name: name {name!r}: found {len(self.ids)} IDs")
