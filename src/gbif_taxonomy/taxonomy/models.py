"""Domain models for the taxonomy.

Ranks are ordered so that a more inclusive rank is always smaller than a
more exclusive one, which allows checks like ``rank < Rank.GENUS``.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum

# Status of a currently valid name
ACCEPTED = "accepted"


class Rank(IntEnum):
    """Linnean rank of a taxon."""

    UNRANKED = 0
    KINGDOM = 1
    PHYLUM = 2
    CLASS = 3
    ORDER = 4
    FAMILY = 5
    GENUS = 6
    SPECIES = 7

    @classmethod
    def from_string(cls, value: str | None) -> Rank:
        """Parse a rank name, case-insensitively.

        Unknown names (e.g., "subspecies", "variety") are unranked.
        """
        if not value:
            return cls.UNRANKED
        return cls.__members__.get(value.strip().upper(), cls.UNRANKED)

    def __str__(self) -> str:
        return self.name.lower()


def canon(name: str | None) -> str:
    """Transform a taxon name into its canonical form.

    Whitespace runs are collapsed, and the name is lower-cased except for
    its first letter.

    Args:
        name: Raw taxon name

    Returns:
        Canonical name, or an empty string if the name is blank

    Examples:
        >>> canon("  PANTHERA   leo ")
        'Panthera leo'
    """
    if not name:
        return ""
    name = " ".join(name.split()).lower()
    if not name:
        return ""
    return name[0].upper() + name[1:]


def normalize_author(author: str | None) -> str:
    """Collapse whitespace in an authorship string."""
    if not author:
        return ""
    return " ".join(author.split())


@dataclass(frozen=True)
class Taxon:
    """A taxon of the taxonomy.

    Attributes:
        name: Canonical taxon name
        author: Author of the name
        id: GBIF key of the taxon
        rank: Taxon rank
        status: Taxonomic status (e.g., "accepted", "synonym")
        parent: Key of the parent taxon, or of the accepted taxon for synonyms (0 if none)
    """

    name: str
    author: str
    id: int
    rank: Rank = Rank.UNRANKED
    status: str = ""
    parent: int = 0

    @property
    def is_accepted(self) -> bool:
        return self.status == ACCEPTED
