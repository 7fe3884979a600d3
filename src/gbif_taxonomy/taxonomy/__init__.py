"""Taxonomy subpackage.

This subpackage provides the taxonomy and its GBIF resolution:
- models: Domain models (Rank, Taxon) and name canonicalization
- errors: Exceptions for table reading and name resolution
- store: In-memory taxonomy with TSV persistence
- resolution: Adding taxa from GBIF keys and names
- filtering: Selecting or removing taxa by name
"""

from gbif_taxonomy.taxonomy.errors import (
    AmbiguousNameError,
    MalformedHeaderError,
    MalformedRowError,
    TaxonomyError,
)
from gbif_taxonomy.taxonomy.filtering import (
    drop_names,
    keep_names,
    read_name_list,
    select_ids,
)
from gbif_taxonomy.taxonomy.models import Rank, Taxon, canon
from gbif_taxonomy.taxonomy.resolution import ResolutionEngine, ResolutionStats
from gbif_taxonomy.taxonomy.store import TaxonomyStore

__all__ = [
    "AmbiguousNameError",
    "MalformedHeaderError",
    "MalformedRowError",
    "Rank",
    "ResolutionEngine",
    "ResolutionStats",
    "Taxon",
    "TaxonomyError",
    "TaxonomyStore",
    "canon",
    "drop_names",
    "keep_names",
    "read_name_list",
    "select_ids",
]
