"""Select or remove taxa of a taxonomy by name."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from gbif_taxonomy.taxonomy.store import TaxonomyStore

logger = logging.getLogger(__name__)


def read_name_list(path: Path) -> list[str]:
    """Read a list of taxon names, one per line.

    Blank lines and lines starting with '#' are ignored.
    """
    names = []
    with path.open(encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if not line or line.startswith("#"):
                continue
            names.append(line)
    return names


def select_ids(store: TaxonomyStore, names: Iterable[str], relatives: bool = True) -> set[int]:
    """Return the keys of the taxa with the given names.

    Args:
        store: Taxonomy to search
        names: Taxon names
        relatives: Also include every descendant and ancestor of each match

    Returns:
        Set of matching keys
    """
    ids: set[int] = set()
    for name in names:
        for taxon_id in store.by_name(name):
            if taxon_id in ids:
                continue
            ids.add(taxon_id)
            if relatives:
                ids.update(store.children(taxon_id))
                ids.update(store.parents(taxon_id))
    return ids


def keep_names(store: TaxonomyStore, names: Iterable[str]) -> int:
    """Remove every taxon not related to one of the given names.

    Matching taxa are kept along with their descendants and ancestors.

    Returns:
        Number of taxa removed
    """
    keep = select_ids(store, names)
    before = len(store)
    for taxon_id in store.ids():
        if taxon_id not in keep:
            store.delete(taxon_id)
    removed = before - len(store)
    logger.info(f"Kept {len(store)} taxa, removed {removed}")
    return removed


def drop_names(store: TaxonomyStore, names: Iterable[str]) -> int:
    """Remove the taxa with the given names, and their descendants.

    Returns:
        Number of taxa removed
    """
    before = len(store)
    for taxon_id in sorted(select_ids(store, names, relatives=False)):
        store.delete(taxon_id)
    removed = before - len(store)
    logger.info(f"Removed {removed} taxa")
    return removed
