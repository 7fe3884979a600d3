"""Resolution of GBIF keys and names into taxonomy entries.

A request walks the GBIF records from the requested taxon up through
accepted, parent, and basionym keys, until it finds an accepted taxon
with a rank at or above the requested rank, or a taxon that is already
in the taxonomy. Records are only added once the walk is complete, so a
failed request leaves the taxonomy unchanged.

These operations require an internet connection.
"""

from __future__ import annotations

import logging
from collections import deque
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from tqdm import tqdm

from gbif_taxonomy.clients.gbif import GBIFClient, Species
from gbif_taxonomy.taxonomy.errors import AmbiguousNameError
from gbif_taxonomy.taxonomy.models import ACCEPTED, Rank, canon

if TYPE_CHECKING:
    from gbif_taxonomy.taxonomy.store import TaxonomyStore

logger = logging.getLogger(__name__)

# Prefix of barcode index numbers published as "species"
BOLD_PREFIX = "BOLD:"


def record_id(record: Species) -> int:
    """Return the key a record is stored under (backbone key if available)."""
    return record.nub_key or record.key


def is_accepted_within(record: Species, max_rank: Rank) -> bool:
    """Whether a record is accepted with a defined rank at or above max_rank."""
    rank = Rank.from_string(record.rank)
    return record.taxonomic_status.lower() == ACCEPTED and rank != Rank.UNRANKED and rank <= max_rank


def next_id(record: Species) -> int:
    """Return the key to follow from a record: accepted, parent, then basionym."""
    return record.accepted_key or record.parent_key or record.basionym_key


def is_placeholder(record: Species) -> bool:
    """Whether a record is a nameless barcode placeholder (e.g., "BOLD:AAA0001")."""
    return not record.canonical_name and not record.species and record.scientific_name.startswith(BOLD_PREFIX)


def select_candidate(name: str, candidates: list[Species]) -> Species:
    """Pick the record for a name from the records found in GBIF.

    A single candidate is used as is. Among several candidates, the only
    accepted one is used.

    Args:
        name: The searched name
        candidates: Records matching the name (at least one)

    Returns:
        The selected record

    Raises:
        AmbiguousNameError: If there are several candidates and not exactly one is accepted
    """
    if len(candidates) == 1:
        return candidates[0]
    accepted = [sp for sp in candidates if sp.taxonomic_status.lower() == ACCEPTED]
    if len(accepted) == 1:
        return accepted[0]
    raise AmbiguousNameError(name, [record_id(sp) for sp in candidates])


@dataclass
class ResolutionStats:
    """Statistics from a batch resolution."""

    requested: int = 0
    added: int = 0
    ambiguous: list[AmbiguousNameError] = field(default_factory=list)

    def __str__(self) -> str:
        return f"requested={self.requested}, added={self.added}, ambiguous={len(self.ambiguous)}"


class ResolutionEngine:
    """Adds GBIF taxa to a taxonomy.

    Example:
        >>> engine = ResolutionEngine(TaxonomyStore())
        >>> engine.add_name_from_gbif("Panthera leo", Rank.GENUS)
        >>> engine.store.by_name("Panthera")
        [5219436]
    """

    def __init__(self, store: TaxonomyStore, client: GBIFClient | None = None):
        """Initialize the engine.

        Args:
            store: Taxonomy to add taxa to
            client: GBIF client (a client on the shared pipeline if not provided)
        """
        self.store = store
        self.client = client or GBIFClient()
        self._unmatched: set[int] = set()

    def _collect(self, taxon_id: int, max_rank: Rank, chain: list[Species], seen: set[int]) -> list[Species]:
        """Fetch records up the taxonomy, appending them to chain.

        Returns:
            The completed chain, or an empty list if the walk reached a placeholder
        """
        while taxon_id and taxon_id not in self.store and taxon_id not in seen:
            seen.add(taxon_id)
            record = self.client.fetch_by_id(taxon_id)
            if is_placeholder(record):
                logger.debug(f"Ignoring placeholder {record.scientific_name} ({taxon_id})")
                return []
            if record.nub_key and record.nub_key != taxon_id and record.nub_key in self.store:
                break
            chain.append(record)
            if is_accepted_within(record, max_rank):
                break
            taxon_id = next_id(record)
        return chain

    def _commit(self, chain: list[Species]) -> None:
        for record in reversed(chain):
            self.store.add_species(record)

    def add_from_gbif(self, taxon_id: int, max_rank: Rank) -> None:
        """Add a taxon from a GBIF key, with its parents up to the given rank.

        Args:
            taxon_id: GBIF key
            max_rank: Most inclusive rank to add

        Raises:
            TransportExhaustedError: If a GBIF request failed
        """
        self._commit(self._collect(taxon_id, max_rank, [], set()))

    def add_name_from_gbif(self, name: str, max_rank: Rank) -> None:
        """Add a taxon by name, with its parents up to the given rank.

        If several GBIF records have the name, the only accepted one is used.

        Args:
            name: Taxon name
            max_rank: Most inclusive rank to add

        Raises:
            AmbiguousNameError: If several records match and not exactly one is accepted
            TransportExhaustedError: If a GBIF request failed
        """
        name = canon(name)
        if not name:
            return
        candidates = self.client.fetch_by_name(name)
        if not candidates:
            logger.debug(f"Name {name!r} not found in GBIF")
            return

        record = select_candidate(name, candidates)
        taxon_id = record_id(record)
        if taxon_id in self.store or is_placeholder(record):
            return
        chain = [record]
        if not is_accepted_within(record, max_rank):
            chain = self._collect(next_id(record), max_rank, chain, {taxon_id})
        self._commit(chain)

    def add_many(
        self,
        ids: Iterable[int | str] = (),
        names: Iterable[str] = (),
        max_rank: Rank = Rank.GENUS,
        progress: bool = False,
    ) -> ResolutionStats:
        """Add a batch of taxa by key and by name.

        Ambiguous names are logged and skipped; any other error stops the batch.
        If the taxonomy already reaches a rank more inclusive than max_rank,
        that rank is used instead, so new taxa join the existing tree.

        Args:
            ids: GBIF keys to add (integers or numeric strings)
            names: Taxon names to add
            max_rank: Most inclusive rank to add
            progress: Show a progress bar

        Returns:
            ResolutionStats with the ambiguous names found
        """
        stats = ResolutionStats()
        before = len(self.store)
        floor = self.store.min_rank()
        if floor != Rank.UNRANKED and floor < max_rank:
            logger.debug(f"Taxonomy reaches {floor}, resolving up to {floor} instead of {max_rank}")
            max_rank = floor

        id_list = list(ids)
        name_list = list(names)
        with tqdm(total=len(id_list) + len(name_list), desc="Resolving", disable=not progress) as bar:
            for taxon_id in id_list:
                stats.requested += 1
                self.add_from_gbif(int(taxon_id), max_rank)
                bar.update()
            for name in name_list:
                stats.requested += 1
                try:
                    self.add_name_from_gbif(name, max_rank)
                except AmbiguousNameError as e:
                    logger.warning(f"Ambiguous taxon name {e.name!r}: {', '.join(str(i) for i in e.ids)}")
                    stats.ambiguous.append(e)
                bar.update()

        stats.added = len(self.store) - before
        logger.info(f"Resolution: {stats}")
        return stats

    def fill_from_gbif(self, max_rank: Rank = Rank.SPECIES, progress: bool = False) -> int:
        """Add the GBIF children and synonyms of the taxa in the taxonomy.

        Only taxa whose rank (or inherited rank) is max_rank or less
        inclusive are expanded. New taxa are expanded in turn.

        Args:
            max_rank: Most inclusive rank to expand
            progress: Show a progress bar

        Returns:
            Number of taxa added

        Raises:
            TransportExhaustedError: If a GBIF request failed
        """
        before = len(self.store)
        pending = deque(self.store.ids())
        done: set[int] = set()

        with tqdm(total=len(pending), desc="Filling", disable=not progress) as pbar:
            while pending:
                taxon_id = pending.popleft()
                pbar.update(1)
                if taxon_id in done:
                    continue
                done.add(taxon_id)

                rank = self.store.rank(taxon_id)
                if rank == Rank.UNRANKED or rank < max_rank:
                    continue

                records = self.client.fetch_children(taxon_id) + self.client.fetch_synonyms(taxon_id)
                for record in records:
                    key = record_id(record)
                    if key in done:
                        continue
                    self.store.add_species(record)
                    if key in self.store:
                        pending.append(key)
                        pbar.total += 1

        added = len(self.store) - before
        logger.info(f"Filled taxonomy with {added} taxa")
        return added

    def match_id(self, taxon_id: int) -> list[Species]:
        """Find the GBIF records that link a key to a taxon of the taxonomy.

        The walk goes up until it reaches a taxon already in the taxonomy,
        or an accepted taxon of species rank or above that is not. Keys of
        unmatched walks are remembered and never fetched again.

        Args:
            taxon_id: GBIF key

        Returns:
            Records to add, most inclusive first; empty if the key does not match

        Raises:
            TransportExhaustedError: If a GBIF request failed
        """
        chain: list[Species] = []
        seen: set[int] = set()
        while taxon_id and taxon_id not in self._unmatched and taxon_id not in seen:
            if taxon_id in self.store:
                return chain
            seen.add(taxon_id)
            record = self.client.fetch_by_id(taxon_id)
            chain.insert(0, record)
            if is_accepted_within(record, Rank.SPECIES):
                break
            taxon_id = next_id(record)

        for record in chain:
            self._unmatched.add(record.key)
        return []

    def add_matched(self, ids: Iterable[int]) -> int:
        """Add the records that link each key to the taxonomy.

        Returns:
            Number of taxa added
        """
        before = len(self.store)
        for taxon_id in ids:
            for record in self.match_id(taxon_id):
                self.store.add_species(record)
        return len(self.store) - before
