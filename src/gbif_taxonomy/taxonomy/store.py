"""In-memory taxonomy store.

Taxa are kept in a map keyed by GBIF key, with parent/child edges stored
as keys rather than object references. A name index maps each canonical
name to every key that carries it (homonyms and synonyms).

The store is persisted as a tab-separated table with the columns
``name, author, taxonKey, rank, status, parent``.
"""

from __future__ import annotations

import csv
import logging
from collections.abc import Callable, Iterator
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import TYPE_CHECKING, TextIO

from gbif_taxonomy.taxonomy.errors import MalformedHeaderError, MalformedRowError
from gbif_taxonomy.taxonomy.models import Rank, Taxon, canon, normalize_author

if TYPE_CHECKING:
    from gbif_taxonomy.clients.gbif import Species

logger = logging.getLogger(__name__)

# Maximum number of hops when walking up the tree
MAX_DEPTH = 20

HEADER_COLUMNS = ["name", "author", "taxonKey", "rank", "status", "parent"]


@dataclass
class _Node:
    data: Taxon
    children: set[int] = field(default_factory=set)


def _sort_key(taxon: Taxon) -> tuple[int, int, str, int]:
    # unranked first, then accepted before any other status
    return (int(taxon.rank), 0 if taxon.is_accepted else 1, taxon.name, taxon.id)


def _parse_key(value: str, line: int, column: str) -> int:
    text = value.strip()
    digits = text[1:] if text.startswith("-") else text
    # int() also takes signs, underscores and non-ASCII digits
    if not (digits.isascii() and digits.isdigit()):
        raise MalformedRowError(line, column, f"invalid key {text!r}")
    if digits != text:
        raise MalformedRowError(line, column, f"negative value {text}")
    return int(text)


class TaxonomyStore:
    """A taxonomy of GBIF taxa.

    Lookups never raise: unknown keys or names give None or an empty list.

    Example:
        >>> store = TaxonomyStore.load(Path("taxonomy.tab"))
        >>> store.by_name("felis catus")
        [5219404]
    """

    def __init__(self) -> None:
        self._nodes: dict[int, _Node] = {}
        self._roots: set[int] = set()
        self._names: dict[str, set[int]] = {}
        # declared parent key -> taxa waiting for that parent to be added
        self._orphans: dict[int, set[int]] = {}

    def __len__(self) -> int:
        return len(self._nodes)

    def __contains__(self, taxon_id: object) -> bool:
        return taxon_id in self._nodes

    @classmethod
    def load(cls, source: TextIO | str | Path) -> TaxonomyStore:
        """Read a taxonomy from a TSV table.

        Args:
            source: Open text stream, or path to the table

        Returns:
            A new TaxonomyStore

        Raises:
            MalformedHeaderError: If a required column is missing
            MalformedRowError: If a taxonKey or parent field is not a non-negative integer
        """
        if isinstance(source, (str, Path)):
            with Path(source).open(newline="", encoding="utf-8") as f:
                return cls._read(f)
        return cls._read(source)

    @classmethod
    def _read(cls, stream: TextIO) -> TaxonomyStore:
        reader = csv.reader(stream, delimiter="\t")
        header = next(reader, None)
        if header is None:
            raise MalformedHeaderError(HEADER_COLUMNS[0])
        fields = {h.strip().lower(): i for i, h in enumerate(header)}
        for column in HEADER_COLUMNS:
            if column.lower() not in fields:
                raise MalformedHeaderError(column)
        width = max(fields[c.lower()] for c in HEADER_COLUMNS) + 1

        store = cls()
        taxa: list[Taxon] = []
        for row in reader:
            if not row:
                continue
            line = reader.line_num
            if len(row) < width:
                raise MalformedRowError(line, None, f"expecting at least {width} fields, found {len(row)}")

            name = canon(row[fields["name"]])
            if not name:
                continue
            taxon_id = _parse_key(row[fields["taxonkey"]], line, "taxonKey")
            if taxon_id in store._nodes:
                continue
            parent = 0
            if row[fields["parent"]].strip():
                parent = _parse_key(row[fields["parent"]], line, "parent")

            taxon = Taxon(
                name=name,
                author=normalize_author(row[fields["author"]]),
                id=taxon_id,
                rank=Rank.from_string(row[fields["rank"]]),
                status=row[fields["status"]].strip().lower(),
                parent=parent,
            )
            store._nodes[taxon_id] = _Node(data=taxon)
            taxa.append(taxon)

        # link only after every taxon exists, so row order does not matter
        for taxon in taxa:
            store._link(taxon)
        store._break_cycles()
        logger.debug(f"Loaded {len(store)} taxa ({len(store._roots)} roots)")
        return store

    def _break_cycles(self) -> None:
        """Turn into roots the taxa whose parent chain never reaches a root."""
        reached: set[int] = set()
        for root_id in self._roots:
            reached.add(root_id)
            reached.update(self.children(root_id))

        for taxon_id in sorted(self._nodes):
            if taxon_id in reached:
                continue
            # walk up until the chain loops back on itself
            chain = {taxon_id}
            cycle_id = self._nodes[taxon_id].data.parent
            while cycle_id not in chain:
                chain.add(cycle_id)
                cycle_id = self._nodes[cycle_id].data.parent

            node = self._nodes[cycle_id]
            logger.warning(f"Taxon {cycle_id} is in a parent cycle, detaching it from {node.data.parent}")
            self._nodes[node.data.parent].children.discard(cycle_id)
            node.data = replace(node.data, parent=0)
            self._roots.add(cycle_id)
            reached.add(cycle_id)
            reached.update(self.children(cycle_id))

    def _link(self, taxon: Taxon) -> None:
        self._names.setdefault(taxon.name, set()).add(taxon.id)
        parent = self._nodes.get(taxon.parent) if taxon.parent != taxon.id else None
        if parent is None:
            self._roots.add(taxon.id)
            if taxon.parent and taxon.parent != taxon.id:
                self._orphans.setdefault(taxon.parent, set()).add(taxon.id)
        else:
            parent.children.add(taxon.id)

    def _insert(self, taxon: Taxon) -> None:
        self._nodes[taxon.id] = _Node(data=taxon)
        self._link(taxon)

        # adopt taxa that were loaded before their declared parent
        ancestors = set(self.parents(taxon.id))
        waiting = self._orphans.pop(taxon.id, set())
        for child_id in sorted(waiting):
            if child_id in ancestors or child_id not in self._nodes:
                continue
            self._roots.discard(child_id)
            self._nodes[taxon.id].children.add(child_id)

    def add_species(self, record: Species) -> None:
        """Add a taxon from a GBIF record.

        The record is ignored if its key is already in the taxonomy, or if
        it has no usable key or name. The parent is the first of the
        accepted, parent, and basionym keys that is already in the
        taxonomy; otherwise the taxon becomes a root.

        Args:
            record: GBIF species record
        """
        taxon_id = record.nub_key or record.key
        if not taxon_id or taxon_id in self._nodes:
            return
        name = canon(record.canonical_name) or canon(record.species)
        if not name:
            return

        parent = 0
        for ref in (record.accepted_key, record.parent_key, record.basionym_key):
            if ref and ref != taxon_id and ref in self._nodes:
                parent = ref
                break

        self._insert(
            Taxon(
                name=name,
                author=normalize_author(record.authorship),
                id=taxon_id,
                rank=Rank.from_string(record.rank),
                status=record.taxonomic_status.strip().lower(),
                parent=parent,
            )
        )

    def taxon(self, taxon_id: int) -> Taxon | None:
        """Return the taxon with the given key, or None if unknown."""
        node = self._nodes.get(taxon_id)
        return node.data if node is not None else None

    def _walk_up(self, taxon_id: int, accept: Callable[[Taxon], bool]) -> Taxon | None:
        for _ in range(MAX_DEPTH + 1):
            node = self._nodes.get(taxon_id)
            if node is None:
                return None
            if accept(node.data):
                return node.data
            taxon_id = node.data.parent
        return None

    def accepted(self, taxon_id: int) -> Taxon | None:
        """Return the first accepted taxon at or above the given key."""
        return self._walk_up(taxon_id, lambda t: t.is_accepted)

    def accepted_and_ranked(self, taxon_id: int) -> Taxon | None:
        """Return the first accepted taxon with a defined rank at or above the given key."""
        return self._walk_up(taxon_id, lambda t: t.is_accepted and t.rank != Rank.UNRANKED)

    def ids(self) -> list[int]:
        """Return every key in the taxonomy, in ascending order."""
        return sorted(self._nodes)

    def by_name(self, name: str) -> list[int]:
        """Return the keys of the taxa with the given name, in ascending order."""
        return sorted(self._names.get(canon(name), ()))

    def children(self, taxon_id: int) -> list[int]:
        """Return the keys of every descendant of a taxon, in ascending order.

        Synonyms are included, as they are stored as children of their
        accepted taxon.
        """
        node = self._nodes.get(taxon_id)
        if node is None:
            return []
        seen: set[int] = set()
        stack = list(node.children)
        while stack:
            child_id = stack.pop()
            if child_id in seen or child_id == taxon_id:
                continue
            seen.add(child_id)
            child = self._nodes.get(child_id)
            if child is not None:
                stack.extend(child.children)
        return sorted(seen)

    def parents(self, taxon_id: int) -> list[int]:
        """Return the keys of every ancestor of a taxon, in ascending order."""
        node = self._nodes.get(taxon_id)
        if node is None:
            return []
        ancestors: set[int] = set()
        parent_id = node.data.parent
        for _ in range(MAX_DEPTH):
            parent = self._nodes.get(parent_id)
            if parent is None or parent_id == taxon_id or parent_id in ancestors:
                break
            ancestors.add(parent_id)
            parent_id = parent.data.parent
        return sorted(ancestors)

    def delete(self, taxon_id: int) -> None:
        """Remove a taxon and all of its descendants.

        Unknown keys are ignored.
        """
        node = self._nodes.get(taxon_id)
        if node is None:
            return
        parent = self._nodes.get(node.data.parent)
        if parent is not None:
            parent.children.discard(taxon_id)

        for removed_id in [taxon_id, *self.children(taxon_id)]:
            removed = self._nodes.pop(removed_id, None)
            if removed is None:
                continue
            self._roots.discard(removed_id)
            ids = self._names.get(removed.data.name)
            if ids is not None:
                ids.discard(removed_id)
                if not ids:
                    del self._names[removed.data.name]
            waiting = self._orphans.get(removed.data.parent)
            if waiting is not None:
                waiting.discard(removed_id)
                if not waiting:
                    del self._orphans[removed.data.parent]

    def rank(self, taxon_id: int) -> Rank:
        """Return the rank of a taxon, or the rank of its closest ranked ancestor."""
        taxon = self._walk_up(taxon_id, lambda t: t.rank != Rank.UNRANKED)
        return taxon.rank if taxon is not None else Rank.UNRANKED

    def min_rank(self) -> Rank:
        """Return the most inclusive rank in the taxonomy.

        Unranked taxa carry no information, so the search continues on
        their descendants.
        """
        return self._min_rank(self._roots)

    def _min_rank(self, taxon_ids: set[int]) -> Rank:
        ranks: list[Rank] = []
        for taxon_id in taxon_ids:
            node = self._nodes[taxon_id]
            rank = node.data.rank if node.data.rank != Rank.UNRANKED else self._min_rank(node.children)
            if rank != Rank.UNRANKED:
                ranks.append(rank)
        return min(ranks, default=Rank.UNRANKED)

    def _sorted(self, taxon_ids: set[int]) -> list[Taxon]:
        return sorted((self._nodes[i].data for i in taxon_ids), key=_sort_key)

    def walk(self) -> Iterator[Taxon]:
        """Iterate over the taxa, depth first, in the same order as write()."""
        stack = list(reversed(self._sorted(self._roots)))
        seen: set[int] = set()
        while stack:
            taxon = stack.pop()
            if taxon.id in seen:
                continue
            seen.add(taxon.id)
            yield taxon
            stack.extend(reversed(self._sorted(self._nodes[taxon.id].children)))

    def write(self, sink: TextIO | str | Path) -> None:
        """Write the taxonomy as a TSV table.

        Args:
            sink: Open text stream, or path of the file to create

        Raises:
            OSError: If the table cannot be written
        """
        if isinstance(sink, (str, Path)):
            with Path(sink).open("w", newline="", encoding="utf-8") as f:
                self._write(f)
            return
        self._write(sink)

    def _write(self, stream: TextIO) -> None:
        writer = csv.writer(stream, delimiter="\t", lineterminator="\r\n")
        writer.writerow(HEADER_COLUMNS)
        for taxon in self.walk():
            writer.writerow(
                [
                    taxon.name,
                    taxon.author,
                    taxon.id,
                    str(taxon.rank),
                    taxon.status,
                    taxon.parent if taxon.parent else "",
                ]
            )
