"""GBIF species API client.

A thin, typed wrapper around the GBIF species endpoints used to build
a taxonomy: lookup by key, search by name, children and synonyms.
All requests go through the shared RequestPipeline.

References:
    - API docs: https://www.gbif.org/developer/species
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, TypeVar

import requests

from gbif_taxonomy.clients.base import RequestPipeline, TransportExhaustedError, open_pipeline

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _key(data: dict[str, Any], name: str) -> int:
    value = data.get(name)
    if value in (None, ""):
        return 0
    return int(value)


def _text(data: dict[str, Any], name: str) -> str:
    value = data.get(name)
    return str(value) if value is not None else ""


@dataclass
class Species:
    """Taxonomic record as stored in GBIF.

    Attributes:
        key: GBIF key of this record
        nub_key: Key of the matching GBIF backbone record (0 if none)
        accepted_key: Key of the accepted taxon, for synonyms
        canonical_name: Name without authorship
        scientific_name: Full name with authorship
        basionym_key: Key of the basionym
        authorship: Author of the name
        rank: Rank as reported by GBIF (e.g., "SPECIES")
        taxonomic_status: Status as reported by GBIF (e.g., "ACCEPTED")
        dataset_key: Source checklist
        parent_key: Key of the parent taxon
        published_in: Bibliographic reference
    """

    key: int
    nub_key: int = 0
    accepted_key: int = 0
    canonical_name: str = ""
    scientific_name: str = ""
    basionym_key: int = 0
    authorship: str = ""
    rank: str = ""
    taxonomic_status: str = ""
    dataset_key: str = ""
    parent_key: int = 0
    published_in: str = ""

    # Higher classification keys
    kingdom_key: int = 0
    phylum_key: int = 0
    class_key: int = 0
    order_key: int = 0
    family_key: int = 0
    genus_key: int = 0
    species_key: int = 0

    kingdom: str = ""
    phylum: str = ""
    class_: str = ""
    order: str = ""
    family: str = ""
    genus: str = ""
    species: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Species:
        """Build a record from a GBIF JSON object.

        Raises:
            ValueError: If a key field is not an integer
        """
        return cls(
            key=_key(data, "key"),
            nub_key=_key(data, "nubKey"),
            accepted_key=_key(data, "acceptedKey"),
            canonical_name=_text(data, "canonicalName"),
            scientific_name=_text(data, "scientificName"),
            basionym_key=_key(data, "basionymKey"),
            authorship=_text(data, "authorship"),
            rank=_text(data, "rank"),
            taxonomic_status=_text(data, "taxonomicStatus"),
            dataset_key=_text(data, "datasetKey"),
            parent_key=_key(data, "parentKey"),
            published_in=_text(data, "publishedIn"),
            kingdom_key=_key(data, "kingdomKey"),
            phylum_key=_key(data, "phylumKey"),
            class_key=_key(data, "classKey"),
            order_key=_key(data, "orderKey"),
            family_key=_key(data, "familyKey"),
            genus_key=_key(data, "genusKey"),
            species_key=_key(data, "speciesKey"),
            kingdom=_text(data, "kingdom"),
            phylum=_text(data, "phylum"),
            class_=_text(data, "class"),
            order=_text(data, "order"),
            family=_text(data, "family"),
            genus=_text(data, "genus"),
            species=_text(data, "species"),
        )

    @property
    def is_nub(self) -> bool:
        """Whether this record is the backbone record itself."""
        return self.key == self.nub_key


@dataclass
class _Page:
    """One page of a paginated species list."""

    results: list[Species] = field(default_factory=list)
    offset: int = 0
    limit: int = 0
    end_of_records: bool = True

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> _Page:
        items = data.get("results") or []
        if not isinstance(items, list) or not all(isinstance(item, dict) for item in items):
            raise ValueError("unexpected results in species page")
        return cls(
            results=[Species.from_dict(item) for item in items],
            offset=_key(data, "offset"),
            limit=_key(data, "limit"),
            end_of_records=bool(data.get("endOfRecords", True)),
        )


class GBIFClient:
    """Client for the GBIF species API.

    Example:
        >>> client = GBIFClient()
        >>> sp = client.fetch_by_id(5219404)
        >>> sp.canonical_name, sp.taxonomic_status
        ('Panthera leo', 'ACCEPTED')
    """

    def __init__(self, pipeline: RequestPipeline | None = None, retry: int | None = None):
        """Initialize the client.

        Args:
            pipeline: Request pipeline (the process-wide one if not provided)
            retry: Attempts per request (pipeline setting if not provided)
        """
        self.pipeline = pipeline or open_pipeline()
        self.retry = retry if retry is not None else self.pipeline.settings.retry

    def _request(self, path: str, params: dict[str, Any] | None, decode: Callable[[dict[str, Any]], T]) -> T:
        """Fetch and decode a JSON object, retrying on transport and decode errors.

        Args:
            path: Path relative to the API root
            params: Query parameters
            decode: Converts the JSON object, raising ValueError if malformed

        Raises:
            TransportExhaustedError: If every attempt failed
        """
        last_error: Exception | None = None
        for attempt in range(1, self.retry + 1):
            try:
                response = self.pipeline.get(path, params)
                data = response.json()
                if not isinstance(data, dict):
                    raise ValueError(f"unexpected JSON {type(data).__name__}")
                return decode(data)
            except (requests.RequestException, ValueError, TypeError) as e:
                last_error = e
                logger.debug(f"GBIF request {path} failed (attempt {attempt}/{self.retry}): {e}")

        logger.warning(f"Failed to fetch {path} from GBIF after {self.retry} retries")
        raise TransportExhaustedError(path, self.retry, last_error) from last_error

    def _get_list(self, path: str, params: dict[str, Any] | None = None) -> list[Species]:
        """Fetch every page of a paginated species list.

        Only backbone records (key equal to nubKey) are kept.
        """
        records: list[Species] = []
        offset = 0
        while True:
            page_params = dict(params or {})
            if offset > 0:
                page_params["offset"] = offset
            page = self._request(path, page_params, _Page.from_dict)
            records.extend(sp for sp in page.results if sp.is_nub)
            if page.end_of_records:
                break
            if page.limit <= 0:
                logger.warning(f"GBIF page for {path} has no limit, stopping at offset {offset}")
                break
            offset += page.limit
        return records

    def fetch_by_id(self, taxon_id: int | str) -> Species:
        """Fetch a species record by its GBIF key.

        Args:
            taxon_id: GBIF key (integer or string)

        Returns:
            The species record

        Raises:
            ValueError: If taxon_id is empty
            TransportExhaustedError: If the request failed on every attempt
        """
        taxon_id = str(taxon_id).strip()
        if not taxon_id:
            raise ValueError("gbif: species: search an empty ID")
        return self._request(f"species/{taxon_id}", None, Species.from_dict)

    def fetch_by_name(self, name: str) -> list[Species]:
        """Search backbone records with a given name.

        Args:
            name: Taxon name; whitespace is normalized

        Raises:
            ValueError: If name is empty
            TransportExhaustedError: If a request failed on every attempt
        """
        name = " ".join(name.split())
        if not name:
            raise ValueError("gbif: taxonomy: search an empty taxon")
        return self._get_list("species", {"name": name})

    def fetch_children(self, taxon_id: int) -> list[Species]:
        """List the backbone children of a taxon."""
        return self._get_list(f"species/{taxon_id}/children", {"offset": 0})

    def fetch_synonyms(self, taxon_id: int) -> list[Species]:
        """List the backbone synonyms of a taxon."""
        return self._get_list(f"species/{taxon_id}/synonyms", {"offset": 0})
