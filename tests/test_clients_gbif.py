"""Tests for the GBIF species client.

Unit tests use a mocked pipeline. Integration tests make real API calls
and are deselected by default; run with: pytest -m integration
"""

from typing import Any
from unittest.mock import MagicMock

import pytest
import requests

from gbif_taxonomy.clients.base import TransportExhaustedError
from gbif_taxonomy.clients.gbif import GBIFClient, Species

LEO_JSON = {
    "key": 5219404,
    "nubKey": 5219404,
    "canonicalName": "Panthera leo",
    "scientificName": "Panthera leo (Linnaeus, 1758)",
    "authorship": "(Linnaeus, 1758)",
    "rank": "SPECIES",
    "taxonomicStatus": "ACCEPTED",
    "parentKey": 5219436,
    "basionymKey": 7193927,
    "datasetKey": "d7dddbf4-2cf0-4f39-9b2a-bb099caae36c",
    "kingdomKey": 1,
    "genusKey": 5219436,
    "speciesKey": 5219404,
    "kingdom": "Animalia",
    "class": "Mammalia",
    "genus": "Panthera",
    "species": "Panthera leo",
}


def json_response(data: Any) -> MagicMock:
    """Build a mocked response returning data."""
    response = MagicMock()
    response.json.return_value = data
    return response


def make_client(*responses: Any, retry: int = 3) -> tuple[GBIFClient, MagicMock]:
    """Build a client on a mocked pipeline returning the given responses or errors."""
    pipeline = MagicMock()
    pipeline.settings.retry = 5
    pipeline.get.side_effect = [r if isinstance(r, Exception) else json_response(r) for r in responses]
    return GBIFClient(pipeline=pipeline, retry=retry), pipeline


def page(results: list[dict[str, Any]], offset: int, limit: int, end: bool) -> dict[str, Any]:
    return {"offset": offset, "limit": limit, "endOfRecords": end, "results": results}


def record(key: int, nub_key: int | None = None, status: str = "ACCEPTED") -> dict[str, Any]:
    return {
        "key": key,
        "nubKey": key if nub_key is None else nub_key,
        "canonicalName": f"Taxon {key}",
        "taxonomicStatus": status,
    }


class TestSpecies:
    """Tests for Species decoding."""

    def test_from_dict(self) -> None:
        """Test decoding a full GBIF record."""
        sp = Species.from_dict(LEO_JSON)
        assert sp.key == 5219404
        assert sp.nub_key == 5219404
        assert sp.canonical_name == "Panthera leo"
        assert sp.authorship == "(Linnaeus, 1758)"
        assert sp.rank == "SPECIES"
        assert sp.taxonomic_status == "ACCEPTED"
        assert sp.parent_key == 5219436
        assert sp.basionym_key == 7193927
        assert sp.accepted_key == 0
        assert sp.class_ == "Mammalia"
        assert sp.genus_key == 5219436
        assert sp.is_nub

    def test_from_dict_minimal(self) -> None:
        """Test that missing fields get empty defaults."""
        sp = Species.from_dict({"key": 1})
        assert sp.nub_key == 0
        assert sp.canonical_name == ""
        assert not sp.is_nub

    def test_from_dict_invalid_key(self) -> None:
        """Test that a non-integer key is a decode error."""
        with pytest.raises(ValueError):
            Species.from_dict({"key": "abc"})


class TestGBIFClientInit:
    """Tests for GBIFClient initialization."""

    def test_retry_from_pipeline(self) -> None:
        """Test that the retry limit defaults to the pipeline setting."""
        pipeline = MagicMock()
        pipeline.settings.retry = 7
        client = GBIFClient(pipeline=pipeline)
        assert client.retry == 7
        assert client.pipeline is pipeline


class TestFetchByID:
    """Tests for GBIFClient.fetch_by_id()."""

    def test_fetch(self) -> None:
        """Test fetching a record."""
        client, pipeline = make_client(LEO_JSON)
        sp = client.fetch_by_id(5219404)
        assert sp.canonical_name == "Panthera leo"
        pipeline.get.assert_called_once_with("species/5219404", None)

    def test_empty_id(self) -> None:
        """Test that an empty key is rejected before any request."""
        client, pipeline = make_client()
        with pytest.raises(ValueError, match="empty ID"):
            client.fetch_by_id("  ")
        pipeline.get.assert_not_called()

    def test_retry_after_transport_error(self) -> None:
        """Test that transport failures are retried."""
        client, pipeline = make_client(requests.ConnectionError("reset"), requests.Timeout("slow"), LEO_JSON)
        sp = client.fetch_by_id(5219404)
        assert sp.key == 5219404
        assert pipeline.get.call_count == 3

    def test_retry_after_decode_error(self) -> None:
        """Test that invalid JSON is retried."""
        bad = MagicMock()
        bad.json.side_effect = requests.JSONDecodeError("Expecting value", "", 0)
        pipeline = MagicMock()
        pipeline.get.side_effect = [bad, json_response(LEO_JSON)]
        client = GBIFClient(pipeline=pipeline, retry=3)
        assert client.fetch_by_id(5219404).key == 5219404

    def test_retry_after_malformed_record(self) -> None:
        """Test that records that cannot be decoded are retried."""
        client, pipeline = make_client({"key": "abc"}, ["not", "an", "object"], LEO_JSON)
        assert client.fetch_by_id(5219404).key == 5219404
        assert pipeline.get.call_count == 3

    def test_exhausted(self) -> None:
        """Test that failing every attempt raises with the last error."""
        last = requests.HTTPError("503 Server Error")
        client, pipeline = make_client(requests.ConnectionError("reset"), requests.Timeout("slow"), last)
        with pytest.raises(TransportExhaustedError) as exc_info:
            client.fetch_by_id(5219404)
        assert exc_info.value.last_error is last
        assert exc_info.value.attempts == 3
        assert exc_info.value.__cause__ is last
        assert pipeline.get.call_count == 3

    def test_no_attempts(self) -> None:
        """Test that a zero retry limit reports that no answer was received."""
        client, pipeline = make_client(retry=0)
        with pytest.raises(TransportExhaustedError, match="no answer") as exc_info:
            client.fetch_by_id(5219404)
        assert exc_info.value.last_error is None

    def test_success_is_not_retried(self) -> None:
        """Test that a successful response is used once."""
        client, pipeline = make_client(LEO_JSON, LEO_JSON)
        client.fetch_by_id(5219404)
        assert pipeline.get.call_count == 1


class TestListEndpoints:
    """Tests for the paginated list endpoints."""

    def test_fetch_by_name(self) -> None:
        """Test searching by name with normalized whitespace."""
        client, pipeline = make_client(page([LEO_JSON], 0, 20, True))
        results = client.fetch_by_name("  Panthera   leo ")
        assert [sp.key for sp in results] == [5219404]
        pipeline.get.assert_called_once_with("species", {"name": "Panthera leo"})

    def test_fetch_by_empty_name(self) -> None:
        """Test that an empty name is rejected."""
        client, _ = make_client()
        with pytest.raises(ValueError, match="empty taxon"):
            client.fetch_by_name(" ")

    def test_follows_pages_in_order(self) -> None:
        """Test that every page is fetched and results keep page order."""
        client, pipeline = make_client(
            page([record(1), record(2)], 0, 2, False),
            page([record(3), record(4)], 2, 2, False),
            page([record(5)], 4, 2, True),
        )
        results = client.fetch_children(9703)
        assert [sp.key for sp in results] == [1, 2, 3, 4, 5]
        offsets = [call.args[1]["offset"] for call in pipeline.get.call_args_list]
        assert offsets == [0, 2, 4]
        assert all(call.args[0] == "species/9703/children" for call in pipeline.get.call_args_list)

    def test_drops_non_nub_records(self) -> None:
        """Test that records cross-referenced to another backbone key are dropped."""
        client, _ = make_client(page([record(1), record(2, nub_key=1), record(3, nub_key=0)], 0, 20, True))
        results = client.fetch_synonyms(9703)
        assert [sp.key for sp in results] == [1]

    def test_page_retry(self) -> None:
        """Test that a failed page is retried without losing earlier pages."""
        client, pipeline = make_client(
            page([record(1)], 0, 1, False),
            requests.Timeout("slow"),
            page([record(2)], 1, 1, True),
        )
        results = client.fetch_synonyms(9703)
        assert [sp.key for sp in results] == [1, 2]
        assert pipeline.get.call_count == 3

    def test_page_exhausted(self) -> None:
        """Test that a page failing every attempt fails the whole list."""
        client, _ = make_client(
            page([record(1)], 0, 1, False),
            requests.Timeout("slow"),
            requests.Timeout("slow"),
            requests.Timeout("slow"),
        )
        with pytest.raises(TransportExhaustedError):
            client.fetch_children(9703)

    def test_missing_limit_stops(self) -> None:
        """Test that a page without limit does not loop forever."""
        client, pipeline = make_client({"endOfRecords": False, "results": [record(1)]})
        assert [sp.key for sp in client.fetch_children(9703)] == [1]
        assert pipeline.get.call_count == 1

    def test_malformed_results_are_retried(self) -> None:
        """Test that a page with non-object results is retried like any decode error."""
        client, pipeline = make_client(
            {"results": [None], "endOfRecords": True},
            page([record(1)], 0, 20, True),
        )
        assert [sp.key for sp in client.fetch_children(1)] == [1]
        assert pipeline.get.call_count == 2

    def test_malformed_results_exhausted(self) -> None:
        """Test that malformed pages end in a transport error, not an attribute error."""
        bad = {"results": [None], "endOfRecords": True}
        client, _ = make_client(bad, bad, bad)
        with pytest.raises(TransportExhaustedError) as exc_info:
            client.fetch_children(1)
        assert isinstance(exc_info.value.last_error, ValueError)


class TestGBIFClientIntegration:
    """Integration tests against the live GBIF API."""

    @pytest.mark.integration
    def test_fetch_panthera_leo(self) -> None:
        """Test fetching a well-known species."""
        sp = GBIFClient().fetch_by_id(5219404)
        assert sp.canonical_name == "Panthera leo"
        assert sp.taxonomic_status == "ACCEPTED"

    @pytest.mark.integration
    def test_search_panthera_leo(self) -> None:
        """Test searching by name."""
        results = GBIFClient().fetch_by_name("Panthera leo")
        assert 5219404 in [sp.key for sp in results]
