"""API clients for the GBIF naming service."""

from gbif_taxonomy.clients.base import (
    GBIFError,
    PipelineSettings,
    RequestPipeline,
    TransportExhaustedError,
    open_pipeline,
)
from gbif_taxonomy.clients.gbif import GBIFClient, Species

__all__ = [
    "GBIFClient",
    "GBIFError",
    "PipelineSettings",
    "RequestPipeline",
    "Species",
    "TransportExhaustedError",
    "open_pipeline",
]
