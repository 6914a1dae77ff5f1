"""Adapters that back collaborator contracts with real libraries."""

from converge.adapters.http import HttpManifestFetcher

__all__ = ["HttpManifestFetcher"]
