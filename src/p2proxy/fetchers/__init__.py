"""Upstream fetchers for the p2 proxy."""

from .http import Fetcher, FetchResult, HttpFetcher

__all__ = ["FetchResult", "Fetcher", "HttpFetcher"]
