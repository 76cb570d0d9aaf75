"""Configuration utilities for the p2 proxy."""

from .loader import Config, FetchSettings, RepositorySettings, load_config

__all__ = ["Config", "FetchSettings", "RepositorySettings", "load_config"]
