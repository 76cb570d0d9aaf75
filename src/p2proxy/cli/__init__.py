"""Command line interface for the p2 proxy."""
