"""Logging, metrics and health probes for the search service."""
