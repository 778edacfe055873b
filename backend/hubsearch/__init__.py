"""Content search and ranking service."""
