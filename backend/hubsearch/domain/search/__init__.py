"""Content search: query compilation, execution, fallback, sync and analytics."""
