"""CLI command modules for healthcheck-sync."""

__all__: list[str] = []
