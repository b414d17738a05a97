"""Ingestion layer.

Adapters that turn raw backend responses and broker messages into
normalized domain objects.
"""

__all__: list[str] = []
