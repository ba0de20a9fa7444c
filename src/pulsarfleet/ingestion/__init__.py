"""Ingestion layer.

Adapters that turn raw ``(topic, bytes)`` deliveries into decoded payloads,
normalised inbound messages, metric samples and device events. Nothing in
this package mutates registry state.
"""

__all__: list[str] = []
