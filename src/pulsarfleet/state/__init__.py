"""State layer.

Single source of truth for the fleet model: the device registry, metric
history, notifications, event timeline and raw message log. Ingestion
adapters produce values; only these classes store them.
"""
