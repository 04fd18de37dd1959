"""Job persistence and object storage clients."""
