"""Core infrastructure: configuration, storage, retries, events."""
