"""Shared infrastructure: configuration, timers, storage, encryption and logging."""
