"""Core infrastructure: logging, events and the in-process event bus."""
