"""Shared infrastructure: logging, errors, configuration and metrics."""
