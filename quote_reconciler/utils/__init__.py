"""Utilities: logging, tracing, address matching, body decoding."""
