"""Webhook server: Gmail push listener, watch lifecycle and HTTP API."""
