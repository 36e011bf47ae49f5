"""Shared UI websocket protocol constants."""
