"""Shelfwise: library management REST API and client."""
