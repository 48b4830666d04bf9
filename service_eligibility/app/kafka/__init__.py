"""Kafka consumer utilities for delay confirmation events."""
