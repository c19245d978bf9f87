"""Shared expiring counters (horizontally shareable rate/quota state)."""
