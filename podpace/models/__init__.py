"""Data models shared across layers."""
