"""Sync engine services."""
