"""Shared utilities: errors and retry."""
