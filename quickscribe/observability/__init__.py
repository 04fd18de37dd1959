"""Structured logging and job metrics."""
