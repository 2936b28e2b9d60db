"""Pluggable health checks."""
