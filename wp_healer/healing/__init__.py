"""Healing components: patterns, runbooks, orchestration and job execution."""
