"""Diagnosis components: profiles, checks, probes, aggregation and caching."""
