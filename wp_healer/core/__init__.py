"""Core components: configuration, logging, records and remote execution."""
