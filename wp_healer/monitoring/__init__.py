"""Monitoring components: post-healing verification and healing metrics."""
