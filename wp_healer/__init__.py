"""
WP Healer
Diagnosis and self-healing orchestration engine for remote WordPress sites.
"""

__version__ = "0.1.0"
