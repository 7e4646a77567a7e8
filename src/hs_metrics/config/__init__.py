"""
Configuration management for the HS metrics engine.
"""

# Lazy import to avoid dependency issues
def get_config():
    """Get the HsMetricsConfig class."""
    from .settings import HsMetricsConfig
    return HsMetricsConfig

__all__ = ["get_config"]
