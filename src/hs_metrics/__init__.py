"""
hs-metrics

Hybrid-selection (target capture) metrics from aligned reads.
"""

__version__ = "1.0.0"

# Lazy imports to avoid dependency issues
def get_pipeline():
    """Get the HsMetricsPipeline class."""
    from .core.pipeline import HsMetricsPipeline
    return HsMetricsPipeline

def get_config():
    """Get the HsMetricsConfig class."""
    from .config.settings import HsMetricsConfig
    return HsMetricsConfig

def get_metrics_model():
    """Get the HsMetrics record class."""
    from .models.metrics import HsMetrics
    return HsMetrics

__all__ = ["get_pipeline", "get_config", "get_metrics_model"]
