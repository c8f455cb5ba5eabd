from .metrics import IngestMetrics, MetricsCollector

__all__ = ["IngestMetrics", "MetricsCollector"]
