from .engine import AggregationEngine, OrderRoute, classify_order

__all__ = ["AggregationEngine", "OrderRoute", "classify_order"]
