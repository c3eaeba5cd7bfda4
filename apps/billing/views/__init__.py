from .health import health_view

__all__ = ["health_view"]
