"""Multi-tenant lodge booking and inventory engine."""

__version__ = "0.1.0"
