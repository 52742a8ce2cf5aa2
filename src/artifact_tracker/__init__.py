"""Server artifact metadata aggregation and support-lifecycle service."""

__version__ = "0.1.0"
