"""Public-health data aggregation dashboard backend."""

__version__ = "1.0.0"
