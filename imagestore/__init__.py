"""Content-addressed image storage: ingestion, usage auditing and safe deletion."""

__version__ = "0.1.0"
