"""API route modules."""

from . import batches, dedup, snapshots, retries

__all__ = ["batches", "dedup", "snapshots", "retries"]
