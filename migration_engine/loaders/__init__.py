"""Target store loaders."""

from .base import BaseLoader
from .memory_loader import InMemoryLoader
from .api_loader import APILoader

__all__ = [
    "BaseLoader",
    "InMemoryLoader",
    "APILoader",
]
