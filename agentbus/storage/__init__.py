"""Storage module."""

from .storage import ClusterRecord, IStorage, Storage

__all__ = ["ClusterRecord", "IStorage", "Storage"]
