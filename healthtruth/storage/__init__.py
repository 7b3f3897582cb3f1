"""Persistence backends for healthtruth documents."""

from healthtruth.storage.base import HealthStore
from healthtruth.storage.memory import InMemoryHealthStore

__all__ = ["HealthStore", "InMemoryHealthStore"]
