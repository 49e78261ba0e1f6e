"""Batch registry: identity, lifecycle and metadata of production lots."""

from batchledger.registry.batch_registry import BatchRegistry
from batchledger.registry.lifecycle import BatchStateMachine

__all__ = ["BatchRegistry", "BatchStateMachine"]
