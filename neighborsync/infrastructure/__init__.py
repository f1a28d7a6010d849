"""
Shared store back-ends implementing ``services.protocols.DocumentStore``.
"""

from neighborsync.infrastructure.memory_store import InMemoryDocumentStore
from neighborsync.infrastructure.mqtt_store import MQTTDocumentStore
from neighborsync.infrastructure.schedule_repository import DocumentScheduleRepository

__all__ = ["DocumentScheduleRepository", "InMemoryDocumentStore", "MQTTDocumentStore"]
