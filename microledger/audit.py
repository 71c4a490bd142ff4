"""
Audit Trail Module

Hash-chained immutable audit log with SHA-256 for tamper detection.
Every loan and collection mutation is recorded here.
"""

import hashlib
import json
import uuid
from datetime import datetime, timezone
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Dict, List, Optional, Any

from .storage import StorageInterface, StorageRecord


class AuditEventType(Enum):
    """Types of audit events"""
    # Loan events
    LOAN_CREATED = "loan_created"
    LOAN_UPDATED = "loan_updated"
    LOAN_DELETED = "loan_deleted"
    LOAN_CLOSED = "loan_closed"
    LOAN_RECONCILED = "loan_reconciled"

    # Collection events
    COLLECTION_ADDED = "collection_added"
    COLLECTION_UPDATED = "collection_updated"
    COLLECTION_DELETED = "collection_deleted"


def _plain(value: Any) -> Any:
    """Convert metadata values to JSON-serializable form"""
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {k: _plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_plain(v) for v in value]
    if hasattr(value, 'isoformat'):
        return value.isoformat()
    return value


@dataclass
class AuditEvent(StorageRecord):
    """Immutable audit event chained to its predecessor by hash"""
    event_type: AuditEventType
    entity_type: str  # "loan" or "collection"
    entity_id: str
    previous_hash: str
    current_hash: str
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        self.metadata = _plain(self.metadata or {})

    def calculate_hash(self) -> str:
        """SHA-256 over every field except current_hash"""
        hash_data = {
            'id': self.id,
            'created_at': self.created_at.isoformat(),
            'event_type': self.event_type.value,
            'entity_type': self.entity_type,
            'entity_id': self.entity_id,
            'previous_hash': self.previous_hash,
            'metadata': self.metadata
        }
        json_data = json.dumps(hash_data, sort_keys=True, separators=(',', ':'))
        return hashlib.sha256(json_data.encode('utf-8')).hexdigest()

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result['event_type'] = self.event_type.value
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'AuditEvent':
        return cls(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            event_type=AuditEventType(data['event_type']),
            entity_type=data['entity_type'],
            entity_id=data['entity_id'],
            previous_hash=data['previous_hash'],
            current_hash=data['current_hash'],
            metadata=data.get('metadata') or {}
        )


class AuditTrail:
    """
    Hash-chained audit trail. The chain follows store insertion order.

    A disabled trail accepts calls and records nothing.
    """

    def __init__(self, storage: StorageInterface, table_name: str = "audit_events",
                 enabled: bool = True):
        self.storage = storage
        self.table_name = table_name
        self.enabled = enabled

    def _last_hash(self) -> str:
        events = self.storage.load_all(self.table_name)
        return events[-1].get('current_hash', "") if events else ""

    def log_event(
        self,
        event_type: AuditEventType,
        entity_type: str,
        entity_id: str,
        metadata: Optional[Dict[str, Any]] = None
    ) -> Optional[AuditEvent]:
        """
        Append an event to the chain

        Returns:
            The stored AuditEvent, or None when auditing is disabled
        """
        if not self.enabled:
            return None

        # The store transaction serializes reading the last hash and appending
        with self.storage.atomic():
            now = datetime.now(timezone.utc)
            event = AuditEvent(
                id=str(uuid.uuid4()),
                created_at=now,
                updated_at=now,
                event_type=event_type,
                entity_type=entity_type,
                entity_id=entity_id,
                previous_hash=self._last_hash(),
                current_hash="",
                metadata=metadata or {}
            )
            event.current_hash = event.calculate_hash()
            self.storage.save(self.table_name, event.id, event.to_dict())
            return event

    def get_events_for_entity(self, entity_type: str, entity_id: str) -> List[AuditEvent]:
        """All events for one entity in chain order"""
        return [
            AuditEvent.from_dict(data)
            for data in self.storage.find(
                self.table_name, {'entity_type': entity_type, 'entity_id': entity_id}
            )
        ]

    def get_events_by_type(self, event_type: AuditEventType) -> List[AuditEvent]:
        return [
            AuditEvent.from_dict(data)
            for data in self.storage.find(self.table_name, {'event_type': event_type.value})
        ]

    def verify_integrity(self) -> Dict[str, Any]:
        """
        Verify every hash and every chain link

        Returns:
            Dictionary with 'valid', 'total_events', 'hash_errors' and 'chain_breaks'
        """
        result = {'valid': True, 'total_events': 0, 'hash_errors': [], 'chain_breaks': []}

        previous_hash = ""
        for position, data in enumerate(self.storage.load_all(self.table_name)):
            event = AuditEvent.from_dict(data)
            result['total_events'] += 1

            if event.calculate_hash() != event.current_hash:
                result['valid'] = False
                result['hash_errors'].append({'event_id': event.id, 'position': position})

            if event.previous_hash != previous_hash:
                result['valid'] = False
                result['chain_breaks'].append({'event_id': event.id, 'position': position})

            previous_hash = event.current_hash

        return result
