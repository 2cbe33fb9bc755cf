"""
Audit Trail Module

Hash-chained append-only audit log with SHA-256 for tamper detection.
Every loan lifecycle change and every installment payment is logged here.
"""

import hashlib
import json
import threading
import uuid
from datetime import datetime, date, timezone
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from .storage import StorageInterface, StorageRecord


GENESIS_HASH = "0" * 64


class AuditEventType(Enum):
    """Types of audit events"""
    LOAN_CREATED = "loan_created"
    LOAN_TERMS_UPDATED = "loan_terms_updated"
    LOAN_APPROVED = "loan_approved"
    LOAN_CANCELLED = "loan_cancelled"
    LOAN_DISBURSED = "loan_disbursed"
    LOAN_ACTIVATED = "loan_activated"
    LOAN_COMPLETED = "loan_completed"
    LOAN_DEFAULTED = "loan_defaulted"
    LOAN_DELETED = "loan_deleted"
    INSTALLMENT_PAYMENT = "installment_payment"
    PAYMENT_REJECTED = "payment_rejected"
    DELINQUENCY_SWEEP = "delinquency_sweep"


def _json_safe(value: Any) -> Any:
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {k: _json_safe(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_json_safe(v) for v in value]
    return value


@dataclass
class AuditEvent(StorageRecord):
    """Immutable audit event chained to its predecessor by hash"""
    event_type: AuditEventType
    entity_type: str
    entity_id: str
    sequence: int
    previous_hash: str
    current_hash: str = ""
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if isinstance(self.event_type, str):
            self.event_type = AuditEventType(self.event_type)
        self.metadata = _json_safe(self.metadata or {})

    def calculate_hash(self) -> str:
        """SHA-256 over every field except current_hash"""
        hash_data = {
            'id': self.id,
            'created_at': self.created_at.isoformat(),
            'event_type': self.event_type.value,
            'entity_type': self.entity_type,
            'entity_id': self.entity_id,
            'sequence': self.sequence,
            'previous_hash': self.previous_hash,
            'metadata': self.metadata,
        }
        json_data = json.dumps(hash_data, sort_keys=True, separators=(',', ':'))
        return hashlib.sha256(json_data.encode('utf-8')).hexdigest()

    def verify_hash(self) -> bool:
        return self.current_hash == self.calculate_hash()

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result.update({
            'event_type': self.event_type.value,
            'entity_type': self.entity_type,
            'entity_id': self.entity_id,
            'sequence': self.sequence,
            'previous_hash': self.previous_hash,
            'current_hash': self.current_hash,
            'metadata': self.metadata,
        })
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'AuditEvent':
        return cls(
            id=data['id'],
            **StorageRecord.parse_timestamps(data),
            event_type=AuditEventType(data['event_type']),
            entity_type=data['entity_type'],
            entity_id=data['entity_id'],
            sequence=data['sequence'],
            previous_hash=data['previous_hash'],
            current_hash=data['current_hash'],
            metadata=data.get('metadata', {}),
        )


class AuditTrail:
    """
    Hash-chained audit trail for tamper detection
    """

    def __init__(
        self,
        storage: StorageInterface,
        table_name: str = "audit_events",
        clock: Optional[Callable[[], datetime]] = None,
        enabled: bool = True
    ):
        self.storage = storage
        self.table_name = table_name
        self.enabled = enabled
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._lock = threading.Lock()
        self._last_hash = GENESIS_HASH
        self._sequence = 0
        self._load_chain_head()

    def _load_chain_head(self) -> None:
        events = self.get_events()
        if events:
            self._last_hash = events[-1].current_hash
            self._sequence = events[-1].sequence

    def log_event(
        self,
        event_type: AuditEventType,
        entity_type: str,
        entity_id: str,
        metadata: Optional[Dict[str, Any]] = None
    ) -> Optional[AuditEvent]:
        """Append an event to the chain"""
        if not self.enabled:
            return None

        with self._lock:
            now = self._clock()
            event = AuditEvent(
                id=str(uuid.uuid4()),
                created_at=now,
                updated_at=now,
                event_type=event_type,
                entity_type=entity_type,
                entity_id=entity_id,
                sequence=self._sequence + 1,
                previous_hash=self._last_hash,
                metadata=metadata or {},
            )
            event.current_hash = event.calculate_hash()
            self.storage.save(self.table_name, event.id, event.to_dict())
            self._last_hash = event.current_hash
            self._sequence = event.sequence
            return event

    def get_events(
        self,
        entity_id: Optional[str] = None,
        event_type: Optional[AuditEventType] = None
    ) -> List[AuditEvent]:
        """Events in chain order, optionally filtered"""
        filters: Dict[str, Any] = {}
        if entity_id:
            filters['entity_id'] = entity_id
        if event_type:
            filters['event_type'] = event_type.value
        events = [AuditEvent.from_dict(data) for data in self.storage.find(self.table_name, filters)]
        events.sort(key=lambda e: e.sequence)
        return events

    def verify_integrity(self) -> Dict[str, Any]:
        """Walk the whole chain and report the first break, if any"""
        events = self.get_events()
        previous = GENESIS_HASH
        for event in events:
            if event.previous_hash != previous:
                return {'valid': False, 'checked': event.sequence, 'broken_at': event.id,
                        'reason': 'chain_link_mismatch'}
            if not event.verify_hash():
                return {'valid': False, 'checked': event.sequence, 'broken_at': event.id,
                        'reason': 'hash_mismatch'}
            previous = event.current_hash
        return {'valid': True, 'checked': len(events), 'broken_at': None, 'reason': None}
