"""
Idempotency keys and duplicate-safe event persistence.

The key hashes the rule, the natural keys of the pair and the payload's
signal fingerprint, never the raw payload JSON: adding metadata to a payload
must not produce a second event for the same logical change.
"""

import hashlib
import json
from dataclasses import dataclass
from typing import Dict, Iterable, List

from sqlalchemy.exc import IntegrityError

from bloodwatch.models import Event
from bloodwatch.services.contracts import RuleEvent
from bloodwatch.services.repository import AlertingRepository
from bloodwatch.utils.logger import get_logger

logger = get_logger(__name__)


def compute_idempotency_key(event: RuleEvent) -> str:
    material = {
        "rule": event.rule_key,
        "source": event.source.adapter_key,
        "region": event.region.key,
        "category": event.category.key,
        "fingerprint": event.payload.fingerprint(),
    }
    canonical = json.dumps(
        material, sort_keys=True, separators=(",", ":"), default=str
    )
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class EventCandidate:
    """A rule event resolved to the rows it will link to."""

    rule_event: RuleEvent
    source_id: str
    region_id: str
    current_reserve_id: str

    @property
    def idempotency_key(self) -> str:
        return compute_idempotency_key(self.rule_event)


class EventPersister:
    """Inserts new events, skipping any whose idempotency key already exists."""

    def __init__(self, repository: AlertingRepository):
        self.repository = repository

    def persist(self, candidates: Iterable[EventCandidate]) -> List[Event]:
        """
        Persist unique candidates and return the newly inserted rows in order.

        Duplicates within the batch collapse to the first occurrence; keys that
        are already stored are skipped. A concurrent writer racing on the same
        key is detected by the unique constraint and skipped as well.
        """
        unique: Dict[str, EventCandidate] = {}
        for candidate in candidates:
            unique.setdefault(candidate.idempotency_key, candidate)
        if not unique:
            return []

        existing = self.repository.existing_idempotency_keys(unique.keys())
        rows = [
            self._to_row(key, candidate)
            for key, candidate in unique.items()
            if key not in existing
        ]
        if existing:
            logger.info("duplicate_events_skipped", count=len(existing))
        if not rows:
            return []

        session = self.repository.session
        try:
            with session.begin_nested():
                session.add_all(rows)
                session.flush()
            return rows
        except IntegrityError:
            logger.warning("event_batch_conflict_retrying_individually", count=len(rows))

        persisted: List[Event] = []
        for row in rows:
            fresh = self._clone(row)
            try:
                with session.begin_nested():
                    session.add(fresh)
                    session.flush()
                persisted.append(fresh)
            except IntegrityError:
                logger.info("duplicate_event_skipped", idempotency_key=row.idempotency_key)
        return persisted

    @staticmethod
    def _to_row(key: str, candidate: EventCandidate) -> Event:
        rule_event = candidate.rule_event
        return Event(
            source_id=candidate.source_id,
            region_id=candidate.region_id,
            current_reserve_id=candidate.current_reserve_id,
            rule_key=rule_event.rule_key,
            category_key=rule_event.category.key,
            payload_json=rule_event.payload.to_json(),
            idempotency_key=key,
            created_at=rule_event.created_at,
        )

    @staticmethod
    def _clone(row: Event) -> Event:
        return Event(
            source_id=row.source_id,
            region_id=row.region_id,
            current_reserve_id=row.current_reserve_id,
            rule_key=row.rule_key,
            category_key=row.category_key,
            payload_json=row.payload_json,
            idempotency_key=row.idempotency_key,
            created_at=row.created_at,
        )
