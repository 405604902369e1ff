"""
Ingestion cycle orchestration.

One cycle for one source: fetch the snapshot, rebuild the previous snapshot
from the current-reserve rows, upsert those rows, evaluate the rules,
persist new events idempotently and dispatch them. Everything after the
fetch runs inside a single unit of work.
"""

import asyncio
import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from bloodwatch.models import CurrentReserve, Region, Source
from bloodwatch.monitoring.metrics import (
    CURRENT_RESERVE_CHANGES_TOTAL,
    EVENTS_GENERATED_TOTAL,
    EVENTS_PERSISTED_TOTAL,
    INGESTION_CYCLE_DURATION_SECONDS,
    INGESTION_CYCLES_TOTAL,
)
from bloodwatch.services.adapters import AdapterRegistry
from bloodwatch.services.alerts.thresholds import (
    ThresholdConfig,
    ThresholdProfileResolver,
)
from bloodwatch.services.contracts import (
    Category,
    RegionRef,
    RuleEvent,
    Snapshot,
    SnapshotItem,
    ensure_utc,
    sort_rule_events,
    to_decimal,
)
from bloodwatch.services.dispatch import DispatchEngine
from bloodwatch.services.idempotency import EventCandidate, EventPersister
from bloodwatch.services.notifiers import NotifierRegistry
from bloodwatch.services.repository import AlertingRepository
from bloodwatch.services.rules import BaseRule, create_default_rules
from bloodwatch.utils.logger import add_cycle_context, get_logger

logger = get_logger(__name__)

PairKey = Tuple[str, str]


@dataclass(frozen=True)
class IngestionCycleResult:
    source_key: str
    inserted: int
    updated: int
    carried_forward: int
    events_generated: int
    events_persisted: int
    deliveries_sent: int
    polled_at: datetime
    duration_seconds: float


def aggregate_items(items: Sequence[SnapshotItem]) -> List[SnapshotItem]:
    """
    Collapse duplicate (region, category) observations.

    Values are summed; the first non-empty status wins. First-seen order of
    pairs is preserved.
    """
    merged: Dict[PairKey, SnapshotItem] = {}
    for item in items:
        current = merged.get(item.pair_key)
        if current is None:
            merged[item.pair_key] = item
            continue

        if current.value is None:
            value = item.value
        elif item.value is None:
            value = current.value
        else:
            value = current.value + item.value

        has_status = bool((current.status_key or "").strip())
        merged[item.pair_key] = SnapshotItem(
            region=current.region,
            category=current.category,
            value=value,
            status_key=current.status_key if has_status else item.status_key,
            status_label=current.status_label if has_status else item.status_label,
        )
    return list(merged.values())


class IngestionOrchestrator:
    def __init__(
        self,
        repository: AlertingRepository,
        adapters: AdapterRegistry,
        rules: Sequence[BaseRule],
        dispatcher: DispatchEngine,
    ):
        self.repository = repository
        self.adapters = adapters
        self.rules = list(rules)
        self.dispatcher = dispatcher
        self.persister = EventPersister(repository)

    async def run_cycle(self, source_key: str) -> IngestionCycleResult:
        """
        Run one ingestion cycle for a source.

        Args:
            source_key: Adapter key of the source to poll

        Returns:
            Counts describing what the cycle changed

        Raises:
            AdapterError: If the adapter is missing or the fetch failed
            RepositoryError: If the unit of work could not be committed
        """
        cycle_id = uuid.uuid4().hex[:12]
        log = logger.bind(**add_cycle_context(source_key, cycle_id))
        started = time.perf_counter()

        try:
            adapter = self.adapters.get(source_key)
            snapshot = await adapter.fetch_latest()
            log.info("snapshot_fetched", items=len(snapshot.items))

            with self.repository.transaction():
                result = await self._apply_snapshot(source_key, snapshot, started)
        except Exception:
            INGESTION_CYCLES_TOTAL.labels(source_key=source_key, outcome="failure").inc()
            raise

        INGESTION_CYCLES_TOTAL.labels(source_key=source_key, outcome="success").inc()
        INGESTION_CYCLE_DURATION_SECONDS.labels(source_key=source_key).observe(
            result.duration_seconds
        )
        log.info(
            "ingestion_cycle_completed",
            inserted=result.inserted,
            updated=result.updated,
            carried_forward=result.carried_forward,
            events_generated=result.events_generated,
            events_persisted=result.events_persisted,
            deliveries_sent=result.deliveries_sent,
            duration_seconds=round(result.duration_seconds, 3),
        )
        return result

    async def _apply_snapshot(
        self, source_key: str, snapshot: Snapshot, started: float
    ) -> IngestionCycleResult:
        polled_at = datetime.now(timezone.utc)
        source = self.repository.get_or_create_source(
            snapshot.source.adapter_key, snapshot.source.name
        )
        source.last_polled_at = polled_at

        items = aggregate_items(snapshot.items)
        regions = self._ensure_regions(source, items)
        regions_by_id = {region.id: region for region in regions.values()}

        existing = {
            (row.region_id, row.category_key): row
            for row in self.repository.current_reserves(source.id)
        }
        previous = self._previous_snapshot(snapshot, existing.values(), regions_by_id)
        current = Snapshot(
            source=snapshot.source,
            captured_at=snapshot.captured_at,
            items=tuple(items),
            reference_date=snapshot.reference_date,
        )

        inserted = updated = 0
        reserves: Dict[PairKey, CurrentReserve] = {}
        for item in items:
            region = regions[item.region.key]
            row = existing.get((region.id, item.category.key))
            if row is None:
                row = CurrentReserve(
                    source_id=source.id,
                    region_id=region.id,
                    category_key=item.category.key,
                )
                self.repository.session.add(row)
                inserted += 1
            else:
                updated += 1
            row.value = item.value
            row.unit = item.unit or "units"
            row.status_key = item.status_key
            row.status_label = item.status_label
            row.reference_date = snapshot.reference_date
            row.captured_at = snapshot.captured_at
            row.updated_at = polled_at
            reserves[item.pair_key] = row

        carried_forward = max(0, len(existing) - updated)
        self.repository.session.flush()

        generated = await self._evaluate(previous, current)
        candidates = [
            EventCandidate(
                rule_event=event,
                source_id=source.id,
                region_id=regions[event.region.key].id,
                current_reserve_id=reserves[event.pair_key].id,
            )
            for event in generated
            if event.pair_key in reserves
        ]
        persisted = self.persister.persist(candidates)
        for event in persisted:
            EVENTS_PERSISTED_TOTAL.labels(rule_key=event.rule_key).inc()

        sent = await self.dispatcher.dispatch(persisted)

        for change, count in (
            ("inserted", inserted),
            ("updated", updated),
            ("carried_forward", carried_forward),
        ):
            CURRENT_RESERVE_CHANGES_TOTAL.labels(source_key=source_key, change=change).inc(count)

        return IngestionCycleResult(
            source_key=source_key,
            inserted=inserted,
            updated=updated,
            carried_forward=carried_forward,
            events_generated=len(generated),
            events_persisted=len(persisted),
            deliveries_sent=sent,
            polled_at=polled_at,
            duration_seconds=time.perf_counter() - started,
        )

    async def _evaluate(
        self, previous: Optional[Snapshot], current: Snapshot
    ) -> List[RuleEvent]:
        results = await asyncio.gather(
            *(rule.evaluate(previous, current) for rule in self.rules)
        )
        events: List[RuleEvent] = []
        for rule, rule_events in zip(self.rules, results):
            EVENTS_GENERATED_TOTAL.labels(rule_key=rule.rule_key).inc(len(rule_events))
            events.extend(rule_events)
        return sort_rule_events(events)

    def _ensure_regions(
        self, source: Source, items: Sequence[SnapshotItem]
    ) -> Dict[str, Region]:
        regions = self.repository.regions_by_key(source.id)
        created = 0
        for item in items:
            if item.region.key in regions:
                continue
            region = Region(
                source_id=source.id,
                key=item.region.key,
                display_name=item.region.display_name or item.region.key,
            )
            self.repository.session.add(region)
            regions[region.key] = region
            created += 1
        if created:
            self.repository.session.flush()
            logger.info("regions_created", source_id=source.id, count=created)
        return regions

    @staticmethod
    def _previous_snapshot(
        snapshot: Snapshot,
        rows: Iterable[CurrentReserve],
        regions_by_id: Dict[str, Region],
    ) -> Optional[Snapshot]:
        items: List[SnapshotItem] = []
        captured: List[datetime] = []
        for row in rows:
            region = regions_by_id.get(row.region_id)
            if region is None:
                continue
            items.append(
                SnapshotItem(
                    region=RegionRef(key=region.key, display_name=region.display_name),
                    category=Category(
                        key=row.category_key,
                        label=row.category_key,
                        unit=row.unit or "units",
                    ),
                    value=to_decimal(row.value),
                    status_key=row.status_key,
                    status_label=row.status_label,
                )
            )
            if row.captured_at is not None:
                captured.append(ensure_utc(row.captured_at))
        if not items:
            return None
        return Snapshot(
            source=snapshot.source,
            captured_at=max(captured) if captured else snapshot.captured_at,
            items=tuple(items),
        )


def build_ingestion_orchestrator(
    session: Any,
    adapters: AdapterRegistry,
    notifiers: NotifierRegistry,
    settings: Any,
    rules: Optional[Sequence[BaseRule]] = None,
) -> IngestionOrchestrator:
    """Wire an orchestrator for one unit of work (one session)."""
    repository = AlertingRepository(session)
    if rules is None:
        resolver = ThresholdProfileResolver(ThresholdConfig.from_settings(settings))
        rules = create_default_rules(resolver)
    dispatcher = DispatchEngine.from_settings(repository, notifiers, settings)
    return IngestionOrchestrator(repository, adapters, rules, dispatcher)
