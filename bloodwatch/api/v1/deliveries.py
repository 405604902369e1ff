from datetime import datetime
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel
from sqlalchemy.orm import Session

from bloodwatch.db.session import get_db
from bloodwatch.models import DeliveryStatus
from bloodwatch.services.contracts import ensure_utc
from bloodwatch.services.notifiers import is_canonical, normalize_type_key, to_legacy
from bloodwatch.services.repository import AlertingRepository

router = APIRouter(prefix="/subscriptions", tags=["deliveries"])


class DeliveryResponse(BaseModel):
    id: str
    event_id: str
    status: str
    attempt_count: int
    last_error: Optional[str] = None
    created_at: datetime
    sent_at: Optional[datetime] = None


class DeliveryHealthResponse(BaseModel):
    subscription_id: str
    type_key: str
    legacy_type_key: Optional[str] = None
    uses_legacy_type_key: bool = False
    is_enabled: bool
    total: int
    counts: Dict[str, int]
    last_sent_at: Optional[datetime] = None
    last_failed_at: Optional[datetime] = None
    last_error: Optional[str] = None
    recent: List[DeliveryResponse]


@router.get("/{subscription_id}/deliveries", response_model=DeliveryHealthResponse)
async def get_delivery_health(
    subscription_id: str,
    limit: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
) -> DeliveryHealthResponse:
    """Delivery-health report for one subscription"""
    repository = AlertingRepository(db)
    subscription = repository.get_subscription(subscription_id)
    if subscription is None:
        raise HTTPException(status_code=404, detail="Subscription not found")

    deliveries = repository.deliveries_for_subscription(subscription_id)
    counts = {status.value: 0 for status in DeliveryStatus}
    last_sent_at: Optional[datetime] = None
    last_failed = None
    for delivery in deliveries:
        counts[delivery.status] = counts.get(delivery.status, 0) + 1
        sent_at = ensure_utc(delivery.sent_at)
        if sent_at is not None and (last_sent_at is None or sent_at > last_sent_at):
            last_sent_at = sent_at
        # newest first, so the first failure seen is the latest
        if delivery.status == DeliveryStatus.FAILED.value and last_failed is None:
            last_failed = delivery

    stored_type_key = (subscription.type_key or "").strip()
    canonical = normalize_type_key(stored_type_key)

    return DeliveryHealthResponse(
        subscription_id=subscription.id,
        type_key=canonical or stored_type_key,
        legacy_type_key=to_legacy(canonical) if canonical else None,
        uses_legacy_type_key=canonical is not None and not is_canonical(stored_type_key),
        is_enabled=subscription.is_enabled,
        total=len(deliveries),
        counts=counts,
        last_sent_at=last_sent_at,
        last_failed_at=ensure_utc(last_failed.created_at) if last_failed else None,
        last_error=last_failed.last_error if last_failed else None,
        recent=[
            DeliveryResponse(
                id=delivery.id,
                event_id=delivery.event_id,
                status=delivery.status,
                attempt_count=delivery.attempt_count,
                last_error=delivery.last_error,
                created_at=ensure_utc(delivery.created_at),
                sent_at=ensure_utc(delivery.sent_at),
            )
            for delivery in deliveries[:limit]
        ],
    )
