from prometheus_client import Counter, Histogram

# --- Ingestion Metrics ---

# Counter for completed ingestion cycles.
# Labels:
# - source_key: Adapter key of the polled source.
# - outcome: "success" or "failure".
INGESTION_CYCLES_TOTAL = Counter(
    "bloodwatch_ingestion_cycles_total",
    "Total number of ingestion cycles by outcome.",
    ["source_key", "outcome"],
)

# Histogram for the wall time of one ingestion cycle, fetch through dispatch.
# Labels:
# - source_key: Adapter key of the polled source.
INGESTION_CYCLE_DURATION_SECONDS = Histogram(
    "bloodwatch_ingestion_cycle_duration_seconds",
    "Duration of one ingestion cycle.",
    ["source_key"],
    buckets=[0.5, 1, 2.5, 5, 10, 30, 60, 120, 300],
)

# Counter for current-reserve rows touched per cycle.
# Labels:
# - source_key: Adapter key of the polled source.
# - change: "inserted", "updated" or "carried_forward".
CURRENT_RESERVE_CHANGES_TOTAL = Counter(
    "bloodwatch_current_reserve_changes_total",
    "Current-reserve rows inserted, updated or carried forward.",
    ["source_key", "change"],
)

# --- Event Metrics ---

# Counter for events emitted by rules, before deduplication.
# Labels:
# - rule_key: Rule that produced the event.
EVENTS_GENERATED_TOTAL = Counter(
    "bloodwatch_events_generated_total",
    "Total number of events produced by rule evaluation.",
    ["rule_key"],
)

# Counter for events that survived idempotency checks and were inserted.
# Labels:
# - rule_key: Rule that produced the event.
EVENTS_PERSISTED_TOTAL = Counter(
    "bloodwatch_events_persisted_total",
    "Total number of events persisted after deduplication.",
    ["rule_key"],
)

# --- Dispatch Metrics ---

# Counter for deliveries reaching a terminal status.
# Labels:
# - type_key: Canonical channel type key (or the raw key if unknown).
# - status: "sent" or "failed".
DELIVERIES_TOTAL = Counter(
    "bloodwatch_deliveries_total",
    "Total number of deliveries by channel and terminal status.",
    ["type_key", "status"],
)

# Counter for individual send attempts, including retries.
# Labels:
# - type_key: Canonical channel type key.
# - result: "sent", "transient" or "permanent".
DELIVERY_ATTEMPTS_TOTAL = Counter(
    "bloodwatch_delivery_attempts_total",
    "Total number of notifier send attempts.",
    ["type_key", "result"],
)

# Counter for (event, subscription) pairs skipped by steady-state suppression.
# Labels:
# - rule_key: Rule that produced the suppressed event.
NOTIFICATIONS_SUPPRESSED_TOTAL = Counter(
    "bloodwatch_notifications_suppressed_total",
    "Notifications skipped because the subscriber was already alerted.",
    ["rule_key"],
)

# Histogram for the latency of a single notifier send attempt.
# Labels:
# - type_key: Canonical channel type key.
NOTIFIER_SEND_LATENCY_SECONDS = Histogram(
    "bloodwatch_notifier_send_latency_seconds",
    "Latency of a single notifier send attempt.",
    ["type_key"],
    buckets=[0.05, 0.1, 0.25, 0.5, 1, 2.5, 5, 10],
)
