"""
Centralized configuration — env vars, scoring constants, lease and queue limits.
"""
import os


# ── Logging ──────────────────────────────────────────────────────────────────
LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')
LOG_FORMAT = os.getenv('LOG_FORMAT', 'text')

# ── Redis ─────────────────────────────────────────────────────────────────────
REDIS_URL = os.getenv('REDIS_URL', 'redis://localhost:6379/0')

# ── PostgreSQL (lead store + ledger) ──────────────────────────────────────────
DATABASE_URL = os.getenv('DATABASE_URL', 'sqlite:///local.db')

# ── Eligibility source (read-only replica) ────────────────────────────────────
REPLICA_DATABASE_URL = os.getenv('REPLICA_DATABASE_URL')
ELIGIBILITY_SOURCE = os.getenv('ELIGIBILITY_SOURCE', 'replica')
EXCLUDED_REQUIREMENT_TYPES = [
    'signature',
    'vehicle_registration',
    'cfa',
    'solicitor_letter_of_authority',
    'letter_of_authority',
]

# ── Slack notifications ──────────────────────────────────────────────────────
SLACK_WEBHOOK_URL = os.getenv('SLACK_WEBHOOK_URL')

# ── Scoring ───────────────────────────────────────────────────────────────────
SCORE_MIN = 0
SCORE_MAX = 200
AGING_REST_WEEKDAY = int(os.getenv('AGING_REST_WEEKDAY', 6))  # Monday=0 .. Sunday=6
AGING_BATCH_SIZE = int(os.getenv('AGING_BATCH_SIZE', 500))

# ── Leases ────────────────────────────────────────────────────────────────────
CALLBACK_LEASE_SECONDS = int(os.getenv('CALLBACK_LEASE_SECONDS', 300))
LEAD_LEASE_SECONDS = int(os.getenv('LEAD_LEASE_SECONDS', 300))
INBOUND_GRACE_SECONDS = int(os.getenv('INBOUND_GRACE_SECONDS', 30))
CLAIM_NEXT_MAX_ATTEMPTS = 10

# ── Callbacks ─────────────────────────────────────────────────────────────────
CALLBACK_RETRY_DELAY_MINUTES = int(os.getenv('CALLBACK_RETRY_DELAY_MINUTES', 15))
CALLBACK_MAX_RETRIES = int(os.getenv('CALLBACK_MAX_RETRIES', 1))

# ── Inbound queue ─────────────────────────────────────────────────────────────
MAX_QUEUE_WAIT_SECONDS = int(os.getenv('MAX_QUEUE_WAIT_TIME', 3600))
INBOUND_MAX_QUEUE_SIZE = 50
INBOUND_DEFAULT_WAIT_ESTIMATE = 120
INBOUND_MIN_WAIT_ESTIMATE = 30
INBOUND_MAX_WAIT_ESTIMATE = 600
INBOUND_KNOWN_CALLER_PRIORITY = 70
INBOUND_UNKNOWN_CALLER_PRIORITY = 50
INBOUND_PROCESS_LIMIT = 10
INBOUND_RETENTION_MINUTES = 60

# ── Agents ────────────────────────────────────────────────────────────────────
AGENT_HEARTBEAT_TIMEOUT_SECONDS = int(os.getenv('AGENT_HEARTBEAT_TIMEOUT', 600))

# ── Discovery ─────────────────────────────────────────────────────────────────
DISCOVERY_BATCH_SIZE = int(os.getenv('DISCOVERY_BATCH_SIZE', 50))
DISCOVERY_TIME_BUDGET_SECONDS = float(os.getenv('DISCOVERY_TIME_BUDGET', 25))

# ── Conversions & attribution ─────────────────────────────────────────────────
CONVERSION_DEDUP_MINUTES = int(os.getenv('CONVERSION_DEDUP_MINUTES', 60))
ATTRIBUTION_MIN_TALK_SECONDS = 30
ATTRIBUTION_LOOKBACK_DAYS = 30
ATTRIBUTION_BACKFILL_HOURS = 6
ATTRIBUTION_BATCH_SIZE = 50
ATTRIBUTION_TIME_BUDGET_SECONDS = 28

# ── Leak monitor ──────────────────────────────────────────────────────────────
LEAK_SCAN_MINUTES = int(os.getenv('LEAK_SCAN_MINUTES', 5))
LEAK_MONITOR_INTERVAL_SECONDS = int(os.getenv('LEAK_MONITOR_INTERVAL', 60))
LEAK_ALERT_THRESHOLD = int(os.getenv('LEAK_ALERT_THRESHOLD', 1))
LEAK_MONITOR_AUTOSTART = os.getenv('LEAK_MONITOR_AUTOSTART', 'false').lower() == 'true'

# ── Queue health ──────────────────────────────────────────────────────────────
QUEUE_LOW_WATERMARK = int(os.getenv('QUEUE_LOW_WATERMARK', 5))

# ── Job run status values ─────────────────────────────────────────────────────
JOB_STATUSES = [
    'queued',
    'running',
    'completed',
    'partial',
    'failed',
]
