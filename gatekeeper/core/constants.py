"""Core constants: collection names and shared literal values.

Single source of truth for the document-store "schema". Firestore has no
DDL or migrations; collections are created on first write. The owning
component is the only writer of each collection.

Every TTL collection carries an `expiresAt` timestamp; the TTL sweep
(scripts/run_ttl_sweep.py or POST /api/v1/maintenance/ttl-sweep) deletes
documents once it is in the past.
"""

# Token validator
COLLECTION_CONSUMED_TOKENS = "consumed_tokens"
COLLECTION_LOCKS = "locks"

# Session manager
COLLECTION_SESSIONS = "sessions"
COLLECTION_SESSION_INDEXES = "session_indexes"

# Rate limiter
COLLECTION_RATE_LIMITS = "rate_limits"

# Audit log
COLLECTION_AUDIT_LOG = "audit_log"
COLLECTION_SECURITY_INCIDENTS = "security_incidents"

# Webhook idempotency
COLLECTION_WEBHOOK_EVENTS = "webhook_events"

# User profiles (written by profile CRUD; the core reads roles and bumps usage counters)
COLLECTION_USERS = "users"

TTL_FIELD = "expiresAt"

TTL_COLLECTIONS: tuple[str, ...] = (
    COLLECTION_LOCKS,
    COLLECTION_CONSUMED_TOKENS,
    COLLECTION_SESSIONS,
    COLLECTION_SESSION_INDEXES,
    COLLECTION_RATE_LIMITS,
    COLLECTION_AUDIT_LOG,
    COLLECTION_SECURITY_INCIDENTS,
    COLLECTION_WEBHOOK_EVENTS,
)
