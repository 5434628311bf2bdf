"""
Prometheus metrics for the authorization and audit core.

Request-level HTTP metrics come from prometheus_fastapi_instrumentator in
``app.main``; these cover what the instrumentator cannot see:
- Permission decisions by outcome
- Cache degraded-mode fallbacks
- Quota-gated requests refused during a store outage
- Audit entries written and dropped
"""

from prometheus_client import Counter, Gauge


# ============================================================================
# Permission evaluation
# ============================================================================

authz_decisions_total = Counter(
    'wfm_authz_decisions_total',
    'Permission decisions by outcome and deny reason',
    ['outcome', 'reason']
)

# ============================================================================
# Permission cache
# ============================================================================

permission_cache_degraded_total = Counter(
    'wfm_permission_cache_degraded_total',
    'Permission resolutions served from the role registry because the cache store was unavailable'
)

permission_cache_degraded = Gauge(
    'wfm_permission_cache_degraded_mode',
    '1 while the permission cache is bypassing an unavailable cache store'
)

quota_store_unavailable_total = Counter(
    'wfm_quota_store_unavailable_total',
    'Quota-gated requests refused because the cache store was unavailable'
)

# ============================================================================
# Audit recorder
# ============================================================================

audit_entries_written_total = Counter(
    'wfm_audit_entries_written_total',
    'Audit entries persisted'
)

audit_entries_dropped_total = Counter(
    'wfm_audit_entries_dropped_total',
    'Audit entries dropped without being persisted',
    ['reason']
)

audit_write_retries_total = Counter(
    'wfm_audit_write_retries_total',
    'Audit persistence attempts that failed and were retried'
)
