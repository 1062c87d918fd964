"""
Gatehouse — Governance Engines
================================

Service Inventory:
    - OriginPolicy:       origin allow-list and CORS header decisions
    - AdmissionLimiter:   fixed-window per-client admission
    - CounterStore:       rate window storage (InMemoryCounterStore by default)
    - FailureNormalizer:  handler failure → Canonical Error Record

All engines are built once per application and hold no per-request state,
except the counter store, which is synchronized per key stripe.
"""
