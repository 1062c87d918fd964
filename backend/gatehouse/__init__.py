"""
Gatehouse — Request Governance for the Pulsefy/Soter API
==========================================================

What: The layer every inbound HTTP call passes through before and after the
      business handlers: origin policy, rate limiting, request correlation
      and failure normalization.

Layout:

    ┌──────────────────────────────────────┐
    │  routes/       HTTP endpoints        │
    ├──────────────────────────────────────┤
    │  middleware/   Starlette adapters    │  ← bind engines to the pipeline
    ├──────────────────────────────────────┤
    │  services/     decision engines      │  ← framework-free policy logic
    ├──────────────────────────────────────┤
    │  config / exceptions / schemas       │
    └──────────────────────────────────────┘

The engines in services/ know nothing about Starlette beyond the error types
they classify, so they are unit-tested directly and reused by the adapters.
"""

__version__ = "1.0.0"
