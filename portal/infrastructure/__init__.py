"""Infrastructure Layer — KV store, Linear client and cross-cutting concerns.

Invariants:
    - Infrastructure never imports from services/ or api/
    - All external calls wrapped with retry/timeout/error mapping
"""
