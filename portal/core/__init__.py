"""Core Layer — pure domain logic, no IO, no async, no DB.

Invariants:
    - No module in core/ imports from services/, api/, infrastructure/, or db/
    - Functions are pure apart from reading the clock (cache_entries.now_ms)

Design Decisions:
    - Functional core separated from imperative shell: services load KV documents,
      core functions reshape them, services write the result back
"""
