"""API Layer — FastAPI routes, identity dependencies and error handlers.

Invariants:
    - Routes registered explicitly in main.py (no auto-discovery)
    - Success responses use the {"success": true, "data": ...} envelope

Design Decisions:
    - Thin routes delegate to services
"""
