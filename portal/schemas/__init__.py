"""Pydantic Schemas — request validation for API endpoints.

Invariants:
    - Schemas validate at system boundary (request bodies)
    - Domain enums from core/ used for role and status fields
"""
