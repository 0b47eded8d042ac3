"""Client Portal Package — KV-backed access control and Linear issue proxy.

Invariants:
    - Package root contains no executable code (import side-effects prohibited)
"""
