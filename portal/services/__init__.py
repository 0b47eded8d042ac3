"""Services Layer — KV orchestration for users, customers, teams and Linear data.

Invariants:
    - One service class per concern, constructed per request with a KVStore
    - Services raise PortalError subclasses; routes never build error payloads

Design Decisions:
    - Denormalized id lists are updated inside the same service call that
      changes the primary record, so both sides of each index stay in step
"""
