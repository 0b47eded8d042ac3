"""Boundary Protocols — contracts between services and the shell implementations.

Invariants:
    - Services depend on these Protocols, never on SQLAlchemy or httpx directly
    - Implementations provided by infrastructure via dependency injection

Design Decisions:
    - Protocol over ABC: structural subtyping, so test fakes need no inheritance
"""

from typing import Any, Protocol


class KeyValueStore(Protocol):
    """Contract for the JSON document store — implemented by infrastructure/kv_store.py."""
    async def get(self, key: str) -> Any: ...
    async def set(self, key: str, value: Any) -> None: ...
    async def delete(self, key: str) -> None: ...
    async def mget(self, keys: list[str]) -> list[Any]: ...
    async def mset(self, items: dict[str, Any]) -> None: ...
    async def mdel(self, keys: list[str]) -> None: ...
    async def get_by_prefix(self, prefix: str) -> list[tuple[str, Any]]: ...
    async def keys_with_prefix(self, prefix: str) -> list[str]: ...


class LinearGateway(Protocol):
    """Contract for Linear GraphQL access — implemented by infrastructure/linear_client.py."""
    async def execute(
        self,
        query: str,
        variables: dict | None = None,
        *,
        allow_team_not_found: bool = False,
    ) -> dict | None: ...
