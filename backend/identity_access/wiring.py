"""
Assemble the identity core from configuration.

Handlers receive one `IdentityCore` and never construct stores themselves, so
switching between the in-memory and Postgres backends is a config change.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Optional, Union
import logging

from .accounts import AccountService
from .config import IdentityConfig
from .identifiers import IdentifierAllocator
from .permissions import PermissionRegistry
from .stores import InMemoryIdentityStore, UniqueIndex
from .stores_db import DBIdentityStore
from .tokens import TokenStore, TokenVerifier

_log = logging.getLogger("gradebook.identity_access")


@dataclass
class IdentityCore:
    store: Union[InMemoryIdentityStore, DBIdentityStore]
    allocator: IdentifierAllocator
    tokens: TokenStore
    verifier: TokenVerifier
    permissions: PermissionRegistry
    accounts: AccountService
    identifier_length: int
    index: Optional[UniqueIndex] = None


def build_identity_core(config: IdentityConfig, *, clock: Optional[Callable[[], int]] = None) -> IdentityCore:
    timing = {"clock": clock} if clock is not None else {}
    index: Optional[UniqueIndex] = None
    if config.backend == "db":
        store: Union[InMemoryIdentityStore, DBIdentityStore] = DBIdentityStore(dsn=config.dsn)
        _log.info("Identity store wired: Postgres")
    else:
        index = UniqueIndex()
        store = InMemoryIdentityStore(index)
        _log.info("Identity store wired: in-memory")

    allocator = IdentifierAllocator(store, max_attempts=config.allocation_max_attempts)
    return IdentityCore(
        store=store,
        allocator=allocator,
        tokens=TokenStore(
            store,
            allocator,
            ttl_seconds=config.session_ttl_seconds,
            token_length=config.session_token_length,
            **timing,
        ),
        verifier=TokenVerifier(store, **timing),
        permissions=PermissionRegistry(store),
        accounts=AccountService(store, allocator, id_length=config.identifier_length),
        identifier_length=config.identifier_length,
        index=index,
    )


__all__ = ["IdentityCore", "build_identity_core"]
