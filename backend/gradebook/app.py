"""
Composition root: configuration → identity core → repository → handlers.
"""
from __future__ import annotations

from typing import Callable, Optional
import logging

from identity_access.config import IdentityConfig, ensure_secure_config_on_startup, load_identity_config
from identity_access.wiring import build_identity_core

from .handlers import GradebookHandlers
from .repo import InMemoryGradebookRepo

_log = logging.getLogger("gradebook.web")


def create_handlers(config: Optional[IdentityConfig] = None, *, clock: Optional[Callable[[], int]] = None) -> GradebookHandlers:
    config = config or load_identity_config()
    ensure_secure_config_on_startup(config)
    core = build_identity_core(config, clock=clock)
    if config.backend == "db":
        from .repo_db import DBGradebookRepo

        repo = DBGradebookRepo(dsn=config.dsn)
        _log.info("Gradebook repo wired: Postgres")
    else:
        if core.index is None:
            raise RuntimeError("in-memory gradebook repo needs the identity core's UniqueIndex")
        repo = InMemoryGradebookRepo(core.index)
        _log.info("Gradebook repo wired: in-memory")
    return GradebookHandlers(core, repo)


__all__ = ["create_handlers"]
