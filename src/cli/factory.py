"""Composition root: build the runtime objects a CLI command needs.

Everything long-lived (engine, session factory, vault, adapters,
orchestrator) is created here and passed down explicitly.
"""

import logging
from dataclasses import dataclass
from datetime import timedelta

from sqlalchemy import Engine

from src.cli.config import MediaSyncConfig
from src.db.connection import (
    SessionFactory,
    create_db_engine,
    create_session_factory,
    get_database_url,
    init_db,
)
from src.orchestrator.sync.executor import SyncOrchestrator
from src.orchestrator.sync.modes import check_policy_fits
from src.platforms import build_default_adapters
from src.services.credential_vault import CredentialVault

logger = logging.getLogger(__name__)


@dataclass
class Runtime:
    """Wired-up dependencies for one CLI invocation."""

    engine: Engine
    session_factory: SessionFactory
    vault: CredentialVault
    orchestrator: SyncOrchestrator

    def close(self) -> None:
        self.engine.dispose()


def build_runtime(config: MediaSyncConfig) -> Runtime:
    """Create the database, vault, adapters and orchestrator from config.

    Raises:
        ValidationError: If the sync page caps cannot finish inside the
            run timeout for some platform.
    """
    policy = config.sync.to_policy()
    adapters = build_default_adapters(timeout=config.sync.request_timeout_seconds)
    check_policy_fits(
        policy, {name: adapter.rate_limit_seconds for name, adapter in adapters.items()}
    )

    url = get_database_url(config.database.url)
    engine = create_db_engine(url)
    init_db(engine)
    session_factory = create_session_factory(engine)

    orchestrator = SyncOrchestrator(
        session_factory=session_factory,
        adapters=adapters,
        policy=policy,
        stale_after=timedelta(minutes=config.sync.stale_job_minutes),
    )
    logger.debug("Runtime ready (database: %s)", engine.url.render_as_string(hide_password=True))
    return Runtime(
        engine=engine,
        session_factory=session_factory,
        vault=CredentialVault(),
        orchestrator=orchestrator,
    )
