"""Process wiring for the charging station core.

Usage from the hosting layer:

    async with lifespan() as manager:
        result = await manager.start_lease("RFID-0042", 10, "Universal Charger", 1)

Leaving the block (normally, on error, or on cancellation) always drives
every relay off before the database engine is disposed.
"""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import AsyncEngine

from config.settings import Settings, settings as default_settings
from src.cs_account.domain.repository import AccountLedgerProtocol
from src.cs_account.infrastructure.memory import InMemoryAccountLedger
from src.cs_account.infrastructure.persistence import SqlAccountLedger
from src.cs_common.database import build_engine, build_session_factory
from src.cs_relay.application.controller import build_relay_controller
from src.cs_session.application.service import ChargingSessionManager
from src.cs_session.domain.repository import SessionStoreProtocol
from src.cs_session.infrastructure.memory import InMemorySessionStore
from src.cs_session.infrastructure.persistence import SqlSessionStore

logger = logging.getLogger(__name__)


def configure_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=logging.DEBUG if settings.DEBUG else settings.LOG_LEVEL.upper(),
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )


def build_backends(
    settings: Settings,
) -> tuple[AccountLedgerProtocol, SessionStoreProtocol, AsyncEngine | None]:
    if settings.STORE_BACKEND == "memory":
        return InMemoryAccountLedger(), InMemorySessionStore(), None
    engine = build_engine(settings)
    session_factory = build_session_factory(engine)
    return SqlAccountLedger(session_factory), SqlSessionStore(session_factory), engine


@asynccontextmanager
async def lifespan(
    settings: Settings = default_settings,
) -> AsyncGenerator[ChargingSessionManager, None]:
    """Startup: build stores and relays. Shutdown: release relays, dispose engine."""
    ledger, store, engine = build_backends(settings)
    relay = build_relay_controller(settings)
    logger.info("%s starting (store=%s)", settings.APP_NAME, settings.STORE_BACKEND)
    try:
        yield ChargingSessionManager(ledger, store, relay, settings)
    finally:
        try:
            relay.shutdown()
        finally:
            if engine is not None:
                await engine.dispose()
            logger.info("%s stopped", settings.APP_NAME)
