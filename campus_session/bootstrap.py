"""
Service wiring.

The embedding application builds one ``Services`` bundle at startup and
passes it (or its members) to whatever needs them. Nothing here is a module
level singleton, so tests can build as many independent bundles as they like.
"""

import logging
from typing import Optional

from campus_session.admin.log_viewer import LogViewer
from campus_session.audit.logger import AuditLogger
from campus_session.core.activity import ActivitySource
from campus_session.core.config import Settings, get_settings
from campus_session.core.encryption import SessionEncryption
from campus_session.core.logging_config import setup_logging
from campus_session.core.timers import AsyncioScheduler, Scheduler
from campus_session.core.utils.kv_store import KeyValueStore, SqlKeyValueStore
from campus_session.session.auth_context import AuthContext
from campus_session.session.manager import SessionManager
from campus_session.session.providers import IdentityProvider, ProfileStore

logger = logging.getLogger(__name__)


class Services:
    """Everything the application layer talks to."""

    def __init__(
        self,
        settings: Settings,
        store: KeyValueStore,
        scheduler: Scheduler,
        audit_logger: AuditLogger,
        session_manager: SessionManager,
        auth_context: AuthContext,
        log_viewer: LogViewer,
    ):
        self.settings = settings
        self.store = store
        self.scheduler = scheduler
        self.audit_logger = audit_logger
        self.session_manager = session_manager
        self.auth_context = auth_context
        self.log_viewer = log_viewer

    async def close(self) -> None:
        """Tear down in dependency order; the audit logger flushes last."""
        self.auth_context.close()
        self.session_manager.close()
        await self.audit_logger.destroy()
        logger.info("Session services shut down")


def build_services(
    identity_provider: IdentityProvider,
    profile_store: ProfileStore,
    settings: Optional[Settings] = None,
    *,
    store: Optional[KeyValueStore] = None,
    scheduler: Optional[Scheduler] = None,
    activity_source: Optional[ActivitySource] = None,
    encryption: Optional[SessionEncryption] = None,
    register_atexit: bool = True,
    configure_logging: bool = False,
) -> Services:
    """
    Construct the session and audit services.

    With the default ``AsyncioScheduler`` this must be called from inside a
    running event loop, since the audit logger arms its flush timer at once.

    Args:
        identity_provider: Credential check and token issuance
        profile_store: Role and display-name lookup
        settings: Configuration (``get_settings()`` when omitted)
        store: Key-value store (a ``SqlKeyValueStore`` on ``database_url`` when omitted)
        scheduler: Clock and timers (an ``AsyncioScheduler`` when omitted)
        activity_source: Optional source of user-interaction events
        encryption: Snapshot cipher (derived from ``secret_key`` when omitted)
        register_atexit: Flush the audit buffer at interpreter exit
        configure_logging: Also set up process logging from ``settings``
    """
    settings = settings or get_settings()

    if configure_logging:
        setup_logging(log_level="DEBUG" if settings.debug else "INFO")

    store = store if store is not None else SqlKeyValueStore(settings.database_url)
    scheduler = scheduler or AsyncioScheduler()

    config = settings.session_config()
    if encryption is None and config.persist_session:
        encryption = SessionEncryption.from_settings(settings)

    audit_logger = AuditLogger.from_settings(
        settings, store, scheduler, register_atexit=register_atexit
    )
    session_manager = SessionManager(
        identity_provider,
        profile_store,
        store,
        audit_logger,
        scheduler,
        activity_source=activity_source,
        config=config,
        encryption=encryption,
        storage_key=settings.session_storage_key,
        fallback_role=settings.fallback_role,
    )
    auth_context = AuthContext(session_manager, audit_logger)
    log_viewer = LogViewer(session_manager, audit_logger, app_name=settings.app_name)

    logger.info(f"Session services ready for {settings.app_name}")
    return Services(
        settings=settings,
        store=store,
        scheduler=scheduler,
        audit_logger=audit_logger,
        session_manager=session_manager,
        auth_context=auth_context,
        log_viewer=log_viewer,
    )
