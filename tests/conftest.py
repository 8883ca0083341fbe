"""
Global test configuration and fixtures for campus-session

This module provides shared fixtures: a virtual clock, in-memory storage,
an audit logger wired to both, fake identity collaborators and a factory
for session managers built from them.
"""

import logging
from typing import Callable, List, Optional

import pytest
from cryptography.fernet import Fernet

from campus_session.audit.logger import AuditLogger
from campus_session.core.activity import ManualActivitySource
from campus_session.core.config import SessionConfig
from campus_session.core.encryption import SessionEncryption
from campus_session.core.timers import ManualClock
from campus_session.core.utils.kv_store import MemoryKeyValueStore
from campus_session.session.manager import SessionManager
from tests.utils.fakes import FakeIdentityProvider, FakeProfileStore


# ============================================================================
# Infrastructure Fixtures
# ============================================================================

@pytest.fixture(scope="function")
def clock():
    """Virtual clock; time moves only on ``await clock.advance(...)``"""
    return ManualClock(start=1_700_000_000.0)


@pytest.fixture(scope="function")
def store():
    """Process-local key-value store"""
    return MemoryKeyValueStore()


@pytest.fixture(scope="function")
def cipher():
    """Snapshot cipher with a random key (skips the PBKDF2 derivation)"""
    return SessionEncryption(Fernet.generate_key())


@pytest.fixture(scope="function")
def audit_logger(store, clock):
    """Audit logger on the memory store, mirrored to stdlib logging"""
    return AuditLogger(store, clock, buffer_size=100, flush_interval=5.0)


@pytest.fixture(scope="function")
def audit_records(caplog) -> Callable[..., List[logging.LogRecord]]:
    """Audit entries as seen through the stdlib mirror, filterable by category and level"""
    caplog.set_level(logging.DEBUG, logger="campus_session.audit")

    def _records(category: Optional[str] = None, level: Optional[int] = None):
        return [
            record
            for record in caplog.records
            if getattr(record, "category", None) is not None
            and (category is None or record.category == category)
            and (level is None or record.levelno == level)
        ]

    return _records


# ============================================================================
# Session Fixtures
# ============================================================================

@pytest.fixture(scope="function")
def session_config():
    """Default lifecycle knobs (24h fallback lifetime, 5 min refresh lead, 2h idle cutoff)"""
    return SessionConfig(
        session_timeout=24 * 60 * 60,
        refresh_threshold=5 * 60,
        max_inactivity=2 * 60 * 60,
        persist_session=True,
    )


@pytest.fixture(scope="function")
def identity_provider(clock):
    """Identity provider issuing one-hour tokens"""
    return FakeIdentityProvider(clock, lifetime=3600.0)


@pytest.fixture(scope="function")
def profile_store():
    return FakeProfileStore()


@pytest.fixture(scope="function")
def activity_source():
    return ManualActivitySource()


@pytest.fixture(scope="function")
def make_manager(identity_provider, profile_store, store, audit_logger, clock, cipher, session_config,
                 activity_source):
    """Factory building session managers over the shared fixtures"""
    managers = []

    def _make(**overrides) -> SessionManager:
        options = {
            "identity_provider": identity_provider,
            "profile_store": profile_store,
            "store": store,
            "audit_logger": audit_logger,
            "scheduler": clock,
            "activity_source": activity_source,
            "config": session_config,
            "encryption": cipher,
        }
        options.update(overrides)
        manager = SessionManager(**options)
        managers.append(manager)
        return manager

    yield _make

    for manager in managers:
        manager.close()


@pytest.fixture(scope="function")
def manager(make_manager):
    return make_manager()


# ============================================================================
# Test Markers and Configuration
# ============================================================================

def pytest_configure(config):
    """Configure pytest with custom markers"""
    config.addinivalue_line("markers", "unit: fast isolated tests")
    config.addinivalue_line("markers", "integration: tests spanning several services")
    config.addinivalue_line("markers", "security: mark test as security-related")


def pytest_collection_modifyitems(config, items):
    """Add markers based on file location"""
    for item in items:
        path = str(item.fspath)
        if "security" in path:
            item.add_marker(pytest.mark.security)
        if "integration" in path:
            item.add_marker(pytest.mark.integration)
