"""MindMate wellbeing MCP server: application factory.

This module provides:
- create_app() for testability (integration tests create fresh server instances)
- Module-level `mcp` variable for FastMCP discovery
"""

from __future__ import annotations

import logging

from fastmcp import FastMCP

from mindmate.core.audit.logger import AuditLogger
from mindmate.core.config.settings import Settings, get_settings
from mindmate.core.storage.database import MindMateDatabase
from mindmate.core.storage.decision_repository import DecisionRepository
from mindmate.core.storage.encryption import FieldEncryptor
from mindmate.core.storage.repository import WellbeingRepository
from mindmate.domains.wellbeing.connectors import (
    BuddyDirectory,
    HealthDataSource,
    Messenger,
    no_buddies,
)
from mindmate.domains.wellbeing.connectors.messaging import OutboxMessenger
from mindmate.domains.wellbeing.connectors.providers import (
    MockHealthDataSource,
    StoredHealthDataSource,
)
from mindmate.domains.wellbeing.domain_logic.policy import AnalysisPolicy
from mindmate.domains.wellbeing.domain_logic.scheduler import AnalysisScheduler
from mindmate.domains.wellbeing.domain_logic.service import Clock, WellbeingService, utc_now
from mindmate.domains.wellbeing.tools.analysis_tools import register_analysis_tools
from mindmate.domains.wellbeing.tools.audit_tools import register_audit_tools
from mindmate.domains.wellbeing.tools.check_in_tools import register_check_in_tools
from mindmate.domains.wellbeing.tools.health_data_tools import register_health_data_tools
from mindmate.domains.wellbeing.tools.support_tools import register_support_tools

logger = logging.getLogger(__name__)

SERVER_NAME = "MindMate Wellbeing"
SERVER_VERSION = "0.1.0"


def create_app(
    *,
    settings_override: Settings | None = None,
    database_override: MindMateDatabase | None = None,
    encryptor_override: FieldEncryptor | None = None,
    health_source_override: HealthDataSource | None = None,
    messenger_override: Messenger | None = None,
    buddy_directory: BuddyDirectory = no_buddies,
    clock: Clock = utc_now,
) -> FastMCP:
    """Create and configure the MindMate wellbeing MCP server.

    This is the main application factory. It:
    1. Loads settings and the analysis policy
    2. Initializes the encrypted wellbeing store
    3. Picks the health data source and messenger
    4. Builds the wellbeing service and periodic scheduler
    5. Registers all tools
    """
    settings = settings_override or get_settings()
    policy = AnalysisPolicy.from_settings(settings)

    server = FastMCP(
        SERVER_NAME,
        instructions=(
            "MindMate wellbeing server. Fuses passive health signals and mood "
            "check-ins into a per-user trend status compared with the user's own "
            "baseline, and coordinates peer-support requests between buddies. "
            "Outputs are behavioral-trend signals, not clinical diagnoses."
        ),
    )

    # --- Encrypted storage ---
    if encryptor_override is not None:
        encryptor = encryptor_override
    elif settings.encryption_key:
        encryptor = FieldEncryptor(settings.encryption_key)
    else:
        encryptor = None

    if database_override is not None:
        database = database_override
        database.initialize()
    elif encryptor is not None:
        database = MindMateDatabase(settings.db_path)
        database.initialize()
    else:
        database = MindMateDatabase(":memory:")
        database.initialize()

    if encryptor is None:
        encryptor = FieldEncryptor(FieldEncryptor.generate_key())
        logger.warning(
            "No ENCRYPTION_KEY configured; using an in-memory store with an "
            "ephemeral key. Set ENCRYPTION_KEY to persist wellbeing data."
        )
    logger.info("Wellbeing store ready (schema v%d)", database.get_schema_version())

    repository = WellbeingRepository(database, encryptor)
    decisions = DecisionRepository(database)
    audit_logger = AuditLogger(database)

    # --- Collaborators ---
    if health_source_override is not None:
        health_source = health_source_override
    elif settings.health_data_source == "mock":
        health_source = MockHealthDataSource()
        logger.info("Using mock health data source")
    else:
        health_source = StoredHealthDataSource(repository)

    messenger = messenger_override or OutboxMessenger(repository)

    # --- Engine ---
    service = WellbeingService(
        database=database,
        repository=repository,
        decisions=decisions,
        health_source=health_source,
        messenger=messenger,
        policy=policy,
        audit=audit_logger,
        clock=clock,
        buddy_directory=buddy_directory,
        privileged_user_ids=set(settings.privileged_user_ids),
        allow_self_timer_reset=settings.allow_self_timer_reset,
    )
    scheduler = AnalysisScheduler(
        service, interval_seconds=settings.analysis_interval_minutes * 60
    )

    # --- Register tools ---
    @server.tool
    def health_check() -> dict:
        """Check server health and return basic status information."""
        return {
            "status": "ok",
            "server": SERVER_NAME,
            "version": SERVER_VERSION,
            "schema_version": database.get_schema_version(),
            "health_data_source": health_source.data_source,
            "persistent_storage": bool(settings.encryption_key) or database_override is not None,
            "scheduled_users": len(scheduler.scheduled_users),
            "health_records_stored": repository.count_health_records(),
        }

    register_health_data_tools(server, service, audit_logger)
    register_analysis_tools(server, service, scheduler, audit_logger)
    register_check_in_tools(server, service, audit_logger)
    register_support_tools(server, service, audit_logger)
    register_audit_tools(server, audit_logger)
    logger.info("Wellbeing tools registered")

    return server


# Module-level instance for FastMCP discovery.
# Lazy: only created when this attribute is accessed (not when tests import create_app).
def __getattr__(name: str):
    if name == "mcp":
        global mcp  # noqa: PLW0603
        mcp = create_app()
        return mcp
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
