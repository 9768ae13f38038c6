"""Application lifecycle management."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from marketplace_service.config import get_settings
from marketplace_service.core.state import init_app_state
from marketplace_service.logging import get_logger, setup_logging
from marketplace_service.services.account_manager import AccountManager
from marketplace_service.services.admin_reports import AdminReports
from marketplace_service.services.cancellation_manager import CancellationManager
from marketplace_service.services.commission_policy import CommissionPolicy
from marketplace_service.services.escrow_coordinator import EscrowCoordinator
from marketplace_service.services.ledger import Ledger
from marketplace_service.services.marketplace_store import MarketplaceStore
from marketplace_service.services.notifier import (
    LoggingEventSink,
    NotificationEmitter,
    NotificationInbox,
    StoreEventSink,
)
from marketplace_service.services.task_manager import TaskManager

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from fastapi import FastAPI


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    """Manage application lifecycle."""
    # === STARTUP ===
    settings = get_settings()

    setup_logging(settings.logging.level, settings.service.name, settings.logging.directory)
    logger = get_logger(__name__)

    state = init_app_state()

    store = MarketplaceStore(db_path=settings.database.path)
    state.store = store

    ledger = Ledger(store, max_amount=settings.limits.max_amount)
    emitter = NotificationEmitter([StoreEventSink(store), LoggingEventSink()])
    escrow_coordinator = EscrowCoordinator(
        store=store,
        ledger=ledger,
        platform_account_id=settings.platform.account_id,
    )
    limits = settings.limits

    account_manager = AccountManager(
        store,
        ledger,
        emitter,
        pro_price=settings.pro.price,
        max_name_length=limits.max_title_length,
        max_reason_length=limits.max_reason_length,
        max_bio_length=limits.max_description_length,
    )
    account_manager.ensure_platform_account(
        settings.platform.account_id, settings.platform.account_name
    )
    state.account_manager = account_manager

    state.task_manager = TaskManager(
        store,
        escrow_coordinator,
        CommissionPolicy(settings.commission.rate_percent),
        emitter,
        xp_per_task=settings.progression.xp_per_task,
        xp_per_level=settings.progression.xp_per_level,
        max_title_length=limits.max_title_length,
        max_description_length=limits.max_description_length,
        max_amount=limits.max_amount,
    )
    state.cancellation_manager = CancellationManager(
        store,
        escrow_coordinator,
        emitter,
        max_reason_length=limits.max_reason_length,
        max_description_length=limits.max_description_length,
        max_attachments=limits.max_attachments,
    )
    state.admin_reports = AdminReports(store, ledger, settings.platform.account_id)
    state.notification_inbox = NotificationInbox(store)

    logger.info(
        "Service starting",
        extra={
            "service": settings.service.name,
            "version": settings.service.version,
            "port": settings.server.port,
            "db_path": settings.database.path,
            "platform_account_id": settings.platform.account_id,
            "commission_rate_percent": settings.commission.rate_percent,
        },
    )

    yield  # Application runs here

    # === SHUTDOWN ===
    logger.info("Service shutting down", extra={"uptime_seconds": state.uptime_seconds})
    store.close()
