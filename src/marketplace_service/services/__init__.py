"""Service layer components."""

from marketplace_service.services.account_manager import AccountManager
from marketplace_service.services.admin_reports import AdminReports
from marketplace_service.services.cancellation_manager import CancellationManager
from marketplace_service.services.commission_policy import CommissionPolicy, CommissionSplit
from marketplace_service.services.escrow_coordinator import EscrowCoordinator
from marketplace_service.services.ledger import Ledger
from marketplace_service.services.marketplace_store import MarketplaceStore
from marketplace_service.services.notifier import (
    EventSink,
    LoggingEventSink,
    NotificationEmitter,
    NotificationInbox,
    StoreEventSink,
)
from marketplace_service.services.task_manager import TaskManager

__all__ = [
    "AccountManager",
    "AdminReports",
    "CancellationManager",
    "CommissionPolicy",
    "CommissionSplit",
    "EscrowCoordinator",
    "EventSink",
    "Ledger",
    "LoggingEventSink",
    "MarketplaceStore",
    "NotificationEmitter",
    "NotificationInbox",
    "StoreEventSink",
    "TaskManager",
]
