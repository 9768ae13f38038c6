"""Shared test helpers: an in-process marketplace wired on a temp database."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from marketplace_service.services.account_manager import AccountManager
from marketplace_service.services.admin_reports import AdminReports
from marketplace_service.services.cancellation_manager import CancellationManager
from marketplace_service.services.commission_policy import CommissionPolicy
from marketplace_service.services.escrow_coordinator import EscrowCoordinator
from marketplace_service.services.ledger import Ledger
from marketplace_service.services.marketplace_store import MarketplaceStore
from marketplace_service.services.notifier import (
    NotificationEmitter,
    NotificationInbox,
    StoreEventSink,
)
from marketplace_service.services.task_manager import TaskManager

if TYPE_CHECKING:
    from pathlib import Path

    from httpx import AsyncClient

    from marketplace_service.domain import Notification

PLATFORM_ID = "u-platform"
MAX_AMOUNT = 1_000_000_000


def config_yaml(
    db_path: str,
    log_directory: str,
    *,
    max_body_size: int = 1048576,
    max_amount: int = MAX_AMOUNT,
) -> str:
    """A complete service configuration for tests."""
    return f"""
service:
  name: "marketplace"
  version: "0.1.0"
server:
  host: "0.0.0.0"
  port: 8010
  log_level: "info"
logging:
  level: "WARNING"
  directory: "{log_directory}"
database:
  path: "{db_path}"
platform:
  account_id: "{PLATFORM_ID}"
  account_name: "Platform"
commission:
  rate_percent: 5
progression:
  xp_per_task: 100
  xp_per_level: 1000
pro:
  price: 990
request:
  max_body_size: {max_body_size}
limits:
  max_title_length: 200
  max_description_length: 10000
  max_reason_length: 2000
  max_attachments: 3
  max_amount: {max_amount}
"""


class RecordingSink:
    """Event sink that keeps every published notification."""

    def __init__(self) -> None:
        self.published: list[Notification] = []

    def publish(self, user_id: str, notification: Notification) -> None:
        assert user_id == notification.user_id
        self.published.append(notification)

    def types_for(self, user_id: str) -> list[str]:
        return [n.type for n in self.published if n.user_id == user_id]


@dataclass
class Marketplace:
    store: MarketplaceStore
    ledger: Ledger
    escrow: EscrowCoordinator
    tasks: TaskManager
    cancellations: CancellationManager
    accounts: AccountManager
    reports: AdminReports
    inbox: NotificationInbox
    sink: RecordingSink
    platform_id: str = PLATFORM_ID
    _counter: list[int] = field(default_factory=lambda: [0])

    def user(self, role: str, balance: int = 0, *, pro: bool = False) -> str:
        """Register a user, fund it and optionally make it PRO without a pay_pro entry."""
        self._counter[0] += 1
        user_id = f"u-{role.lower()}-{self._counter[0]}"
        if role == "Admin":
            self.accounts.create_admin(f"{role} {self._counter[0]}", user_id)
        else:
            self.accounts.register_user(f"{role} {self._counter[0]}", role, user_id)
        if balance:
            self.accounts.topup(user_id, balance)
        if pro:
            self.store.update_user(user_id, {"is_pro": True})
        return user_id

    def balance(self, user_id: str) -> int:
        return self.ledger.get_balance(user_id)

    def job_in_progress(self, price: int, *, worker_pro: bool = False) -> tuple[str, str, str]:
        """Funded client posts a job, a freelancer claims it. Returns (task_id, client, worker)."""
        client = self.user("Client", price)
        worker = self.user("Freelancer", pro=worker_pro)
        task = self.tasks.create_task(client, "job", "Logo design", "A new logo", "design", price)
        self.tasks.claim_task(worker, task["task_id"])
        return task["task_id"], client, worker

    def job_in_review(self, price: int, *, worker_pro: bool = False) -> tuple[str, str, str]:
        task_id, client, worker = self.job_in_progress(price, worker_pro=worker_pro)
        self.tasks.submit_task(worker, task_id, "files/logo.zip", "logo.zip")
        return task_id, client, worker

    def close(self) -> None:
        self.store.close()


def as_user(user_id: str) -> dict[str, str]:
    """Request headers identifying the caller."""
    return {"X-User-Id": user_id}


async def register(client: AsyncClient, user_id: str, role: str, balance: int = 0) -> str:
    """Register a user over HTTP and optionally top up its wallet."""
    response = await client.post(
        "/users", json={"name": user_id.title(), "role": role, "user_id": user_id}
    )
    assert response.status_code == 201, response.text
    if balance:
        response = await client.post(
            "/wallet/topup", json={"amount": balance}, headers=as_user(user_id)
        )
        assert response.status_code == 200, response.text
    return user_id


def build_marketplace(
    tmp_path: Path,
    *,
    extra_sinks: list[Any] | None = None,
    commission_rate: int = 5,
    max_amount: int = MAX_AMOUNT,
) -> Marketplace:
    """Wire every component the way the app lifespan does."""
    store = MarketplaceStore(db_path=str(tmp_path / "marketplace.db"))
    ledger = Ledger(store, max_amount=max_amount)
    sink = RecordingSink()
    emitter = NotificationEmitter([StoreEventSink(store), sink, *(extra_sinks or [])])
    escrow = EscrowCoordinator(store=store, ledger=ledger, platform_account_id=PLATFORM_ID)
    accounts = AccountManager(
        store,
        ledger,
        emitter,
        pro_price=990,
        max_name_length=200,
        max_reason_length=2000,
        max_bio_length=10000,
    )
    accounts.ensure_platform_account(PLATFORM_ID, "Platform")
    tasks = TaskManager(
        store,
        escrow,
        CommissionPolicy(commission_rate),
        emitter,
        xp_per_task=100,
        xp_per_level=1000,
        max_title_length=200,
        max_description_length=10000,
        max_amount=max_amount,
    )
    cancellations = CancellationManager(
        store,
        escrow,
        emitter,
        max_reason_length=2000,
        max_description_length=10000,
        max_attachments=3,
    )
    return Marketplace(
        store=store,
        ledger=ledger,
        escrow=escrow,
        tasks=tasks,
        cancellations=cancellations,
        accounts=accounts,
        reports=AdminReports(store, ledger, PLATFORM_ID),
        inbox=NotificationInbox(store),
        sink=sink,
    )
