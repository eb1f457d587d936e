"""
inventory_services.ledger_service -- InventoryLedgerService facade.

Responsibility:
    The function-call API of the engine.  Creates every kernel service
    exactly once, wires them together, seeds the catalog and thresholds
    from reference data, and exposes the ledger operations.

Architecture position:
    Services -- top of the stack.  The only place where kernel services
    are constructed and composed, and the only layer that reads
    ``inventory_config``.

Invariants enforced:
    - Single-instance lifecycle: one LedgerStore, one AlertDeriver and one
      CatalogService per open ledger.
    - The ledger is usable only between ``open()`` and ``close()``.
    - Opening stock from reference data is booked under fixed idempotency
      keys; each open books only the entries whose key is not yet logged,
      so re-opening never books one twice and a failed open is completed.
    - ``open()`` that raises leaves the service closed.

Failure modes:
    - Every kernel error propagates unchanged (see
      ``inventory_kernel.exceptions``).
    - ``RuntimeError`` if an operation is called on a closed ledger.
    - ``InvariantViolationError`` is logged at ERROR before propagating.

Usage:
    from inventory_services import InventoryLedgerService

    with InventoryLedgerService() as ledger:
        ledger.book_in("ITM-001", "D002", 20, actor_id="U002")
        ledger.list_alerts(department_id="D002")
"""

from __future__ import annotations

import threading
import uuid
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from datetime import datetime

from inventory_config import EngineSettings, ReferenceData
from inventory_kernel.db.repository import (
    InMemoryRepository,
    LedgerRepository,
    SqlLedgerRepository,
)
from inventory_kernel.domain.alerts import StockAlert, StockStatus
from inventory_kernel.domain.authorization import Permission, require_permission
from inventory_kernel.domain.clock import Clock, SystemClock
from inventory_kernel.domain.transactions import LedgerTransaction
from inventory_kernel.domain.transfer import TransferPriority, TransferRequest
from inventory_kernel.domain.values import (
    Department,
    Hospital,
    Item,
    StockKey,
    StockRecord,
    Subdepartment,
    User,
)
from inventory_kernel.exceptions import InvalidInputError, InvariantViolationError
from inventory_kernel.logging_config import LogContext, configure_logging, get_logger
from inventory_kernel.selectors.query_engine import (
    Collection,
    ItemStockRow,
    Page,
    QueryEngine,
    SortDirection,
)
from inventory_kernel.selectors.snapshot_selector import (
    DashboardSummary,
    LedgerSnapshot,
    SnapshotSelector,
)
from inventory_kernel.services.alert_deriver import AlertDeriver
from inventory_kernel.services.catalog_service import CatalogService
from inventory_kernel.services.ledger_store import LedgerStore
from inventory_kernel.services.recovery import RecoveryReport, RecoveryService
from inventory_kernel.services.transaction_engine import TransactionEngine
from inventory_kernel.services.transfer_workflow import TransferWorkflow

logger = get_logger("services.ledger")

OPENING_STOCK_KEY_PREFIX = "opening-stock"


class InventoryLedgerService:
    """
    Inventory ledger facade.

    Contract:
        Receives EngineSettings and ReferenceData (or loads neither and
        runs on defaults with an empty catalog).  ``open()`` loads the
        ledger from the repository; every operation afterwards runs under
        a fresh ``correlation_id`` log context.

    Guarantees:
        - All kernel services share one Clock and one LedgerStore.
        - Reads never block on in-flight writes.

    Non-goals:
        - Does NOT cache query results.
        - Does NOT authenticate callers; ``actor_id`` is trusted.
    """

    def __init__(
        self,
        settings: EngineSettings | None = None,
        reference: ReferenceData | None = None,
        repository: LedgerRepository | None = None,
        clock: Clock | None = None,
        configure_logs: bool = True,
    ) -> None:
        self.settings = settings or EngineSettings()
        self.reference = reference or ReferenceData()
        self._clock = clock or SystemClock()
        self._repository = repository
        self._configure_logs = configure_logs
        self._lifecycle_lock = threading.Lock()
        self._opened = False

        self.catalog: CatalogService | None = None
        self.store: LedgerStore | None = None
        self.alerts: AlertDeriver | None = None
        self.transactions: TransactionEngine | None = None
        self.transfers: TransferWorkflow | None = None
        self.queries: QueryEngine | None = None
        self.snapshots: SnapshotSelector | None = None
        self.recovery: RecoveryService | None = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def open(self) -> InventoryLedgerService:
        """Build the services, replay the ledger and seed opening stock."""
        with self._lifecycle_lock:
            if self._opened:
                return self
            if self._configure_logs:
                configure_logging(level=self.settings.log_level)

            repository = self._repository or self._build_repository()
            self._repository = repository
            settings = self.settings

            # --- Singletons: created once, order matters (dependency graph) ---
            self.catalog = CatalogService(
                hospitals=self.reference.hospitals,
                items=self.reference.items,
                users=self.reference.users,
            )
            self.store = LedgerStore(
                repository=repository,
                clock=self._clock,
                lock_timeout_seconds=settings.lock_timeout_seconds,
                default_threshold=self.catalog.default_threshold,
            )
            self.catalog.add_item_listener(
                lambda item: self.store.refresh_default_threshold(item.item_id)
            )
            self.alerts = AlertDeriver(self.store, self.catalog, settings.critical_fraction)
            self.transactions = TransactionEngine(self.store, self.catalog)
            self.transfers = TransferWorkflow(self.store, self.catalog)
            self.queries = QueryEngine(
                self.store,
                self.catalog,
                critical_fraction=settings.critical_fraction,
                default_page_limit=settings.default_page_limit,
                max_page_limit=settings.max_page_limit,
                search_fields=settings.search_fields_map(),
            )
            self.snapshots = SnapshotSelector(
                self.store,
                self.catalog,
                critical_fraction=settings.critical_fraction,
                recent_window_hours=settings.recent_window_hours,
            )
            self.recovery = RecoveryService(repository, self.store.threshold_for)

            self._seed_thresholds(repository)
            replayed = self.store.load()
            # Entries already in the log are skipped by key, so a partial
            # seed from an earlier failed open is completed here.
            self._book_opening_stock()
            self._opened = True

        logger.info(
            "ledger_opened",
            extra={
                "repository": type(repository).__name__,
                "replayed_entries": replayed,
                "last_seq": self.store.last_seq(),
                "settings_checksum": settings.checksum or None,
                "reference_checksum": self.reference.checksum or None,
            },
        )
        return self

    def close(self) -> None:
        with self._lifecycle_lock:
            if not self._opened:
                return
            self._opened = False
            self.store.close()
        logger.info("ledger_closed")

    def __enter__(self) -> InventoryLedgerService:
        return self.open()

    def __exit__(self, *exc) -> None:
        self.close()

    @property
    def is_open(self) -> bool:
        return self._opened

    def _build_repository(self) -> LedgerRepository:
        if self.settings.database_url:
            return SqlLedgerRepository.from_url(self.settings.database_url)
        return InMemoryRepository()

    def _seed_thresholds(self, repository: LedgerRepository) -> None:
        """Persist reference thresholds for keys that have no override yet."""
        persisted = repository.load_thresholds()
        for definition in self.reference.thresholds:
            key = StockKey(definition.item_id, definition.department_id)
            if key not in persisted:
                repository.save_threshold(key, definition.min_threshold)

    def _book_opening_stock(self) -> None:
        booked = 0
        for entry in self.reference.opening_stock:
            key = f"{OPENING_STOCK_KEY_PREFIX}:{entry.item_id}:{entry.department_id}"
            if self.store.idempotency.is_recorded(key):
                continue
            self.transactions.book_in(
                entry.item_id,
                entry.department_id,
                entry.quantity,
                actor_id=self.reference.opening_actor_id,
                idempotency_key=key,
                notes="opening stock",
            )
            booked += 1
        if booked:
            logger.info(
                "opening_stock_booked",
                extra={
                    "entry_count": booked,
                    "already_booked": len(self.reference.opening_stock) - booked,
                },
            )

    @contextmanager
    def _operation(self, name: str) -> Iterator[None]:
        if not self._opened:
            raise RuntimeError(f"InventoryLedgerService is not open ({name})")
        with LogContext.bind(correlation_id=str(uuid.uuid4())):
            try:
                yield
            except InvariantViolationError as exc:
                logger.error(
                    "invariant_violation",
                    extra={"operation": name, "invariant": exc.invariant, "detail": exc.detail},
                )
                raise

    # ------------------------------------------------------------------
    # Bookings
    # ------------------------------------------------------------------

    def book_in(
        self,
        item_id: str,
        department_id: str,
        quantity: int,
        actor_id: str,
        idempotency_key: str | None = None,
        notes: str | None = None,
        cancel: threading.Event | None = None,
    ) -> LedgerTransaction:
        with self._operation("book_in"):
            return self.transactions.book_in(
                item_id, department_id, quantity, actor_id,
                idempotency_key=idempotency_key, notes=notes, cancel=cancel,
            )

    def book_out(
        self,
        item_id: str,
        department_id: str,
        quantity: int,
        actor_id: str,
        idempotency_key: str | None = None,
        notes: str | None = None,
        cancel: threading.Event | None = None,
    ) -> LedgerTransaction:
        with self._operation("book_out"):
            return self.transactions.book_out(
                item_id, department_id, quantity, actor_id,
                idempotency_key=idempotency_key, notes=notes, cancel=cancel,
            )

    # ------------------------------------------------------------------
    # Transfers
    # ------------------------------------------------------------------

    def request_transfer(
        self,
        source_department_id: str,
        destination_department_id: str,
        lines: Iterable,
        actor_id: str,
        priority: TransferPriority | str = TransferPriority.NORMAL,
        notes: str | None = None,
        idempotency_key: str | None = None,
        cancel: threading.Event | None = None,
    ) -> TransferRequest:
        with self._operation("request_transfer"):
            return self.transfers.request(
                source_department_id,
                destination_department_id,
                lines,
                actor_id,
                priority=priority,
                notes=notes,
                idempotency_key=idempotency_key,
                cancel=cancel,
            )

    def approve_transfer(
        self,
        transfer_id: str,
        actor_id: str,
        cancel: threading.Event | None = None,
    ) -> TransferRequest:
        with self._operation("approve_transfer"):
            return self.transfers.approve(transfer_id, actor_id, cancel=cancel)

    def reject_transfer(
        self,
        transfer_id: str,
        actor_id: str,
        reason: str | None = None,
        cancel: threading.Event | None = None,
    ) -> TransferRequest:
        with self._operation("reject_transfer"):
            return self.transfers.reject(transfer_id, actor_id, reason=reason, cancel=cancel)

    def get_transfer(self, transfer_id: str) -> TransferRequest:
        with self._operation("get_transfer"):
            return self.transfers.get(transfer_id)

    def list_pending_transfers(self, department_id: str | None = None) -> list[TransferRequest]:
        with self._operation("list_pending_transfers"):
            return self.transfers.list_pending(department_id)

    # ------------------------------------------------------------------
    # Stock and thresholds
    # ------------------------------------------------------------------

    def get_stock(self, item_id: str, department_id: str) -> StockRecord:
        """Current record; a never-stocked key reads as zero stock."""
        with self._operation("get_stock"):
            self.catalog.get_item(item_id)
            self.catalog.get_department(department_id)
            return self.store.get_stock(item_id, department_id)

    def stock_status(self, item_id: str, department_id: str) -> StockStatus:
        with self._operation("stock_status"):
            return self.alerts.status_of(item_id, department_id)

    def set_threshold(
        self,
        item_id: str,
        department_id: str,
        min_threshold: int,
        actor_id: str,
    ) -> StockRecord:
        """Override the minimum threshold of one item in one department."""
        with self._operation("set_threshold"):
            if isinstance(min_threshold, bool) or not isinstance(min_threshold, int):
                raise InvalidInputError(
                    f"min_threshold must be an integer, got {min_threshold!r}",
                    field="min_threshold",
                )
            if min_threshold < 0:
                raise InvalidInputError(
                    f"min_threshold must be >= 0, got {min_threshold}", field="min_threshold"
                )
            require_permission(self.catalog.get_user(actor_id), Permission.SET_THRESHOLD)
            self.catalog.get_item(item_id)
            self.catalog.get_department(department_id)
            with LogContext.bind(actor_id=actor_id, item_id=item_id, department_id=department_id):
                return self.store.set_threshold(item_id, department_id, min_threshold)

    def list_alerts(
        self,
        department_id: str | None = None,
        category: str | None = None,
    ) -> list[StockAlert]:
        with self._operation("list_alerts"):
            return self.alerts.list_alerts(department_id=department_id, category=category)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def query_items(
        self,
        filters: dict | None = None,
        search: str | None = None,
        sort_key: str | None = None,
        sort_direction: SortDirection | str | None = None,
        offset: int = 0,
        limit: int | None = None,
    ) -> Page[ItemStockRow]:
        with self._operation("query_items"):
            return self.queries.query(
                Collection.ITEMS, filters, search, sort_key, sort_direction, offset, limit,
            )

    def query_transactions(
        self,
        filters: dict | None = None,
        search: str | None = None,
        sort_key: str | None = None,
        sort_direction: SortDirection | str | None = None,
        offset: int = 0,
        limit: int | None = None,
        date_from: datetime | None = None,
        date_to: datetime | None = None,
    ) -> Page[LedgerTransaction]:
        with self._operation("query_transactions"):
            return self.queries.query(
                Collection.TRANSACTIONS, filters, search, sort_key, sort_direction,
                offset, limit, date_from=date_from, date_to=date_to,
            )

    def query_transfers(
        self,
        filters: dict | None = None,
        search: str | None = None,
        sort_key: str | None = None,
        sort_direction: SortDirection | str | None = None,
        offset: int = 0,
        limit: int | None = None,
        date_from: datetime | None = None,
        date_to: datetime | None = None,
    ) -> Page[TransferRequest]:
        with self._operation("query_transfers"):
            return self.queries.query(
                Collection.TRANSFERS, filters, search, sort_key, sort_direction,
                offset, limit, date_from=date_from, date_to=date_to,
            )

    def dashboard_summary(
        self,
        department_id: str | None = None,
        hospital_id: str | None = None,
    ) -> DashboardSummary:
        with self._operation("dashboard_summary"):
            return self.snapshots.dashboard_summary(department_id, hospital_id)

    def snapshot(self) -> LedgerSnapshot:
        with self._operation("snapshot"):
            return self.snapshots.snapshot()

    # ------------------------------------------------------------------
    # Recovery
    # ------------------------------------------------------------------

    def verify(self) -> RecoveryReport:
        """Replay the persisted log and compare it with the persisted stock table."""
        with self._operation("verify"):
            return self.recovery.verify()

    def rebuild(self) -> RecoveryReport:
        """Replay the persisted log and rewrite the persisted stock table."""
        with self._operation("rebuild"):
            return self.recovery.rebuild()

    # ------------------------------------------------------------------
    # Catalog administration
    # ------------------------------------------------------------------

    def _actor(self, actor_id: str) -> User:
        return self.catalog.get_user(actor_id)

    def add_item(self, item: Item, actor_id: str) -> Item:
        with self._operation("add_item"):
            return self.catalog.add_item(item, self._actor(actor_id))

    def update_item(self, item_id: str, actor_id: str, **changes) -> Item:
        with self._operation("update_item"):
            return self.catalog.update_item(item_id, self._actor(actor_id), **changes)

    def add_hospital(self, hospital: Hospital, actor_id: str) -> Hospital:
        with self._operation("add_hospital"):
            return self.catalog.add_hospital(hospital, self._actor(actor_id))

    def update_hospital(self, hospital_id: str, actor_id: str, **changes) -> Hospital:
        with self._operation("update_hospital"):
            return self.catalog.update_hospital(hospital_id, self._actor(actor_id), **changes)

    def add_department(self, department: Department, actor_id: str) -> Department:
        with self._operation("add_department"):
            return self.catalog.add_department(department, self._actor(actor_id))

    def update_department(self, department_id: str, actor_id: str, **changes) -> Department:
        with self._operation("update_department"):
            return self.catalog.update_department(department_id, self._actor(actor_id), **changes)

    def add_subdepartment(
        self,
        department_id: str,
        subdepartment: Subdepartment,
        actor_id: str,
    ) -> Department:
        with self._operation("add_subdepartment"):
            return self.catalog.add_subdepartment(department_id, subdepartment, self._actor(actor_id))

    def add_user(self, user: User, actor_id: str) -> User:
        with self._operation("add_user"):
            return self.catalog.add_user(user, self._actor(actor_id))
