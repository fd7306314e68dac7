"""
Coordinateur de synchronisation plateforme externe -> inventory_items.

Un run :
    1. sweep des runs bloqués (running depuis > timeout) -> failed
    2. refus si un run du même type est encore vivant (SyncInProgressError)
    3. insertion du SyncLog (running)
    4. fetch paginé (page courte = fin), retry sur erreurs transitoires
    5. agrégation par productId (somme des quantités multi-locations)
    6. transform -> colonnes locales avec défauts explicites
    7. upsert par lots sur sku ; un lot en échec n'arrête pas les suivants
    8. finalize (finally) : jamais de SyncLog laissé running
    9. alertes (best effort)

Erreurs fatales : gateway, database, internal, stuck. Non fatales : batch, record, vendor.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Iterable

import backoff
from sqlalchemy import select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from backend.app.core.clock import ensure_utc, utcnow
from backend.app.core.config import settings
from backend.app.core.errors import (
    DatabaseError,
    ExternalApiError,
    StuckSyncError,
    SyncInProgressError,
    ValidationError,
)
from backend.app.db.models.core_types import AlertType, SyncStatus, SyncType
from backend.app.db.models.models_v1 import InventoryItem, SyncLog
from backend.services.gateway import GatewayPage, InventoryGateway
from backend.services.notifications import AlertRequest, NotificationDispatcher
from backend.services.vendors import upsert_vendor_record

logger = logging.getLogger(__name__)

FATAL_ERROR_KINDS = {"gateway", "database", "internal", "stuck"}

# types qui ramènent les produits
PRODUCT_SYNC_TYPES = (SyncType.full, SyncType.inventory)

QUANTITY_FIELDS = ("quantityOnHand", "quantityReserved", "quantityOnOrder")

DEFAULT_LEAD_TIME_DAYS = 7


@dataclass
class SyncResult:
    sync_log_id: int
    sync_type: SyncType
    status: SyncStatus
    items_synced: int = 0
    errors: list[dict[str, Any]] = field(default_factory=list)
    duration_ms: int = 0
    swept_sync_ids: list[int] = field(default_factory=list)


@dataclass
class _RunState:
    items_synced: int = 0
    errors: list[dict[str, Any]] = field(default_factory=list)
    out_of_stock: list[str] = field(default_factory=list)
    reorder_needed: list[str] = field(default_factory=list)

    @property
    def has_fatal_error(self) -> bool:
        return any(e.get("fatal") for e in self.errors)


def sync_error(kind: str, message: str, **extra: Any) -> dict[str, Any]:
    return {
        "kind": kind,
        "fatal": kind in FATAL_ERROR_KINDS,
        "message": message,
        "at": utcnow().isoformat(),
        **extra,
    }


# ---------- LECTURES ----------
def get_sync_logs(db: Session, limit: int = 50, sync_type: SyncType | None = None) -> list[SyncLog]:
    stmt = select(SyncLog).order_by(SyncLog.started_at.desc(), SyncLog.id.desc()).limit(limit)
    if sync_type:
        stmt = stmt.where(SyncLog.sync_type == SyncType(sync_type))
    return list(db.execute(stmt).scalars().all())


def get_last_successful_sync(db: Session, types: Iterable[SyncType] = PRODUCT_SYNC_TYPES) -> SyncLog | None:
    return (
        db.execute(
            select(SyncLog)
            .where(SyncLog.status == SyncStatus.completed)
            .where(SyncLog.sync_type.in_([SyncType(t) for t in types]))
            .order_by(SyncLog.completed_at.desc(), SyncLog.id.desc())
        )
        .scalars()
        .first()
    )


def is_sync_running(db: Session, sync_type: SyncType) -> bool:
    row = db.execute(
        select(SyncLog.id)
        .where(SyncLog.sync_type == SyncType(sync_type))
        .where(SyncLog.status == SyncStatus.running)
    ).first()
    return row is not None


def has_recent_failure(db: Session, sync_type: SyncType, since: datetime, exclude_id: int | None = None) -> bool:
    stmt = (
        select(SyncLog.id)
        .where(SyncLog.sync_type == SyncType(sync_type))
        .where(SyncLog.status == SyncStatus.failed)
        .where(SyncLog.started_at >= since)
    )
    if exclude_id is not None:
        stmt = stmt.where(SyncLog.id != exclude_id)
    return db.execute(stmt).first() is not None


# ---------- SWEEP ----------
def sweep_stuck_syncs(db: Session, timeout_minutes: int, now: datetime | None = None) -> list[int]:
    """
    Passe en failed les runs restés running plus de timeout_minutes.

    UPDATE conditionnel sur status=running : un run balayé par deux sweeps
    concurrents n'est compté qu'une fois.
    """
    now = now or utcnow()
    cutoff = now - timedelta(minutes=timeout_minutes)

    candidates = (
        db.execute(
            select(SyncLog)
            .where(SyncLog.status == SyncStatus.running)
            .where(SyncLog.started_at < cutoff)
            .order_by(SyncLog.id)
        )
        .scalars()
        .all()
    )

    swept: list[int] = []
    for log in candidates:
        marker = StuckSyncError(log.id, timeout_minutes)
        errors = list(log.errors or [])
        errors.append(sync_error("stuck", marker.message, **marker.details))
        started_at = ensure_utc(log.started_at)

        result = db.execute(
            update(SyncLog)
            .where(SyncLog.id == log.id)
            .where(SyncLog.status == SyncStatus.running)
            .values(
                status=SyncStatus.failed,
                completed_at=now,
                duration_ms=int((now - started_at).total_seconds() * 1000),
                errors=errors,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 1:
            swept.append(log.id)
            logger.warning("Sync %s (%s) stuck since %s, marked as failed", log.id, log.sync_type.value, started_at)

    try:
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        raise DatabaseError("sweep", str(exc), exc) from exc
    return swept


# ---------- AGRÉGATION / TRANSFORM ----------
def _present(value: Any) -> bool:
    return value is not None and value != ""


def _first(record: dict[str, Any], *keys: str) -> Any:
    for key in keys:
        if _present(record.get(key)):
            return record[key]
    return None


def _finite(value: Any) -> float:
    # json accepte 1e999 -> inf
    number = float(value)
    if not math.isfinite(number):
        raise ValueError(f"non-finite number {value!r}")
    return number


def _to_number(value: Any) -> float:
    if not _present(value):
        return 0.0
    if isinstance(value, bool):
        raise ValueError(f"invalid quantity {value!r}")
    return _finite(value)


def aggregate_records(records: Iterable[dict[str, Any]]) -> tuple[dict[str, dict[str, Any]], list[dict[str, Any]]]:
    """
    Regroupe les enregistrements par productId (une ligne par location côté
    plateforme). Quantités sommées ; pour le reste, la première valeur non
    vide gagne.

    Retourne (agrégats par productId dans l'ordre d'arrivée, erreurs record).
    """
    aggregates: dict[str, dict[str, Any]] = {}
    errors: list[dict[str, Any]] = []

    for index, record in enumerate(records):
        product_id = record.get("productId")
        if not _present(product_id):
            errors.append(sync_error("record", "Record has no productId", record_index=index))
            continue
        product_id = str(product_id)

        try:
            quantities = {name: _to_number(record.get(name)) for name in QUANTITY_FIELDS}
        except (TypeError, ValueError) as exc:
            errors.append(sync_error("record", f"Invalid quantity: {exc}", record_index=index, product_id=product_id))
            continue

        aggregate = aggregates.get(product_id)
        if aggregate is None:
            aggregate = {"productId": product_id, "locations": []}
            for name in QUANTITY_FIELDS:
                aggregate[name] = 0.0
            aggregates[product_id] = aggregate

        for name, qty in quantities.items():
            aggregate[name] += qty

        location = _first(record, "facilityName", "location")
        if location and location not in aggregate["locations"]:
            aggregate["locations"].append(location)

        for key, value in record.items():
            if key in QUANTITY_FIELDS or key in aggregate:
                continue
            if _present(value):
                aggregate[key] = value

    return aggregates, errors


def _int_field(aggregate: dict[str, Any], *keys: str, default: int = 0, minimum: int = 0) -> int:
    value = _first(aggregate, *keys)
    if value is None:
        return default
    return max(int(_finite(value)), minimum)


def transform_record(aggregate: dict[str, Any], default_location: str = "Default") -> dict[str, Any]:
    """
    Frontière typée unique entre le payload externe et inventory_items.
    Tous les champs optionnels ont un défaut explicite ; lève ValueError /
    InvalidOperation sur une valeur non numérique.
    """
    sku = str(_first(aggregate, "productSku", "sku") or aggregate["productId"]).strip()
    cost = _first(aggregate, "unitCost", "averageCost", "cost")
    vendor = _first(aggregate, "primarySupplierName", "supplierName", "supplier", "vendor")
    max_stock = _first(aggregate, "maxStock", "maximumStock")
    locations = aggregate.get("locations") or []

    return {
        "sku": sku,
        "external_id": str(aggregate["productId"]),
        "product_name": str(_first(aggregate, "productName", "internalName", "name") or sku),
        "current_stock": max(int(aggregate.get("quantityOnHand") or 0), 0),
        "reserved_stock": max(int(aggregate.get("quantityReserved") or 0), 0),
        "on_order_stock": max(int(aggregate.get("quantityOnOrder") or 0), 0),
        "reorder_point": _int_field(aggregate, "reorderPoint"),
        "reorder_quantity": _int_field(aggregate, "reorderQuantity"),
        "max_stock": max(int(_finite(max_stock)), 0) if max_stock is not None else None,
        "min_order_quantity": _int_field(aggregate, "minimumOrderQuantity", "minOrderQuantity", default=1, minimum=1),
        "order_increment": _int_field(aggregate, "orderIncrement", "caseQuantity", default=1, minimum=1),
        "lead_time_days": _int_field(aggregate, "leadTimeDays", "leadTime", default=DEFAULT_LEAD_TIME_DAYS),
        "vendor": str(vendor).strip() if vendor is not None and str(vendor).strip() else None,
        "unit_cost": max(Decimal(str(_finite(cost))), Decimal("0")).quantize(Decimal("0.01")) if cost is not None else Decimal("0.00"),
        "location": str(locations[0]) if locations else default_location,
        "sales_last_30_days": _int_field(aggregate, "salesLast30Days", "sales30Days"),
        "sales_last_90_days": _int_field(aggregate, "salesLast90Days", "sales90Days"),
        "last_updated": utcnow(),
    }


def _chunks(rows: list[dict[str, Any]], size: int) -> Iterable[list[dict[str, Any]]]:
    for start in range(0, len(rows), size):
        yield rows[start : start + size]


# ---------- COORDINATEUR ----------
class SyncCoordinator:
    def __init__(
        self,
        db: Session,
        gateway: InventoryGateway,
        dispatcher: NotificationDispatcher | None = None,
        *,
        page_size: int = 100,
        batch_size: int = 50,
        fetch_max_tries: int = 3,
        fetch_backoff_seconds: float = 1.0,
        stuck_timeout_minutes: int = 30,
        default_location: str = "Default",
        smart_window_hours: int = 6,
        out_of_stock_threshold: int = 1,
        reorder_threshold: int = 1,
        recovery_window_hours: int = 24,
    ):
        self.db = db
        self.gateway = gateway
        self.dispatcher = dispatcher
        self.page_size = page_size
        self.batch_size = batch_size
        self.fetch_max_tries = fetch_max_tries
        self.fetch_backoff_seconds = fetch_backoff_seconds
        self.stuck_timeout_minutes = stuck_timeout_minutes
        self.default_location = default_location
        self.smart_window_hours = smart_window_hours
        self.out_of_stock_threshold = out_of_stock_threshold
        self.reorder_threshold = reorder_threshold
        self.recovery_window_hours = recovery_window_hours

    @classmethod
    def from_settings(
        cls,
        db: Session,
        gateway: InventoryGateway,
        dispatcher: NotificationDispatcher | None = None,
    ) -> "SyncCoordinator":
        return cls(
            db,
            gateway,
            dispatcher,
            page_size=settings.SYNC_PAGE_SIZE,
            batch_size=settings.SYNC_BATCH_SIZE,
            fetch_max_tries=settings.SYNC_FETCH_MAX_TRIES,
            stuck_timeout_minutes=settings.STUCK_SYNC_TIMEOUT_MINUTES,
            default_location=settings.SYNC_DEFAULT_LOCATION,
            smart_window_hours=settings.SMART_SYNC_INVENTORY_WINDOW_HOURS,
            out_of_stock_threshold=settings.OUT_OF_STOCK_ALERT_THRESHOLD,
            reorder_threshold=settings.REORDER_ALERT_THRESHOLD,
            recovery_window_hours=settings.RECOVERY_ALERT_WINDOW_HOURS,
        )

    def resolve_sync_type(self, sync_type: SyncType) -> SyncType:
        sync_type = SyncType(sync_type)
        if sync_type != SyncType.smart:
            return sync_type
        last = get_last_successful_sync(self.db, PRODUCT_SYNC_TYPES)
        if last and last.completed_at:
            age = utcnow() - ensure_utc(last.completed_at)
            if age < timedelta(hours=self.smart_window_hours):
                return SyncType.inventory
        return SyncType.full

    def run_sync(self, sync_type: SyncType | str) -> SyncResult:
        requested = SyncType(sync_type)
        swept = sweep_stuck_syncs(self.db, self.stuck_timeout_minutes)
        resolved = self.resolve_sync_type(requested)

        if is_sync_running(self.db, resolved):
            raise SyncInProgressError(f"A {resolved.value} sync is already running", {"sync_type": resolved.value})

        log = SyncLog(sync_type=resolved, status=SyncStatus.running, started_at=utcnow(), errors=[])
        try:
            self.db.add(log)
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise DatabaseError("create sync log", str(exc), exc) from exc
        log_id, started_at = log.id, ensure_utc(log.started_at)
        logger.info("Sync %s started (%s requested, %s resolved)", log_id, requested.value, resolved.value)

        state = _RunState()
        try:
            if resolved in (SyncType.full, SyncType.vendors):
                self._sync_vendors(state)
            if resolved in PRODUCT_SYNC_TYPES:
                self._sync_products(state)
        except ExternalApiError as exc:
            logger.error("Sync %s aborted by gateway error: %s", log_id, exc)
            state.errors.append(sync_error("gateway", exc.message, status=exc.status))
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.error("Sync %s aborted by database error: %s", log_id, exc)
            state.errors.append(sync_error("database", str(exc)))
        except Exception as exc:
            self.db.rollback()
            state.errors.append(sync_error("internal", str(exc)))
            raise
        finally:
            result = self._finalize(log_id, resolved, started_at, state)

        result.swept_sync_ids = swept
        self._emit_alerts(result, state, started_at)
        return result

    # ---------- fetch ----------
    def _fetch_all(self, fetch: Callable[[int, int], GatewayPage], label: str) -> list[dict[str, Any]]:
        fetch_with_retry = backoff.on_exception(
            backoff.expo,
            ExternalApiError,
            max_tries=self.fetch_max_tries,
            giveup=lambda exc: not exc.retryable,
            factor=self.fetch_backoff_seconds,
            jitter=None,
            on_backoff=lambda d: logger.warning(
                "Fetching %s failed (attempt %s), retrying in %.1fs", label, d["tries"], d["wait"]
            ),
        )(fetch)

        records: list[dict[str, Any]] = []
        offset = 0
        while True:
            page = fetch_with_retry(offset, self.page_size)
            records.extend(page.records)
            # page courte = fin des données
            if len(page.records) < self.page_size:
                break
            offset += self.page_size
        logger.info("Fetched %s %s records", len(records), label)
        return records

    # ---------- vendors ----------
    def _sync_vendors(self, state: _RunState) -> None:
        records = self._fetch_all(self.gateway.fetch_vendor_page, "vendor")
        for index, record in enumerate(records):
            try:
                upsert_vendor_record(self.db, record)
                self.db.commit()
            except (ValidationError, ValueError, InvalidOperation, SQLAlchemyError) as exc:
                self.db.rollback()
                message = exc.message if isinstance(exc, ValidationError) else str(exc)
                state.errors.append(sync_error("vendor", message, record_index=index))
                continue
            state.items_synced += 1

    # ---------- produits ----------
    def _sync_products(self, state: _RunState) -> None:
        records = self._fetch_all(self.gateway.fetch_page, "product")
        aggregates, record_errors = aggregate_records(records)
        state.errors.extend(record_errors)

        rows: list[dict[str, Any]] = []
        seen: set[str] = set()
        for product_id, aggregate in aggregates.items():
            try:
                row = transform_record(aggregate, self.default_location)
            except (TypeError, ValueError, InvalidOperation) as exc:
                state.errors.append(sync_error("record", f"Invalid field value: {exc}", product_id=product_id))
                continue
            if row["sku"] in seen:
                state.errors.append(sync_error("record", f"Duplicate sku {row['sku']}", product_id=product_id))
                continue
            seen.add(row["sku"])
            rows.append(row)

        for batch_index, batch in enumerate(_chunks(rows, self.batch_size)):
            try:
                previous = self._snapshot([row["sku"] for row in batch])
                self._upsert_batch(batch)
                self.db.commit()
            except SQLAlchemyError as exc:
                self.db.rollback()
                logger.error("Batch %s (%s rows) failed: %s", batch_index, len(batch), exc)
                state.errors.append(sync_error("batch", str(exc), batch_index=batch_index, size=len(batch)))
                continue

            state.items_synced += len(batch)
            self._track_transitions(batch, previous, state)
            logger.debug("Batch %s committed (%s rows)", batch_index, len(batch))

    def _snapshot(self, skus: list[str]) -> dict[str, tuple[int, int, bool]]:
        rows = self.db.execute(
            select(
                InventoryItem.sku,
                InventoryItem.current_stock,
                InventoryItem.reorder_point,
                InventoryItem.discontinued,
            ).where(InventoryItem.sku.in_(skus))
        ).all()
        return {r.sku: (r.current_stock, r.reorder_point, r.discontinued) for r in rows}

    def _upsert_batch(self, batch: list[dict[str, Any]]) -> None:
        dialect = self.db.get_bind().dialect.name
        if dialect == "postgresql":
            stmt = pg_insert(InventoryItem.__table__).values(batch)
        elif dialect == "sqlite":
            stmt = sqlite_insert(InventoryItem.__table__).values(batch)
        else:
            raise DatabaseError("upsert", f"Unsupported dialect {dialect}")

        # les champs locaux (discontinued, last_ordered_*) ne sont pas écrasés
        columns = [c for c in batch[0] if c != "sku"]
        stmt = stmt.on_conflict_do_update(
            index_elements=["sku"],
            set_={c: stmt.excluded[c] for c in columns},
        )
        self.db.execute(stmt)

    @staticmethod
    def _track_transitions(
        batch: list[dict[str, Any]],
        previous: dict[str, tuple[int, int, bool]],
        state: _RunState,
    ) -> None:
        for row in batch:
            prev_stock, prev_reorder_point, discontinued = previous.get(row["sku"], (None, None, False))
            if discontinued:
                continue
            stock = row["current_stock"]
            if stock == 0 and (prev_stock is None or prev_stock > 0):
                state.out_of_stock.append(row["sku"])
            was_flagged = prev_stock is not None and prev_stock <= prev_reorder_point
            if stock <= row["reorder_point"] and not was_flagged:
                state.reorder_needed.append(row["sku"])

    # ---------- finalize ----------
    def _finalize(self, log_id: int, sync_type: SyncType, started_at: datetime, state: _RunState) -> SyncResult:
        now = utcnow()
        duration_ms = max(int((now - started_at).total_seconds() * 1000), 0)
        status = SyncStatus.failed if state.has_fatal_error else SyncStatus.completed

        try:
            self.db.execute(
                update(SyncLog)
                .where(SyncLog.id == log_id)
                .values(
                    status=status,
                    completed_at=now,
                    duration_ms=duration_ms,
                    items_synced=state.items_synced,
                    errors=state.errors,
                )
                .execution_options(synchronize_session=False)
            )
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.exception("Could not finalize sync %s", log_id)
            raise DatabaseError("finalize sync", str(exc), exc) from exc

        logger.info(
            "Sync %s %s: %s items, %s errors, %sms",
            log_id,
            status.value,
            state.items_synced,
            len(state.errors),
            duration_ms,
        )
        return SyncResult(
            sync_log_id=log_id,
            sync_type=sync_type,
            status=status,
            items_synced=state.items_synced,
            errors=list(state.errors),
            duration_ms=duration_ms,
        )

    # ---------- alertes ----------
    def _build_alerts(self, result: SyncResult, state: _RunState, started_at: datetime) -> list[AlertRequest]:
        base = {"sync_log_id": result.sync_log_id, "sync_type": result.sync_type.value}
        alerts: list[AlertRequest] = []

        if result.swept_sync_ids:
            alerts.append(AlertRequest(
                AlertType.stuck,
                {**base, "stuck_sync_ids": result.swept_sync_ids, "timeout_minutes": self.stuck_timeout_minutes},
            ))
        if result.status == SyncStatus.failed:
            alerts.append(AlertRequest(AlertType.failure, {**base, "errors": result.errors}))
        if state.out_of_stock and len(state.out_of_stock) >= self.out_of_stock_threshold:
            alerts.append(AlertRequest(
                AlertType.out_of_stock, {**base, "count": len(state.out_of_stock), "skus": state.out_of_stock}
            ))
        if state.reorder_needed and len(state.reorder_needed) >= self.reorder_threshold:
            alerts.append(AlertRequest(
                AlertType.reorder_needed, {**base, "count": len(state.reorder_needed), "skus": state.reorder_needed}
            ))
        if result.status == SyncStatus.completed:
            if result.errors:
                alerts.append(AlertRequest(AlertType.warning, {**base, "errors": result.errors}))
            since = started_at - timedelta(hours=self.recovery_window_hours)
            if has_recent_failure(self.db, result.sync_type, since, exclude_id=result.sync_log_id):
                alerts.append(AlertRequest(
                    AlertType.success, {**base, "items_synced": result.items_synced, "duration_ms": result.duration_ms}
                ))
        return alerts

    def _emit_alerts(self, result: SyncResult, state: _RunState, started_at: datetime) -> None:
        if self.dispatcher is None:
            return
        try:
            alerts = self._build_alerts(result, state, started_at)
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.error("Could not evaluate alerts for sync %s: %s", result.sync_log_id, exc)
            return

        for alert in alerts:
            try:
                self.dispatcher.enqueue_alert(alert)
            except Exception:
                # le run est déjà finalisé, son issue ne change pas
                logger.exception("Could not enqueue %s alert for sync %s", alert.type.value, result.sync_log_id)
