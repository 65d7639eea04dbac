"""
Snapshot Service - JSON export and import of the whole ledger.

A snapshot is the ledger aggregate as one JSON-serializable dict, keyed by
collection. Records reference each other by uuid (never by database id),
timestamps are epoch milliseconds and numbers are decimal strings, so a
snapshot can be reloaded into an empty database and reproduce the same
ledger.

import_snapshot() replaces the whole ledger in one transaction: if any
record is malformed, nothing changes.
"""

import json
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..models import (
    Batch,
    BatchVariant,
    CashTransaction,
    DepositOrder,
    Loan,
    Production,
    ProductionIngredient,
    ProductionUsage,
    Sale,
    SaleConsumption,
)
from ..utils.constants import APP_NAME, APP_VERSION, SNAPSHOT_VERSION
from ..utils.datetime_utils import from_epoch_ms, to_epoch_ms, utc_now
from ..utils.validators import to_decimal
from .database import session_scope
from .exceptions import ValidationError
from .logging_utils import get_service_logger, log_operation

logger = get_service_logger(__name__)

COLLECTIONS = [
    "batches",
    "productions",
    "production_usages",
    "deposit_orders",
    "sales",
    "sale_consumptions",
    "loans",
    "transactions",
]


# ============================================================================
# Result Classes
# ============================================================================


class ImportResult:
    """Result of a snapshot import with per-collection counts."""

    def __init__(self):
        self.total_records = 0
        self.entity_counts: Dict[str, int] = {}

    def add_success(self, entity_type: str):
        """Record one imported record."""
        self.total_records += 1
        self.entity_counts[entity_type] = self.entity_counts.get(entity_type, 0) + 1

    def get_summary(self) -> str:
        """Get a user-friendly summary string of the import results."""
        lines = ["=" * 60, "Import Summary", "=" * 60]
        for entity in COLLECTIONS:
            if self.entity_counts.get(entity):
                lines.append(f"  {entity}: {self.entity_counts[entity]} imported")
        lines.append("")
        lines.append(f"Total Records: {self.total_records}")
        lines.append("=" * 60)
        return "\n".join(lines)


class ExportResult:
    """Result of a snapshot export."""

    def __init__(self, file_path: str):
        self.file_path = file_path
        self.record_count = 0
        self.entity_counts: Dict[str, int] = {}

    def add_entity_count(self, entity_type: str, count: int):
        """Add count for a specific collection."""
        self.entity_counts[entity_type] = count
        self.record_count += count

    def get_summary(self) -> str:
        """Get a summary string of the export results."""
        lines = [f"Exported {self.record_count} records to {self.file_path}"]
        if self.entity_counts:
            lines.append("")
            for entity, count in self.entity_counts.items():
                lines.append(f"  {entity}: {count}")
        return "\n".join(lines)


# ============================================================================
# Export
# ============================================================================


def _num(value) -> Optional[str]:
    return None if value is None else str(value)


def _batch_to_dict(batch: Batch) -> Dict[str, Any]:
    return {
        "uuid": batch.uuid,
        "product_name": batch.product_name,
        "stock_type": batch.stock_type,
        "initial_quantity": _num(batch.initial_quantity),
        "current_quantity": _num(batch.current_quantity),
        "unit_cost": _num(batch.unit_cost),
        "received_at": to_epoch_ms(batch.received_at),
        "created_at": to_epoch_ms(batch.created_at),
        "notes": batch.notes,
        "variants": [{"label": v.label, "quantity": _num(v.quantity)} for v in batch.variants],
    }


def _production_to_dict(production: Production) -> Dict[str, Any]:
    return {
        "uuid": production.uuid,
        "output_product_name": production.output_product_name,
        "target_quantity": _num(production.target_quantity),
        "output_quantity": _num(production.output_quantity),
        "status": production.status,
        "operational_cost": _num(production.operational_cost),
        "material_cost": _num(production.material_cost),
        "total_cost": _num(production.total_cost),
        "started_at": to_epoch_ms(production.started_at),
        "completed_at": to_epoch_ms(production.completed_at),
        "created_at": to_epoch_ms(production.created_at),
        "notes": production.notes,
        "batch_uuid_created": production.output_batch.uuid if production.output_batch else None,
        "ingredients": [
            {
                "product_name": i.product_name,
                "planned_quantity": _num(i.planned_quantity),
                "actual_quantity": _num(i.actual_quantity),
            }
            for i in production.ingredients
        ],
    }


def _usage_to_dict(usage: ProductionUsage) -> Dict[str, Any]:
    return {
        "uuid": usage.uuid,
        "production_uuid": usage.production.uuid,
        "batch_uuid": usage.batch.uuid,
        "variant_label": usage.variant_label,
        "quantity_used": _num(usage.quantity_used),
        "unit_cost": _num(usage.unit_cost),
    }


def _order_to_dict(order: DepositOrder) -> Dict[str, Any]:
    return {
        "uuid": order.uuid,
        "customer_name": order.customer_name,
        "product_name": order.product_name,
        "variant_label": order.variant_label,
        "quantity": _num(order.quantity),
        "total_amount": _num(order.total_amount),
        "deposit_amount": _num(order.deposit_amount),
        "status": order.status,
        "ordered_at": to_epoch_ms(order.ordered_at),
        "closed_at": to_epoch_ms(order.closed_at),
        "created_at": to_epoch_ms(order.created_at),
        "notes": order.notes,
    }


def _sale_to_dict(sale: Sale) -> Dict[str, Any]:
    return {
        "uuid": sale.uuid,
        "product_name": sale.product_name,
        "variant_label": sale.variant_label,
        "quantity": _num(sale.quantity),
        "sale_price": _num(sale.sale_price),
        "total_revenue": _num(sale.total_revenue),
        "total_cogs": _num(sale.total_cogs),
        "sold_at": to_epoch_ms(sale.sold_at),
        "created_at": to_epoch_ms(sale.created_at),
        "order_uuid": sale.order.uuid if sale.order else None,
    }


def _consumption_to_dict(consumption: SaleConsumption) -> Dict[str, Any]:
    return {
        "uuid": consumption.uuid,
        "sale_uuid": consumption.sale.uuid,
        "batch_uuid": consumption.batch.uuid,
        "variant_label": consumption.variant_label,
        "quantity": _num(consumption.quantity),
        "unit_cost": _num(consumption.unit_cost),
    }


def _loan_to_dict(loan: Loan) -> Dict[str, Any]:
    return {
        "uuid": loan.uuid,
        "source": loan.source,
        "initial_amount": _num(loan.initial_amount),
        "remaining_amount": _num(loan.remaining_amount),
        "borrowed_at": to_epoch_ms(loan.borrowed_at),
        "created_at": to_epoch_ms(loan.created_at),
        "note": loan.note,
    }


def _transaction_to_dict(transaction: CashTransaction) -> Dict[str, Any]:
    return {
        "uuid": transaction.uuid,
        "type": transaction.type,
        "category": transaction.category,
        "amount": _num(transaction.amount),
        "description": transaction.description,
        "payment_method": transaction.payment_method,
        "occurred_at": to_epoch_ms(transaction.occurred_at),
        "created_at": to_epoch_ms(transaction.created_at),
        "related_id": transaction.related_id,
    }


def export_snapshot(session=None) -> Dict[str, Any]:
    """
    Export the whole ledger as a JSON-serializable dict.

    Returns:
        Dict with "version", "application", "exported_at" and one list per
        collection in COLLECTIONS
    """

    def _export(sess) -> Dict[str, Any]:
        return {
            "version": SNAPSHOT_VERSION,
            "application": APP_NAME,
            "app_version": APP_VERSION,
            "exported_at": to_epoch_ms(utc_now()),
            "batches": [
                _batch_to_dict(b) for b in sess.query(Batch).order_by(Batch.id)
            ],
            "productions": [
                _production_to_dict(p) for p in sess.query(Production).order_by(Production.id)
            ],
            "production_usages": [
                _usage_to_dict(u) for u in sess.query(ProductionUsage).order_by(ProductionUsage.id)
            ],
            "deposit_orders": [
                _order_to_dict(o) for o in sess.query(DepositOrder).order_by(DepositOrder.id)
            ],
            "sales": [_sale_to_dict(s) for s in sess.query(Sale).order_by(Sale.id)],
            "sale_consumptions": [
                _consumption_to_dict(c)
                for c in sess.query(SaleConsumption).order_by(SaleConsumption.id)
            ],
            "loans": [_loan_to_dict(loan) for loan in sess.query(Loan).order_by(Loan.id)],
            "transactions": [
                _transaction_to_dict(t)
                for t in sess.query(CashTransaction).order_by(CashTransaction.id)
            ],
        }

    if session is not None:
        return _export(session)
    with session_scope() as sess:
        return _export(sess)


def save_snapshot(file_path: str) -> ExportResult:
    """
    Export the ledger to a JSON file.

    Args:
        file_path: Path to output JSON file

    Returns:
        ExportResult with per-collection counts
    """
    snapshot = export_snapshot()

    path = Path(file_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(snapshot, f, indent=2, ensure_ascii=False)

    result = ExportResult(str(path))
    for collection in COLLECTIONS:
        result.add_entity_count(collection, len(snapshot[collection]))

    log_operation(
        logger,
        operation="save_snapshot",
        outcome="success",
        file_path=str(path),
        record_count=result.record_count,
    )
    return result


# ============================================================================
# Import
# ============================================================================


def _clear_all_tables(session) -> None:
    """Delete every ledger row, children before parents."""
    tables_to_clear = [
        SaleConsumption,
        ProductionUsage,
        Sale,
        ProductionIngredient,
        Production,
        BatchVariant,
        Batch,
        DepositOrder,
        Loan,
        CashTransaction,
    ]
    for table in tables_to_clear:
        session.query(table).delete()
    session.flush()


class _RecordReader:
    """Typed field access for one snapshot record; errors name the record."""

    def __init__(self, collection: str, index: int, record: Dict[str, Any]):
        if not isinstance(record, dict):
            raise ValidationError([f"{collection}[{index}]: Record must be an object"])
        self.collection = collection
        self.index = index
        self.record = record

    def _fail(self, field: str, message: str):
        raise ValidationError([f"{self.collection}[{self.index}].{field}: {message}"])

    def text(self, field: str, required: bool = True) -> Optional[str]:
        value = self.record.get(field)
        if value is None and not required:
            return None
        if not isinstance(value, str) or (required and not value.strip()):
            self._fail(field, "Must be a non-empty string")
        return value

    def number(self, field: str, required: bool = True) -> Optional[Decimal]:
        value = self.record.get(field)
        if value is None and not required:
            return None
        number = to_decimal(value)
        if number is None or number < 0:
            self._fail(field, "Must be a non-negative number")
        return number

    def timestamp(self, field: str, required: bool = True):
        value = self.record.get(field)
        if value is None and not required:
            return None
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            self._fail(field, "Must be epoch milliseconds")
        return from_epoch_ms(value)

    def ref(self, field: str, index: Dict[str, Any], required: bool = True):
        value = self.record.get(field)
        if value is None and not required:
            return None
        if value not in index:
            self._fail(field, f"Unknown reference '{value}'")
        return index[value]


def _records(snapshot: Dict[str, Any], collection: str) -> List[Dict[str, Any]]:
    records = snapshot.get(collection, [])
    if not isinstance(records, list):
        raise ValidationError([f"{collection}: Must be a list"])
    return records


def _import_all(session, snapshot: Dict[str, Any], result: ImportResult) -> None:
    batches: Dict[str, Batch] = {}
    for i, record in enumerate(_records(snapshot, "batches")):
        r = _RecordReader("batches", i, record)
        batch = Batch(
            uuid=r.text("uuid"),
            product_name=r.text("product_name"),
            stock_type=r.text("stock_type"),
            initial_quantity=r.number("initial_quantity"),
            current_quantity=r.number("current_quantity"),
            unit_cost=r.number("unit_cost"),
            received_at=r.timestamp("received_at"),
            created_at=r.timestamp("created_at", required=False) or utc_now(),
            notes=r.text("notes", required=False),
        )
        for j, variant in enumerate(record.get("variants") or []):
            v = _RecordReader(f"batches[{i}].variants", j, variant)
            batch.variants.append(BatchVariant(label=v.text("label"), quantity=v.number("quantity")))
        if batch.variants and batch.variant_total() != batch.current_quantity:
            r._fail("variants", "Variant quantities must sum to current_quantity")
        if batch.current_quantity > batch.initial_quantity:
            r._fail("current_quantity", "Cannot exceed initial_quantity")
        session.add(batch)
        batches[batch.uuid] = batch
        result.add_success("batches")

    productions: Dict[str, Production] = {}
    for i, record in enumerate(_records(snapshot, "productions")):
        r = _RecordReader("productions", i, record)
        production = Production(
            uuid=r.text("uuid"),
            output_product_name=r.text("output_product_name"),
            target_quantity=r.number("target_quantity"),
            output_quantity=r.number("output_quantity", required=False),
            status=r.text("status"),
            operational_cost=r.number("operational_cost"),
            material_cost=r.number("material_cost"),
            total_cost=r.number("total_cost"),
            started_at=r.timestamp("started_at"),
            completed_at=r.timestamp("completed_at", required=False),
            created_at=r.timestamp("created_at", required=False) or utc_now(),
            notes=r.text("notes", required=False),
            output_batch=r.ref("batch_uuid_created", batches, required=False),
        )
        for j, ingredient in enumerate(record.get("ingredients") or []):
            g = _RecordReader(f"productions[{i}].ingredients", j, ingredient)
            production.ingredients.append(
                ProductionIngredient(
                    product_name=g.text("product_name"),
                    planned_quantity=g.number("planned_quantity"),
                    actual_quantity=g.number("actual_quantity", required=False),
                )
            )
        session.add(production)
        productions[production.uuid] = production
        result.add_success("productions")

    for i, record in enumerate(_records(snapshot, "production_usages")):
        r = _RecordReader("production_usages", i, record)
        session.add(
            ProductionUsage(
                uuid=r.text("uuid"),
                production=r.ref("production_uuid", productions),
                batch=r.ref("batch_uuid", batches),
                variant_label=r.text("variant_label", required=False),
                quantity_used=r.number("quantity_used"),
                unit_cost=r.number("unit_cost"),
            )
        )
        result.add_success("production_usages")

    orders: Dict[str, DepositOrder] = {}
    for i, record in enumerate(_records(snapshot, "deposit_orders")):
        r = _RecordReader("deposit_orders", i, record)
        order = DepositOrder(
            uuid=r.text("uuid"),
            customer_name=r.text("customer_name"),
            product_name=r.text("product_name"),
            variant_label=r.text("variant_label", required=False),
            quantity=r.number("quantity"),
            total_amount=r.number("total_amount"),
            deposit_amount=r.number("deposit_amount"),
            status=r.text("status"),
            ordered_at=r.timestamp("ordered_at"),
            closed_at=r.timestamp("closed_at", required=False),
            created_at=r.timestamp("created_at", required=False) or utc_now(),
            notes=r.text("notes", required=False),
        )
        session.add(order)
        orders[order.uuid] = order
        result.add_success("deposit_orders")

    sales: Dict[str, Sale] = {}
    for i, record in enumerate(_records(snapshot, "sales")):
        r = _RecordReader("sales", i, record)
        sale = Sale(
            uuid=r.text("uuid"),
            product_name=r.text("product_name"),
            variant_label=r.text("variant_label", required=False),
            quantity=r.number("quantity"),
            sale_price=r.number("sale_price"),
            total_revenue=r.number("total_revenue"),
            total_cogs=r.number("total_cogs"),
            sold_at=r.timestamp("sold_at"),
            created_at=r.timestamp("created_at", required=False) or utc_now(),
            order=r.ref("order_uuid", orders, required=False),
        )
        session.add(sale)
        sales[sale.uuid] = sale
        result.add_success("sales")

    for i, record in enumerate(_records(snapshot, "sale_consumptions")):
        r = _RecordReader("sale_consumptions", i, record)
        session.add(
            SaleConsumption(
                uuid=r.text("uuid"),
                sale=r.ref("sale_uuid", sales),
                batch=r.ref("batch_uuid", batches),
                variant_label=r.text("variant_label", required=False),
                quantity=r.number("quantity"),
                unit_cost=r.number("unit_cost"),
            )
        )
        result.add_success("sale_consumptions")

    for i, record in enumerate(_records(snapshot, "loans")):
        r = _RecordReader("loans", i, record)
        session.add(
            Loan(
                uuid=r.text("uuid"),
                source=r.text("source"),
                initial_amount=r.number("initial_amount"),
                remaining_amount=r.number("remaining_amount"),
                borrowed_at=r.timestamp("borrowed_at"),
                created_at=r.timestamp("created_at", required=False) or utc_now(),
                note=r.text("note", required=False),
            )
        )
        result.add_success("loans")

    for i, record in enumerate(_records(snapshot, "transactions")):
        r = _RecordReader("transactions", i, record)
        session.add(
            CashTransaction(
                uuid=r.text("uuid"),
                type=r.text("type"),
                category=r.text("category"),
                amount=r.number("amount"),
                description=r.text("description", required=False) or "",
                payment_method=r.text("payment_method"),
                occurred_at=r.timestamp("occurred_at"),
                created_at=r.timestamp("created_at", required=False) or utc_now(),
                related_id=r.text("related_id", required=False),
            )
        )
        result.add_success("transactions")

    session.flush()


def import_snapshot(snapshot: Dict[str, Any], session=None) -> ImportResult:
    """
    Replace the whole ledger with the contents of a snapshot.

    Args:
        snapshot: Dict as produced by export_snapshot()
        session: Optional database session

    Returns:
        ImportResult with per-collection counts

    Raises:
        ValidationError: If the version is unsupported or any record is
                         malformed (the ledger is left unchanged)
    """
    if not isinstance(snapshot, dict):
        raise ValidationError(["Snapshot: Must be a JSON object"])
    version = snapshot.get("version", "unknown")
    if version != SNAPSHOT_VERSION:
        raise ValidationError(
            [f"Snapshot: Unsupported version {version}, expected {SNAPSHOT_VERSION}"]
        )

    result = ImportResult()
    if session is not None:
        _clear_all_tables(session)
        _import_all(session, snapshot, result)
    else:
        with session_scope() as sess:
            _clear_all_tables(sess)
            _import_all(sess, snapshot, result)

    log_operation(
        logger,
        operation="import_snapshot",
        outcome="success",
        record_count=result.total_records,
    )
    return result


def load_snapshot(file_path: str) -> ImportResult:
    """
    Replace the ledger with a snapshot read from a JSON file.

    Raises:
        FileNotFoundError: If the file doesn't exist
        ValidationError: If the file is not a valid snapshot
    """
    with open(file_path, "r", encoding="utf-8") as f:
        try:
            snapshot = json.load(f)
        except json.JSONDecodeError as e:
            raise ValidationError([f"Snapshot: Invalid JSON ({e})"])
    return import_snapshot(snapshot)
