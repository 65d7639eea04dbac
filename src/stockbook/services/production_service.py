"""Production service - manufacturing runs from raw materials to finished goods.

A production run moves IN_PROGRESS -> COMPLETED and never back:

- start_production() records the plan and pays operational costs. No raw
  material is consumed yet, so planned quantities may be zero.
- complete_production() consumes the actual ingredients FIFO from
  raw-material batches (all or nothing), records a ProductionUsage per batch
  drawn from, and creates the single finished-good batch whose unit cost is
  (operational + material cost) / actual quantity.
- delete_production() reverses all of it exactly from the recorded usages,
  unless the output batch has already been sold from.
"""

from contextlib import nullcontext
from datetime import datetime
from decimal import Decimal
import logging
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError

from ..models import (
    Production,
    ProductionIngredient,
    ProductionStatus,
    ProductionUsage,
    StockType,
    TransactionCategory,
    TransactionType,
    normalize_product_name,
)
from ..utils.constants import DESC_PRODUCTION_COST, MAX_NAME_LENGTH, ZERO
from ..utils.datetime_utils import ensure_utc, utc_now
from ..utils.validators import (
    collect_errors,
    to_decimal,
    validate_non_negative_number,
    validate_payment_method,
    validate_required_string,
    validate_string_length,
)
from . import batch_service, cash_ledger_service, consumption_service
from .database import session_scope
from .exceptions import (
    ConflictError,
    DatabaseError,
    InsufficientStockError,
    ProductionNotFound,
    ValidationError,
)
from .logging_utils import get_service_logger, log_operation

logger = get_service_logger(__name__)


def _parse_ingredients(ingredients, field_name: str) -> Tuple[Dict[str, Decimal], List[str]]:
    """
    Aggregate ingredient quantities by normalized product name.

    Accepts a mapping of product name -> quantity or a list of dicts with
    "product_name" and "quantity" keys. Order of first appearance is kept.
    """
    if not ingredients:
        return {}, []
    if isinstance(ingredients, dict):
        items = list(ingredients.items())
    else:
        items = [(i.get("product_name"), i.get("quantity")) for i in ingredients]

    aggregated: Dict[str, Decimal] = {}
    errors = []
    for product_name, quantity in items:
        item_errors = collect_errors(
            validate_required_string(product_name, f"{field_name} product name"),
            validate_non_negative_number(quantity, f"{field_name} '{product_name}' quantity"),
        )
        if item_errors:
            errors.extend(item_errors)
            continue
        key = normalize_product_name(product_name)
        aggregated[key] = aggregated.get(key, ZERO) + to_decimal(quantity)
    return aggregated, errors


def _get_production(session, production_id: int) -> Production:
    production = session.get(Production, production_id)
    if production is None:
        raise ProductionNotFound(production_id)
    return production


def start_production(
    output_product_name: str,
    target_quantity=0,
    planned_ingredients=None,
    operational_costs: Optional[List[Dict[str, Any]]] = None,
    started_at: Optional[datetime] = None,
    notes: Optional[str] = None,
    session=None,
) -> Production:
    """
    Start a production run.

    Args:
        output_product_name: Finished good to produce
        target_quantity: Planned output (>= 0)
        planned_ingredients: Planned raw materials, product name -> quantity
            (or list of {"product_name", "quantity"}); quantities may be 0
        operational_costs: List of {"amount", "description", "payment_method"}
            paid now; each positive amount emits a PRODUCTION_COST cash out
        started_at: Start time (defaults to now)
        notes: Optional notes
        session: Optional database session

    Returns:
        The new IN_PROGRESS Production

    Raises:
        ValidationError: If any field is invalid
    """
    planned, errors = _parse_ingredients(planned_ingredients, "Ingredient")
    errors = collect_errors(
        validate_required_string(output_product_name, "Output product name"),
        validate_string_length(output_product_name, MAX_NAME_LENGTH, "Output product name"),
        validate_non_negative_number(target_quantity, "Target quantity"),
    ) + errors

    costs = []
    for cost in operational_costs or []:
        payment_method = cash_ledger_service.resolve_payment_method(cost.get("payment_method"))
        cost_errors = collect_errors(
            validate_non_negative_number(cost.get("amount"), "Operational cost"),
            validate_payment_method(payment_method),
        )
        errors.extend(cost_errors)
        if not cost_errors:
            costs.append((to_decimal(cost["amount"]), cost.get("description") or "", payment_method))

    if errors:
        raise ValidationError(errors)

    started_at = ensure_utc(started_at) or utc_now()
    operational_total = sum((amount for amount, _d, _m in costs), ZERO)

    try:
        cm = nullcontext(session) if session is not None else session_scope()
        with cm as session:
            production = Production(
                output_product_name=output_product_name,
                target_quantity=to_decimal(target_quantity),
                status=ProductionStatus.IN_PROGRESS.value,
                operational_cost=operational_total,
                material_cost=ZERO,
                total_cost=operational_total,
                started_at=started_at,
                notes=notes,
            )
            for product_name, quantity in planned.items():
                production.ingredients.append(
                    ProductionIngredient(product_name=product_name, planned_quantity=quantity)
                )
            session.add(production)
            session.flush()

            for amount, description, payment_method in costs:
                if amount <= 0:
                    continue
                cash_ledger_service.record_transaction(
                    session,
                    TransactionType.CASH_OUT,
                    TransactionCategory.PRODUCTION_COST,
                    amount,
                    DESC_PRODUCTION_COST.format(
                        product=production.output_product_name, description=description
                    ),
                    payment_method=payment_method,
                    occurred_at=started_at,
                    related_id=production.uuid,
                )

            log_operation(
                logger,
                operation="start_production",
                outcome="success",
                production_id=production.id,
                output_product_name=production.output_product_name,
                operational_cost=str(operational_total),
            )
            return production
    except SQLAlchemyError as e:
        logger.error(f"Database error starting production: {e}")
        raise DatabaseError("Failed to start production", original_error=e)


def update_production(production_id: int, updates: Dict[str, Any], session=None) -> Production:
    """
    Edit an in-progress production (no effect on inventory or cash).

    Args:
        production_id: ID of the production
        updates: Any of output_product_name, target_quantity, notes,
                 planned_ingredients (replaces the plan)
        session: Optional database session

    Raises:
        ProductionNotFound: If the production doesn't exist
        ConflictError: If the production is already completed
        ValidationError: If a field is invalid
    """
    allowed = {"output_product_name", "target_quantity", "notes", "planned_ingredients"}
    unknown = set(updates) - allowed
    if unknown:
        raise ValidationError([f"{field}: Field cannot be edited" for field in sorted(unknown)])

    errors = []
    if "output_product_name" in updates:
        errors.extend(
            collect_errors(
                validate_required_string(updates["output_product_name"], "Output product name"),
                validate_string_length(
                    updates["output_product_name"], MAX_NAME_LENGTH, "Output product name"
                ),
            )
        )
    if "target_quantity" in updates:
        errors.extend(
            collect_errors(validate_non_negative_number(updates["target_quantity"], "Target quantity"))
        )
    planned = None
    if "planned_ingredients" in updates:
        planned, ingredient_errors = _parse_ingredients(updates["planned_ingredients"], "Ingredient")
        errors.extend(ingredient_errors)
    if errors:
        raise ValidationError(errors)

    try:
        cm = nullcontext(session) if session is not None else session_scope()
        with cm as session:
            production = _get_production(session, production_id)
            if production.is_completed:
                raise ConflictError(
                    f"Production {production_id} is completed and can no longer be edited"
                )

            if "output_product_name" in updates:
                production.output_product_name = updates["output_product_name"]
            if "target_quantity" in updates:
                production.target_quantity = to_decimal(updates["target_quantity"])
            if "notes" in updates:
                production.notes = updates["notes"]
            if planned is not None:
                production.ingredients.clear()
                for product_name, quantity in planned.items():
                    production.ingredients.append(
                        ProductionIngredient(product_name=product_name, planned_quantity=quantity)
                    )
            session.flush()
            log_operation(
                logger,
                operation="update_production",
                outcome="success",
                production_id=production_id,
                fields=sorted(updates),
            )
            return production
    except SQLAlchemyError as e:
        logger.error(f"Database error updating production {production_id}: {e}")
        raise DatabaseError(f"Failed to update production {production_id}", original_error=e)


def _actual_ingredients(production: Production, actual_ingredients) -> Dict[str, Decimal]:
    if actual_ingredients is None:
        return {i.product_name: Decimal(i.planned_quantity) for i in production.ingredients}
    actual, errors = _parse_ingredients(actual_ingredients, "Actual ingredient")
    if errors:
        raise ValidationError(errors)
    return actual


def _shortages(session, actual: Dict[str, Decimal]) -> List[Dict[str, Any]]:
    shortages = []
    for product_name, quantity in actual.items():
        if quantity <= 0:
            continue
        availability = consumption_service.check_availability(
            product_name, StockType.RAW_MATERIAL, quantity, session=session
        )
        if not availability["can_consume"]:
            shortages.append(availability)
    return shortages


def check_can_complete(production_id: int, actual_ingredients=None, session=None) -> Dict[str, Any]:
    """
    Check whether a production could be completed, without consuming anything.

    Args:
        production_id: ID of the production
        actual_ingredients: Quantities to check (defaults to the planned ones)
        session: Optional database session

    Returns:
        Dict with "can_complete" (bool) and "missing" (list of dicts with
        product_name, required, available and shortfall for every short
        ingredient)

    Raises:
        ProductionNotFound: If the production doesn't exist
    """
    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        production = _get_production(session, production_id)
        actual = _actual_ingredients(production, actual_ingredients)
        missing = [
            {
                "product_name": s["product_name"],
                "required": s["required"],
                "available": s["available"],
                "shortfall": s["shortfall"],
            }
            for s in _shortages(session, actual)
        ]
    return {"can_complete": len(missing) == 0, "missing": missing}


def complete_production(
    production_id: int,
    actual_quantity,
    actual_ingredients=None,
    output_variants=None,
    completed_at: Optional[datetime] = None,
    session=None,
) -> Production:
    """
    Complete a production run.

    Consumes every actual ingredient FIFO from raw-material batches (either
    all of them or none), then creates the finished-good batch. Completing
    an already completed production changes nothing and returns it as is.

    Args:
        production_id: ID of the production
        actual_quantity: Units actually produced (>= 0)
        actual_ingredients: Raw materials actually used, product name ->
            quantity (or list of {"product_name", "quantity"}); defaults to
            the planned quantities
        output_variants: Optional label -> quantity split of the output; must
            sum to actual_quantity
        completed_at: Completion time (defaults to now); also the output
            batch's received_at
        session: Optional database session

    Returns:
        The COMPLETED Production

    Raises:
        ProductionNotFound: If the production doesn't exist
        ValidationError: If quantities or variants are invalid
        InsufficientStockError: If any ingredient is short (nothing consumed)
    """
    errors = collect_errors(validate_non_negative_number(actual_quantity, "Actual quantity"))
    parsed_variants = []
    if output_variants:
        parsed_variants, variant_errors = batch_service.parse_variants(output_variants)
        errors.extend(variant_errors)
        if not errors:
            total = sum((q for _label, q in parsed_variants), ZERO)
            if total != to_decimal(actual_quantity):
                errors.append(
                    f"Output variants: Quantities sum to {total}, expected {to_decimal(actual_quantity)}"
                )
    if errors:
        raise ValidationError(errors)

    actual_quantity = to_decimal(actual_quantity)
    completed_at = ensure_utc(completed_at) or utc_now()

    try:
        cm = nullcontext(session) if session is not None else session_scope()
        with cm as session:
            production = _get_production(session, production_id)

            if production.is_completed:
                log_operation(
                    logger,
                    operation="complete_production",
                    outcome="already_completed",
                    production_id=production_id,
                )
                return production

            actual = _actual_ingredients(production, actual_ingredients)

            # Check every ingredient before touching any batch
            shortages = _shortages(session, actual)
            if shortages:
                short = shortages[0]
                log_operation(
                    logger,
                    operation="complete_production",
                    outcome="insufficient_stock",
                    level=logging.WARNING,
                    production_id=production_id,
                    missing=[s["product_name"] for s in shortages],
                )
                raise InsufficientStockError(
                    short["product_name"], short["required"], short["available"]
                )

            material_cost = ZERO
            for product_name, quantity in actual.items():
                if quantity <= 0:
                    continue
                result = consumption_service.consume_fifo(
                    product_name, StockType.RAW_MATERIAL, quantity, session=session
                )
                material_cost += result["total_cost"]
                for entry in result["breakdown"]:
                    production.usages.append(
                        ProductionUsage(
                            batch_id=entry["batch_id"],
                            variant_label=entry["variant_label"],
                            quantity_used=entry["quantity"],
                            unit_cost=entry["unit_cost"],
                        )
                    )

            planned_names = set()
            for ingredient in production.ingredients:
                planned_names.add(ingredient.product_name)
                ingredient.actual_quantity = actual.get(ingredient.product_name, ZERO)
            for product_name, quantity in actual.items():
                if product_name not in planned_names:
                    production.ingredients.append(
                        ProductionIngredient(
                            product_name=product_name,
                            planned_quantity=ZERO,
                            actual_quantity=quantity,
                        )
                    )

            total_cost = Decimal(production.operational_cost) + material_cost
            unit_cost = total_cost / actual_quantity if actual_quantity > 0 else ZERO

            output_batch = batch_service.new_batch(
                session,
                production.output_product_name,
                StockType.FINISHED_GOOD,
                actual_quantity,
                unit_cost,
                received_at=completed_at,
                variants=parsed_variants,
                notes=f"Produced by production {production.id}",
            )

            production.status = ProductionStatus.COMPLETED.value
            production.completed_at = completed_at
            production.output_quantity = actual_quantity
            production.material_cost = material_cost
            production.total_cost = total_cost
            production.output_batch = output_batch
            session.flush()

            log_operation(
                logger,
                operation="complete_production",
                outcome="success",
                production_id=production.id,
                batch_id=output_batch.id,
                output_quantity=str(actual_quantity),
                material_cost=str(material_cost),
                total_cost=str(total_cost),
            )
            return production
    except SQLAlchemyError as e:
        logger.error(f"Database error completing production {production_id}: {e}")
        raise DatabaseError(f"Failed to complete production {production_id}", original_error=e)


def delete_production(production_id: int, session=None) -> None:
    """
    Delete a production and undo its effects.

    Restores every raw-material batch by its recorded usage, removes the
    output batch, and deletes the production's cash transactions.

    Raises:
        ProductionNotFound: If the production doesn't exist
        ConflictError: If the output batch has already been consumed
    """
    try:
        cm = nullcontext(session) if session is not None else session_scope()
        with cm as session:
            production = _get_production(session, production_id)
            output_batch = production.output_batch

            if output_batch is not None and (
                Decimal(output_batch.current_quantity) < Decimal(output_batch.initial_quantity)
                or output_batch.has_been_consumed
            ):
                log_operation(
                    logger,
                    operation="delete_production",
                    outcome="output_consumed",
                    level=logging.WARNING,
                    production_id=production_id,
                    batch_id=output_batch.id,
                )
                raise ConflictError(
                    f"Production {production_id} output has already been sold "
                    f"and the production cannot be deleted"
                )

            restored = consumption_service.restore_consumption(session, production.usages)

            if output_batch is not None:
                production.output_batch = None
                session.flush()
                session.delete(output_batch)

            cash_ledger_service.delete_linked_transactions(session, production.uuid)
            session.delete(production)
            session.flush()

            log_operation(
                logger,
                operation="delete_production",
                outcome="success",
                production_id=production_id,
                restored_quantity=str(restored),
            )
    except SQLAlchemyError as e:
        logger.error(f"Database error deleting production {production_id}: {e}")
        raise DatabaseError(f"Failed to delete production {production_id}", original_error=e)


def get_production(production_id: int, session=None) -> Production:
    """
    Retrieve a production by ID with ingredients and usages loaded.

    Raises:
        ProductionNotFound: If the production doesn't exist
    """
    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        production = _get_production(session, production_id)
        production.ingredients
        production.usages
        production.output_batch
        return production


def list_productions(status=None, session=None) -> List[Production]:
    """List productions, newest first, optionally filtered by ProductionStatus."""
    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        query = session.query(Production)
        if status is not None:
            query = query.filter(
                Production.status == (status.value if hasattr(status, "value") else status)
            )
        productions = query.order_by(Production.started_at.desc(), Production.id.desc()).all()
        for production in productions:
            production.ingredients
        return productions
