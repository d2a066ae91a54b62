# Overview: Flask API routes for register operations; parses input and returns JSON responses.

# backend/retailpos/routes/pos.py
"""
POS API Routes

DESIGN:
- Product lookups for the register (search, barcode scan, SKU entry)
- Sales recorded atomically (header + items + stock + loyalty)
- Open carts can be extended, held, resumed, discarded, then completed
- Refunds against completed sales with manager approval

SECURITY:
- Every route requires a bearer token (require_auth)
- Refund approve/reject/complete require a manager
"""

from flask import Blueprint, current_app, g, request
from sqlalchemy.exc import SQLAlchemyError

from ..decorators import ROLE_MANAGER, require_auth, require_role
from ..responses import error_response, internal_error, ok, storage_unavailable
from ..services import (
    hold_service,
    products_service,
    refund_service,
    reporting_service,
    transaction_service,
)
from ..time_utils import parse_iso_datetime
from ..validation import ServiceError, ValidationError


pos_bp = Blueprint("pos", __name__, url_prefix="/api/pos")


def _json_body() -> dict:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Invalid JSON payload")
    return data


# =============================================================================
# PRODUCT LOOKUP
# =============================================================================

@pos_bp.get("/products/search")
@require_auth
def search_products_route():
    """
    Search active products by name, SKU or barcode.

    Query params:
        q: search text (required)
        limit: max results (default 20, max 100)
    """
    try:
        products = products_service.search_products(
            request.args.get("q", ""),
            limit=request.args.get("limit", 20, type=int),
        )
        return ok({"products": [p.to_dict() for p in products], "count": len(products)})
    except ServiceError as e:
        return error_response(e)
    except SQLAlchemyError:
        current_app.logger.exception("Failed to search products")
        return storage_unavailable()
    except Exception:
        current_app.logger.exception("Failed to search products")
        return internal_error()


@pos_bp.get("/products/barcode/<string:barcode>")
@require_auth
def get_product_by_barcode_route(barcode: str):
    try:
        product = products_service.get_product_by_barcode(barcode)
        return ok({"product": product.to_dict()})
    except ServiceError as e:
        return error_response(e)
    except SQLAlchemyError:
        current_app.logger.exception("Failed to look up barcode")
        return storage_unavailable()
    except Exception:
        current_app.logger.exception("Failed to look up barcode")
        return internal_error()


@pos_bp.get("/products/sku/<string:sku>")
@require_auth
def get_product_by_sku_route(sku: str):
    try:
        product = products_service.get_product_by_sku(sku)
        return ok({"product": product.to_dict()})
    except ServiceError as e:
        return error_response(e)
    except SQLAlchemyError:
        current_app.logger.exception("Failed to look up SKU")
        return storage_unavailable()
    except Exception:
        current_app.logger.exception("Failed to look up SKU")
        return internal_error()


# =============================================================================
# TRANSACTIONS
# =============================================================================

@pos_bp.post("/transactions")
@require_auth
def create_transaction_route():
    """
    Record a sale.

    Request body:
    {
        "branch_id": 1,  (defaults to the caller's branch)
        "customer_id": 7,  (optional)
        "items": [{"product_id": 1, "quantity": 2, "unit_price_cents": 5000,
                   "discount_cents": 0, "tax_cents": 0}],
        "subtotal_cents" / "discount_cents" / "tax_cents" / "total_cents": (optional, derived from items)
        "payment_method": "cash",
        "amount_paid_cents": 10000,
        "points_earned": 10,  (optional)
        "apply_promotions": false,  (optional: let the resolver set item discounts)
        "finalize": true  (false records an open cart without payment)
    }

    Returns:
        201: {"transaction_id", "transaction_number", "transaction", "items"}
        400: invalid input or totals that do not reconcile
        409: DUPLICATE_TRANSACTION_NUMBER, INSUFFICIENT_STOCK
    """
    try:
        data = _json_body()
        if data.get("branch_id") is None and g.current_user.branch_id is not None:
            data["branch_id"] = g.current_user.branch_id
        finalize = data.get("finalize", True)
        if not isinstance(finalize, bool):
            raise ValidationError("finalize must be a boolean", details={"field": "finalize"})

        txn = transaction_service.create_transaction(
            data,
            cashier_id=g.current_user.user_id,
            finalize=finalize,
        )
        payload = transaction_service.transaction_payload(txn)
        return ok({
            "transaction_id": txn.id,
            "transaction_number": txn.transaction_number,
            **payload,
        }, 201)
    except ServiceError as e:
        return error_response(e)
    except SQLAlchemyError:
        current_app.logger.exception("Failed to create transaction")
        return storage_unavailable()
    except Exception:
        current_app.logger.exception("Failed to create transaction")
        return internal_error()


@pos_bp.get("/transactions")
@require_auth
def list_transactions_route():
    """
    List transactions newest first.

    Query params (exactly one of):
        branch_id (optionally with start/end ISO dates), cashier_id, customer_id
    Optional:
        limit (default DEFAULT_LIST_LIMIT)
    """
    try:
        branch_id = request.args.get("branch_id", type=int)
        cashier_id = request.args.get("cashier_id", type=int)
        customer_id = request.args.get("customer_id", type=int)
        limit = request.args.get("limit", current_app.config["DEFAULT_LIST_LIMIT"], type=int)

        selectors = [v for v in (branch_id, cashier_id, customer_id) if v is not None]
        if len(selectors) != 1:
            raise ValidationError(
                "Provide exactly one of branch_id, cashier_id, customer_id",
                details={"field": "branch_id"},
            )

        if branch_id is not None:
            start, end = request.args.get("start"), request.args.get("end")
            if start or end:
                try:
                    start_dt = parse_iso_datetime(start) if start else parse_iso_datetime("1970-01-01")
                    end_dt = parse_iso_datetime(end, end_of_day=True) if end else parse_iso_datetime("9999-12-31", end_of_day=True)
                except ValueError:
                    raise ValidationError("start/end must be ISO-8601 dates", details={"field": "start"})
                txns = transaction_service.get_transactions_by_date_range(branch_id, start_dt, end_dt, limit)
            else:
                txns = transaction_service.get_transactions_by_branch(branch_id, limit)
        elif cashier_id is not None:
            txns = transaction_service.get_transactions_by_cashier(cashier_id, limit)
        else:
            txns = transaction_service.get_transactions_by_customer(customer_id, limit)

        return ok({"transactions": [t.to_dict() for t in txns], "count": len(txns)})
    except ServiceError as e:
        return error_response(e)
    except SQLAlchemyError:
        current_app.logger.exception("Failed to list transactions")
        return storage_unavailable()
    except Exception:
        current_app.logger.exception("Failed to list transactions")
        return internal_error()


@pos_bp.get("/transactions/<int:transaction_id>")
@require_auth
def get_transaction_route(transaction_id: int):
    try:
        txn = transaction_service.get_transaction(transaction_id)
        return ok(transaction_service.transaction_payload(txn))
    except ServiceError as e:
        return error_response(e)
    except SQLAlchemyError:
        current_app.logger.exception("Failed to get transaction")
        return storage_unavailable()
    except Exception:
        current_app.logger.exception("Failed to get transaction")
        return internal_error()


@pos_bp.get("/transactions/<int:transaction_id>/items")
@require_auth
def get_transaction_items_route(transaction_id: int):
    try:
        items = transaction_service.get_transaction_items(transaction_id)
        return ok({"items": [i.to_dict() for i in items], "count": len(items)})
    except ServiceError as e:
        return error_response(e)
    except SQLAlchemyError:
        current_app.logger.exception("Failed to get transaction items")
        return storage_unavailable()
    except Exception:
        current_app.logger.exception("Failed to get transaction items")
        return internal_error()


@pos_bp.post("/transactions/<int:transaction_id>/items")
@require_auth
def add_transaction_item_route(transaction_id: int):
    """
    Add a line to an open transaction.

    Returns:
        201: item added, header totals refreshed
        409: transaction is not open
    """
    try:
        item = transaction_service.add_transaction_item(transaction_id, _json_body())
        txn = transaction_service.get_transaction(transaction_id)
        return ok({"item": item.to_dict(), "transaction": txn.to_dict()}, 201)
    except ServiceError as e:
        return error_response(e)
    except SQLAlchemyError:
        current_app.logger.exception("Failed to add transaction item")
        return storage_unavailable()
    except Exception:
        current_app.logger.exception("Failed to add transaction item")
        return internal_error()


@pos_bp.post("/transactions/<int:transaction_id>/complete")
@require_auth
def complete_transaction_route(transaction_id: int):
    """
    Take payment for an open transaction.

    Request body:
    {"payment_method": "card", "amount_paid_cents": 12000, "points_earned": 12}
    """
    try:
        txn = transaction_service.complete_transaction(
            transaction_id, _json_body(), user_id=g.current_user.user_id
        )
        return ok(transaction_service.transaction_payload(txn))
    except ServiceError as e:
        return error_response(e)
    except SQLAlchemyError:
        current_app.logger.exception("Failed to complete transaction")
        return storage_unavailable()
    except Exception:
        current_app.logger.exception("Failed to complete transaction")
        return internal_error()


# =============================================================================
# HOLD / RESUME
# =============================================================================

@pos_bp.post("/transactions/<int:transaction_id>/hold")
@require_auth
def hold_transaction_route(transaction_id: int):
    """
    Park an open transaction.

    Request body (optional):
    {"notes": "Customer went to get wallet"}

    Returns:
        201: hold created, transaction status held
        404: transaction not found
        409: transaction is not open
    """
    try:
        data = _json_body()
        held = hold_service.hold_transaction(
            transaction_id,
            held_by=g.current_user.user_id,
            notes=data.get("notes"),
        )
        return ok({"held_transaction": held.to_dict()}, 201)
    except ServiceError as e:
        return error_response(e)
    except SQLAlchemyError:
        current_app.logger.exception("Failed to hold transaction")
        return storage_unavailable()
    except Exception:
        current_app.logger.exception("Failed to hold transaction")
        return internal_error()


@pos_bp.get("/held")
@require_auth
def get_held_transactions_route():
    """Active holds parked by the caller, newest first."""
    try:
        held = hold_service.get_held_transactions(g.current_user.user_id)
        return ok({"held_transactions": [h.to_dict() for h in held], "count": len(held)})
    except ServiceError as e:
        return error_response(e)
    except SQLAlchemyError:
        current_app.logger.exception("Failed to list held transactions")
        return storage_unavailable()
    except Exception:
        current_app.logger.exception("Failed to list held transactions")
        return internal_error()


@pos_bp.post("/held/<int:held_id>/resume")
@require_auth
def resume_held_transaction_route(held_id: int):
    """
    Resume a held cart.

    Returns:
        200: the snapshot taken at hold time ({"transaction", "items"})
        404: hold not found or no longer held
        409: HOLD_EXPIRED
    """
    try:
        snapshot = hold_service.resume_held_transaction(held_id)
        return ok(snapshot)
    except ServiceError as e:
        return error_response(e)
    except SQLAlchemyError:
        current_app.logger.exception("Failed to resume held transaction")
        return storage_unavailable()
    except Exception:
        current_app.logger.exception("Failed to resume held transaction")
        return internal_error()


@pos_bp.post("/held/<int:held_id>/discard")
@require_auth
def discard_held_transaction_route(held_id: int):
    try:
        held = hold_service.discard_held_transaction(held_id)
        return ok({"held_transaction": held.to_dict()})
    except ServiceError as e:
        return error_response(e)
    except SQLAlchemyError:
        current_app.logger.exception("Failed to discard held transaction")
        return storage_unavailable()
    except Exception:
        current_app.logger.exception("Failed to discard held transaction")
        return internal_error()


# =============================================================================
# REFUNDS
# =============================================================================

@pos_bp.post("/transactions/<int:transaction_id>/refunds")
@require_auth
def create_refund_route(transaction_id: int):
    """
    Create a pending refund.

    Request body:
    {"reason": "Damaged item", "refund_amount_cents": 2500}

    Returns:
        201: refund created (status: pending)
        409: transaction not completed, REFUND_EXCEEDS_TOTAL
    """
    try:
        refund = refund_service.create_refund(
            transaction_id, _json_body(), processed_by=g.current_user.user_id
        )
        return ok({"refund": refund.to_dict()}, 201)
    except ServiceError as e:
        return error_response(e)
    except SQLAlchemyError:
        current_app.logger.exception("Failed to create refund")
        return storage_unavailable()
    except Exception:
        current_app.logger.exception("Failed to create refund")
        return internal_error()


@pos_bp.get("/transactions/<int:transaction_id>/refunds")
@require_auth
def get_refunds_route(transaction_id: int):
    try:
        refunds = refund_service.get_refunds_by_transaction(transaction_id)
        return ok({"refunds": [r.to_dict() for r in refunds], "count": len(refunds)})
    except ServiceError as e:
        return error_response(e)
    except SQLAlchemyError:
        current_app.logger.exception("Failed to list refunds")
        return storage_unavailable()
    except Exception:
        current_app.logger.exception("Failed to list refunds")
        return internal_error()


@pos_bp.get("/refunds/<int:refund_id>")
@require_auth
def get_refund_route(refund_id: int):
    try:
        refund = refund_service.get_refund(refund_id)
        return ok({"refund": refund.to_dict()})
    except ServiceError as e:
        return error_response(e)
    except SQLAlchemyError:
        current_app.logger.exception("Failed to get refund")
        return storage_unavailable()
    except Exception:
        current_app.logger.exception("Failed to get refund")
        return internal_error()


@pos_bp.post("/refunds/<int:refund_id>/approve")
@require_auth
@require_role(ROLE_MANAGER)
def approve_refund_route(refund_id: int):
    try:
        refund = refund_service.approve_refund(refund_id, manager_user_id=g.current_user.user_id)
        return ok({"refund": refund.to_dict()})
    except ServiceError as e:
        return error_response(e)
    except SQLAlchemyError:
        current_app.logger.exception("Failed to approve refund")
        return storage_unavailable()
    except Exception:
        current_app.logger.exception("Failed to approve refund")
        return internal_error()


@pos_bp.post("/refunds/<int:refund_id>/reject")
@require_auth
@require_role(ROLE_MANAGER)
def reject_refund_route(refund_id: int):
    """
    Request body:
    {"rejection_reason": "Outside refund window"}
    """
    try:
        data = _json_body()
        refund = refund_service.reject_refund(
            refund_id,
            manager_user_id=g.current_user.user_id,
            rejection_reason=data.get("rejection_reason"),
        )
        return ok({"refund": refund.to_dict()})
    except ServiceError as e:
        return error_response(e)
    except SQLAlchemyError:
        current_app.logger.exception("Failed to reject refund")
        return storage_unavailable()
    except Exception:
        current_app.logger.exception("Failed to reject refund")
        return internal_error()


@pos_bp.post("/refunds/<int:refund_id>/complete")
@require_auth
@require_role(ROLE_MANAGER)
def complete_refund_route(refund_id: int):
    try:
        refund = refund_service.complete_refund(refund_id, user_id=g.current_user.user_id)
        return ok({"refund": refund.to_dict()})
    except ServiceError as e:
        return error_response(e)
    except SQLAlchemyError:
        current_app.logger.exception("Failed to complete refund")
        return storage_unavailable()
    except Exception:
        current_app.logger.exception("Failed to complete refund")
        return internal_error()


# =============================================================================
# SUMMARY
# =============================================================================

@pos_bp.get("/summary")
@require_auth
def sales_summary_route():
    """
    Branch sales summary.

    Query params:
        branch_id (defaults to the caller's branch), start, end (ISO dates)
    """
    try:
        branch_id = request.args.get("branch_id", type=int) or g.current_user.branch_id
        if not branch_id:
            raise ValidationError("branch_id is required", details={"field": "branch_id"})
        summary = reporting_service.branch_sales_summary(
            branch_id=branch_id,
            start=request.args.get("start"),
            end=request.args.get("end"),
        )
        return ok({"summary": summary})
    except ServiceError as e:
        return error_response(e)
    except SQLAlchemyError:
        current_app.logger.exception("Failed to build sales summary")
        return storage_unavailable()
    except Exception:
        current_app.logger.exception("Failed to build sales summary")
        return internal_error()
