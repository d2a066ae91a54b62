# Overview: Flask API routes for promotions; parses input and returns JSON responses.

# backend/retailpos/routes/promotions.py
"""
Promotions API Routes

DESIGN:
- Catalog CRUD (delete is a soft deactivate)
- Read views: active, upcoming, expired, top, by branch, by product
- Conflict check over a date window, usage figures per promotion
- Discount resolution for a single cart line

SECURITY:
- Every route requires a bearer token (require_auth)
- Create/update/delete require a manager
"""

from flask import Blueprint, current_app, g, request
from sqlalchemy.exc import SQLAlchemyError

from ..decorators import ROLE_MANAGER, require_auth, require_role
from ..responses import error_response, internal_error, ok, storage_unavailable
from ..services import discount_service, promotions_service
from ..validation import ServiceError, ValidationError


promotions_bp = Blueprint("promotions", __name__, url_prefix="/api/promotions")


# =============================================================================
# CATALOG CRUD
# =============================================================================

@promotions_bp.get("")
@require_auth
def list_promotions_route():
    """
    List promotions, highest priority first.

    Query params:
        active_only: "true" to skip deactivated promotions
        type: restrict to one promo_type
    """
    try:
        active_only = request.args.get("active_only", "false").lower() == "true"
        promos = promotions_service.list_promotions(active_only, request.args.get("type"))
        return ok({"promotions": promos})
    except ServiceError as e:
        return error_response(e)
    except SQLAlchemyError:
        current_app.logger.exception("Failed to list promotions")
        return storage_unavailable()
    except Exception:
        current_app.logger.exception("Failed to list promotions")
        return internal_error()


@promotions_bp.post("")
@require_auth
@require_role(ROLE_MANAGER)
def create_promotion_route():
    """
    Create a promotion.

    Request body:
    {
        "name": "Weekend 20%",
        "promo_type": "percentage",
        "discount_value": 2000,
        "start_date": "2026-01-01T00:00:00Z",
        "end_date": "2026-01-31T23:59:59Z",
        "priority": 10
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        promo = promotions_service.create_promotion(data, g.current_user.user_id)
        return ok({"promotion": promo}, 201)
    except ServiceError as e:
        return error_response(e)
    except SQLAlchemyError:
        current_app.logger.exception("Failed to create promotion")
        return storage_unavailable()
    except Exception:
        current_app.logger.exception("Failed to create promotion")
        return internal_error()


@promotions_bp.get("/<int:promo_id>")
@require_auth
def get_promotion_route(promo_id: int):
    try:
        promo = promotions_service.get_promotion(promo_id)
        return ok({"promotion": promo.to_dict()})
    except ServiceError as e:
        return error_response(e)
    except SQLAlchemyError:
        current_app.logger.exception("Failed to get promotion")
        return storage_unavailable()
    except Exception:
        current_app.logger.exception("Failed to get promotion")
        return internal_error()


@promotions_bp.patch("/<int:promo_id>")
@require_auth
@require_role(ROLE_MANAGER)
def update_promotion_route(promo_id: int):
    """Partial update; unknown or read-only fields are rejected."""
    try:
        data = request.get_json(silent=True) or {}
        promo = promotions_service.update_promotion(promo_id, data)
        return ok({"promotion": promo})
    except ServiceError as e:
        return error_response(e)
    except SQLAlchemyError:
        current_app.logger.exception("Failed to update promotion")
        return storage_unavailable()
    except Exception:
        current_app.logger.exception("Failed to update promotion")
        return internal_error()


@promotions_bp.delete("/<int:promo_id>")
@require_auth
@require_role(ROLE_MANAGER)
def delete_promotion_route(promo_id: int):
    """Deactivate a promotion. The row stays for sale history."""
    try:
        promo = promotions_service.delete_promotion(promo_id)
        return ok({"promotion": promo})
    except ServiceError as e:
        return error_response(e)
    except SQLAlchemyError:
        current_app.logger.exception("Failed to delete promotion")
        return storage_unavailable()
    except Exception:
        current_app.logger.exception("Failed to delete promotion")
        return internal_error()


# =============================================================================
# READ VIEWS
# =============================================================================

@promotions_bp.get("/active")
@require_auth
def get_active_promotions_route():
    try:
        promos = promotions_service.get_active_promotions()
        return ok({"promotions": [p.to_dict() for p in promos]})
    except ServiceError as e:
        return error_response(e)
    except SQLAlchemyError:
        current_app.logger.exception("Failed to list active promotions")
        return storage_unavailable()
    except Exception:
        current_app.logger.exception("Failed to list active promotions")
        return internal_error()


@promotions_bp.get("/upcoming")
@require_auth
def get_upcoming_promotions_route():
    """
    Promotions starting within the next N days.

    Query params:
        days: horizon in days (default 7)
    """
    try:
        days = request.args.get("days", 7, type=int)
        return ok({"promotions": promotions_service.get_upcoming_promotions(days)})
    except ServiceError as e:
        return error_response(e)
    except SQLAlchemyError:
        current_app.logger.exception("Failed to list upcoming promotions")
        return storage_unavailable()
    except Exception:
        current_app.logger.exception("Failed to list upcoming promotions")
        return internal_error()


@promotions_bp.get("/expired")
@require_auth
def get_expired_promotions_route():
    try:
        return ok({"promotions": promotions_service.get_expired_promotions()})
    except ServiceError as e:
        return error_response(e)
    except SQLAlchemyError:
        current_app.logger.exception("Failed to list expired promotions")
        return storage_unavailable()
    except Exception:
        current_app.logger.exception("Failed to list expired promotions")
        return internal_error()


@promotions_bp.get("/top")
@require_auth
def get_top_promotions_route():
    try:
        limit = request.args.get("limit", 10, type=int)
        return ok({"promotions": promotions_service.get_top_promotions(limit)})
    except ServiceError as e:
        return error_response(e)
    except SQLAlchemyError:
        current_app.logger.exception("Failed to list top promotions")
        return storage_unavailable()
    except Exception:
        current_app.logger.exception("Failed to list top promotions")
        return internal_error()


@promotions_bp.get("/branch/<int:branch_id>")
@require_auth
def get_promotions_by_branch_route(branch_id: int):
    """Live promotions that cover a branch (an empty branch set covers all)."""
    try:
        return ok({"promotions": promotions_service.get_promotions_by_branch(branch_id)})
    except ServiceError as e:
        return error_response(e)
    except SQLAlchemyError:
        current_app.logger.exception("Failed to list promotions by branch")
        return storage_unavailable()
    except Exception:
        current_app.logger.exception("Failed to list promotions by branch")
        return internal_error()


@promotions_bp.get("/product/<int:product_id>")
@require_auth
def get_promotions_by_product_route(product_id: int):
    """Live promotions that cover a product (an empty product set covers all)."""
    try:
        return ok({"promotions": promotions_service.get_promotions_by_product(product_id)})
    except ServiceError as e:
        return error_response(e)
    except SQLAlchemyError:
        current_app.logger.exception("Failed to list promotions by product")
        return storage_unavailable()
    except Exception:
        current_app.logger.exception("Failed to list promotions by product")
        return internal_error()


@promotions_bp.get("/conflicts")
@require_auth
def check_conflicts_route():
    """
    Promotions whose window overlaps [start_date, end_date].

    Query params:
        start_date, end_date: ISO-8601 (required)
        branch_id, product_id: annotate each conflict with scope_overlap
        exclude_id: skip this promotion (when editing it)
    """
    try:
        try:
            result = promotions_service.check_conflicts(
                request.args.get("start_date"),
                request.args.get("end_date"),
                branch_id=request.args.get("branch_id", type=int),
                product_id=request.args.get("product_id", type=int),
                exclude_id=request.args.get("exclude_id", type=int),
            )
        except ServiceError:
            raise
        except ValueError:
            raise ValidationError("start_date/end_date must be ISO-8601 dates", details={"field": "start_date"})
        return ok(result)
    except ServiceError as e:
        return error_response(e)
    except SQLAlchemyError:
        current_app.logger.exception("Failed to check promotion conflicts")
        return storage_unavailable()
    except Exception:
        current_app.logger.exception("Failed to check promotion conflicts")
        return internal_error()


@promotions_bp.get("/<int:promo_id>/usage")
@require_auth
def get_promotion_usage_route(promo_id: int):
    """Sale count, discount given and net revenue for lines carrying the promotion."""
    try:
        return ok(promotions_service.get_promotion_usage(promo_id))
    except ServiceError as e:
        return error_response(e)
    except SQLAlchemyError:
        current_app.logger.exception("Failed to get promotion usage")
        return storage_unavailable()
    except Exception:
        current_app.logger.exception("Failed to get promotion usage")
        return internal_error()


# =============================================================================
# RESOLUTION
# =============================================================================

@promotions_bp.get("/<int:promo_id>/validate")
@require_auth
def validate_promotion_route(promo_id: int):
    try:
        return ok(promotions_service.validate_promotion(promo_id))
    except ServiceError as e:
        return error_response(e)
    except SQLAlchemyError:
        current_app.logger.exception("Failed to validate promotion")
        return storage_unavailable()
    except Exception:
        current_app.logger.exception("Failed to validate promotion")
        return internal_error()


@promotions_bp.post("/calculate-discount")
@require_auth
def calculate_discount_route():
    """
    Resolve the best single promotion for one cart line.

    Request body:
    {"product_id": 1, "quantity": 2, "unit_price_cents": 10000, "branch_id": 1,
     "customer_id": 7, "current_time": "2026-01-01T12:00:00Z"}
    """
    try:
        data = request.get_json(silent=True)
        return ok(discount_service.calculate_discount(data))
    except ServiceError as e:
        return error_response(e)
    except SQLAlchemyError:
        current_app.logger.exception("Failed to calculate discount")
        return storage_unavailable()
    except Exception:
        current_app.logger.exception("Failed to calculate discount")
        return internal_error()
