# Overview: JSON response shapes shared by the API routes.

from __future__ import annotations

from flask import jsonify

from .validation import ServiceError


def ok(payload: dict | None = None, status: int = 200):
    body = {"success": True}
    if payload:
        body.update(payload)
    return jsonify(body), status


def error_response(exc: ServiceError):
    return jsonify(exc.to_dict()), exc.status_code


def storage_unavailable():
    return jsonify({
        "success": False,
        "error": "Storage unavailable",
        "code": "STORAGE_UNAVAILABLE",
        "details": {},
    }), 503


def internal_error():
    return jsonify({
        "success": False,
        "error": "Internal server error",
        "code": "INTERNAL_ERROR",
        "details": {},
    }), 500
