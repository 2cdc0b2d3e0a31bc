"""
JSON endpoints that forward admin user-management calls to the platform's
functions. The function authorizes the caller from the forwarded bearer token.
"""
from __future__ import annotations

from flask import Blueprint, current_app, g, jsonify, request
from werkzeug.exceptions import BadRequest

from app.treetrace.backend import BackendError

bp = Blueprint("api", __name__)


def _forward(function_name: str, payload: dict, default_error: str):
    auth_header = request.headers.get("Authorization") or ""
    client = current_app.extensions["backend"].with_token(None)
    resp = client.invoke_function(function_name, payload, authorization=auth_header)
    if not resp.ok:
        data = resp.data if isinstance(resp.data, dict) else {}
        return jsonify({"error": data.get("error") or default_error}), resp.status
    return jsonify(resp.data if resp.data is not None else {}), 200


def _json_object() -> dict:
    body = request.get_json(force=True, silent=False) or {}
    if not isinstance(body, dict):
        raise BadRequest("JSON body must be an object.")
    return body


@bp.post("/admin/create-user")
def create_user_proxy():
    try:
        body = _json_object()
        payload = {
            "email": body.get("email"),
            "password": body.get("password"),
            "roleName": body.get("roleName"),
        }
        return _forward(
            current_app.config["CREATE_USER_FUNCTION"],
            payload,
            "Failed to create user via Edge Function",
        )
    except (BackendError, BadRequest, ValueError) as e:
        current_app.logger.error("Error in create-user API route (request_id=%s): %s", getattr(g, "request_id", None), e)
        return jsonify({"error": str(e) or "Internal Server Error"}), 500


@bp.post("/admin/delete-user")
def delete_user_proxy():
    try:
        body = _json_object()
        return _forward(
            current_app.config["DELETE_USER_FUNCTION"],
            {"userId": body.get("userId")},
            "Failed to delete user via Edge Function",
        )
    except (BackendError, BadRequest, ValueError) as e:
        current_app.logger.error("Error in delete-user API route (request_id=%s): %s", getattr(g, "request_id", None), e)
        return jsonify({"error": str(e) or "Internal Server Error"}), 500
