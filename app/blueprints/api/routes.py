"""
app/blueprints/api/routes.py

JSON API.

- POST /api/functions/<name>   -> functions.invoke(name, json body)
- POST /api/upload             -> save_upload(file), admin only
- GET  /api/uploads/<filename> -> stored upload

The blueprint is CSRF-exempt (see create_app); it is session authenticated and each
named operation checks the caller's role itself.
"""

from __future__ import annotations

import io

from flask import Blueprint, current_app, jsonify, request, send_file, send_from_directory
from flask_login import current_user, login_required

from ...functions import FunctionError, invoke, save_upload
from ...security import admin_required

api_bp = Blueprint("api", __name__, url_prefix="/api")


def _error(message: str, status: int):
    return jsonify({"error": message}), status


@api_bp.route("/functions/<name>", methods=["POST"])
@login_required
def invoke_function(name: str):
    payload = request.get_json(silent=True)
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        return _error("Invalid JSON body", 400)

    try:
        result = invoke(name, payload, current_user)
    except FunctionError as exc:
        return _error(exc.message, exc.status)

    if name == "generateQuotePdf":
        return send_file(
            io.BytesIO(result["pdf"]),
            mimetype="application/pdf",
            as_attachment=True,
            download_name=result["filename"],
        )
    return jsonify(result)


@api_bp.route("/upload", methods=["POST"])
@login_required
@admin_required
def upload():
    try:
        result = save_upload(request.files.get("file"))
    except FunctionError as exc:
        return _error(exc.message, exc.status)
    return jsonify(result), 201


@api_bp.route("/uploads/<path:filename>")
@login_required
def uploaded_file(filename: str):
    return send_from_directory(current_app.config["UPLOAD_FOLDER"], filename)
