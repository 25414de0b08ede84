from flask import Blueprint, jsonify

# GENERIC Error


def error(status=400, detail="Bad Request", **extra):
    return jsonify({"status": status, "detail": detail, **extra}), status


auth_endpoints = Blueprint("auth_endpoints", __name__)
admin_endpoints = Blueprint("admin_endpoints", __name__)
import hpapi.routes.api.admin  # noqa: E402, F401
import hpapi.routes.api.auth  # noqa: E402, F401
