"""The HEALTH PRACTICE API MODULE"""

from datetime import datetime
import logging
import os
import sys

from flask import Flask, got_request_exception, jsonify, request
from flask_compress import Compress
from flask_cors import CORS
from flask_jwt_extended import JWTManager
from flask_limiter import Limiter
from flask_migrate import Migrate
from flask_sqlalchemy import SQLAlchemy
import rollbar
import rollbar.contrib.flask
from werkzeug.middleware.proxy_fix import ProxyFix

from hpapi.celery import make_celery
from hpapi.config import SETTINGS
from hpapi.utils.rate_limiting import (
    RateLimitConfig,
    get_user_id_or_ip,
    rate_limit_error_handler,
)

# Flask App
app = Flask(__name__)

# Respect trusted proxy configuration for accurate client IP detection
trusted_proxy_count = SETTINGS.get("TRUSTED_PROXY_COUNT", 0)
if trusted_proxy_count:
    app.wsgi_app = ProxyFix(  # type: ignore[assignment]
        app.wsgi_app,
        x_for=trusted_proxy_count,
        x_proto=trusted_proxy_count,
        x_host=trusted_proxy_count,
    )

cors_origins = os.getenv(
    "CORS_ORIGINS", "http://localhost:3000,http://localhost:8080"
).split(",")
CORS(
    app,
    origins=cors_origins,
    allow_headers=["Content-Type", "Authorization"],
    methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
)

app.config["COMPRESS_MIMETYPES"] = ["application/json", "text/plain"]
app.config["COMPRESS_LEVEL"] = 6
app.config["COMPRESS_MIN_SIZE"] = 500

Compress(app)

logger = logging.getLogger()
log_level = SETTINGS.get("logging", {}).get("level", "INFO")
logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))

logging.getLogger("urllib3.connectionpool").setLevel(logging.WARNING)

# Ensure all unhandled exceptions are logged, and reported to rollbar
formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
handler = logging.StreamHandler(stream=sys.stdout)
handler.setLevel(logging.INFO)
handler.setFormatter(formatter)
logger.addHandler(handler)

rollbar.init(
    SETTINGS.get("environment", {}).get("ROLLBAR_SERVER_TOKEN"),
    os.getenv("ENVIRONMENT"),
)
with app.app_context():
    got_request_exception.connect(rollbar.contrib.flask.report_exception, app)


def validate_cors_origins():
    """Validate CORS origins to prevent security misconfigurations."""
    environment = os.getenv("ENVIRONMENT", "dev")

    logger.info(f"Validating CORS origins for environment: {environment}")

    if environment == "prod":
        for origin in cors_origins:
            origin_lower = origin.lower()
            if "localhost" in origin_lower or "127.0.0.1" in origin_lower:
                raise ValueError(
                    f"Security Error: Localhost origin '{origin}' "
                    f"not allowed in production"
                )

        if not cors_origins or cors_origins == [""]:
            raise ValueError(
                "Security Error: CORS_ORIGINS must be explicitly "
                "set in production environment"
            )


try:
    validate_cors_origins()
except ValueError as e:
    # In production, fail fast on CORS misconfiguration
    if os.getenv("ENVIRONMENT") == "prod":
        logger.critical(f"CORS validation failed: {e}")
        raise
    logger.warning(f"CORS validation warning: {e}")


@app.after_request
def set_security_headers(response):
    """Add security headers to all responses."""
    response.headers["Content-Security-Policy"] = (
        "default-src 'self'; frame-ancestors 'none'"
    )
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
    # Authentication responses carry tokens and patient-adjacent data
    response.headers["Cache-Control"] = "no-store"

    if os.getenv("ENVIRONMENT") == "prod" or request.is_secure:
        response.headers["Strict-Transport-Security"] = (
            "max-age=31536000; includeSubDomains"
        )

    return response


app.config["SQLALCHEMY_DATABASE_URI"] = SETTINGS.get("SQLALCHEMY_DATABASE_URI")

if not app.config["SQLALCHEMY_DATABASE_URI"].startswith("sqlite"):
    app.config["SQLALCHEMY_ENGINE_OPTIONS"] = {
        # Recycle connections after 1 hour to prevent stale connections
        "pool_recycle": 3600,
        "pool_pre_ping": True,
        "pool_size": 10,
        "max_overflow": 20,
        "pool_timeout": 30,
    }

app.config["TESTING"] = SETTINGS.get("TESTING", False)
app.config["RATE_LIMITING"] = SETTINGS.get("RATE_LIMITING", {})

# The signing secret is read from settings once, here, and nowhere else
jwt_secret = SETTINGS.get("JWT_SECRET_KEY") or SETTINGS.get("SECRET_KEY")
if not jwt_secret:
    logger.warning("[AUTH]: JWT_SECRET_KEY is not set, tokens cannot be issued")

app.config["JWT_SECRET_KEY"] = jwt_secret
app.config["JWT_ACCESS_TOKEN_EXPIRES"] = SETTINGS.get("JWT_ACCESS_TOKEN_EXPIRES")
app.config["JWT_TOKEN_LOCATION"] = SETTINGS.get("JWT_TOKEN_LOCATION")
app.config["broker_url"] = SETTINGS.get("CELERY_BROKER_URL")
app.config["result_backend"] = SETTINGS.get("CELERY_RESULT_BACKEND")

app.config["MAX_CONTENT_LENGTH"] = 1 * 1024 * 1024

# Database
db = SQLAlchemy(app)
migrate = Migrate(app, db)

# Celery
celery = make_celery(app)

# Rate Limiting (must be after db and celery)
limiter = Limiter(
    app=app,
    key_func=get_user_id_or_ip,
    storage_uri=RateLimitConfig.get_storage_uri(),
    default_limits=RateLimitConfig.get_default_limits(),
    headers_enabled=True,
    enabled=RateLimitConfig.is_enabled(),
    on_breach=rate_limit_error_handler,
)

jwt = JWTManager(app)


# DB has to be ready!
from hpapi import tasks  # noqa: E402,F401
from hpapi.models import User  # noqa: E402
from hpapi.routes.api import (  # noqa: E402
    admin_endpoints,
    auth_endpoints,
    error,
)

# Blueprint Flask Routing
app.register_blueprint(auth_endpoints, url_prefix="/api/auth")
app.register_blueprint(admin_endpoints, url_prefix="/api/admin")

total_routes = len(list(app.url_map.iter_rules()))
logger.info(f"Registered Flask app with {total_routes} total routes")


@jwt.user_lookup_loader
def user_lookup_callback(_jwt_header, jwt_data):
    identity = jwt_data["sub"]
    return User.query.filter_by(id=identity).one_or_none()


@app.route("/api-health", methods=["GET"])
def health_check():
    """Simple health check endpoint with database status"""
    db_status = "unknown"

    try:
        from sqlalchemy import text

        result = db.session.execute(text("SELECT 1 as health_check")).fetchone()
        db_status = "healthy" if result and result[0] == 1 else "unhealthy"
    except Exception as e:
        logger.warning(f"Database health check failed: {str(e)}")
        db_status = "unhealthy"

    return jsonify(
        {
            "status": "ok",
            "timestamp": datetime.utcnow().isoformat(),
            "database": db_status,
            "version": "1.0",
        }
    ), 200


@app.route("/ping", methods=["GET"])
def ping():
    """Simple ping endpoint without database dependency"""
    return jsonify(
        {"status": "ok", "timestamp": datetime.utcnow().isoformat(), "message": "pong"}
    ), 200


@app.errorhandler(403)
def forbidden(e):
    return error(status=403, detail="Forbidden")


@app.errorhandler(404)
def page_not_found(e):
    return error(status=404, detail="Not Found")


@app.errorhandler(405)
def method_not_allowed(e):
    return error(status=405, detail="Method Not Allowed")


@app.errorhandler(413)
def request_entity_too_large(e):
    return error(status=413, detail="Request too large")


@app.errorhandler(500)
def internal_server_error(e):
    return error(status=500, detail="Internal Server Error")
