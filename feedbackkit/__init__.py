import os
from flask import Flask, jsonify

# Load .env only for local/dev. In prod, env vars come from the platform.
if os.getenv("APP_ENV", "development") != "production":
    from dotenv import load_dotenv
    load_dotenv(".env", override=False)


from .config import get_config
from .errors import ServiceError
from .extensions import db, migrate, csrf, login_manager, limiter, mail
from .security import init_security
from .observability import init_logging, init_sentry

def create_app():
    app = Flask(__name__, template_folder="templates")

    # ---- Rate limiting storage ----
    app_env = (os.getenv("APP_ENV", "development") or "development").lower()
    use_redis = app_env in ("staging", "production")
    storage_uri = os.environ.get("REDIS_URL") if use_redis else "memory://"
    if use_redis and not storage_uri:
        # Hard fail in stage/prod so we never silently run without RL storage
        raise RuntimeError("REDIS_URL is required in staging/production for rate limiting")

    app.config["RATELIMIT_STORAGE_URI"] = storage_uri
    app.config.setdefault("RATELIMIT_DEFAULTS", ["1000 per hour"])
    app.config.setdefault("RATELIMIT_HEADERS_ENABLED", True)

    # Config: clean, explicit, class-based
    app.config.from_object(get_config())
    app.config["APP_ENV"] = app_env

    # --- Required env validation for prod-like envs (staging/production) ---
    def _require(name: str):
        val = os.getenv(name) or app.config.get(name)
        if not val:
            raise RuntimeError(f"Missing required environment variable: {name}")
        return val

    if app_env in ("staging", "production"):
        # Enforce hard requirements at startup (not at import time)
        _require("SECRET_KEY")
        _require("DATABASE_URL")
        _require("APP_BASE_URL")

    # --- Observability & Security ---
    init_logging(app)
    init_sentry(app)

    # Apply HTTPS, HSTS & CSP only in staging/production
    if app_env in ("staging", "production"):
        init_security(app)

    # Init extensions
    db.init_app(app)
    migrate.init_app(app, db, directory="migrations")
    csrf.init_app(app)
    login_manager.init_app(app)
    limiter.init_app(app)
    mail.init_app(app)

    # Models must be imported before migrations/create_all see the metadata
    from . import models  # noqa: F401

    # Blueprints (explicit, consistent prefixes)
    from .blueprints.sdk import bp as sdk_bp
    from .blueprints.public import bp as public_bp
    from .blueprints.auth import bp as auth_bp
    from .blueprints.admin import bp as admin_bp
    from .blueprints.billing import bp as billing_bp

    # SDK surface (API key)
    app.register_blueprint(sdk_bp, url_prefix="/api/v1")
    app.register_blueprint(public_bp)                                   # "/unsubscribe"

    # Operator surface (session)
    app.register_blueprint(auth_bp, url_prefix="/admin/api/auth")
    app.register_blueprint(admin_bp, url_prefix="/admin/api")
    app.register_blueprint(billing_bp, url_prefix="/admin/api/billing")

    # Health
    @app.get("/healthz")
    @limiter.exempt
    def healthz():
        return {"status": "ok"}, 200

    # Error handlers: everything is JSON
    @app.errorhandler(ServiceError)
    def service_error(e):
        return jsonify(e.to_dict()), e.status_code

    @app.errorhandler(404)
    def not_found(e):
        return {"error": "not_found", "code": 404, "reason": "Not Found"}, 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return {"error": "method_not_allowed", "code": 405, "reason": "Method Not Allowed"}, 405

    @app.errorhandler(500)
    def server_error(e):
        return {"error": "server_error", "code": 500, "reason": "Internal Server Error"}, 500

    # CSRF error handler (clean 400 instead of generic 500)
    from flask_wtf.csrf import CSRFError
    @app.errorhandler(CSRFError)
    def handle_csrf_error(e):
        return {"error": "csrf_failed", "code": 400, "reason": e.description}, 400

    # 429 Too Many Requests with Retry-After
    @app.errorhandler(429)
    def too_many_requests(e):
        retry_after = getattr(e, "retry_after", None)
        headers = {}
        payload = {"error": "rate_limited", "code": 429, "reason": str(getattr(e, "description", ""))}
        if retry_after is not None:
            headers["Retry-After"] = str(int(retry_after))
            payload["retry_after"] = int(retry_after)
        return (payload, 429, headers)

    @login_manager.unauthorized_handler
    def unauthorized():
        return {"error": "unauthorized", "code": 401, "reason": "Login required"}, 401

    # CLI commands (ops-grade utilities)
    from .cli import register_cli
    register_cli(app)

    if not app.config.get("STRIPE_SECRET_KEY"):
        app.logger.warning("Stripe secret key missing; checkout will not work")

    return app
