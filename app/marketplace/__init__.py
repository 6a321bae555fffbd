import logging
import os
from datetime import timedelta

from dotenv import load_dotenv
from flask import Flask, g, render_template, request, session

from app.marketplace.config import load_config
from app.marketplace.db import init_db, teardown_db_session
from app.marketplace.auth import bp as auth_bp, load_current_user
from app.marketplace.routes import bp as routes_bp
from app.marketplace.dashboard import bp as dashboard_bp
from app.marketplace.errors import ServiceError, status_for
from app.marketplace.gating import gate_request
from app.marketplace.mailer import mailer_from_config
from app.marketplace.responses import api_error
from app.marketplace.storage import storage_from_config
from app.marketplace.modules.accounts.api import bp as accounts_api_bp
from app.marketplace.modules.visitors.api import bp as visitors_api_bp
from app.marketplace.modules.pricing.api import bp as pricing_api_bp
from app.marketplace.modules.projects.api import bp as projects_api_bp
from app.marketplace.modules.bids.api import bp as bids_api_bp
from app.marketplace.modules.freelancers.api import bp as freelancers_api_bp
from app.marketplace.modules.moderators.api import bp as moderators_api_bp
from app.marketplace.modules.clients.api import bp as clients_api_bp
from app.marketplace.modules.payments.api import bp as payments_api_bp
from app.marketplace.modules.drafts.api import bp as drafts_api_bp
from app.marketplace.modules.payments.stripe_client import gateway_from_config

API_PREFIX = "/api/v1"

# JSON endpoints reachable without a session; they never carry a CSRF token.
_CSRF_EXEMPT_PREFIXES = (
    f"{API_PREFIX}/auth/",
    f"{API_PREFIX}/visitors/",
    f"{API_PREFIX}/verify-payment",
    f"{API_PREFIX}/payment/webhook",
)


def _is_api_request() -> bool:
    return request.path.startswith("/api/")


def create_app() -> Flask:
    load_dotenv()
    app = Flask(__name__, template_folder="templates", static_folder="static")
    app.config.from_mapping(load_config())
    app.config["PERMANENT_SESSION_LIFETIME"] = timedelta(hours=8)
    app.config["SESSION_REFRESH_EACH_REQUEST"] = True

    app.logger.setLevel(os.environ.get("LOG_LEVEL", "INFO").upper())

    # CSRF protection (minimal)
    from app.marketplace.security import ensure_csrf_token, has_bearer_token, validate_csrf

    @app.context_processor
    def _inject_csrf() -> dict:
        return {"csrf_token": ensure_csrf_token()}

    @app.context_processor
    def _inject_permissions() -> dict:
        from app.marketplace.rbac import user_has_permission

        def has_perm(key: str) -> bool:
            return user_has_permission(getattr(g, "current_user", None), key)

        return {"has_perm": has_perm, "current_role": getattr(g, "current_role", None)}

    @app.template_filter("dateformat")
    def _dateformat_filter(value, format: str = "%Y-%m-%d") -> str:
        if value is None:
            return "-"
        if hasattr(value, "strftime"):
            return value.strftime(format)
        return str(value)

    @app.template_filter("money")
    def _money_filter(value) -> str:
        if value is None:
            return "-"
        return f"${value:,.2f}"

    @app.before_request
    def _csrf_guard():
        if request.path.startswith(("/static/", "/health", "/healthz")):
            return None
        if not app.config.get("CSRF_ENABLED", True):
            return None
        if request.method not in ("POST", "PUT", "PATCH", "DELETE"):
            return None
        # Token-authenticated API calls are not exposed to cross-site form posts.
        if has_bearer_token(request) or request.path.startswith(_CSRF_EXEMPT_PREFIXES):
            return None
        session.permanent = True
        ensure_csrf_token()
        if not validate_csrf(request):
            if _is_api_request():
                return api_error("CSRF token missing or invalid.", 400)
            return render_template("errors/400.html", message="CSRF token missing or invalid."), 400
        return None

    # Production guardrails (fail fast with clear logs)
    env = (app.config.get("ENV") or "").strip().lower()
    if env in ("prod", "production"):
        if not app.config.get("DATABASE_URL") or str(app.config["DATABASE_URL"]).startswith("sqlite"):
            raise RuntimeError("DATABASE_URL must be Postgres in production (not sqlite).")
        if str(app.config.get("SECRET_KEY") or "") in ("", "change-me"):
            raise RuntimeError("SECRET_KEY must be set to a strong value in production (not default).")
        if str(app.config.get("JWT_SECRET") or "") in ("", "change-me"):
            raise RuntimeError("JWT_SECRET must be set to a strong value in production (not default).")

    init_db(app)

    if hasattr(os, "register_at_fork"):
        def _after_fork_child():
            engine = app.extensions.get("sqlalchemy_engine")
            if engine:
                engine.dispose()

        os.register_at_fork(after_in_child=_after_fork_child)

    # Storage health check (fail loudly on misconfiguration)
    if app.config.get("STORAGE_BACKEND") == "s3":
        missing_s3 = [k for k in ("S3_ENDPOINT", "S3_BUCKET", "S3_ACCESS_KEY_ID", "S3_SECRET_ACCESS_KEY") if not app.config.get(k)]
        if missing_s3:
            app.logger.error("STORAGE CONFIG ERROR: Missing required S3 env vars: %s", ", ".join(missing_s3))
    if app.config.get("MAIL_BACKEND") == "smtp" and not app.config.get("MAIL_SERVER"):
        app.logger.error("MAIL CONFIG ERROR: MAIL_BACKEND=smtp requires MAIL_SERVER")
    if not app.config.get("STRIPE_SECRET_KEY"):
        app.logger.warning("STRIPE_SECRET_KEY is not set; checkout and payment verification will fail.")

    app.extensions["storage"] = storage_from_config(app.config)
    app.extensions["mailer"] = mailer_from_config(app.config)
    app.extensions["payment_gateway"] = gateway_from_config(app.config)

    app.register_blueprint(routes_bp)
    app.register_blueprint(auth_bp)
    app.register_blueprint(dashboard_bp, url_prefix="/dashboard")
    app.register_blueprint(accounts_api_bp, url_prefix=f"{API_PREFIX}/auth")
    for api_bp in (
        visitors_api_bp,
        pricing_api_bp,
        projects_api_bp,
        drafts_api_bp,
        bids_api_bp,
        freelancers_api_bp,
        moderators_api_bp,
        clients_api_bp,
        payments_api_bp,
    ):
        app.register_blueprint(api_bp, url_prefix=API_PREFIX)

    # Order matters: user first, then role gating.
    app.before_request(load_current_user)
    app.before_request(gate_request)
    app.teardown_appcontext(teardown_db_session)

    @app.errorhandler(ServiceError)
    def _service_error(e: ServiceError):  # type: ignore[no-redef]
        if _is_api_request():
            return api_error(e.message, e.status, e.data)
        return render_template("errors/400.html", message=e.message), e.status

    @app.errorhandler(ValueError)
    @app.errorhandler(PermissionError)
    def _plain_error(e: Exception):  # type: ignore[no-redef]
        status = status_for(e)
        if _is_api_request():
            return api_error(str(e), status)
        return render_template("errors/400.html", message=str(e)), status

    @app.errorhandler(400)
    def _err_400(e):  # type: ignore[no-redef]
        if _is_api_request():
            return api_error("Bad request.", 400)
        return render_template("errors/400.html", message=getattr(e, "description", None)), 400

    @app.errorhandler(403)
    def _err_403(e):  # type: ignore[no-redef]
        missing = getattr(g, "missing_permission", None)
        if missing:
            app.logger.warning("Forbidden: missing_permission=%s request_id=%s", missing, getattr(g, "request_id", None))
        if _is_api_request():
            return api_error("Forbidden.", 403)
        return render_template("errors/403.html", missing_permission=missing), 403

    @app.errorhandler(404)
    def _err_404(e):  # type: ignore[no-redef]
        if _is_api_request():
            return api_error("Not found.", 404)
        return render_template("errors/404.html"), 404

    @app.errorhandler(405)
    def _err_405(e):  # type: ignore[no-redef]
        if _is_api_request():
            return api_error("Method not allowed.", 405)
        return e

    @app.errorhandler(413)
    def _err_413(e):  # type: ignore[no-redef]
        limit_mb = int(app.config.get("MAX_CONTENT_LENGTH") or 0) // (1024 * 1024)
        if _is_api_request():
            return api_error(f"Upload too large. Maximum request size is {limit_mb}MB.", 413)
        return render_template("errors/400.html", message=f"File too large. Maximum size is {limit_mb}MB."), 413

    @app.errorhandler(500)
    def _err_500(e):  # type: ignore[no-redef]
        app.logger.exception("Unhandled 500 (request_id=%s)", getattr(g, "request_id", None))
        if _is_api_request():
            return api_error("Internal server error.", 500)
        return render_template("errors/500.html"), 500

    logging.getLogger(__name__).info("create_app() complete; app ready to serve")

    return app
