import os

from flask import Flask, jsonify, request
from werkzeug.exceptions import HTTPException

from facilityflow.config import Config
from facilityflow.db import close_db, get_db, init_db
from facilityflow.db_migrations import register_db_cli
from facilityflow.observability import configure_json_logging, ensure_request_id
from facilityflow.security import apply_security_headers, enforce_rate_limit


def create_app(config_class=Config):
    app = Flask(__name__)
    app.config.from_object(config_class)
    configure_json_logging(app)

    _ensure_database_dir(app)
    _register_error_handlers(app)
    _register_security(app)
    app.extensions["facilityflow"] = build_services(app.config)
    _register_blueprints(app)
    _register_health(app)
    register_db_cli(app)
    _register_user_cli(app)
    _maybe_init_schema(app)

    app.teardown_appcontext(close_db)
    return app


def build_services(config, *, clock=None, renderer=None, notification_sink=None, email_sink=None) -> dict:
    from facilityflow.auth import IdentityService
    from facilityflow.contexts.procurement.application.external_service import ExternalChannelService
    from facilityflow.contexts.procurement.application.invite_ledger import InviteLedger
    from facilityflow.contexts.procurement.application.lifecycle_service import LifecycleEngine
    from facilityflow.contexts.procurement.infrastructure.repositories import NotificationRepository
    from facilityflow.notifications import DatabaseNotificationSink, LoggingEmailSink, NotificationFanout
    from facilityflow.services.quotation_pdf import ReportlabQuotationRenderer
    from facilityflow.services.storage import SignedUploadStorage
    from facilityflow.settings import SettingsCache, prefixes_from_config
    from facilityflow.timeutils import utc_now

    clock = clock or utc_now
    notifications = NotificationRepository()
    settings = SettingsCache(
        ttl_seconds=int(config.get("SETTINGS_CACHE_TTL_SECONDS", 30)),
        default_prefixes=prefixes_from_config(config),
    )
    ledger = InviteLedger(clock=clock, public_base_url=config.get("PUBLIC_BASE_URL", ""))
    engine = LifecycleEngine(
        settings=settings,
        fanout=NotificationFanout(
            notification_sink or DatabaseNotificationSink(repository=notifications, clock=clock),
            email_sink or LoggingEmailSink(),
        ),
        renderer=renderer or ReportlabQuotationRenderer(),
        ledger=ledger,
        clock=clock,
        rfq_invite_ttl_days=int(config.get("RFQ_INVITE_TTL_DAYS", 14)),
        order_invite_ttl_days=int(config.get("ORDER_INVITE_TTL_DAYS", 7)),
        rfqs=ledger.rfqs,
        orders=ledger.orders,
    )
    storage = SignedUploadStorage(
        secret_key=config["SECRET_KEY"],
        public_base_url=config.get("PUBLIC_BASE_URL", ""),
        upload_folder=config.get("UPLOAD_FOLDER") or "uploads",
        ttl_seconds=int(config.get("UPLOAD_URL_TTL_SECONDS", 600)),
    )
    return {
        "engine": engine,
        "external": ExternalChannelService(engine, ledger, storage),
        "identity": IdentityService(
            config["SECRET_KEY"],
            max_age_seconds=int(config.get("ACCESS_TOKEN_MAX_AGE_SECONDS", 43200)),
            users=engine.users,
        ),
        "storage": storage,
        "settings": settings,
        "notifications": notifications,
    }


def _ensure_database_dir(app: Flask) -> None:
    database_dir = app.config.get("DATABASE_DIR")
    if database_dir:
        os.makedirs(database_dir, exist_ok=True)


def _maybe_init_schema(app: Flask) -> None:
    auto_init = bool(app.config.get("DB_AUTO_INIT", False))
    if app.testing:
        auto_init = True
    if not auto_init:
        return

    flask_env = (os.environ.get("FLASK_ENV", "development") or "development").strip().lower()
    if not app.testing and flask_env != "development":
        app.logger.warning("db_auto_init_skipped", extra={"flask_env": flask_env})
        return

    with app.app_context():
        init_db()


def _register_blueprints(app: Flask) -> None:
    from facilityflow.routes.external_routes import external_bp, uploads_bp
    from facilityflow.routes.procurement_routes import procurement_bp

    app.register_blueprint(procurement_bp)
    app.register_blueprint(external_bp)
    app.register_blueprint(uploads_bp)


def _register_user_cli(app: Flask) -> None:
    from facilityflow.cli import register_user_cli

    register_user_cli(app)


def _register_error_handlers(app: Flask) -> None:
    from facilityflow.errors import AppError, SystemError

    @app.before_request
    def _ensure_request_id() -> None:
        ensure_request_id()

    @app.after_request
    def _append_request_id(response):
        response.headers["X-Request-Id"] = ensure_request_id()
        return apply_security_headers(response)

    def _log_error(error: AppError, request_id: str) -> None:
        log_method = app.logger.error if error.critical else app.logger.warning
        log_method(
            "application_error",
            extra={
                "request_id": request_id,
                "error_code": error.code,
                "http_status": error.http_status,
                "message_key": error.message_key,
                "details": error.details,
                "request_path": request.path,
                "http_method": request.method,
            },
            exc_info=error.critical,
        )

    @app.errorhandler(AppError)
    def _handle_app_error(exc: AppError):
        request_id = ensure_request_id()
        _log_error(exc, request_id)
        return jsonify(exc.to_response_payload(request_id)), exc.http_status

    @app.errorhandler(Exception)
    def _handle_unexpected(exc: Exception):
        if isinstance(exc, HTTPException):
            return exc

        request_id = ensure_request_id()
        mapped = SystemError(
            code="unexpected_error",
            message_key="unexpected_error",
            http_status=500,
            critical=True,
            details=str(exc),
        )
        app.logger.exception(
            "unexpected_exception",
            extra={
                "request_id": request_id,
                "error_code": mapped.code,
                "request_path": request.path,
                "http_method": request.method,
            },
        )
        return jsonify(mapped.to_response_payload(request_id)), mapped.http_status


def _register_security(app: Flask) -> None:
    @app.before_request
    def _rate_limit_guard():
        return enforce_rate_limit()


def _register_health(app: Flask) -> None:
    @app.route("/health")
    def health():
        db_path = str(app.config.get("DB_PATH") or "unknown")
        payload = {
            "status": "ok",
            "db": "postgres" if db_path.startswith("postgres") else "sqlite",
            "env": os.environ.get("FLASK_ENV", "development"),
        }
        try:
            get_db().execute("SELECT 1").fetchone()
        except Exception:  # noqa: BLE001
            app.logger.exception("health_db_check_failed")
            payload["status"] = "degraded"
        return payload, 200
