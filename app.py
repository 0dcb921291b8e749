import os
import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from flask import Flask, current_app, jsonify
from flask_cors import CORS
from flask_jwt_extended import JWTManager
from werkzeug.exceptions import HTTPException
from werkzeug.middleware.proxy_fix import ProxyFix

from document_store import DocumentStore, SQLDocumentStore
from firebase_service import FirebaseService, FirestoreDocumentStore
from services import (AuditService, DriverService, DutyService, LocationReportingService,
                      ReconciliationService, ReportingService, SessionManager)
from services.exceptions import AuthenticationError, InvalidDriverState, SyncError, ValidationError
from timezone_utils import utc_now
from utils.config_validator import env_flag, env_number
from utils.logging_config import setup_logging, log_request_start, log_request_end

logger = logging.getLogger(__name__)

jwt = JWTManager()

# HTTP status for ValidationError codes; anything else is a 400
VALIDATION_STATUS = {
    'not-found': 404,
    'not-owner': 403,
    'invalid-state': 409,
    'driver-unavailable': 409,
}


@dataclass
class AppServices:
    store: DocumentStore
    firebase: FirebaseService
    audit: AuditService
    drivers: DriverService
    duties: DutyService
    reporting: ReportingService
    reconciliation: ReconciliationService
    sessions: SessionManager
    location: Optional[LocationReportingService] = None
    location_runner: Optional[object] = None
    reconcile_scheduler: Optional[object] = None


def get_services() -> AppServices:
    return current_app.extensions['dutysync']


def error_response(code: str, message: str, status: int):
    return jsonify({
        'success': False,
        'error': code,
        'message': message
    }), status


def load_config(app: Flask):
    """Environment-driven defaults; create_app overrides win"""
    app.config.setdefault('DOCUMENT_STORE', os.environ.get('DOCUMENT_STORE', 'sql').lower())
    app.config.setdefault('DOCUMENT_STORE_URL', os.environ.get('DOCUMENT_STORE_URL', 'sqlite:///dutysync.db'))
    app.config.setdefault('FIREBASE_CREDENTIALS', os.environ.get('FIREBASE_CREDENTIALS'))
    app.config.setdefault('USE_STORE_TRANSACTIONS', env_flag('USE_STORE_TRANSACTIONS', True))
    app.config.setdefault('LOCATION_TRACKING_ENABLED', env_flag('LOCATION_TRACKING_ENABLED'))
    app.config.setdefault('DEVICE_STORAGE_URL', os.environ.get('DEVICE_STORAGE_URL', 'sqlite:///device_storage.db'))
    app.config.setdefault('LOCATION_GATEWAY_URL', os.environ.get('LOCATION_GATEWAY_URL', 'http://127.0.0.1:8765'))
    app.config.setdefault('LOCATION_TIME_INTERVAL_SECONDS', env_number('LOCATION_TIME_INTERVAL_SECONDS', 30))
    app.config.setdefault('LOCATION_DISTANCE_INTERVAL_METERS', env_number('LOCATION_DISTANCE_INTERVAL_METERS', 10))
    app.config.setdefault('RECONCILE_INTERVAL_MINUTES', int(env_number('RECONCILE_INTERVAL_MINUTES', 0)))

    app.config.setdefault('JWT_SECRET_KEY', os.environ.get('JWT_SECRET_KEY') or app.secret_key)
    app.config.setdefault('JWT_ACCESS_TOKEN_EXPIRES',
                          timedelta(hours=env_number('JWT_ACCESS_TOKEN_EXPIRES_HOURS', 12)))
    app.config.setdefault('JWT_ALGORITHM', 'HS256')


def build_document_store(config, firebase: FirebaseService) -> DocumentStore:
    backend = config['DOCUMENT_STORE']
    if backend == 'firestore':
        if not firebase.initialize():
            raise RuntimeError("DOCUMENT_STORE=firestore but Firebase credentials are not configured")
        logger.info("Using Firestore document store")
        return FirestoreDocumentStore(firebase.firestore_client())
    if backend != 'sql':
        raise RuntimeError(f"Unknown DOCUMENT_STORE backend: {backend}")
    logger.info("Using SQL document store")
    return SQLDocumentStore(config['DOCUMENT_STORE_URL'])


def build_location_service(config, store: DocumentStore, audit: AuditService):
    """On-vehicle deployments report position from the same process as the API"""
    from utils.device_storage import DeviceStorage
    from utils.geolocation import GatewayLocationProvider
    from utils.task_manager import LocationUpdatesRunner, TaskManager

    storage = DeviceStorage(config['DEVICE_STORAGE_URL'])
    task_manager = TaskManager(storage)
    provider = GatewayLocationProvider(config['LOCATION_GATEWAY_URL'])
    location = LocationReportingService(
        store, storage, task_manager, provider,
        audit_service=audit,
        time_interval=config['LOCATION_TIME_INTERVAL_SECONDS'],
        distance_interval=config['LOCATION_DISTANCE_INTERVAL_METERS'],
    )
    return location, LocationUpdatesRunner(task_manager, provider)


def create_app(config_overrides=None):
    app = Flask(__name__)
    app.secret_key = (config_overrides or {}).get('SECRET_KEY') or os.environ.get("SESSION_SECRET")
    if not app.secret_key:
        raise RuntimeError("SESSION_SECRET environment variable is required but not set")
    app.config.update(config_overrides or {})
    load_config(app)

    setup_logging(app)

    app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1)

    configured_origins = os.environ.get('ALLOWED_ORIGINS', '').split(',')
    allowed_origins = [origin.strip() for origin in configured_origins if origin.strip()]
    if not allowed_origins:
        allowed_origins = ["http://localhost:8081", "http://127.0.0.1:8081"]

    CORS(app, resources={r"/api/*": {"origins": allowed_origins}},
         supports_credentials=False,
         allow_headers=["Content-Type", "Authorization", "X-Request-ID"],
         methods=["GET", "POST", "DELETE", "OPTIONS"])

    jwt.init_app(app)

    firebase = app.config.get('FIREBASE_SERVICE') or FirebaseService(app.config['FIREBASE_CREDENTIALS'])
    store = app.config.get('DOCUMENT_STORE_INSTANCE') or build_document_store(app.config, firebase)
    use_transactions = app.config['USE_STORE_TRANSACTIONS']

    audit = AuditService()
    drivers = DriverService(store, audit)
    location, location_runner = None, None
    if app.config['LOCATION_TRACKING_ENABLED']:
        location, location_runner = build_location_service(app.config, store, audit)

    services = AppServices(
        store=store,
        firebase=firebase,
        audit=audit,
        drivers=drivers,
        duties=DutyService(store, drivers, location, audit, use_transactions=use_transactions),
        reporting=ReportingService(store),
        reconciliation=ReconciliationService(store, drivers, audit, use_transactions=use_transactions),
        sessions=SessionManager(store, location, audit),
        location=location,
        location_runner=location_runner,
    )
    app.extensions['dutysync'] = services

    if location_runner is not None and not app.testing:
        location_runner.start()

    interval = app.config['RECONCILE_INTERVAL_MINUTES']
    if interval > 0 and not app.testing:
        from utils.background_tasks import ReconciliationScheduler
        services.reconcile_scheduler = ReconciliationScheduler(services.reconciliation, interval)
        services.reconcile_scheduler.start_scheduler()

    # JWT token blocklist checker
    from mobile_auth import check_if_token_revoked as check_token_blocklist

    @jwt.token_in_blocklist_loader
    def check_if_token_revoked(jwt_header, jwt_payload):
        return check_token_blocklist(jwt_header, jwt_payload)

    @jwt.unauthorized_loader
    def missing_token(reason):
        return error_response('unauthorized', reason, 401)

    @jwt.invalid_token_loader
    def invalid_token(reason):
        return error_response('invalid-token', reason, 401)

    @jwt.expired_token_loader
    def expired_token(jwt_header, jwt_payload):
        return error_response('token-expired', 'Session expired, please log in again', 401)

    @jwt.revoked_token_loader
    def revoked_token(jwt_header, jwt_payload):
        return error_response('token-revoked', 'Session has been logged out', 401)

    # Service exceptions -> JSON envelope
    @app.errorhandler(ValidationError)
    def handle_validation_error(e):
        return error_response(e.code, e.message, VALIDATION_STATUS.get(e.code, 400))

    @app.errorhandler(InvalidDriverState)
    def handle_invalid_driver_state(e):
        return error_response('invalid-state', str(e), 409)

    @app.errorhandler(SyncError)
    def handle_sync_error(e):
        return error_response('sync-error', 'Could not reach the data store, please retry', 503)

    @app.errorhandler(AuthenticationError)
    def handle_authentication_error(e):
        return error_response('authentication-failed', str(e), 401)

    @app.errorhandler(HTTPException)
    def handle_http_exception(e):
        return error_response(e.name.lower().replace(' ', '-'), e.description, e.code)

    @app.errorhandler(Exception)
    def handle_unexpected_error(e):
        logger.exception(f"Unhandled error: {str(e)}")
        return error_response('internal-error', 'Internal server error', 500)

    app.before_request(log_request_start)
    app.after_request(log_request_end)

    # Register blueprints
    from mobile_auth import mobile_auth_bp
    from driver_routes import driver_bp
    from admin_routes import admin_bp

    app.register_blueprint(mobile_auth_bp)  # /api/v1/auth/*
    app.register_blueprint(driver_bp, url_prefix='/api/v1/driver')
    app.register_blueprint(admin_bp, url_prefix='/api/v1/admin')

    # Health check endpoint for deployment
    @app.route('/health')
    def health():
        return {
            'status': 'ok',
            'store': app.config['DOCUMENT_STORE'],
            'tracking': location.is_tracking() if location else False,
            'timestamp': utc_now().isoformat()
        }, 200

    return app
