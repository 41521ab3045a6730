import logging
import os

from flask import Flask, jsonify
from flask_cors import CORS
from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()

logger = logging.getLogger(__name__)


def _configure_logging(app):
    from homeward.middleware import RequestIdLogFilter

    logging.basicConfig(
        level=app.config.get('LOG_LEVEL', 'INFO'),
        format='%(asctime)s %(levelname)s [%(request_id)s] %(name)s: %(message)s',
    )
    for handler in logging.getLogger().handlers:
        if not any(isinstance(f, RequestIdLogFilter) for f in handler.filters):
            handler.addFilter(RequestIdLogFilter())


def _init_sentry(app):
    """Sentry error monitoring, only active when SENTRY_DSN is set."""
    dsn = app.config.get('SENTRY_DSN')
    if not dsn:
        return
    import sentry_sdk
    from sentry_sdk.integrations.flask import FlaskIntegration
    sentry_sdk.init(
        dsn=dsn,
        integrations=[FlaskIntegration()],
        traces_sample_rate=0.1,
    )


def create_app(config_name=None, **overrides):
    """Flask application factory

    Keyword overrides replace the engine collaborators (clock, fx_source,
    marketplace, payouts) before the services are assembled.
    """
    app = Flask(__name__)

    # Load configuration
    if config_name is None:
        config_name = os.getenv('FLASK_ENV', 'development')

    from config import config
    app.config.from_object(config[config_name])

    _configure_logging(app)
    _init_sentry(app)

    # Initialize extensions
    db.init_app(app)
    CORS(app, origins=app.config['CORS_ORIGINS'], supports_credentials=True)

    from extensions import limiter
    limiter.init_app(app)

    from homeward.middleware import RequestIdMiddleware
    app.wsgi_app = RequestIdMiddleware(app.wsgi_app)

    from homeward import models  # noqa: F401  (register tables)
    with app.app_context():
        db.create_all()

    from homeward.services import build_services
    app.extensions['homeward'] = build_services(app, **overrides)

    from homeward.errors import register_error_handlers
    register_error_handlers(app)

    # Register blueprints
    from homeward.routes.sessions import sessions_bp
    from homeward.routes.matching import matching_bp
    from homeward.routes.escrow import escrow_bp

    api_prefix = app.config['API_PREFIX']
    app.register_blueprint(sessions_bp, url_prefix=f'{api_prefix}/homeward')
    app.register_blueprint(matching_bp, url_prefix=f'{api_prefix}/homeward')
    app.register_blueprint(escrow_bp, url_prefix=f'{api_prefix}/payments')

    @app.errorhandler(429)
    def ratelimit_handler(e):
        headers = dict(e.get_headers()) if hasattr(e, 'get_headers') else {}
        retry_after = headers.get('Retry-After')
        return jsonify({
            'error': 'Too many requests. Please try again later.',
            'retry_after': int(retry_after) if retry_after else 60,
        }), 429

    # Health check endpoint
    @app.route('/health')
    def health():
        return {'status': 'healthy', 'service': 'homeward-backend'}, 200

    from scheduler import init_scheduler
    init_scheduler(app)

    return app
