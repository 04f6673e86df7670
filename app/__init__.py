"""Flask application factory."""
import logging
import os
import traceback

from flask import Flask, jsonify, request
from werkzeug.exceptions import HTTPException

from app.database import init_db, create_all


def _configure_logging(app):
    level = getattr(logging, app.config.get('LOG_LEVEL', 'INFO'), logging.INFO)
    logging.basicConfig(
        level=level,
        format='%(asctime)s %(levelname)s [%(name)s] %(message)s'
    )
    app.logger.setLevel(level)


def create_app(config_object='config.Config'):
    """Create and configure the Flask application."""
    app = Flask(__name__)
    app.config.from_object(config_object)

    _configure_logging(app)

    # Initialize Sentry for error tracking in production
    if os.getenv('SENTRY_DSN') and app.config.get('ENV') == 'production':
        import sentry_sdk
        from sentry_sdk.integrations.flask import FlaskIntegration

        sentry_sdk.init(
            dsn=os.getenv('SENTRY_DSN'),
            integrations=[FlaskIntegration()],
            traces_sample_rate=0.1,  # 10% of transactions for performance monitoring
            environment=os.getenv('FLASK_ENV', 'production'),
            release=os.getenv('GIT_COMMIT', 'unknown')
        )

    # Flask-Mail for notification emails
    from app.services.email_service import init_mail
    init_mail(app)

    # Prometheus metrics instrumentation
    from app.blueprints.metrics import setup_metrics_instrumentation
    setup_metrics_instrumentation(app)

    # Production: Enable ProxyFix for HTTPS behind Nginx reverse proxy
    if app.config.get('ENV') == 'production':
        from werkzeug.middleware.proxy_fix import ProxyFix
        app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1, x_port=1, x_prefix=0)

    # Initialize database
    init_db(app)
    if app.config.get('TESTING') or os.getenv('DB_CREATE_ALL', 'false').lower() == 'true':
        create_all()

    # Acting user context before each request
    from app.middleware import load_actor

    @app.before_request
    def before_request_handler():
        load_actor()

    # Error Handlers
    from app.exceptions import ErpError
    from app.blueprints.metrics import workflow_errors_total

    @app.errorhandler(ErpError)
    def handle_erp_error(error):
        """Handle custom application exceptions."""
        if error.status_code >= 500:
            app.logger.error(f"ErpError [{error.status_code}] {error.kind}: {error.message}")
        else:
            app.logger.warning(f"ErpError [{error.status_code}] {error.kind}: {error.message}")
        workflow_errors_total.labels(kind=error.kind).inc()
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(HTTPException)
    def handle_http_error(error):
        return jsonify({'status': 'error', 'error': 'http_error', 'message': error.description}), error.code

    @app.errorhandler(Exception)
    def internal_error(error):
        app.logger.error(f"Unhandled Exception: {error}")
        app.logger.error(f"Traceback: {traceback.format_exc()}")
        return jsonify({'status': 'error', 'error': 'internal_error', 'message': 'Internal Server Error'}), 500

    # Register blueprints
    from app.blueprints.main import main_bp
    from app.blueprints.purchases import purchases_bp
    from app.blueprints.delivery_notes import delivery_notes_bp
    from app.blueprints.orders import orders_bp
    from app.blueprints.logistics import logistics_bp
    from app.blueprints.metrics import metrics_bp

    app.register_blueprint(main_bp)
    app.register_blueprint(purchases_bp)
    app.register_blueprint(delivery_notes_bp)
    app.register_blueprint(orders_bp)
    app.register_blueprint(logistics_bp)
    app.register_blueprint(metrics_bp)

    # Register CLI commands
    from app.cli_commands import init_cli_commands
    init_cli_commands(app)

    app.logger.info(f"Auto-reserve on approval: {app.config.get('AUTO_RESERVE_STOCK_ON_APPROVAL')}")

    return app
