"""
CareVoice - Scheduled announcement playback for care facilities
Main Flask application entry point
"""
import os
import logging
from logging.handlers import RotatingFileHandler
from flask import Flask, jsonify
from flask_login import LoginManager
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_wtf.csrf import CSRFProtect

from config import config
from models import db, User


def create_app(config_name=None):
    """Application factory pattern"""

    if config_name is None:
        config_name = os.getenv('FLASK_ENV', 'development')

    app = Flask(__name__)
    app.config.from_object(config[config_name])
    config[config_name].init_app(app)

    # Initialize extensions
    db.init_app(app)

    # CSRF Protection (player API exempted, it uses device keys)
    csrf = CSRFProtect(app)

    # CORS configuration
    CORS(app, resources={
        r"/api/*": {
            "origins": app.config['CORS_ORIGINS'],
            "methods": ["GET", "POST"],
            "allow_headers": ["Content-Type", "X-Device-Key"]
        }
    })

    # Rate limiting (players poll continuously, so only pairing is limited)
    limiter = Limiter(
        app=app,
        key_func=get_remote_address,
        storage_uri=app.config['RATELIMIT_STORAGE_URL'],
        enabled=app.config['RATELIMIT_ENABLED']
    )

    # Login manager
    login_manager = LoginManager()
    login_manager.init_app(app)

    @login_manager.user_loader
    def load_user(user_id):
        return db.session.get(User, int(user_id))

    @login_manager.unauthorized_handler
    def unauthorized():
        return jsonify({'error': 'Authentication required'}), 401

    # Setup logging
    setup_logging(app)

    # Register blueprints
    from routes.admin_routes import admin_bp
    from routes.api_routes import api_bp, setup_api_logger

    app.register_blueprint(admin_bp, url_prefix='/admin/api')
    app.register_blueprint(api_bp, url_prefix='/api')
    setup_api_logger(app)

    # Exempt API routes from CSRF protection (they use API key auth)
    csrf.exempt(api_bp)

    # Throttle pairing code guesses
    app.view_functions['api.pair_device'] = limiter.limit(app.config['PAIR_RATE_LIMIT'])(
        app.view_functions['api.pair_device'])

    # Error handlers
    @app.errorhandler(404)
    def not_found(error):
        return jsonify({'error': 'Not found'}), 404

    @app.errorhandler(429)
    def rate_limited(error):
        return jsonify({'error': 'Too many requests'}), 429

    @app.errorhandler(500)
    def internal_error(error):
        db.session.rollback()
        return jsonify({'error': 'Internal server error'}), 500

    # Background expiry sweep for emergency broadcasts
    if not app.testing:
        from utils.scheduler import init_scheduler, shutdown_scheduler
        init_scheduler(app)

        # Register shutdown handler
        import atexit
        atexit.register(shutdown_scheduler)

    return app


def setup_logging(app):
    """Configure application logging"""

    if not app.debug and not app.testing:
        # Create logs directory if it doesn't exist
        if not os.path.exists(app.config['LOG_FOLDER']):
            os.mkdir(app.config['LOG_FOLDER'])

        # Application log handler
        file_handler = RotatingFileHandler(
            app.config['APP_LOG_FILE'],
            maxBytes=10240000,  # 10MB
            backupCount=10
        )
        file_handler.setFormatter(logging.Formatter(
            '%(asctime)s %(levelname)s: %(message)s [in %(pathname)s:%(lineno)d]'
        ))
        file_handler.setLevel(logging.INFO)
        app.logger.addHandler(file_handler)

        app.logger.setLevel(logging.INFO)
        app.logger.info('CareVoice startup')


if __name__ == '__main__':
    app = create_app()

    # Create database tables if they don't exist
    with app.app_context():
        db.create_all()

    app.run(
        host=app.config['FLASK_HOST'],
        port=app.config['FLASK_PORT'],
        debug=app.config['DEBUG']
    )
