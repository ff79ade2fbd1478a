from flask import Flask
from werkzeug.exceptions import HTTPException
from flask_jwt_extended import JWTManager
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool
from sqlalchemy.orm import sessionmaker, scoped_session
from dotenv import load_dotenv
from typing import Optional, Dict, Any
import os

load_dotenv()

db_engine = None
SessionLocal = None
jwt = JWTManager()


def create_app(config: Optional[Dict[str, Any]] = None):
    global db_engine, SessionLocal
    app = Flask(__name__)

    app.config['JWT_SECRET_KEY'] = os.getenv('JWT_SECRET_KEY', 'dev-secret-change-me-before-deploying')
    app.config['DATABASE_URL'] = os.getenv('DATABASE_URL', 'sqlite:///dev.db')
    app.config['SESSION_TTL_HOURS'] = int(os.getenv('SESSION_TTL_HOURS', '12'))

    if config:
        # allow tests or callers to override default config values
        app.config.update(config)

    # Database
    db_url = app.config['DATABASE_URL']
    if db_url.endswith(':memory:'):
        # Ensure a single shared in-memory SQLite database across all sessions
        db_engine = create_engine(
            db_url,
            echo=False,
            future=True,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    else:
        db_engine = create_engine(db_url, echo=False, future=True)
    SessionLocal = scoped_session(sessionmaker(bind=db_engine, expire_on_commit=False, autoflush=False))

    jwt.init_app(app)

    from .routes.auth import auth_bp
    from .routes.roles import roles_bp
    from .routes.permissions import perms_bp
    from .routes.platform import platform_bp
    from .routes.users import users_bp
    app.register_blueprint(auth_bp, url_prefix='/auth')
    app.register_blueprint(roles_bp, url_prefix='/roles')
    app.register_blueprint(perms_bp, url_prefix='/permissions')
    app.register_blueprint(platform_bp, url_prefix='/platform')
    app.register_blueprint(users_bp, url_prefix='/users')

    @app.route('/healthz')
    def health():
        return {'status': 'ok'}

    # Unified error handler producing standardized JSON shape
    @app.errorhandler(Exception)
    def handle_errors(e):  # type: ignore
        if isinstance(e, HTTPException):
            payload = {
                'error': {
                    'status': e.code,
                    'title': e.name,
                    'detail': e.description,
                }
            }
            # 403s name what was required, never what the caller holds
            required = getattr(e, 'required_permissions', None)
            if required:
                if len(required) == 1:
                    payload['error']['required_permission'] = required[0]
                else:
                    payload['error']['required_permissions'] = list(required)
            return payload, e.code
        # Unhandled exception
        app.logger.exception('Unhandled exception')
        return {
            'error': {
                'status': 500,
                'title': 'Internal Server Error',
                'detail': 'Unexpected error'
            }
        }, 500

    @jwt.unauthorized_loader
    def _missing_token(reason):
        return {'error': {'status': 401, 'title': 'Unauthorized', 'detail': 'Authentication required'}}, 401

    @jwt.invalid_token_loader
    def _invalid_token(reason):
        return {'error': {'status': 401, 'title': 'Unauthorized', 'detail': 'Invalid token'}}, 401

    @jwt.expired_token_loader
    def _expired_token(header, payload):
        return {'error': {'status': 401, 'title': 'Unauthorized', 'detail': 'Token expired'}}, 401

    return app


def get_db():
    return SessionLocal()
