# clinic_app_pkg/__init__.py

import logging
import sqlite3

import click
from flask import Flask, jsonify
from flask_cors import CORS
from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate
from dotenv import load_dotenv
from sqlalchemy import event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from werkzeug.exceptions import HTTPException

# Load environment variables from .env file.
load_dotenv()

from .config import get_config
from .errors import APIError

# Initialize extensions at the top level, but without an app context.
# They are bound to an application only inside create_app.
db = SQLAlchemy()
migrate = Migrate()


@event.listens_for(Engine, "connect")
def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    """SQLite ignores ON DELETE rules unless foreign keys are switched on per connection."""
    if isinstance(dbapi_connection, sqlite3.Connection):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


def init_database(app):
    """Creates missing tables and seeds the default administrator."""
    from .services import seed_default_admin
    with app.app_context():
        db.create_all()
        seed_default_admin()


def create_app(config_name='development'):
    """
    Application factory function.
    """
    app = Flask(__name__)

    # Load configuration based on the environment
    config_class = get_config(config_name)
    config_class.validate()
    app.config.from_object(config_class)
    app.logger.setLevel(getattr(logging, str(app.config.get('LOG_LEVEL', 'INFO')).upper(), logging.INFO))

    # Initialize extensions with the app context
    db.init_app(app)
    migrate.init_app(app, db)
    CORS(app, origins=[app.config['FRONTEND_URL']])

    # --- Import and register Blueprints INSIDE create_app ---
    # This also prevents circular imports.
    from .auth.routes import auth_bp
    app.register_blueprint(auth_bp, url_prefix='/api/auth')

    from .patients.routes import patients_bp
    app.register_blueprint(patients_bp, url_prefix='/api/patients')

    from .clinicians.routes import clinicians_bp
    app.register_blueprint(clinicians_bp, url_prefix='/api/clinicians')

    from .appointments.routes import appointments_bp
    app.register_blueprint(appointments_bp, url_prefix='/api/appointments')

    from .clinical_records.routes import clinical_records_bp
    app.register_blueprint(clinical_records_bp, url_prefix='/api/clinical-records')

    from .financial.routes import financial_bp
    app.register_blueprint(financial_bp, url_prefix='/api/financial')

    from .dashboard.routes import dashboard_bp
    app.register_blueprint(dashboard_bp, url_prefix='/api/dashboard')

    @app.route('/api/health')
    def health_check():
        return jsonify({"status": "ok"}), 200

    @app.cli.command('init-db')
    def init_db_command():
        """Create tables and seed the default administrator."""
        init_database(app)
        click.echo("Database initialized.")

    # Centralized error handling
    @app.errorhandler(APIError)
    def handle_api_error(e):
        if e.status_code >= 500:
            app.logger.error(f"API Error: {e.message}")
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code

    @app.errorhandler(SQLAlchemyError)
    def handle_database_error(e):
        app.logger.error(f"Database Error: {e}", exc_info=True)
        db.session.rollback()
        return jsonify({"error": "A database error occurred."}), 500

    @app.errorhandler(HTTPException)
    def handle_http_error(e):
        if e.code == 404:
            app.logger.warning(f"Not Found Error: {e}")
            return jsonify({"error": "The requested resource was not found."}), 404
        return jsonify({"error": e.description}), e.code

    @app.errorhandler(Exception)
    def handle_generic_error(e):
        app.logger.error(f"An unexpected error occurred: {e}", exc_info=True)
        db.session.rollback()
        return jsonify({"error": "An unexpected server error occurred."}), 500

    if app.config.get('AUTO_CREATE_TABLES'):
        init_database(app)

    return app
