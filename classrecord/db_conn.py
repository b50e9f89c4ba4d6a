import os
import time
import logging
from typing import Optional
from flask import Flask
from dotenv import load_dotenv
from sqlalchemy.exc import SQLAlchemyError

from classrecord.config import DEFAULT_STORE_TIMEOUT_SECONDS
from classrecord.errors import ConfigurationError
from classrecord.models import db

# Configure logging for database operations
logger = logging.getLogger(__name__)


def build_database_uri() -> str:
    """Compose the MySQL URI for the configured ENVIRONMENT."""
    load_dotenv()
    environment = os.getenv("ENVIRONMENT", "local").lower()
    logger.info(f"Database environment: {environment}")

    if environment == "local":
        prefix = "LOCAL"
        defaults = {"HOST": "localhost", "PORT": "3307", "NAME": "class_record"}
    elif environment == "production" or environment == "online":
        prefix = "ONLINE"
        defaults = {"HOST": "localhost", "PORT": "3306", "NAME": "class_record"}
    else:
        raise ConfigurationError(
            f"Invalid ENVIRONMENT value: {environment}. Must be 'local' or 'production'/'online'"
        )

    db_host = os.getenv(f"{prefix}_DB_HOST", defaults["HOST"])
    db_port = os.getenv(f"{prefix}_DB_PORT", defaults["PORT"])
    db_user = os.getenv(f"{prefix}_DB_USER", "root")
    db_password = os.getenv(f"{prefix}_DB_PASSWORD", "")
    db_name = os.getenv(f"{prefix}_DB_NAME", defaults["NAME"])
    return f"mysql+pymysql://{db_user}:{db_password}@{db_host}:{db_port}/{db_name}"


def mysql_engine_options(timeout_seconds: float = DEFAULT_STORE_TIMEOUT_SECONDS) -> dict:
    timeout = int(timeout_seconds)
    return {
        "pool_size": 10,  # Number of connections to maintain
        "max_overflow": 20,  # Additional connections beyond pool_size
        "pool_recycle": 3600,  # Recycle connections after 1 hour
        "pool_pre_ping": True,  # Test connections before use
        "pool_timeout": 30,  # Wait for a pooled connection
        "connect_args": {
            "connect_timeout": timeout,
            "read_timeout": timeout,
            "write_timeout": timeout,
        },
    }


def _masked(uri: str) -> str:
    head, sep, tail = uri.rpartition("@")
    if not sep or ":" not in head.split("//", 1)[-1]:
        return uri
    scheme_user = head.rsplit(":", 1)[0]
    return f"{scheme_user}:***@{tail}"


class DatabaseConnection:
    """Handles database connection, initialization, and management."""

    def __init__(self, app: Optional[Flask] = None, timeout_seconds: Optional[float] = None):
        self.app = app
        self.timeout_seconds = timeout_seconds or DEFAULT_STORE_TIMEOUT_SECONDS
        if app is not None:
            self.init_app(app)

    def init_app(self, app: Flask):
        """Configure SQLAlchemy on the app; an already configured URI is kept."""
        self.app = app
        if not app.config.get("SQLALCHEMY_DATABASE_URI"):
            app.config["SQLALCHEMY_DATABASE_URI"] = build_database_uri()
        db_uri = app.config["SQLALCHEMY_DATABASE_URI"]
        app.config["SQLALCHEMY_TRACK_MODIFICATIONS"] = False

        if db_uri.startswith("mysql"):
            app.config.setdefault(
                "SQLALCHEMY_ENGINE_OPTIONS", mysql_engine_options(self.timeout_seconds)
            )
        logger.info(f"Database URI configured: {_masked(db_uri)}")

        # Check if SQLAlchemy is already registered with this app
        if "sqlalchemy" not in app.extensions:
            db.init_app(app)
            logger.info("Database initialized with Flask app")
        else:
            logger.info(
                "Database already initialized with Flask app - skipping re-initialization"
            )

    def test_connection(self, max_retries: int = 3) -> bool:
        """Test database connection with retry mechanism."""
        if self.app is None:
            logger.error("Database connection not initialized with Flask app")
            return False

        retry_delay = 1
        for attempt in range(max_retries):
            try:
                logger.info(
                    f"Testing database connection... (attempt {attempt + 1}/{max_retries})"
                )
                with self.app.app_context():
                    with db.engine.connect() as connection:
                        connection.execute(db.text("SELECT 1"))
                logger.info("Database connection successful")
                return True
            except SQLAlchemyError as e:
                logger.warning(
                    f"Database connection failed (attempt {attempt + 1}): {str(e)}"
                )
                if attempt < max_retries - 1:
                    time.sleep(retry_delay)
                    retry_delay *= 2  # Exponential backoff
        logger.error(f"Database connection failed after {max_retries} attempts")
        return False

    def create_tables(self) -> bool:
        """Create all database tables."""
        if self.app is None:
            logger.error("Database connection not initialized with Flask app")
            return False
        try:
            logger.info("Creating database tables...")
            with self.app.app_context():
                db.create_all()
            logger.info("Database tables created successfully")
            return True
        except SQLAlchemyError as e:
            logger.error(f"Database table creation failed: {str(e)}")
            return False

    def init_database(self) -> bool:
        """Initialize database connection and create tables if they don't exist."""
        logger.info("Starting database initialization...")

        if not self.test_connection():
            return False

        return self.create_tables()
