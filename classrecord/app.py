import logging
from typing import Optional

from flask import Flask

from classrecord.attendance import AttendanceReconciler
from classrecord.config import EngineConfig
from classrecord.db_conn import DatabaseConnection
from classrecord.grade_service import GradeService
from classrecord.store import SqlAttendanceStore, SqlGradeStore

logger = logging.getLogger(__name__)


def create_app(config: Optional[dict] = None) -> Flask:
    """Build the Flask app that hosts the database extension and engine limits."""
    logging.basicConfig(level=logging.INFO)

    app = Flask(__name__)
    if config:
        app.config.update(config)

    engine_config = app.config.get("ENGINE_CONFIG") or EngineConfig.from_env()
    app.config["ENGINE_CONFIG"] = engine_config
    app.extensions["class_record_db"] = DatabaseConnection(
        app, timeout_seconds=engine_config.store_timeout_seconds
    )
    logger.info("Class record engine app created")
    return app


def grade_service(app: Flask) -> GradeService:
    """Grade service on the SQL store; call inside an app context."""
    return GradeService(
        SqlGradeStore(),
        config=app.config["ENGINE_CONFIG"],
        worker_context=app.app_context,
    )


def attendance_reconciler(app: Flask) -> AttendanceReconciler:
    """Attendance reconciler on the SQL store; call inside an app context."""
    return AttendanceReconciler(SqlAttendanceStore(), config=app.config["ENGINE_CONFIG"])
