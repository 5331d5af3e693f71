"""WSGI entry point for production deployment (e.g. gunicorn wsgi:app)."""
import sys
import os
import logging
from pathlib import Path

# Ensure project root is on path
sys.path.insert(0, str(Path(__file__).parent))

from config import load_config
from utils.logger import setup_logging
from models.database import Database
from monitor.sources import build_source
from alerts.service import build_service
from web.app import create_app

logger = logging.getLogger("gridwatch.wsgi")

config = load_config(os.environ.get("GRIDWATCH_CONFIG"))
setup_logging(config["logging"].get("level", "INFO"), config["logging"].get("file"))

db = Database(config["database"]["path"])
db.connect()

service = build_service(config, repository=db, source=build_source(config))

engines = {
    "service": service,
    "db": db,
}

app = create_app(config, engines)

# Evaluation and escalation loops run in this worker's background thread.
if os.environ.get("GRIDWATCH_DISABLE_LOOPS", "").lower() not in ("1", "true", "yes"):
    service.start()
    logger.info("Alert loops started")
