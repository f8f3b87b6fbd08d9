"""WSGI entry point for production deployment."""
import sys
import logging
from pathlib import Path

# Ensure project root is on path
sys.path.insert(0, str(Path(__file__).parent))

from config import load_config
from utils.logger import setup_logging
from models.database import Database
from engine.builder import build_engine
from web.app import create_app

logger = logging.getLogger("opsrules.wsgi")

config = load_config()
setup_logging(config["logging"]["level"], config["logging"].get("file"))

db = Database(config["database"]["path"])
db.connect()

engines = build_engine(config, db=db)
engines["jobs"].start()

app = create_app(config, engines)
logger.info(f"Query API ready ({len(engines['rules'].snapshot())} active rules)")
