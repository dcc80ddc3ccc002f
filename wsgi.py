"""WSGI entry point for production deployment."""
import sys
import os
import logging
from pathlib import Path

# Ensure project root is on path
sys.path.insert(0, str(Path(__file__).parent))

from config import load_config
from utils.logger import setup_logging
from main import build_components
from monitor.scheduler import EvaluationScheduler
from web.app import create_app

logger = logging.getLogger("aimonitor.wsgi")

config = load_config(os.environ.get("AIMONITOR_CONFIG"))
setup_logging(config["logging"]["level"], config["logging"].get("file"))

components = build_components(config)
components["pool"].start()

app = create_app(config, components)

# Poll Prometheus in the background when it is configured
scheduler = None
if components["prometheus"] is not None:
    scheduler = EvaluationScheduler(
        components["evaluator"], components["db"], components["prometheus"],
        components["cache"], config,
    )
    scheduler.start()
else:
    logger.info("prometheus.url not set; accepting samples via POST /api/samples only")
