import logging
import sys
from typing import Any, Dict, Optional

from goldfish.clients import build_clients
from goldfish.core.credentials import CredentialStore
from goldfish.core.db import init_db
from goldfish.core.sync import SyncOrchestrator
from goldfish.sources import build_adapters

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(message)s'


def setup_logging(config_data: Dict[str, Any]) -> None:
    """Configure logging to write to both file and stdout"""
    log_config = config_data.get("logging") or {}
    root_logger = logging.getLogger()
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)
    root_logger.setLevel(getattr(logging, str(log_config.get("level", "INFO")).upper(), logging.INFO))

    formatter = logging.Formatter(LOG_FORMAT)

    if log_config.get("file"):
        file_handler = logging.FileHandler(log_config["file"])
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)


class GoldfishApp:
    """Wires config, database, upstream clients, credential store and the sync orchestrator.
    Anything passed in replaces the instance built from config."""

    def __init__(
        self,
        config_data: Dict[str, Any],
        canvas_client=None,
        classroom_client=None,
        ustep_client=None,
        credentials: Optional[CredentialStore] = None,
        orchestrator: Optional[SyncOrchestrator] = None,
    ):
        self.logger = logging.getLogger(self.__class__.__name__)
        self.config_data = config_data

        # Database first so the credential store can read through
        init_db(config_data)

        canvas, classroom, ustep = build_clients(config_data)
        self.canvas_client = canvas_client or canvas
        self.classroom_client = classroom_client or classroom
        self.ustep_client = ustep_client or ustep
        self.credentials = credentials or CredentialStore()

        if orchestrator is None:
            adapters = build_adapters(config_data, self.canvas_client, self.classroom_client, self.ustep_client)
            orchestrator = SyncOrchestrator(
                self.credentials,
                adapters,
                credential_timeout=(config_data.get("sync") or {}).get("credential_timeout"),
            )
        self.orchestrator = orchestrator

        canvas_cfg = config_data.get("canvas") or {}
        if not canvas_cfg.get("base_url"):
            self.logger.error("CANVAS_BASE_URL is not set; Canvas requests will fail.")
        if not canvas_cfg.get("api_token"):
            self.logger.warning("CANVAS_API_TOKEN not set. Users must provide their own token.")
