"""
Configuration management for the openai_compat_router package.
This module reads router settings from the environment and sets up logging.
"""

import logging
import os
import sys
from pathlib import Path

from dotenv import load_dotenv

from .types import ModelDefaults

# Load environment variables from .env file
load_dotenv()

logger = logging.getLogger(__name__)

_TRUTHY = ("1", "true", "yes", "on")


def parse_bool(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in _TRUTHY


def parse_float(value: str | None, default: float) -> float:
    if value is None or not value.strip():
        return default
    try:
        return float(value)
    except ValueError:
        logger.warning(f"Could not parse number '{value}', using default {default}")
        return default


class Config:
    """Router server configuration"""

    def __init__(self):
        # Server configuration
        self.host = os.environ.get("HOST", ModelDefaults.DEFAULT_HOST)
        self.port = int(os.environ.get("PORT", str(ModelDefaults.DEFAULT_PORT)))
        self.log_level = os.environ.get("LOG_LEVEL", ModelDefaults.DEFAULT_LOG_LEVEL)
        self.log_file_path = os.environ.get(
            "LOG_FILE_PATH",
            Path(__file__).resolve().parent / "server.log",
        )

        # Upstream call settings
        self.request_timeout = parse_float(
            os.environ.get("REQUEST_TIMEOUT"), ModelDefaults.DEFAULT_REQUEST_TIMEOUT
        )
        self.max_retries = int(
            os.environ.get("MAX_RETRIES", str(ModelDefaults.DEFAULT_MAX_RETRIES))
        )

        # Verbose per-event stream logging
        self.debug = parse_bool(os.environ.get("OPENAI_COMPAT_DEBUG"))

        # Set the project root path for .env file checking
        self.project_root = str(Path(__file__).resolve().parent.parent)

    def check_env_file_exists(self) -> bool:
        """Check if .env file exists in the project root"""
        return (Path(self.project_root) / ".env").exists()


# Global configuration instance
config = Config()


# Create a filter to block any log messages containing specific strings
class MessageFilter(logging.Filter):
    def filter(self, record):
        blocked_phrases = ["HTTP Request:"]

        if hasattr(record, "msg") and isinstance(record.msg, str):
            for phrase in blocked_phrases:
                if phrase in record.msg:
                    return False
        return True


class ColorizedFormatter(logging.Formatter):
    """Highlights stream completion summaries and errors on the console"""

    GREEN = "\033[92m"
    RED = "\033[91m"
    RESET = "\033[0m"
    BOLD = "\033[1m"

    def format(self, record):
        message = super().format(record)
        if record.levelno >= logging.ERROR:
            return f"{self.RED}{message}{self.RESET}"
        if isinstance(record.msg, str) and record.msg.startswith("STREAMING COMPLETE"):
            return f"{self.BOLD}{self.GREEN}{message}{self.RESET}"
        return message


def setup_logging():
    """Setup logging configuration to be idempotent."""
    # Handlers are only added once, so uvicorn reloads and workers do not
    # duplicate log entries.
    root_logger = logging.getLogger()
    if root_logger.hasHandlers():
        return

    try:
        log_dir = Path(config.log_file_path).parent
        if not log_dir.exists():
            log_dir.mkdir(parents=True, exist_ok=True)

        root_logger.setLevel(getattr(logging, config.log_level.upper()))
        formatter = logging.Formatter("%(asctime)s - %(levelname)s - %(message)s")

        file_handler = logging.FileHandler(config.log_file_path, mode="a")
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

        stream_handler = logging.StreamHandler()
        stream_handler.setFormatter(
            ColorizedFormatter("%(asctime)s - %(levelname)s - %(message)s")
        )
        root_logger.addHandler(stream_handler)

        root_logger.addFilter(MessageFilter())

        # Handlers are inherited from the root logger
        logging.getLogger("uvicorn").setLevel(logging.INFO)
        logging.getLogger("uvicorn.error").setLevel(logging.INFO)
        uvicorn_access_logger = logging.getLogger("uvicorn.access")
        uvicorn_access_logger.setLevel(logging.INFO)
        uvicorn_access_logger.propagate = True
        if config.log_level.lower() == "debug":
            logging.getLogger("httpx").setLevel(logging.INFO)
            logging.getLogger("httpcore").setLevel(logging.INFO)

        logger.info("✅ Logging configured for router.")

    except (OSError, AttributeError) as e:
        print(f"🔴 Error setting up logging: {e}")
        sys.exit(1)
