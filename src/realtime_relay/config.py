"""Configuration handling for the realtime relay."""

import yaml
import logging
import os
from functools import lru_cache
from pathlib import Path
from typing import Dict, Any, List, Mapping, Optional

from dotenv import load_dotenv

from .models import RelaySettings

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

relay_logger = logging.getLogger("relay")
relay_logger.setLevel(logging.INFO)

log_dir = Path(__file__).parent.parent.parent / "logs"
os.makedirs(log_dir, exist_ok=True)

relay_log_file = log_dir / "relay.log"
file_handler = logging.FileHandler(str(relay_log_file), mode="a")
file_handler.setFormatter(
    logging.Formatter("%(asctime)s - %(levelname)s - %(message)s")
)

relay_logger.addHandler(file_handler)
relay_logger.propagate = True

load_dotenv()

# Environment variable -> settings field
SECRET_ENV_VARS = {
    "LAVA": "secret_key",
    "LAVA_CONNECTION_SECRET": "connection_secret",
    "LAVA_PRODUCT_SECRET": "product_secret",
    "OPENAI_API_KEY": "provider_key",
}

PLACEHOLDER_PREFIX = "your_"

DEFAULT_CONFIG: Dict[str, Any] = {
    "server": {"host": "0.0.0.0", "port": 4000},
    "upstream": {
        "realtime_url": "wss://api.openai.com/v1/realtime?model=gpt-4o-realtime-preview-2024-12-17",
        "chat_completions_url": "https://api.openai.com/v1/chat/completions",
        "beta_header": "realtime=v1",
    },
    "forward": {
        "http_url": "http://localhost:3000/v1/forward",
        "ws_url": "ws://localhost:3000/v1/forward",
    },
    "session": {
        "instructions": "You are a helpful assistant. Respond concisely.",
        "modalities": ["text"],
        "completion_model": "gpt-4o-mini",
        "haiku_prompt": "Write me a haiku about coding.",
    },
    "settings": {
        "timeout": 60,
        "connect_timeout": 10,
        "session_timeout": 120,
        "disconnect_poll_interval": 0.1,
    },
}


def load_config() -> Dict[str, Any]:
    """
    Load configuration from config.yaml file.
    Returns a dictionary containing the configuration, with every section
    filled in from the defaults where the file leaves it out.
    """
    try:
        config_path = Path(__file__).parent.parent.parent / "config.yaml"
        config_yaml = config_path.read_text()
        loaded = yaml.safe_load(config_yaml) or {}
        logger.info("Successfully loaded configuration from config.yaml")
    except Exception as e:
        logger.error(f"Error loading config.yaml: {str(e)}")
        loaded = {}

    if not isinstance(loaded, dict):
        logger.error(
            f"config.yaml must contain a mapping, got {type(loaded).__name__}"
        )
        loaded = {}

    config = {}
    for section, defaults in DEFAULT_CONFIG.items():
        overrides = loaded.get(section)
        if not isinstance(overrides, dict):
            overrides = {}
        config[section] = {**defaults, **overrides}
    return config


def build_settings(
    config: Dict[str, Any], environ: Optional[Mapping[str, str]] = None
) -> RelaySettings:
    """
    Flatten a config dictionary and the process environment into RelaySettings.

    Args:
        config: Configuration as returned by load_config()
        environ: Environment mapping to read secrets from (defaults to os.environ)

    Returns:
        Immutable settings object shared by every request
    """
    if environ is None:
        environ = os.environ

    server = config["server"]
    upstream = config["upstream"]
    forward = config["forward"]
    session = config["session"]
    timeouts = config["settings"]

    port = environ.get("PORT") or server.get("port", 4000)

    return RelaySettings(
        host=server.get("host", "0.0.0.0"),
        port=int(port),
        realtime_url=upstream["realtime_url"],
        chat_completions_url=upstream["chat_completions_url"],
        beta_header=upstream["beta_header"],
        forward_http_url=forward["http_url"],
        forward_ws_url=forward["ws_url"],
        instructions=session["instructions"],
        modalities=tuple(session["modalities"]),
        completion_model=session["completion_model"],
        haiku_prompt=session["haiku_prompt"],
        timeout=float(timeouts["timeout"]),
        connect_timeout=float(timeouts["connect_timeout"]),
        session_timeout=float(timeouts["session_timeout"]),
        disconnect_poll_interval=float(timeouts["disconnect_poll_interval"]),
        **{field: environ.get(var, "") for var, field in SECRET_ENV_VARS.items()},
    )


def missing_secrets(settings: RelaySettings) -> List[str]:
    """Names of secret environment variables that are unset or still placeholders."""
    missing = []
    for var, field in SECRET_ENV_VARS.items():
        value = getattr(settings, field)
        if not value or value.startswith(PLACEHOLDER_PREFIX):
            missing.append(var)
    return missing


def warn_missing_secrets(settings: RelaySettings) -> List[str]:
    missing = missing_secrets(settings)
    for var in missing:
        logger.warning(f"Missing or placeholder env var: {var}")
    return missing


@lru_cache()
def get_settings() -> RelaySettings:
    """Settings loaded once per process; used as a FastAPI dependency."""
    return build_settings(load_config())
