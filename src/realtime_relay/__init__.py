"""A relay that streams realtime completion events back to HTTP clients as SSE."""

__version__ = "0.1.0"

from .config import load_config, build_settings, get_settings
from .api import app
from .forward_token import encode_forward_token, decode_forward_token
from .models import CredentialBundle, RelaySettings
from .session import RelaySession, SessionState
