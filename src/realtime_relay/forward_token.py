"""Forward token encoding for the intermediary proxy."""

import base64
import binascii
import logging

from pydantic import ValidationError

from .errors import ForwardTokenError
from .models import CredentialBundle, RelaySettings

logger = logging.getLogger(__name__)

TOKEN_PREVIEW_LENGTH = 20


def encode_forward_token(bundle: CredentialBundle) -> str:
    """
    Encode a credential bundle as a bearer credential for the intermediary.

    The four fields are serialized as compact JSON in declaration order and
    base64 encoded. Nothing is signed: the intermediary is trusted to decode it.

    Args:
        bundle: Credentials to forward

    Returns:
        ASCII token suitable for an ``Authorization: Bearer`` header
    """
    return base64.b64encode(bundle.model_dump_json().encode()).decode("ascii")


def decode_forward_token(token: str) -> CredentialBundle:
    """Inverse of encode_forward_token, as performed by the intermediary."""
    try:
        raw = base64.b64decode(token.encode("ascii"), validate=True)
        return CredentialBundle.model_validate_json(raw)
    except (binascii.Error, UnicodeEncodeError, ValidationError) as e:
        raise ForwardTokenError(f"Invalid forward token: {e}") from e


def preview_token(token: str) -> str:
    return token[:TOKEN_PREVIEW_LENGTH] + "..."


def build_forward_token(settings: RelaySettings) -> str:
    """Build the bundle from settings and encode it, logging only redacted values."""
    bundle = CredentialBundle.from_settings(settings)
    logger.info(f"Token payload: {bundle.redacted()}")

    token = encode_forward_token(bundle)
    logger.info(f"Forward token generated: {preview_token(token)}")
    return token
