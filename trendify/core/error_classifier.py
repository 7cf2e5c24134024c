"""
Error classification for image generation failures.

Maps whatever a failed call produced (client exception, proxy error text,
vendor payload) to one ErrorKind and a user-facing message. Rules are checked
in priority order: credential problems first, then quota, safety, model
refusals, missing credential, connectivity, and finally any structured error
payload embedded in the text.
"""

import json
import logging
from typing import Any, Optional

from ..models import ClassifiedError, ErrorKind
from .constants import (
    INVALID_CREDENTIAL_MARKERS,
    QUOTA_MARKERS,
    SAFETY_MARKER,
    MODEL_ERROR_PREFIX,
    NO_CREDENTIAL_MARKER,
    NETWORK_MARKERS,
    REFUSAL_KEYWORDS,
)

logger = logging.getLogger(__name__)

INVALID_CREDENTIAL_MESSAGE = (
    "The API key you provided is invalid or has expired.\n\n"
    "How to fix:\n"
    "1. Check that you copied the key correctly.\n"
    "2. Create a new key in Google AI Studio."
)

QUOTA_USER_KEY_MESSAGE = (
    "Your API key has run out of quota.\n\n"
    "How to fix:\n"
    "1. Check the quota on the key management page in Google AI Studio.\n"
    "2. Try again later or use a different key."
)

QUOTA_SHARED_KEY_MESSAGE = (
    "Sorry, the site's free usage has run out because of heavy traffic.\n\n"
    "To continue, use your own free API key by opening Settings and saving it there."
)

SAFETY_MESSAGE = (
    "Your request was blocked for safety reasons. The model refuses sensitive or "
    "inappropriate content.\n\n"
    "How to fix:\n"
    "- Use a different, friendlier photo.\n"
    "- If you wrote a custom prompt, keep its content positive."
)

MODEL_REFUSAL_MESSAGE = (
    "The model declined your request. This usually happens when it does not understand "
    "the request or the supplied image is not suitable.\n\n"
    "How to fix:\n"
    "- Try a sharper photo.\n"
    "- Simplify your custom prompt (if any)."
)

NO_CREDENTIAL_MESSAGE = (
    "No default API key is configured. Open Settings and save your own API key to continue."
)

NETWORK_MESSAGE = (
    "Could not reach the server. Check your network connection and try again.\n\n"
    "If you are on a corporate network or VPN, a firewall may be blocking the request. "
    "Try a different network."
)

NON_ERROR_MESSAGE = "An unknown error occurred. Please try again."


def _contains_any(message: str, markers) -> bool:
    return any(marker in message for marker in markers)


def _extract_embedded_error_message(message: str) -> Optional[str]:
    """Return `error.message` from a JSON payload embedded in the text, if any."""
    json_start = message.find("{")
    if json_start == -1:
        return None
    try:
        parsed = json.loads(message[json_start:])
    except (json.JSONDecodeError, ValueError):
        return None
    if isinstance(parsed, dict) and isinstance(parsed.get("error"), dict):
        embedded = parsed["error"].get("message")
        if embedded:
            return str(embedded)
    return None


def classify(raw_error: Any, has_user_credential: bool) -> ClassifiedError:
    """
    Classify a raw failure into an ErrorKind and user-facing message.

    Args:
        raw_error: The exception (or message string) produced by a failed call.
        has_user_credential: Whether the call used the user's own API key.

    Returns:
        ClassifiedError with the kind and a multi-paragraph message.
    """
    if isinstance(raw_error, BaseException):
        message = str(raw_error)
    elif isinstance(raw_error, str):
        message = raw_error
    else:
        return ClassifiedError(kind=ErrorKind.UNKNOWN, message=NON_ERROR_MESSAGE)

    if _contains_any(message, INVALID_CREDENTIAL_MARKERS):
        return ClassifiedError(kind=ErrorKind.INVALID_CREDENTIAL, message=INVALID_CREDENTIAL_MESSAGE)

    if _contains_any(message, QUOTA_MARKERS):
        quota_message = QUOTA_USER_KEY_MESSAGE if has_user_credential else QUOTA_SHARED_KEY_MESSAGE
        return ClassifiedError(kind=ErrorKind.QUOTA_EXHAUSTED, message=quota_message)

    if SAFETY_MARKER in message:
        return ClassifiedError(kind=ErrorKind.SAFETY_BLOCKED, message=SAFETY_MESSAGE)

    if MODEL_ERROR_PREFIX in message:
        model_text = message.split(MODEL_ERROR_PREFIX, 1)[1].strip()
        if _contains_any(model_text.lower(), REFUSAL_KEYWORDS):
            return ClassifiedError(kind=ErrorKind.MODEL_REFUSAL, message=MODEL_REFUSAL_MESSAGE)
        return ClassifiedError(kind=ErrorKind.MODEL_REFUSAL, message=f"Model error: {model_text}")

    if NO_CREDENTIAL_MARKER in message:
        return ClassifiedError(kind=ErrorKind.NO_CREDENTIAL, message=NO_CREDENTIAL_MESSAGE)

    if _contains_any(message, NETWORK_MARKERS):
        return ClassifiedError(kind=ErrorKind.NETWORK_ERROR, message=NETWORK_MESSAGE)

    embedded = _extract_embedded_error_message(message)
    if embedded:
        return ClassifiedError(kind=ErrorKind.UNKNOWN, message=f"Something went wrong: {embedded}")

    logger.error(f"Unhandled API error: {message}")
    return ClassifiedError(
        kind=ErrorKind.UNKNOWN,
        message=f"An unknown error occurred: {message}. Please try again later.",
    )
