# utils.py

import hmac
import hashlib
import logging
from typing import Optional

logger = logging.getLogger(__name__)

SIGNATURE_PREFIX = "sha256="
REFS_HEADS_PREFIX = "refs/heads/"


def compute_signature(secret: str, request_body: bytes) -> str:
    mac = hmac.new(secret.encode("utf-8"), msg=request_body, digestmod=hashlib.sha256)
    return SIGNATURE_PREFIX + mac.hexdigest()


def verify_signature(secret: Optional[str], request_body: bytes, signature: Optional[str]) -> bool:
    """
    Check a GitHub style ``X-Hub-Signature-256`` value against the raw request body.

    The digest must be computed over the bytes exactly as received. A missing secret
    or signature never passes.
    """
    if not secret:
        logger.warning("No secret configured for repository. Rejecting signature.")
        return False

    if not signature:
        logger.warning("No signature provided.")
        return False

    try:
        provided = signature.encode("ascii")
    except UnicodeEncodeError:
        logger.warning("Invalid signature format.")
        return False

    expected = compute_signature(secret, request_body).encode("ascii")
    is_valid = hmac.compare_digest(expected, provided)
    if is_valid:
        logger.debug("Webhook signature verified successfully.")
    else:
        logger.warning("Webhook signature verification failed.")
    return is_valid


def branch_from_ref(ref: Optional[str]) -> Optional[str]:
    """'refs/heads/main' -> 'main'. Other refs are returned unchanged."""
    if ref is None:
        return None
    if ref.startswith(REFS_HEADS_PREFIX):
        return ref[len(REFS_HEADS_PREFIX):]
    return ref


def tail(text: str, limit: int) -> str:
    """Keep the last ``limit`` characters of text, marking the cut."""
    if limit <= 0:
        return ""
    if len(text) <= limit:
        return text
    return "..." + text[-(limit - 3):] if limit > 3 else text[-limit:]
