"""Webhook signature helpers.

GitHub signs every delivery with the repository's webhook secret. The
legacy `X-Hub-Signature` header carries `sha1=<hexdigest>`, the newer
`X-Hub-Signature-256` header carries `sha256=<hexdigest>`.
"""

import hashlib
import hmac
import logging
from typing import Literal

logger = logging.getLogger(__name__)

SignatureAlgorithm = Literal["sha1", "sha256"]

_DIGESTS = {
    "sha1": hashlib.sha1,
    "sha256": hashlib.sha256,
}


def sign_payload(
    body: bytes, secret: str, algorithm: SignatureAlgorithm = "sha1"
) -> str:
    """
    Compute the signature header value for a payload.

    Args:
        body: Raw request body
        secret: Shared webhook secret
        algorithm: Either "sha1" or "sha256"

    Returns:
        Header value such as "sha1=5d61..."
    """
    digest = hmac.new(secret.encode("utf-8"), body, _DIGESTS[algorithm]).hexdigest()
    return f"{algorithm}={digest}"


def verify_signature(
    body: bytes | None, signature: str | None, secret: str | None
) -> bool:
    """
    Validate a webhook signature against the raw request body.

    The body must be the exact bytes received; hashing a re-serialized
    JSON document produces a different digest.

    Args:
        body: Raw request body
        signature: Value of the signature header
        secret: The repository's webhook secret

    Returns:
        True only if every input is present and the digest matches.
    """
    if not body or not signature or not secret:
        return False

    algorithm, _, received = signature.partition("=")
    algorithm = algorithm.strip().lower()
    if algorithm not in _DIGESTS or not received:
        logger.debug(f"Unsupported signature format: {algorithm or 'empty'}")
        return False

    expected = sign_payload(body, secret, algorithm)  # type: ignore[arg-type]
    return hmac.compare_digest(
        expected.encode("utf-8"), f"{algorithm}={received.strip()}".encode("utf-8")
    )
