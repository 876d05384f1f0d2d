"""Unit tests for webhook signature helpers."""

import hashlib
import hmac
import json

from src.utils.signature import sign_payload, verify_signature

SECRET = "It's a Secret to Everybody"  # pragma: allowlist secret


class TestSignPayload:
    """Tests for sign_payload."""

    def test_sha1_matches_hmac(self) -> None:
        body = b"Hello, World!"
        expected = hmac.new(SECRET.encode(), body, hashlib.sha1).hexdigest()

        assert sign_payload(body, SECRET) == f"sha1={expected}"

    def test_sha256_matches_hmac(self) -> None:
        body = b"Hello, World!"
        expected = hmac.new(SECRET.encode(), body, hashlib.sha256).hexdigest()

        assert sign_payload(body, SECRET, "sha256") == f"sha256={expected}"


class TestVerifySignature:
    """Tests for verify_signature."""

    def test_accepts_matching_sha1_signature(self) -> None:
        body = b'{"action":"opened"}'
        assert verify_signature(body, sign_payload(body, SECRET), SECRET) is True

    def test_accepts_matching_sha256_signature(self) -> None:
        body = b'{"action":"opened"}'
        signature = sign_payload(body, SECRET, "sha256")
        assert verify_signature(body, signature, SECRET) is True

    def test_rejects_wrong_secret(self) -> None:
        body = b'{"action":"opened"}'
        signature = sign_payload(body, "another-secret")
        assert verify_signature(body, signature, SECRET) is False

    def test_rejects_reserialized_body(self) -> None:
        """Signing a re-encoded document does not validate the raw bytes."""
        raw = b'{"action": "opened",  "number": 1}'
        reencoded = json.dumps(json.loads(raw), separators=(",", ":")).encode()
        signature = sign_payload(reencoded, SECRET)

        assert reencoded != raw
        assert verify_signature(raw, signature, SECRET) is False

    def test_rejects_tampered_body(self) -> None:
        signature = sign_payload(b'{"number":1}', SECRET)
        assert verify_signature(b'{"number":2}', signature, SECRET) is False

    def test_fails_closed_on_missing_inputs(self) -> None:
        body = b"{}"
        signature = sign_payload(body, SECRET)

        assert verify_signature(body, None, SECRET) is False
        assert verify_signature(body, signature, None) is False
        assert verify_signature(body, signature, "") is False
        assert verify_signature(b"", signature, SECRET) is False
        assert verify_signature(None, signature, SECRET) is False

    def test_rejects_unknown_algorithm(self) -> None:
        body = b"{}"
        digest = hmac.new(SECRET.encode(), body, hashlib.md5).hexdigest()
        assert verify_signature(body, f"md5={digest}", SECRET) is False

    def test_rejects_malformed_header(self) -> None:
        body = b"{}"
        assert verify_signature(body, "sha1", SECRET) is False
        assert verify_signature(body, "garbage", SECRET) is False
