# shared/push_service.py
"""
Web push delivery.

Messages are encrypted for the browser with aes128gcm (RFC 8291) and
authorized with a VAPID JWT (RFC 8292) signed by the server's P-256 key.
"""

import base64
import json
import logging
import os
import time
from typing import Any, Optional
from urllib.parse import urlparse

import httpx
import jwt
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

logger = logging.getLogger(__name__)

VAPID_PUBLIC_KEY = os.getenv("VAPID_PUBLIC_KEY")
VAPID_PRIVATE_KEY = os.getenv("VAPID_PRIVATE_KEY")
VAPID_SUBJECT = os.getenv("VAPID_SUBJECT", "mailto:support@luna.app")

RECORD_SIZE = 4096
DEFAULT_TTL = 24 * 60 * 60


class PushError(Exception):
    """Raised when a push service rejects a message"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code

    @property
    def subscription_gone(self) -> bool:
        """404/410 mean the browser dropped the subscription"""
        return self.status_code in (404, 410)


def is_configured() -> bool:
    return bool(VAPID_PUBLIC_KEY and VAPID_PRIVATE_KEY)


def b64url_decode(value: str) -> bytes:
    return base64.urlsafe_b64decode(value + "=" * (-len(value) % 4))


def b64url_encode(value: bytes) -> str:
    return base64.urlsafe_b64encode(value).rstrip(b"=").decode("ascii")


def validate_subscription_keys(p256dh: str, auth: str) -> None:
    """Raise ValueError unless the keys form a usable P-256 point and 16-byte secret"""
    try:
        ua_public = b64url_decode(p256dh)
        auth_secret = b64url_decode(auth)
    except (ValueError, TypeError) as e:
        raise ValueError(f"Keys must be base64url encoded: {e}") from e
    if len(auth_secret) != 16:
        raise ValueError("auth secret must be 16 bytes")
    if len(ua_public) != 65:
        raise ValueError("p256dh must be an uncompressed P-256 point")
    ec.EllipticCurvePublicKey.from_encoded_point(ec.SECP256R1(), ua_public)


def load_vapid_private_key(raw_key: str) -> ec.EllipticCurvePrivateKey:
    """Accept either a PEM key or the base64url raw scalar web-push tooling prints"""
    if raw_key.strip().startswith("-----BEGIN"):
        return serialization.load_pem_private_key(raw_key.encode(), password=None)
    scalar = int.from_bytes(b64url_decode(raw_key.strip()), "big")
    return ec.derive_private_key(scalar, ec.SECP256R1())


def build_vapid_headers(endpoint: str, now: Optional[float] = None) -> dict[str, str]:
    parsed = urlparse(endpoint)
    issued = int(now if now is not None else time.time())
    claims = {
        "aud": f"{parsed.scheme}://{parsed.netloc}",
        "exp": issued + 12 * 60 * 60,
        "sub": VAPID_SUBJECT,
    }
    token = jwt.encode(claims, load_vapid_private_key(VAPID_PRIVATE_KEY), algorithm="ES256")
    return {"Authorization": f"vapid t={token}, k={VAPID_PUBLIC_KEY}"}


def encrypt_payload(payload: bytes, p256dh: str, auth: str) -> bytes:
    """Encrypt one aes128gcm record for the subscriber's keys"""
    ua_public = b64url_decode(p256dh)
    auth_secret = b64url_decode(auth)

    ua_key = ec.EllipticCurvePublicKey.from_encoded_point(ec.SECP256R1(), ua_public)
    as_private = ec.generate_private_key(ec.SECP256R1())
    as_public = as_private.public_key().public_bytes(
        serialization.Encoding.X962, serialization.PublicFormat.UncompressedPoint
    )

    shared_secret = as_private.exchange(ec.ECDH(), ua_key)
    ikm = HKDF(
        algorithm=hashes.SHA256(),
        length=32,
        salt=auth_secret,
        info=b"WebPush: info\x00" + ua_public + as_public,
    ).derive(shared_secret)

    salt = os.urandom(16)
    cek = HKDF(
        algorithm=hashes.SHA256(), length=16, salt=salt, info=b"Content-Encoding: aes128gcm\x00"
    ).derive(ikm)
    nonce = HKDF(
        algorithm=hashes.SHA256(), length=12, salt=salt, info=b"Content-Encoding: nonce\x00"
    ).derive(ikm)

    # 0x02 marks the final record
    ciphertext = AESGCM(cek).encrypt(nonce, payload + b"\x02", None)

    header = salt + RECORD_SIZE.to_bytes(4, "big") + bytes([len(as_public)]) + as_public
    return header + ciphertext


async def send_web_push(
    endpoint: str,
    p256dh: str,
    auth: str,
    payload: Optional[dict[str, Any]] = None,
    client: Optional[httpx.AsyncClient] = None,
    ttl: int = DEFAULT_TTL,
) -> int:
    """Deliver one push message and return the push service status code"""
    if not is_configured():
        raise PushError("VAPID keys not configured")

    headers = {"TTL": str(ttl)}
    headers.update(build_vapid_headers(endpoint))

    body = b""
    if payload is not None:
        try:
            body = encrypt_payload(json.dumps(payload).encode("utf-8"), p256dh, auth)
        except (ValueError, TypeError) as e:
            raise PushError(f"Invalid subscription keys: {e}") from e
        headers["Content-Encoding"] = "aes128gcm"
        headers["Content-Type"] = "application/octet-stream"

    try:
        if client is None:
            async with httpx.AsyncClient(timeout=10.0) as owned_client:
                response = await owned_client.post(endpoint, content=body, headers=headers)
        else:
            response = await client.post(endpoint, content=body, headers=headers)
    except httpx.HTTPError as e:
        raise PushError(f"Push request failed: {e}") from e

    if response.status_code not in (200, 201, 202):
        raise PushError(
            f"Push service returned {response.status_code}: {response.text[:200]}",
            status_code=response.status_code,
        )

    return response.status_code
