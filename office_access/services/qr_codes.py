"""
QR payload encryption and time-based code helpers used by passcode issuance
and device-side validation.
"""
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from functools import lru_cache
from typing import List, Optional
import base64
import hashlib
import hmac
import io
import json
import logging
import os
import secrets

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC
import qrcode

from office_access.core.clock import ensure_utc, utcnow
from office_access.core.config import settings

logger = logging.getLogger(__name__)

MAX_QR_CONTENT_LENGTH = 2048
_REQUIRED_FIELDS = ("userId", "code", "type", "timestamp", "expiryTime")


@dataclass
class QRPayload:
    user_id: int
    code: str
    type: str
    timestamp: int      # issue time, epoch milliseconds
    expiry_time: int    # epoch milliseconds
    nonce: str
    permissions: List[str] = field(default_factory=list)


@lru_cache(maxsize=4)
def _derive_key(secret: str, salt_b64: str, iterations: int) -> bytes:
    salt = base64.b64decode(salt_b64)
    kdf = PBKDF2HMAC(algorithm=hashes.SHA256(), length=32, salt=salt, iterations=iterations)
    return kdf.derive(secret.encode())


def _qr_key() -> bytes:
    return _derive_key(settings.qr_secret, settings.qr_kdf_salt, settings.qr_kdf_iterations)


def _millis(value: datetime) -> int:
    return int(ensure_utc(value).timestamp() * 1000)


def generate_qr_content(
    user_id: int,
    code: str,
    passcode_type: str,
    expiry_time: datetime,
    permissions: Optional[List[str]] = None,
    now: Optional[datetime] = None,
) -> str:
    """
    Encrypt a passcode reference into QR content.

    Returns:
        "<nonce hex>:<ciphertext hex>" using AES-256-GCM
    """
    payload = {
        "userId": user_id,
        "code": code,
        "type": passcode_type,
        "timestamp": _millis(now or utcnow()),
        "expiryTime": _millis(expiry_time),
        "permissions": list(permissions or []),
        "nonce": secrets.token_hex(8),
    }
    nonce = os.urandom(12)
    ciphertext = AESGCM(_qr_key()).encrypt(nonce, json.dumps(payload).encode("utf-8"), None)
    return f"{nonce.hex()}:{ciphertext.hex()}"


def parse_qr_content(content: str) -> Optional[QRPayload]:
    """
    Decrypt QR content produced by generate_qr_content.

    Returns:
        QRPayload, or None if the content is malformed, tampered with or incomplete
    """
    if not content or len(content) > MAX_QR_CONTENT_LENGTH or content.count(":") != 1:
        return None

    nonce_hex, ciphertext_hex = content.split(":")
    try:
        nonce = bytes.fromhex(nonce_hex)
        ciphertext = bytes.fromhex(ciphertext_hex)
        plaintext = AESGCM(_qr_key()).decrypt(nonce, ciphertext, None)
        data = json.loads(plaintext.decode("utf-8"))
    except (ValueError, InvalidTag) as e:
        # json.JSONDecodeError and UnicodeDecodeError are ValueErrors
        logger.warning(f"Rejected QR content: {type(e).__name__}")
        return None

    if not isinstance(data, dict) or any(data.get(key) in (None, "") for key in _REQUIRED_FIELDS):
        logger.warning("Rejected QR content: missing fields")
        return None

    try:
        return QRPayload(
            user_id=int(data["userId"]),
            code=str(data["code"]),
            type=str(data["type"]),
            timestamp=int(data["timestamp"]),
            expiry_time=int(data["expiryTime"]),
            nonce=str(data.get("nonce", "")),
            permissions=[str(p) for p in data.get("permissions") or []],
        )
    except (TypeError, ValueError):
        logger.warning("Rejected QR content: malformed fields")
        return None


def generate_qr_code_image(qr_content: str) -> bytes:
    """Render QR content as PNG bytes"""
    qr = qrcode.QRCode(
        version=None,
        error_correction=qrcode.constants.ERROR_CORRECT_M,
        box_size=10,
        border=4,
    )
    qr.add_data(qr_content)
    qr.make(fit=True)

    img = qr.make_image(fill_color="black", back_color="white")
    img_bytes = io.BytesIO()
    img.save(img_bytes, format='PNG')
    img_bytes.seek(0)
    return img_bytes.getvalue()


def qr_code_data_url(qr_content: str) -> str:
    """PNG QR image as a data URL the admin panels can drop into an <img> tag."""
    encoded = base64.b64encode(generate_qr_code_image(qr_content)).decode("ascii")
    return f"data:image/png;base64,{encoded}"


def is_qr_code_valid(expiry_time_ms: int, now: Optional[datetime] = None) -> bool:
    """A QR code is valid strictly before its expiry instant."""
    return expiry_time_ms > _millis(now or utcnow())


def _time_window_index(window_minutes: int, now: Optional[datetime] = None) -> int:
    return _millis(now or utcnow()) // (window_minutes * 60 * 1000)


def _time_code(base_code: str, window_index: int) -> str:
    digest = hmac.new(
        settings.qr_secret.encode("utf-8"),
        f"{base_code}:{window_index}".encode("utf-8"),
        hashlib.sha256,
    ).hexdigest()
    return digest[:16].upper()


def generate_time_based_code(base_code: str, window_minutes: int, now: Optional[datetime] = None) -> str:
    """16 upper-case hex characters bound to base_code and the current time window."""
    return _time_code(base_code, _time_window_index(window_minutes, now))


def validate_time_based_code(
    time_based_code: str,
    base_code: str,
    window_minutes: int,
    now: Optional[datetime] = None,
) -> bool:
    """Accept codes from the current window and the one before it."""
    if not time_based_code or not base_code:
        return False
    current = _time_window_index(window_minutes, now)
    candidate = time_based_code.upper().encode("utf-8")
    return any(
        hmac.compare_digest(candidate, _time_code(base_code, index).encode("utf-8"))
        for index in (current, current - 1)
    )


def generate_unique_id() -> str:
    """Upper-case alphanumeric id: millisecond clock in hex plus 12 random hex chars."""
    return f"{_millis(utcnow()):X}{secrets.token_hex(6).upper()}"


def expiry_after(minutes: int, now: Optional[datetime] = None) -> datetime:
    return (now or utcnow()) + timedelta(minutes=minutes)
