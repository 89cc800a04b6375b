import hashlib
import hmac
import secrets
from typing import Any

from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

from app.core.config import get_settings

API_KEY_PREFIX = "sk_"

# scrypt work factors for password hashes
_SCRYPT_N = 2 ** 14
_SCRYPT_R = 8
_SCRYPT_P = 1
_SCRYPT_DKLEN = 64


def get_token_serializer() -> URLSafeTimedSerializer:
    settings = get_settings()
    return URLSafeTimedSerializer(
        settings.secret_key,
        salt="imagegen-access-token",
        signer_kwargs={"key_derivation": "hmac", "digest_method": hashlib.sha256},
    )


def create_access_token(user_id: str) -> str:
    return get_token_serializer().dumps({"user_id": user_id})


def load_access_token(token: str) -> dict[str, Any] | None:
    serializer = get_token_serializer()
    try:
        return serializer.loads(token, max_age=get_settings().token_max_age_seconds)
    except (BadSignature, SignatureExpired):
        return None


def hash_password(password: str, salt: bytes | None = None) -> str:
    salt = salt or secrets.token_bytes(16)
    digest = hashlib.scrypt(
        password.encode("utf-8"),
        salt=salt,
        n=_SCRYPT_N,
        r=_SCRYPT_R,
        p=_SCRYPT_P,
        dklen=_SCRYPT_DKLEN,
    )
    return f"scrypt${_SCRYPT_N}${_SCRYPT_R}${_SCRYPT_P}${salt.hex()}${digest.hex()}"


def verify_password(password: str, encoded: str) -> bool:
    try:
        scheme, n, r, p, salt_hex, stored = encoded.split("$", 5)
    except ValueError:
        return False
    if scheme != "scrypt":
        return False
    expected = bytes.fromhex(stored)
    derived = hashlib.scrypt(
        password.encode("utf-8"),
        salt=bytes.fromhex(salt_hex),
        n=int(n),
        r=int(r),
        p=int(p),
        dklen=len(expected),
    )
    return hmac.compare_digest(derived, expected)


def generate_api_key() -> str:
    return API_KEY_PREFIX + secrets.token_hex(32)


def mask_api_key(key: str) -> str:
    return key[:12] + "..." + key[-4:]
