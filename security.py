import os
import secrets
from datetime import datetime, timedelta
from typing import Any, Dict, Optional, Tuple

import bcrypt
import jwt

from database import utcnow
from errors import AuthError

SECRET_KEY = os.getenv("SECRET_KEY", "super-secret-key")
TOKEN_ALGORITHM = "HS256"
TOKEN_TTL_DAYS = int(os.getenv("TOKEN_TTL_DAYS", 30))
BCRYPT_ROUNDS = int(os.getenv("BCRYPT_ROUNDS", 12))

CODE_TTL = timedelta(minutes=10)


def hash_password(password: str, rounds: int = BCRYPT_ROUNDS) -> str:
    return bcrypt.hashpw(password.encode(), bcrypt.gensalt(rounds=rounds)).decode()


def verify_password(password: str, password_hash: str) -> bool:
    if not password_hash:
        return False
    try:
        return bcrypt.checkpw(password.encode(), password_hash.encode())
    except ValueError:
        # malformed stored hash or a password past bcrypt's 72-byte limit
        return False


def new_verification_code(now: Optional[datetime] = None) -> Tuple[str, datetime]:
    """Six-digit one-time code and the moment it stops being valid."""
    code = str(100000 + secrets.randbelow(900000))
    return code, (now or utcnow()) + CODE_TTL


def issue_token(user_id: str, phone: str, secret: str = SECRET_KEY,
                ttl_days: int = TOKEN_TTL_DAYS) -> str:
    now = utcnow()
    payload = {
        "userId": user_id,
        "phone": phone,
        "iat": now,
        "exp": now + timedelta(days=ttl_days),
    }
    return jwt.encode(payload, secret, algorithm=TOKEN_ALGORITHM)


def decode_token(token: str, secret: str = SECRET_KEY) -> Dict[str, Any]:
    try:
        claims = jwt.decode(token, secret, algorithms=[TOKEN_ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise AuthError("Token expired")
    except jwt.InvalidTokenError:
        raise AuthError("Invalid token")
    if not claims.get("userId"):
        raise AuthError("Invalid token")
    return claims
