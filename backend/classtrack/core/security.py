from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from passlib.context import CryptContext

from classtrack.core.config import SECRET_KEY, ALGORITHM, ACCESS_TOKEN_EXPIRE_MINUTES

# ==========================================================
# 🔒 Passwords (staff accounts and imported students)
# ==========================================================

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

# bcrypt ignores everything past 72 bytes of input
BCRYPT_MAX_BYTES = 72


def _bcrypt_input(secret: Optional[str]) -> bytes:
    # Cut the encoded bytes, not the characters, so multi-byte text stays under the limit
    return (secret or "").encode("utf-8")[:BCRYPT_MAX_BYTES]


def get_password_hash(password: str) -> str:
    return pwd_context.hash(_bcrypt_input(password))


def verify_password(plain_password: str, hashed_password: Optional[str]) -> bool:
    """False for a wrong password and for a missing or malformed stored hash."""
    if not hashed_password:
        return False
    try:
        return pwd_context.verify(_bcrypt_input(plain_password), hashed_password)
    except (ValueError, TypeError):
        return False


def default_student_password_hash(hall_ticket_number: str) -> str:
    """Imported students log in with their hall ticket number until they change it."""
    return get_password_hash(hall_ticket_number)


# ==========================================================
# 🔑 Bearer tokens
# ==========================================================

def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    """Signs ``data`` (normally ``{"sub": email}``) with an expiry claim."""
    lifetime = expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)
    claims = {**data, "exp": datetime.now(timezone.utc) + lifetime}
    return jwt.encode(claims, SECRET_KEY, algorithm=ALGORITHM)


def decode_access_token(token: str) -> Optional[str]:
    """Returns the ``sub`` claim, or None for a bad signature, a bad format or an expired token."""
    try:
        claims = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except jwt.PyJWTError:
        return None
    return claims.get("sub")
