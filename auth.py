"""
=============================================================================
AUTH.PY — Authentication
=============================================================================
Handles:
  - Password hashing (bcrypt, passwords are never stored in plain text)
  - Creating and verifying JWT tokens (python-jose, HS256)
  - Resolving the current user from the "Authorization: Bearer" header

Flow:
  1. The user sends email + password to /api/auth/login
  2. If they match, the server signs a JWT with the user id inside
  3. Every following request carries that JWT
  4. get_current_user() verifies it and loads the user

The signing key and lifetime come from Settings (app.state.settings).
"""

from datetime import datetime, timedelta
from typing import Optional

import bcrypt
from fastapi import Depends, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import JWTError, jwt
from sqlalchemy.orm import Session

from database import get_db
from errors import Unauthorized
from models import User

ALGORITHM = "HS256"


# ─────────────────────────────────────────────────────────────────────────────
# PASSWORD HASHING
# ─────────────────────────────────────────────────────────────────────────────

def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return bcrypt.checkpw(plain_password.encode("utf-8"), hashed_password.encode("utf-8"))


# ─────────────────────────────────────────────────────────────────────────────
# JWT TOKENS
# ─────────────────────────────────────────────────────────────────────────────

def create_access_token(user_id: int, email: str, secret_key: str, expire_days: int = 30) -> str:
    """
    The token carries:
      - sub: the user id
      - email: for reference
      - exp: expiry
    signed with the secret key so it cannot be forged.
    """
    expire = datetime.utcnow() + timedelta(days=expire_days)
    to_encode = {
        "sub": str(user_id),
        "email": email,
        "exp": expire
    }
    return jwt.encode(to_encode, secret_key, algorithm=ALGORITHM)


def decode_token(token: str, secret_key: str) -> Optional[dict]:
    """Payload of a valid token, None if it is invalid or expired"""
    try:
        return jwt.decode(token, secret_key, algorithms=[ALGORITHM])
    except JWTError:
        return None


# ─────────────────────────────────────────────────────────────────────────────
# DEPENDENCY: CURRENT USER
# ─────────────────────────────────────────────────────────────────────────────

security = HTTPBearer(auto_error=False)
# auto_error=False → a missing header reaches us, and we answer 401 in our envelope


async def get_current_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: Session = Depends(get_db)
) -> User:
    """
    Used in endpoints as:
      @app.get("/api/something")
      def endpoint(user: User = Depends(get_current_user)):
          ...
    """
    if credentials is None:
        raise Unauthorized("Missing bearer token")

    payload = decode_token(credentials.credentials, request.app.state.settings.secret_key)
    if payload is None:
        raise Unauthorized("Invalid or expired token")

    user_id = payload.get("sub")
    if user_id is None or not str(user_id).isdigit():
        raise Unauthorized("Token has no user id")

    user = db.query(User).filter(User.id == int(user_id)).first()
    if user is None:
        # account deleted after the token was issued
        raise Unauthorized("User no longer exists")

    user.last_active = datetime.utcnow()
    db.commit()

    return user
