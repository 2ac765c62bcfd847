"""
Member authentication for the Scribe API.

Identity is issued elsewhere; this module only signs (for development and
tests) and verifies HS256 bearer tokens whose `sub` claim is the user id.
The secret comes from, in order: the JWT_SECRET app config,
SCRIBE_JWT_SECRET, or a secret persisted under the Scribe config directory.
"""

from __future__ import annotations

import functools
import logging
import os
import secrets
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable, Dict, Optional

import jwt
from flask import current_app, g, has_app_context, request

from scribe_printer.core.config import get_config_path
from scribe_printer.core.errors import AuthenticationError

logger = logging.getLogger(__name__)

ISSUER = "scribe"
AUDIENCE = "scribe-api"


def _secret_file() -> Path:
    return Path(get_config_path()).parent / "jwt_secret"


def _get_or_create_secret() -> str:
    secret = os.environ.get("SCRIBE_JWT_SECRET")
    if secret:
        return secret

    secret_file = _secret_file()
    if secret_file.exists():
        try:
            return secret_file.read_text().strip()
        except OSError as e:
            logger.warning(f"Failed to read secret from {secret_file}: {e}")

    secret = secrets.token_urlsafe(32)
    try:
        secret_file.parent.mkdir(parents=True, exist_ok=True)
        secret_file.write_text(secret)
        secret_file.chmod(0o600)
        logger.info(f"Generated new JWT secret and saved to {secret_file}")
    except OSError as e:
        logger.warning(f"Failed to save secret to {secret_file}: {e}")
        logger.info("Using in-memory secret (will not persist)")
    return secret


class MemberAuth:
    """
    Sign and verify member bearer tokens.
    """

    def __init__(self, secret_key: Optional[str] = None, token_expiry_days: int = 30):
        self.secret_key = secret_key or _get_or_create_secret()
        self.token_expiry_days = token_expiry_days
        self.algorithm = "HS256"

    def generate_token(self, user_id: str, extra_claims: Optional[Dict[str, Any]] = None) -> str:
        now = datetime.now(timezone.utc)
        payload = {
            "sub": user_id,
            "iat": now,
            "exp": now + timedelta(days=self.token_expiry_days),
            "iss": ISSUER,
            "aud": AUDIENCE,
        }
        if extra_claims:
            payload.update(extra_claims)
        return jwt.encode(payload, self.secret_key, algorithm=self.algorithm)

    def verify_token(self, token: str) -> Dict[str, Any]:
        """
        Decode a token or raise AuthenticationError.
        """
        try:
            payload = jwt.decode(
                token,
                self.secret_key,
                algorithms=[self.algorithm],
                issuer=ISSUER,
                audience=AUDIENCE,
            )
        except jwt.ExpiredSignatureError as e:
            raise AuthenticationError("Token has expired") from e
        except jwt.InvalidTokenError as e:
            logger.warning(f"Invalid JWT token: {e}")
            raise AuthenticationError("Invalid token") from e
        if not payload.get("sub"):
            raise AuthenticationError("Token has no subject")
        return payload


def get_auth() -> MemberAuth:
    """
    MemberAuth for the current app, created once per app.
    """
    if has_app_context():
        auth = current_app.extensions.get("scribe_auth")
        if auth is None:
            auth = MemberAuth(current_app.config.get("JWT_SECRET"))
            current_app.extensions["scribe_auth"] = auth
        return auth
    return MemberAuth()


def bearer_token() -> Optional[str]:
    header = request.headers.get("Authorization", "")
    if header.lower().startswith("bearer "):
        return header[7:].strip() or None
    # EventSource clients cannot set headers
    return request.args.get("access_token") or None


def member_required(view: Callable) -> Callable:
    """
    Require a valid bearer token and resolve the caller's RequestContext
    into g.ctx before the view runs.
    """
    from scribe_printer.printing.producer import RequestContext

    @functools.wraps(view)
    def wrapper(*args: Any, **kwargs: Any):
        token = bearer_token()
        if not token:
            raise AuthenticationError("Missing bearer token")
        claims = get_auth().verify_token(token)
        g.ctx = RequestContext.for_user(str(claims["sub"]))
        return view(*args, **kwargs)

    return wrapper


__all__ = ["AUDIENCE", "ISSUER", "MemberAuth", "bearer_token", "get_auth", "member_required"]
