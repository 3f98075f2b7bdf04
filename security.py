"""Credential hashing and session tokens.

Passwords are hashed with bcrypt.  Session tokens are signed JWTs that
carry the user id and the permission strings the user held at login; the
API expects them as ``Authorization: Bearer <token>``.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import FrozenSet, Iterable, Optional

import bcrypt
import jwt

from config import settings
from errors import Unauthenticated, ValidationFailed

logger = logging.getLogger(__name__)

# bcrypt only looks at the first 72 bytes of the secret
MAX_PASSWORD_BYTES = 72


@dataclass(frozen=True)
class Identity:
    """A verified caller: who they are and which permission strings they carry."""

    id: str
    permisos: FrozenSet[str] = frozenset()


class CredentialHasher:
    def __init__(self, rounds: int = None):
        self.rounds = rounds or settings.bcrypt_rounds

    def hash(self, plaintext: str) -> str:
        raw = plaintext.encode("utf-8")
        if len(raw) > MAX_PASSWORD_BYTES:
            raise ValidationFailed("La contraseña es demasiado larga")
        return bcrypt.hashpw(raw, bcrypt.gensalt(self.rounds)).decode("utf-8")

    def verify(self, plaintext: str, digest: str) -> bool:
        try:
            return bcrypt.checkpw(plaintext.encode("utf-8"), digest.encode("utf-8"))
        except ValueError:
            # malformed digest or over-long password
            return False


class TokenIssuer:
    def __init__(self, secret: str = None, algorithm: str = None, ttl: timedelta = None):
        self.secret = secret or settings.jwt_secret
        self.algorithm = algorithm or settings.jwt_algorithm
        self.ttl = ttl or timedelta(minutes=settings.jwt_expiration_minutes)

    def issue(self, identity_id: str, permisos: Iterable[str], ttl: Optional[timedelta] = None) -> str:
        now = datetime.now(timezone.utc)
        payload = {
            "id": str(identity_id),
            "permisos": sorted(set(permisos)),
            "iat": now,
            "exp": now + (ttl or self.ttl),
        }
        return jwt.encode(payload, self.secret, algorithm=self.algorithm)

    def verify(self, token: str) -> Identity:
        try:
            payload = jwt.decode(token, self.secret, algorithms=[self.algorithm])
        except jwt.ExpiredSignatureError:
            raise Unauthenticated("Token expirado")
        except jwt.InvalidTokenError:
            raise Unauthenticated("Token inválido")
        identity_id = payload.get("id")
        if not identity_id:
            raise Unauthenticated("Token inválido")
        return Identity(id=str(identity_id), permisos=frozenset(payload.get("permisos") or []))
