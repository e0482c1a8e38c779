from dataclasses import dataclass, field

from jose import jwt

from tripo.core.config import settings


@dataclass(frozen=True)
class Principal:
    """Verified caller identity as supplied by the identity provider."""
    user_id: str
    claims: dict = field(default_factory=dict)

    @property
    def role(self) -> str:
        return str(self.claims.get("role") or "")


def decode_token(token: str) -> dict:
    return jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])


def principal_from_token(token: str) -> Principal:
    payload = decode_token(token)
    user_id = payload.get("sub") or payload.get("uid") or payload.get("user_id")
    if not user_id:
        raise ValueError("token has no subject")
    return Principal(user_id=str(user_id), claims=payload)
