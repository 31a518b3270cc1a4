"""
Claims of a verified user pool ID token.
"""

from dataclasses import dataclass
from typing import Any

USERNAME_CLAIMS = ("cognito:username", "username")


@dataclass(frozen=True)
class TokenClaims:
    """
    Verified ID token claims.

    The username names the per-user session cookies, so a token without one
    cannot back a session.

    Attributes:
        username: "cognito:username", falling back to "username"
        sub: Subject (user ID)
        exp: Expiration timestamp (Unix epoch)
        token_use: Token type ("id" for ID tokens)
        raw_payload: Full decoded payload, for custom attributes
    """

    username: str
    sub: str
    exp: int
    token_use: str | None
    raw_payload: dict[str, Any]

    @property
    def email(self) -> str | None:
        return self.raw_payload.get("email")

    @property
    def groups(self) -> list[str]:
        """User pool groups ("cognito:groups")."""
        groups = self.raw_payload.get("cognito:groups")
        return [str(g) for g in groups] if isinstance(groups, list) else []

    def get_claim(self, key: str, default: Any = None) -> Any:
        return self.raw_payload.get(key, default)

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "TokenClaims":
        """
        Build claims from a decoded ID token payload.

        Raises:
            ValueError: If the username, sub or exp claim is missing
        """
        username = next((payload[name] for name in USERNAME_CLAIMS if payload.get(name)), None)
        if not username:
            raise ValueError("Token missing required 'cognito:username' claim")

        for name in ("sub", "exp"):
            if not payload.get(name):
                raise ValueError(f"Token missing required '{name}' claim")

        return cls(
            username=str(username),
            sub=str(payload["sub"]),
            exp=int(payload["exp"]),
            token_use=payload.get("token_use"),
            raw_payload=payload,
        )
