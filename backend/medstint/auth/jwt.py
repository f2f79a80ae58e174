"""JWT decoding (and minting, for development and tests).

Tokens are issued by the identity provider; this service only reads them.

Token claims:
  - sub:         principal ID
  - email:       principal email
  - role:        pre-assigned role (invitations), optional
  - school_id:   pre-assigned school (invitations), optional
  - program_id:  pre-assigned program (invitations), optional
  - type:        "access"
  - exp:         expiry timestamp
"""

from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt

from medstint.config import settings

ALGORITHM = settings.jwt_algorithm


def create_access_token(
    principal_id: str,
    email: str | None = None,
    role: str | None = None,
    school_id: str | None = None,
    program_id: str | None = None,
    expires_delta: timedelta | None = None,
) -> str:
    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(minutes=settings.access_token_expire_minutes)
    )
    payload = {
        "sub": principal_id,
        "type": "access",
        "exp": expire,
    }
    for claim, value in (
        ("email", email),
        ("role", role),
        ("school_id", school_id),
        ("program_id", program_id),
    ):
        if value:
            payload[claim] = value
    return jwt.encode(payload, settings.secret_key, algorithm=ALGORITHM)


def decode_token(token: str) -> dict:
    """Decode and validate a JWT. Returns empty dict on failure."""
    try:
        return jwt.decode(token, settings.secret_key, algorithms=[ALGORITHM])
    except JWTError:
        return {}
