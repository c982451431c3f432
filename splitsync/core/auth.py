from jose import JWTError, jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer
from pydantic import BaseModel

from splitsync.core.config import settings

security = HTTPBearer()


class Identity(BaseModel):
    """Identity asserted by the identity provider."""
    user_id: str
    email_verified: bool = False


def decode_identity(token: str) -> Identity:
    """Decode a provider-issued JWT into an Identity."""
    try:
        payload = jwt.decode(
            token,
            settings.SECRET_KEY,
            algorithms=[settings.ALGORITHM]
        )
    except JWTError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token"
        )

    user_id = payload.get("sub")
    if user_id is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token"
        )
    return Identity(user_id=user_id, email_verified=bool(payload.get("email_verified", False)))


def create_identity_token(user_id: str, email_verified: bool = True) -> str:
    """Mint a token the way the identity provider does. Used by tests and local tooling."""
    return jwt.encode(
        {"sub": user_id, "email_verified": email_verified},
        settings.SECRET_KEY,
        algorithm=settings.ALGORITHM
    )


async def get_current_identity(credentials = Depends(security)) -> Identity:
    """Get the caller's identity from the bearer token."""
    return decode_identity(credentials.credentials)


async def get_verified_identity(identity: Identity = Depends(get_current_identity)) -> Identity:
    """Reject identities whose email has not been verified."""
    if not identity.email_verified:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Email not verified"
        )
    return identity
