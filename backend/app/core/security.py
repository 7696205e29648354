"""
Modulo di sicurezza per i token JWT
Progetto: Business Manager (Gestionale Commerciale)

L'autenticazione è esterna: qui si verificano i bearer token emessi
dal servizio di autenticazione. `create_access_token` è usato da
strumenti di amministrazione e test.
"""

from datetime import datetime, timedelta, timezone
from typing import Iterable, Optional

from fastapi import HTTPException, status
from jose import JWTError, jwt
from pydantic import ValidationError as PydanticValidationError

from app.core.config import settings
from app.schemas.token import TokenPayload


def create_access_token(
    user_id: str,
    role: str,
    company_id: Optional[str] = None,
    email: Optional[str] = None,
    permissions: Iterable[str] = (),
    expires_minutes: int = 60,
) -> str:
    """
    Crea un token di accesso JWT.

    Args:
        user_id: ID dell'utente
        role: Ruolo dell'utente
        company_id: Azienda corrente
        email: Email dell'utente
        permissions: Permessi espliciti
        expires_minutes: Validità in minuti

    Returns:
        Token JWT codificato
    """
    expire = datetime.now(timezone.utc) + timedelta(minutes=expires_minutes)

    payload = {
        "sub": user_id,
        "role": role,
        "company_id": company_id,
        "email": email,
        "permissions": list(permissions),
        "exp": expire,
        "type": "access",
    }

    return jwt.encode(
        payload,
        settings.secret_key,
        algorithm=settings.jwt_algorithm,
    )


def decode_token(token: str) -> TokenPayload:
    """
    Decodifica e valida un token JWT.

    Args:
        token: Token JWT da decodificare

    Returns:
        TokenPayload con i dati del token

    Raises:
        HTTPException: Se il token è invalido o scaduto
    """
    try:
        payload = jwt.decode(
            token,
            settings.secret_key,
            algorithms=[settings.jwt_algorithm],
        )
        token_data = TokenPayload(**payload)
    except (JWTError, PydanticValidationError) as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Token invalido o scaduto: {str(e)}",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if not token_data.sub:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token invalido: missing subject",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return token_data


# Export delle funzioni
__all__ = [
    "create_access_token",
    "decode_token",
]
