"""
Dependency Injection per autenticazione e servizi
Progetto: Business Manager (Gestionale Commerciale)

Ogni richiesta riceve una capability Database costruita sulla
propria sessione e servizi istanziati con l'utente corrente.
"""

from typing import Annotated, AsyncGenerator, Optional
from uuid import UUID

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import SqlAlchemyDatabase, get_db
from app.core.datastore import Database
from app.core.security import decode_token
from app.schemas.token import CurrentUser
from app.services.conversion_service import ConversionService
from app.services.credit_note_service import CreditNoteService
from app.services.document_lifecycle import DocumentLifecycleService
from app.services.excess_payment_service import ExcessPaymentService
from app.services.invoice_service import InvoiceService
from app.services.number_generator import DocumentNumberGenerator, SequenceNumberGenerator
from app.services.payment_service import PaymentService
from app.services.receipt_service import ReceiptService
from app.services.stock_movement_service import StockMovementService

# Bearer scheme - estrae il token dall'header Authorization
bearer_scheme = HTTPBearer(auto_error=False)


async def get_database(
    session: AsyncSession = Depends(get_db),
) -> AsyncGenerator[Database, None]:
    """Capability Database sulla sessione della richiesta."""
    yield SqlAlchemyDatabase(session)


def get_number_generator(
    db: Database = Depends(get_database),
) -> DocumentNumberGenerator:
    """Generatore numeri documento basato su document_sequences."""
    return SequenceNumberGenerator(db)


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> CurrentUser:
    """
    Dependency per ottenere l'utente corrente dal token JWT.

    Raises:
        HTTPException 401: Se il token manca, è invalido o scaduto
    """
    if credentials is None or not credentials.credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token di autenticazione non fornito",
            headers={"WWW-Authenticate": "Bearer"},
        )

    token_data = decode_token(credentials.credentials)

    # Verifica che sia un token di accesso
    if token_data.type != "access":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token non valido per questa operazione",
            headers={"WWW-Authenticate": "Bearer"},
        )

    try:
        user_id = UUID(token_data.sub)
        company_id = UUID(token_data.company_id) if token_data.company_id else None
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="ID utente o azienda invalido nel token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return CurrentUser(
        id=user_id,
        email=token_data.email,
        role=token_data.role,
        company_id=company_id,
        permissions=frozenset(token_data.permissions),
    )


def require_role(*allowed_roles: str):
    """
    Factory function per creare una dependency che verifica il ruolo.

    Example:
        @router.post("/admin-only")
        async def admin_endpoint(admin: CurrentUser = Depends(require_role("admin"))):
            ...
    """
    async def role_checker(
        current_user: Annotated[CurrentUser, Depends(get_current_user)]
    ) -> CurrentUser:
        if current_user.role not in allowed_roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Accesso negato. Ruolo richiesto: {', '.join(allowed_roles)}",
            )
        return current_user

    return role_checker


# Type aliases per uso comune
AuthUser = Annotated[CurrentUser, Depends(get_current_user)]
DatabaseDep = Annotated[Database, Depends(get_database)]
NumbersDep = Annotated[DocumentNumberGenerator, Depends(get_number_generator)]


# -------------------------------------------------------------------
# Servizi
# -------------------------------------------------------------------

def get_conversion_service(db: DatabaseDep, numbers: NumbersDep, user: AuthUser) -> ConversionService:
    return ConversionService(db, numbers, user)


def get_payment_service(db: DatabaseDep, numbers: NumbersDep, user: AuthUser) -> PaymentService:
    return PaymentService(db, numbers, user)


def get_receipt_service(db: DatabaseDep, numbers: NumbersDep, user: AuthUser) -> ReceiptService:
    return ReceiptService(db, numbers, user)


def get_excess_service(db: DatabaseDep, numbers: NumbersDep, user: AuthUser) -> ExcessPaymentService:
    return ExcessPaymentService(db, numbers, user)


def get_credit_note_service(db: DatabaseDep, numbers: NumbersDep, user: AuthUser) -> CreditNoteService:
    return CreditNoteService(db, numbers, user)


def get_invoice_service(db: DatabaseDep, user: AuthUser) -> InvoiceService:
    return InvoiceService(db, user)


def get_lifecycle_service(db: DatabaseDep, user: AuthUser) -> DocumentLifecycleService:
    return DocumentLifecycleService(db, user)


def get_stock_service(db: DatabaseDep, user: AuthUser) -> StockMovementService:
    return StockMovementService(db, user)


# Export
__all__ = [
    "bearer_scheme",
    "get_database",
    "get_number_generator",
    "get_current_user",
    "require_role",
    "AuthUser",
    "DatabaseDep",
    "NumbersDep",
    "get_conversion_service",
    "get_payment_service",
    "get_receipt_service",
    "get_excess_service",
    "get_credit_note_service",
    "get_invoice_service",
    "get_lifecycle_service",
    "get_stock_service",
]
