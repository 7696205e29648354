"""
Eccezioni Custom per l'applicazione.
Progetto: Business Manager (Gestionale Commerciale)

Definisce eccezioni specifiche del dominio per una gestione
centralizzata degli errori.

NOTA: BusinessValidationError è volutamente distinta da pydantic.ValidationError.
- pydantic.ValidationError: errori di formato/tipo nei dati di input (gestiti da FastAPI → 422)
- BusinessValidationError: violazioni delle regole di business logic (gestiti dal nostro handler → 422)

Gli avvisi di fallimento parziale (PartialFailureWarning) non sono eccezioni:
vengono restituiti insieme al risultato principale, vedi app.schemas.common.
"""

from typing import TYPE_CHECKING, Any, Dict, Optional

if TYPE_CHECKING:
    from app.core.datastore import DbError

__all__ = [
    "AppException",
    "NotFoundError",
    "BusinessValidationError",
    "ValidationError",       # alias di BusinessValidationError
    "ConflictError",
    "InvalidStateError",
    "AuthorizationError",
    "PermissionDeniedError",
    "OperationTimeoutError",
    "DatabaseOperationError",
]


class AppException(Exception):
    """
    Base exception per l'applicazione.

    Tutte le eccezioni custom ereditano da questa classe base.

    Attributes:
        status_code: HTTP status code da restituire al client
        error_code: Identificativo univoco dell'errore per il frontend
        detail: Messaggio di errore leggibile per l'utente
        extra: Dizionario con dati aggiuntivi per il frontend
    """

    status_code: int = 500
    error_code: str = "INTERNAL_SERVER_ERROR"

    def __init__(
        self,
        detail: str,
        error_code: Optional[str] = None,
        extra: Optional[Dict[str, Any]] = None,
    ) -> None:
        """
        Inizializza l'eccezione.

        Args:
            detail: Messaggio di errore dettagliato
            error_code: Identificativo univoco (default: quello di classe)
            extra: Dati aggiuntivi da passare al frontend (default: None)
        """
        self.detail = detail
        self.error_code = error_code if error_code is not None else self.error_code
        self.extra = extra or {}
        self.status_code = self.__class__.status_code
        super().__init__(detail)


class NotFoundError(AppException):
    """
    Eccezione sollevata quando una risorsa non viene trovata.

    Utilizzata quando un documento, prodotto o pagamento referenziato
    non esiste nel database.
    """

    status_code: int = 404
    error_code: str = "RESOURCE_NOT_FOUND"

    def __init__(
        self,
        detail: str = "Risorsa non trovata",
        error_code: Optional[str] = None,
        extra: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(detail, error_code, extra)


class BusinessValidationError(ValueError, AppException):
    """
    Eccezione sollevata per violazioni delle regole di business logic.

    Eredita da ValueError per essere catturata dai validatori Pydantic.

    Esempi di utilizzo:
        - "La quantità deve essere maggiore di zero"
        - "L'importo del pagamento deve essere positivo"
        - "Il prodotto non è presente in fattura"
    """

    status_code: int = 422
    error_code: str = "BUSINESS_VALIDATION_ERROR"

    def __init__(
        self,
        detail: str = "Validazione dati fallita",
        error_code: Optional[str] = None,
        extra: Optional[Dict[str, Any]] = None,
    ) -> None:
        # Chiama AppException.__init__ direttamente per evitare ValueError
        AppException.__init__(self, detail, error_code, extra)


# Alias per compatibilità
ValidationError = BusinessValidationError


class ConflictError(AppException):
    """
    Eccezione sollevata per conflitti di stato.

    Utilizzata quando un'operazione non può essere eseguita
    a causa dello stato corrente della risorsa.
    """

    status_code: int = 409
    error_code: str = "CONFLICT_STATE"

    def __init__(
        self,
        detail: str = "Conflitto di stato",
        error_code: Optional[str] = None,
        extra: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(detail, error_code, extra)


class InvalidStateError(ConflictError):
    """
    Transizione di stato non consentita da un documento.

    Esempi di utilizzo:
        - "Il preventivo è già stato convertito"
        - "Impossibile annullare una fattura con pagamenti allocati"
    """

    error_code: str = "INVALID_STATE"

    def __init__(
        self,
        detail: str = "Transizione di stato non consentita",
        error_code: Optional[str] = None,
        extra: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(detail, error_code, extra)


class AuthorizationError(AppException):
    """
    Eccezione sollevata per accesso non autorizzato.

    Utilizzata quando un utente tenta di eseguire un'operazione
    per cui non ha i permessi necessari.
    """

    status_code: int = 403
    error_code: str = "FORBIDDEN"

    def __init__(
        self,
        detail: str = "Accesso non autorizzato",
        error_code: Optional[str] = None,
        extra: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(detail, error_code, extra)


class PermissionDeniedError(AuthorizationError):
    """Permesso specifico mancante (es. delete_credit_note)."""

    error_code: str = "PERMISSION_DENIED"

    def __init__(
        self,
        detail: str = "Permesso negato",
        error_code: Optional[str] = None,
        extra: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(detail, error_code, extra)


class OperationTimeoutError(TimeoutError, AppException):
    """
    Operazione interrotta per superamento del tempo massimo.

    I passi già completati prima dello scadere NON vengono annullati.
    """

    status_code: int = 504
    error_code: str = "OPERATION_TIMEOUT"

    def __init__(
        self,
        detail: str = "Tempo massimo dell'operazione superato",
        error_code: Optional[str] = None,
        extra: Optional[Dict[str, Any]] = None,
    ) -> None:
        AppException.__init__(self, detail, error_code, extra)


class DatabaseOperationError(AppException):
    """
    Errore restituito dal livello di persistenza su un passo obbligatorio.

    Attributes:
        db_error: Errore strutturato restituito dal Database
    """

    status_code: int = 502
    error_code: str = "DATABASE_ERROR"

    def __init__(
        self,
        db_error: "DbError",
        detail: Optional[str] = None,
        error_code: Optional[str] = None,
    ) -> None:
        self.db_error = db_error
        extra: Dict[str, Any] = {"kind": db_error.kind.value}
        if db_error.column:
            extra["column"] = db_error.column
        super().__init__(detail or db_error.message, error_code, extra)
