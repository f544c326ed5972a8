"""Custom exceptions for the repair-shop POS."""
from decimal import Decimal


class PosError(Exception):
    """Base exception for all application errors."""
    kind = 'internal'
    retryable = False

    def __init__(self, message="Ocurrió un error interno", status_code=500, payload=None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.payload = payload

    def to_dict(self):
        rv = dict(self.payload or ())
        rv['message'] = self.message
        rv['status'] = 'error'
        rv['kind'] = self.kind
        rv['retryable'] = self.retryable
        return rv

class BusinessLogicError(PosError):
    """Exception raised for business logic violations."""
    kind = 'business'

    def __init__(self, message, status_code=400, payload=None):
        super().__init__(message, status_code, payload)

class ValidationError(BusinessLogicError):
    """Bad input shape; blocks the offending action only."""
    kind = 'validation'

class NotFoundError(PosError):
    """Exception raised when a resource is not found."""
    kind = 'not_found'

    def __init__(self, message="Recurso no encontrado", payload=None):
        super().__init__(message, 404, payload)

def _fmt_qty(value):
    value = Decimal(str(value))
    return f"{int(value)}" if value % 1 == 0 else f"{value:.2f}".rstrip('0').rstrip('.')

class StockConflictError(BusinessLogicError):
    """Raised when a movement would drive stock below zero (stock changed meanwhile)."""
    kind = 'stock_conflict'

    def __init__(self, product_name, required, available):
        message = (
            f"El stock de {product_name} cambió: se requieren {_fmt_qty(required)}, "
            f"disponible {_fmt_qty(available)}. Actualice e intente de nuevo."
        )
        super().__init__(message, status_code=409, payload={
            'product': product_name,
            'required': str(required),
            'available': str(available),
        })

class InsufficientCreditError(BusinessLogicError):
    """Raised when a customer's available credit does not cover the sale."""
    kind = 'insufficient_credit'

    def __init__(self, shortfall, available=None):
        self.shortfall = Decimal(str(shortfall)).quantize(Decimal('0.01'))
        message = f"Crédito insuficiente: faltan {self.shortfall} para cubrir la venta"
        payload = {'shortfall': str(self.shortfall)}
        if available is not None:
            payload['available'] = str(available)
        super().__init__(message, status_code=402, payload=payload)

class BackendUnavailableError(PosError):
    """Database or network failure; the operation can be retried."""
    kind = 'backend_unavailable'
    retryable = True

    def __init__(self, message="No se pudo contactar la base de datos. Intente nuevamente."):
        super().__init__(message, 503)


def to_backend_error(exc):
    """Map a low-level database exception to BackendUnavailableError."""
    detail = getattr(exc, 'orig', None) or exc
    return BackendUnavailableError(
        f"No se pudo contactar la base de datos ({type(detail).__name__}). Intente nuevamente."
    )
