"""Custom exceptions for the ERP workflow engine."""

class ErpError(Exception):
    """Base exception for all application errors."""
    kind = 'error'

    def __init__(self, message="An internal error occurred", status_code=500, payload=None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.payload = payload

    def to_dict(self):
        rv = dict(self.payload or ())
        rv['message'] = self.message
        rv['error'] = self.kind
        rv['status'] = 'error'
        return rv

class BusinessLogicError(ErpError):
    """Exception raised for business logic violations."""
    kind = 'business_error'

    def __init__(self, message, status_code=400, payload=None):
        super().__init__(message, status_code, payload)

class NotFoundError(ErpError):
    """Exception raised when a referenced resource does not exist."""
    kind = 'not_found'

    def __init__(self, message="Resource not found", payload=None):
        super().__init__(message, 404, payload)

class ValidationError(BusinessLogicError):
    """Structurally invalid input or mismatched cross-entity references."""
    kind = 'validation_error'

    def __init__(self, message, payload=None, status_code=400):
        super().__init__(message, status_code, payload)

class InsufficientStockError(ValidationError):
    """Raised when an operation fails due to lack of stock."""
    def __init__(self, product_name, required, available, payload=None):
        req_fmt = f"{int(required)}" if required % 1 == 0 else f"{required:.2f}".rstrip('0').rstrip('.')
        avail_fmt = f"{int(available)}" if available % 1 == 0 else f"{available:.2f}".rstrip('0').rstrip('.')
        message = f"Stock insuficiente para {product_name}: se requieren {req_fmt}, disponible {avail_fmt}"
        super().__init__(message, payload=payload, status_code=409)
        self.product_name = product_name
        self.required = required
        self.available = available

class InvalidTransitionError(BusinessLogicError):
    """Status change outside the allowed transitions."""
    kind = 'invalid_transition'

    def __init__(self, entity, current, target):
        message = f"Transición de estado inválida para {entity}: {current} -> {target}"
        super().__init__(message, 409, {'current_status': current, 'requested_status': target})
        self.current = current
        self.target = target

class ConflictError(BusinessLogicError):
    """Operation not allowed in the current state of the entity."""
    kind = 'conflict'

    def __init__(self, message, payload=None):
        super().__init__(message, 409, payload)

class StorageError(ErpError):
    """Unexpected database failure."""
    kind = 'storage_error'

    def __init__(self, message="Error de base de datos", original=None):
        super().__init__(message, 500)
        self.original = original
