"""
Typed failures raised by the store adapter, services and reservation engine.

Each error carries the HTTP status the handlers answer with; the message
is what ends up in the ``{"message": ...}`` response body.
"""


class LibraryError(Exception):
    status_code = 500
    default_message = "Error interno del servidor"

    def __init__(self, message: str = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationFailed(LibraryError):
    status_code = 400
    default_message = "Datos inválidos"


class NotFound(LibraryError):
    status_code = 404
    default_message = "Recurso no encontrado"


class DuplicateKey(LibraryError):
    status_code = 409
    default_message = "El registro ya existe"


class BookUnavailable(LibraryError):
    status_code = 400
    default_message = "Libro no disponible"


class AlreadyReturned(LibraryError):
    status_code = 409
    default_message = "Reserva ya devuelta"


class Unauthenticated(LibraryError):
    status_code = 401
    default_message = "Token requerido"


class Forbidden(LibraryError):
    status_code = 403
    default_message = "No autorizado"


class StoreUnavailable(LibraryError):
    """The document store cannot be reached. Never reported as NotFound."""

    status_code = 503
    default_message = "Base de datos no disponible"
