# vethub/core/errors.py
"""
Errores de dominio de los servicios (turnos, chat, recordatorios).

Los servicios no conocen HTTP: levantan estas excepciones y main.py las
traduce a JSON ``{"code": ..., "detail": ...}``. El WebSocket las devuelve
como evento ``error`` sin cerrar la conexión.
"""


class AppError(Exception):
    status_code: int = 500
    code: str = "internal"
    default_detail: str = "Error interno"

    def __init__(self, detail: str | None = None):
        self.detail = detail or self.default_detail
        super().__init__(self.detail)

    def to_dict(self) -> dict:
        return {"code": self.code, "detail": self.detail}


class InvalidInput(AppError):
    status_code = 400
    code = "invalid_input"
    default_detail = "Datos inválidos"


class NotFound(AppError):
    status_code = 404
    code = "not_found"
    default_detail = "Recurso no encontrado"


class Forbidden(AppError):
    status_code = 403
    code = "forbidden"
    default_detail = "Permiso denegado"


class Conflict(AppError):
    status_code = 409
    code = "conflict"
    default_detail = "Conflicto con el estado actual"


class Internal(AppError):
    pass
