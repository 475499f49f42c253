from __future__ import annotations


class AppError(Exception):
    default_message = "Não foi possível concluir a operação"
    default_http_status = 500

    def __init__(self, message: str | None = None, http_status: int | None = None) -> None:
        self.message = (message or self.default_message).strip()
        self.http_status = int(http_status or self.default_http_status)
        super().__init__(self.message)

    def to_response_payload(self) -> dict:
        return {"error": self.message}


class ValidationError(AppError):
    default_message = "Dados incompletos"
    default_http_status = 400


class DuplicateError(AppError):
    default_message = "Registro duplicado"
    default_http_status = 400


class InUseError(AppError):
    default_message = "Registro em uso"
    default_http_status = 400


class Unauthorized(AppError):
    default_message = "Não autorizado"
    default_http_status = 401


class Forbidden(AppError):
    default_message = "Não autorizado"
    default_http_status = 403


class NotFoundError(AppError):
    default_message = "Registro não encontrado"
    default_http_status = 404


class StorageError(AppError):
    default_message = "Erro ao acessar o banco de dados"
    default_http_status = 500
