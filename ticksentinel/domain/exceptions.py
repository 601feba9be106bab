"""
TickSentinel – Domain Exceptions
=================================
Excepciones específicas del dominio.

Capturan errores de datos y de reglas de negocio, NO errores técnicos
(esos van en infrastructure, p.ej. StoreError).

JERARQUÍA:
    DomainError (base)
    ├── InvalidSampleError
    ├── InvalidTradeError
    └── ValidationError
"""

from __future__ import annotations

from typing import Any


class DomainError(Exception):
    """Excepción base para errores de dominio."""

    def __init__(self, message: str, code: str = "DOMAIN_ERROR"):
        self.message = message
        self.code = code
        super().__init__(message)


class InvalidSampleError(DomainError):
    """Mensaje del feed malformado o con campos faltantes."""

    def __init__(self, message: str, payload: Any = None):
        super().__init__(message, code="INVALID_SAMPLE")
        self.payload = payload


class InvalidTradeError(DomainError):
    """Datos de posición inválidos o transición de estado ilegal."""

    def __init__(self, message: str, position_id: str | None = None):
        super().__init__(message, code="INVALID_TRADE")
        self.position_id = position_id


class ValidationError(DomainError):
    """Payload de evento o intención que no pasa validación."""

    def __init__(self, message: str, field: str | None = None, value: Any = None):
        super().__init__(message, code="VALIDATION_ERROR")
        self.field = field
        self.value = value
