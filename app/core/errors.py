"""Domain errors raised by the service layer.

Each error carries the HTTP status it maps to; ``main.py`` installs a single
handler that renders them as JSON.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any


class DomainError(Exception):
    status_code = 400

    def __init__(self, message: str, **extra: Any) -> None:
        super().__init__(message)
        self.message = message
        self.extra = extra

    def to_dict(self) -> dict[str, Any]:
        return {"detail": self.message, "error": type(self).__name__, **self.extra}


class ValidationError(DomainError):
    status_code = 422


class NotFoundError(DomainError):
    status_code = 404


class BomNotFoundError(NotFoundError):
    def __init__(self, product_id: str) -> None:
        super().__init__(f"No bill of materials for product {product_id}", product_id=product_id)
        self.product_id = product_id


class ConflictError(DomainError):
    status_code = 409


class InvalidTransitionError(DomainError):
    status_code = 409

    def __init__(self, current: str, target: str, message: str | None = None) -> None:
        super().__init__(
            message or f"Cannot move from {current} to {target}",
            current_status=current,
            requested_status=target,
        )
        self.current = current
        self.target = target


@dataclass(frozen=True)
class Shortage:
    product_id: str
    product_name: str
    required: int
    available: int

    @property
    def missing(self) -> int:
        return self.required - self.available

    def to_dict(self) -> dict[str, Any]:
        return {
            "product_id": self.product_id,
            "product_name": self.product_name,
            "required": self.required,
            "available": self.available,
            "missing": self.missing,
        }


class InsufficientStockError(DomainError):
    status_code = 409

    def __init__(self, shortages: list[Shortage]) -> None:
        names = ", ".join(f"{s.product_name} (need {s.required}, have {s.available})" for s in shortages)
        super().__init__(
            f"Insufficient stock: {names}",
            shortages=[s.to_dict() for s in shortages],
        )
        self.shortages = list(shortages)
