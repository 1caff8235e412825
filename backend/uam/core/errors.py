from __future__ import annotations
from typing import Any, Dict, Optional


class UamError(Exception):
    """Base for every failure a core operation reports to its caller."""

    code = "UAM_ERROR"
    status_code = 500

    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(message)
        self.message = message
        self.details: Dict[str, Any] = details

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details:
            out["details"] = self.details
        return out


class ValidationError(UamError):
    code = "VALIDATION_ERROR"
    status_code = 400


class ConflictError(UamError):
    """An admission rule rejected the request. `rule` names which one."""

    code = "CONFLICT"
    status_code = 409

    def __init__(self, rule: str, message: str, **details: Any) -> None:
        super().__init__(message, **details)
        self.rule = rule

    def to_dict(self) -> Dict[str, Any]:
        out = super().to_dict()
        out["rule"] = self.rule
        return out


class AuthorizationError(UamError):
    code = "NOT_AUTHORIZED"
    status_code = 403


class AlreadyDecidedError(UamError):
    code = "ALREADY_DECIDED"
    status_code = 409


class NotFoundError(UamError):
    code = "NOT_FOUND"
    status_code = 404

    def __init__(self, entity: str, key: Optional[Any] = None) -> None:
        msg = f"{entity} {key} not found" if key is not None else f"{entity} not found"
        super().__init__(msg, entity=entity, key=key)


class PersistenceError(UamError):
    code = "PERSISTENCE_ERROR"
    status_code = 500
