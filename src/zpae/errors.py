from __future__ import annotations

from dataclasses import dataclass, asdict, field
from enum import Enum
from typing import Any, Dict, Optional


class ExitCode(int, Enum):
    OK = 0
    CONFIG_INVALID = 10
    VALIDATION = 20
    NOT_FOUND = 30
    FORBIDDEN = 40
    PAYMENT_REQUIRED = 50
    INTERNAL_ERROR = 60


class ErrorKind(str, Enum):
    NOT_FOUND = "not_found"
    VALIDATION = "validation"
    FORBIDDEN = "forbidden"
    PAYMENT_REQUIRED = "payment_required"
    CONFIG = "config"
    INTERNAL = "internal"


@dataclass(frozen=True)
class ZPAEProblem:
    code: str                 # stable machine code, e.g. "WALLET_NOT_FOUND"
    category: str             # ErrorKind value
    message: str              # short human message
    details: Dict[str, Any] = field(default_factory=dict)  # structured details for audit/debug
    remediation: Optional[str] = None  # actionable next step


class ZPAEException(Exception):
    kind: ErrorKind = ErrorKind.INTERNAL
    default_exit_code: ExitCode = ExitCode.INTERNAL_ERROR

    def __init__(
        self,
        problem: ZPAEProblem,
        exit_code: Optional[ExitCode] = None,
        *,
        cause: Optional[BaseException] = None,
    ) -> None:
        super().__init__(problem.message)
        self.problem = problem
        self.exit_code = exit_code if exit_code is not None else self.default_exit_code
        self.cause = cause

    @classmethod
    def build(
        cls,
        code: str,
        message: str,
        *,
        details: Optional[Dict[str, Any]] = None,
        remediation: Optional[str] = None,
        cause: Optional[BaseException] = None,
    ) -> "ZPAEException":
        problem = ZPAEProblem(
            code=code,
            category=cls.kind.value,
            message=message,
            details=dict(details or {}),
            remediation=remediation,
        )
        return cls(problem, cause=cause)

    @property
    def code(self) -> str:
        return self.problem.code


class NotFoundError(ZPAEException):
    kind = ErrorKind.NOT_FOUND
    default_exit_code = ExitCode.NOT_FOUND


class ValidationError(ZPAEException):
    kind = ErrorKind.VALIDATION
    default_exit_code = ExitCode.VALIDATION


class ForbiddenError(ZPAEException):
    kind = ErrorKind.FORBIDDEN
    default_exit_code = ExitCode.FORBIDDEN


class PaymentRequiredError(ZPAEException):
    kind = ErrorKind.PAYMENT_REQUIRED
    default_exit_code = ExitCode.PAYMENT_REQUIRED


class ConfigError(ZPAEException):
    kind = ErrorKind.CONFIG
    default_exit_code = ExitCode.CONFIG_INVALID


def problem_to_dict(p: ZPAEProblem) -> Dict[str, Any]:
    d = asdict(p)
    if d.get("remediation") is None:
        d.pop("remediation", None)
    return d
