from __future__ import annotations

from dataclasses import dataclass


@dataclass
class IntegrationResult:
    """Outcome of one side-effecting step (a platform call or a DB write)."""

    ok: bool
    code: str = ""
    message: str = ""
    raw: dict | None = None

    @classmethod
    def failure(cls, code: str, exc: BaseException) -> "IntegrationResult":
        return cls(ok=False, code=code, message=type(exc).__name__)

    @property
    def detail(self) -> str:
        return f"{self.code}:{self.message}" if self.message else self.code


class IntegrationMisconfiguredError(RuntimeError):
    pass
