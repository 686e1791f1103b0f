from __future__ import annotations

from dataclasses import dataclass
from typing import Any


class PersistenceConfigError(RuntimeError):
    pass


def is_retryable_status_code(status_code: int) -> bool:
    return status_code >= 500 or status_code in (408, 429)


@dataclass
class ApiCallError(RuntimeError):
    message: str
    status_code: int | None = None
    is_retryable: bool = False
    method: str | None = None
    path: str | None = None
    details: dict[str, Any] | None = None

    def __str__(self) -> str:
        status = f" status={self.status_code}" if self.status_code is not None else ""
        target = f" ({self.method} {self.path})" if self.method and self.path else ""
        return f"{self.message}{status}{target}".strip()

    @classmethod
    def from_status(
        cls,
        *,
        status_code: int,
        method: str,
        path: str,
        details: dict[str, Any] | None = None,
    ) -> "ApiCallError":
        message = f"API call failed ({status_code})"
        if details and isinstance(details.get("error"), str) and details["error"].strip():
            message = f"API call failed ({status_code}): {details['error'].strip()}"
        return cls(
            message=message,
            status_code=status_code,
            is_retryable=is_retryable_status_code(status_code),
            method=method,
            path=path,
            details=details,
        )
