from dataclasses import dataclass
from typing import List


@dataclass
class DomainError(Exception):
    """A rejected operation; ``code`` names the rule that failed."""

    detail: str
    title: str = "Domain Error"
    errors: List[dict] | None = None
    status: int = 400
    code: str | None = None

    def __str__(self) -> str:
        return self.detail


@dataclass
class NotFoundError(DomainError):
    title: str = "Not Found"
    status: int = 404


@dataclass
class ForbiddenError(DomainError):
    title: str = "Forbidden"
    status: int = 403


@dataclass
class ConflictError(DomainError):
    """State precondition failed: wrong status, duplicate, quota exceeded or race lost."""

    title: str = "Conflict"
    status: int = 409


@dataclass
class ValidationError(DomainError):
    title: str = "Validation Error"
    status: int = 422
