from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence


class AppError(Exception):
    # Base class for domain errors (intended, recoverable failures).
    pass


@dataclass(frozen=True)
class FieldError:
    field: str
    message: str


@dataclass(frozen=True)
class EligibilityIssue:
    type: str
    message: str
    detail: Optional[str] = None


class ValidationError(AppError):
    # Raised when a form definition or payload fails client-side checks.
    def __init__(self, errors: Sequence[FieldError]):
        self.errors: List[FieldError] = list(errors)
        super().__init__("; ".join(e.message for e in self.errors) or "Validation failed")

    def by_field(self) -> Dict[str, List[str]]:
        out: Dict[str, List[str]] = {}
        for e in self.errors:
            out.setdefault(e.field, []).append(e.message)
        return out


class AudienceEmptyError(AppError):
    # Raised when a resolved audience has no recipients. Deployment still proceeds.
    def __init__(self, audience: Any):
        self.audience = audience
        super().__init__(f"No recipients matched audience {audience}; the form will reach zero users")


class SubmissionIneligibleError(AppError):
    # Raised when a respondent may not submit (window closed, already submitted, ...).
    def __init__(self, reasons: Sequence[EligibilityIssue]):
        self.reasons: List[EligibilityIssue] = list(reasons)
        super().__init__("; ".join(r.message for r in self.reasons) or "Submission not allowed")

    @property
    def reason_types(self) -> List[str]:
        return [r.type for r in self.reasons]


class TransientNetworkError(AppError):
    # Raised for timeouts / unavailable storage. Callers may retry.
    pass


class NotFoundError(AppError):
    # Raised when a form, section, question or category id does not exist.
    pass
