from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import List

from ..resources import CertificateRequest, Policy


class EvaluationResult(str, Enum):
    NOT_DENIED = "NotDenied"
    DENIED = "Denied"


@dataclass(slots=True)
class EvaluationResponse:
    result: EvaluationResult
    message: str = ""


class Evaluator:
    """Abstract base class for admission rules run against each applicable policy.

    ``evaluate`` raises when it cannot reach a verdict; the review is then
    aborted rather than treating the policy as denied.
    """

    async def evaluate(self, policy: Policy, request: CertificateRequest) -> EvaluationResponse:
        raise NotImplementedError

    async def validate(self, policy: Policy) -> List[str]:
        """Return problems with the policy's configuration for this evaluator."""
        return []


__all__ = ["EvaluationResponse", "EvaluationResult", "Evaluator"]
