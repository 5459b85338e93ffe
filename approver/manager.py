"""Review of CertificateRequests against CertificateRequestPolicies."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Sequence, Tuple

from .evaluators.base import EvaluationResult, Evaluator
from .predicates import Predicate, default_predicates
from .resources import CertificateRequest
from .store import ObjectStore

log = logging.getLogger(__name__)

MESSAGE_NO_POLICIES = "No CertificateRequestPolicies exist"
MESSAGE_NO_APPLICABLE = "No CertificateRequestPolicies bound or applicable"


class ReviewError(RuntimeError):
    """The review could not be completed; no verdict was reached."""


class ReviewResult(str, Enum):
    APPROVED = "Approved"
    DENIED = "Denied"
    UNPROCESSED = "Unprocessed"


@dataclass(slots=True)
class ReviewResponse:
    result: ReviewResult
    message: str


class ReviewManager:
    """Runs the predicate pipeline, then the evaluators, for one request at a time.

    Survivor order and evaluator order are significant: the first policy that
    clears every evaluator approves the request, and for each policy only the
    first denying evaluator is consulted.
    """

    def __init__(
        self,
        store: ObjectStore,
        evaluators: Sequence[Evaluator],
        predicates: Optional[Sequence[Predicate]] = None,
    ):
        self._store = store
        self._evaluators = list(evaluators)
        if predicates is None:
            predicates = default_predicates(store)
        self._predicates = list(predicates)

    async def review(self, request: CertificateRequest) -> ReviewResponse:
        try:
            policies = await self._store.list_policies()
        except Exception as exc:
            raise ReviewError(f"failed to list CertificateRequestPolicies: {exc}") from exc
        if not policies:
            return ReviewResponse(result=ReviewResult.UNPROCESSED, message=MESSAGE_NO_POLICIES)

        for predicate in self._predicates:
            try:
                policies = await predicate(request, policies)
            except Exception as exc:
                raise ReviewError(f"failed to perform predicate on policies: {exc}") from exc

        if not policies:
            return ReviewResponse(result=ReviewResult.UNPROCESSED, message=MESSAGE_NO_APPLICABLE)

        denials: List[Tuple[str, str]] = []
        for policy in policies:
            denied_message = None
            for evaluator in self._evaluators:
                try:
                    response = await evaluator.evaluate(policy, request)
                except Exception as exc:
                    raise ReviewError(f"failed to evaluate policy '{policy.name}': {exc}") from exc
                if response.result == EvaluationResult.DENIED:
                    denied_message = response.message
                    break

            if denied_message is None:
                log.debug("Request %s/%s approved by %s", request.namespace, request.name, policy.name)
                return ReviewResponse(
                    result=ReviewResult.APPROVED,
                    message=f'Approved by CertificateRequestPolicy: "{policy.name}"',
                )
            denials.append((policy.name, denied_message))

        reasons = " ".join(f"[{name}: {message}]" for name, message in denials)
        return ReviewResponse(
            result=ReviewResult.DENIED,
            message=f"No policy approved this request: {reasons}",
        )


__all__ = [
    "MESSAGE_NO_APPLICABLE",
    "MESSAGE_NO_POLICIES",
    "ReviewError",
    "ReviewManager",
    "ReviewResponse",
    "ReviewResult",
]
