"""Configurable evaluator used in tests."""
from __future__ import annotations

from typing import Awaitable, Callable, List, Optional

from ..resources import CertificateRequest, Policy
from .base import EvaluationResponse, EvaluationResult, Evaluator

EvaluateFunc = Callable[[Policy, CertificateRequest], Awaitable[EvaluationResponse]]
ValidateFunc = Callable[[Policy], Awaitable[List[str]]]


class FakeEvaluator(Evaluator):
    def __init__(self) -> None:
        self._evaluate: Optional[EvaluateFunc] = None
        self._validate: Optional[ValidateFunc] = None

    def with_evaluate(self, func: EvaluateFunc) -> FakeEvaluator:
        self._evaluate = func
        return self

    def with_validate(self, func: ValidateFunc) -> FakeEvaluator:
        self._validate = func
        return self

    async def evaluate(self, policy: Policy, request: CertificateRequest) -> EvaluationResponse:
        if self._evaluate is None:
            return EvaluationResponse(result=EvaluationResult.NOT_DENIED)
        return await self._evaluate(policy, request)

    async def validate(self, policy: Policy) -> List[str]:
        if self._validate is None:
            return []
        return await self._validate(policy)


__all__ = ["FakeEvaluator"]
