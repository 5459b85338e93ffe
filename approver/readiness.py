"""Ready condition bookkeeping for loaded policies."""
from __future__ import annotations

import logging
from dataclasses import replace
from typing import List, Sequence

from .evaluators.base import Evaluator
from .resources import (
    CONDITION_FALSE,
    CONDITION_READY,
    CONDITION_TRUE,
    Policy,
    PolicyCondition,
)

log = logging.getLogger(__name__)

READY_MESSAGE = "CertificateRequestPolicy is ready for approval evaluation"
NOT_READY_MESSAGE = "CertificateRequestPolicy is not ready for approval evaluation"


async def policy_ready_condition(policy: Policy, evaluators: Sequence[Evaluator]) -> PolicyCondition:
    errors: List[str] = []
    for evaluator in evaluators:
        errors.extend(await evaluator.validate(policy))
    if errors:
        return PolicyCondition(
            type=CONDITION_READY,
            status=CONDITION_FALSE,
            reason="NotReady",
            message=f"{NOT_READY_MESSAGE}: {'; '.join(errors)}",
        )
    return PolicyCondition(
        type=CONDITION_READY,
        status=CONDITION_TRUE,
        reason="Ready",
        message=READY_MESSAGE,
    )


async def reconcile_ready(policies: Sequence[Policy], evaluators: Sequence[Evaluator]) -> List[Policy]:
    """Return policies with their Ready condition set from evaluator validation.

    Policies loaded with an explicit status are returned untouched. The input
    objects are never modified.
    """
    result: List[Policy] = []
    for policy in policies:
        if policy.explicit_status:
            result.append(policy)
            continue
        condition = await policy_ready_condition(policy, evaluators)
        if condition.status != CONDITION_TRUE:
            log.warning("CertificateRequestPolicy %s not ready: %s", policy.name, condition.message)
        conditions = [c for c in policy.conditions if c.type != CONDITION_READY]
        conditions.append(condition)
        result.append(replace(policy, conditions=conditions))
    return result


__all__ = ["NOT_READY_MESSAGE", "READY_MESSAGE", "policy_ready_condition", "reconcile_ready"]
