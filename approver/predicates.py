"""Predicates narrowing the policy set to those applicable to a request.

Each predicate receives the survivors of the previous one and returns the
policies it keeps, in the order it received them. Predicates hold no state
between calls; anything they need from the store is looked up per call.
"""
from __future__ import annotations

import logging
from typing import Awaitable, Callable, List, Optional, Sequence, Set

from .matcher import match, match_any
from .resources import (
    CONDITION_READY,
    CONDITION_TRUE,
    CertificateRequest,
    Policy,
    PolicyRule,
    Role,
    RoleBinding,
    Subject,
)
from .store import ObjectStore

log = logging.getLogger(__name__)

POLICY_API_GROUP = "policy.cert-manager.io"
POLICY_RESOURCE = "certificaterequestpolicies"
USE_VERB = "use"

Predicate = Callable[[CertificateRequest, Sequence[Policy]], Awaitable[List[Policy]]]


class PredicateError(RuntimeError):
    pass


async def ready(request: CertificateRequest, policies: Sequence[Policy]) -> List[Policy]:
    """Keep policies whose Ready condition is True."""
    matching: List[Policy] = []
    for policy in policies:
        condition = policy.condition(CONDITION_READY)
        if condition is not None and condition.status == CONDITION_TRUE:
            matching.append(policy)
    return matching


def _subject_matches(subject: Subject, request: CertificateRequest) -> bool:
    if subject.kind == "User":
        return subject.name == request.username
    if subject.kind == "Group":
        return subject.name in request.groups
    if subject.kind == "ServiceAccount":
        return request.username == f"system:serviceaccount:{subject.namespace}:{subject.name}"
    return False


def _grants_use(rule: PolicyRule) -> bool:
    return (
        (USE_VERB in rule.verbs or "*" in rule.verbs)
        and (POLICY_API_GROUP in rule.api_groups or "*" in rule.api_groups)
        and (POLICY_RESOURCE in rule.resources or "*" in rule.resources)
    )


def _granted_names(role: Role) -> Set[str]:
    names: Set[str] = set()
    for rule in role.rules:
        # Rules without resourceNames would grant every policy; only
        # enumerated names are honoured here.
        if rule.resource_names and _grants_use(rule):
            names.update(rule.resource_names)
    return names


def rbac_bound(store: ObjectStore) -> Predicate:
    """Keep policies the requester has been granted "use" on, by name.

    Grants are collected from every ClusterRoleBinding and from the
    RoleBindings in the request's namespace that name the requester.
    """

    async def _resolve(binding: RoleBinding, namespace: str) -> Optional[Role]:
        if binding.role_ref.kind == "ClusterRole":
            return await store.get_cluster_role(binding.role_ref.name)
        if binding.role_ref.kind == "Role":
            return await store.get_role(namespace, binding.role_ref.name)
        return None

    async def _allowed_names(request: CertificateRequest) -> Set[str]:
        allowed: Set[str] = set()
        bindings = [(binding, "") for binding in await store.list_cluster_role_bindings()]
        bindings.extend(
            (binding, request.namespace)
            for binding in await store.list_role_bindings(request.namespace)
        )
        for binding, namespace in bindings:
            if not any(_subject_matches(subject, request) for subject in binding.subjects):
                continue
            role = await _resolve(binding, namespace)
            if role is None:
                log.debug(
                    "Binding %s references missing %s %s; skipping",
                    binding.name,
                    binding.role_ref.kind,
                    binding.role_ref.name,
                )
                continue
            allowed.update(_granted_names(role))
        return allowed

    async def predicate(request: CertificateRequest, policies: Sequence[Policy]) -> List[Policy]:
        if not policies:
            return []
        allowed = await _allowed_names(request)
        return [policy for policy in policies if policy.name in allowed]

    return predicate


async def selector_issuer_ref(request: CertificateRequest, policies: Sequence[Policy]) -> List[Policy]:
    """Keep policies whose issuerRef selector matches the request's issuer."""
    issuer_ref = request.issuer_ref.with_defaults()
    matching: List[Policy] = []
    for policy in policies:
        selector = policy.selector.issuer_ref
        if selector is None:
            matching.append(policy)
            continue
        if not match(selector.name, issuer_ref.name):
            continue
        if not match(selector.kind, issuer_ref.kind):
            continue
        if not match(selector.group, issuer_ref.group):
            continue
        matching.append(policy)
    return matching


def selector_namespace(store: ObjectStore) -> Predicate:
    """Keep policies whose namespace selector matches the request's namespace.

    Name patterns are checked against the request alone. Label selectors need
    the Namespace object; it is fetched once per call, and only when some
    policy actually gets as far as its label check. A missing namespace at
    that point is an error rather than a non-match.
    """

    async def predicate(request: CertificateRequest, policies: Sequence[Policy]) -> List[Policy]:
        labels = None
        matching: List[Policy] = []
        for policy in policies:
            selector = policy.selector.namespace
            if selector is None:
                matching.append(policy)
                continue

            if selector.match_names and not match_any(selector.match_names, request.namespace):
                continue

            if selector.match_labels:
                if labels is None:
                    namespace = await store.get_namespace(request.namespace)
                    if namespace is None:
                        raise PredicateError(
                            f"failed to get request's namespace '{request.namespace}' "
                            "to determine namespace selector"
                        )
                    labels = dict(namespace.labels)
                if any(labels.get(key) != value for key, value in selector.match_labels.items()):
                    continue

            matching.append(policy)
        return matching

    return predicate


def default_predicates(store: ObjectStore) -> List[Predicate]:
    return [ready, rbac_bound(store), selector_issuer_ref, selector_namespace(store)]


__all__ = [
    "Predicate",
    "PredicateError",
    "default_predicates",
    "rbac_bound",
    "ready",
    "selector_issuer_ref",
    "selector_namespace",
]
