"""Resource types consumed by the review engine.

The shapes mirror the Kubernetes objects the approver works with
(CertificateRequestPolicy, CertificateRequest, Namespace and the RBAC
role/binding kinds). Parsing accepts the usual camelCase JSON layout with a
``metadata`` block so that manifests can be dropped into ``resources.json``
nearly verbatim.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

DEFAULT_ISSUER_KIND = "Issuer"
DEFAULT_ISSUER_GROUP = "cert-manager.io"

CONDITION_READY = "Ready"
CONDITION_TRUE = "True"
CONDITION_FALSE = "False"
CONDITION_UNKNOWN = "Unknown"

_CONDITION_STATUSES = {CONDITION_TRUE, CONDITION_FALSE, CONDITION_UNKNOWN}


class ResourceError(ValueError):
    """Raised when a resource or request payload is malformed."""


@dataclass(slots=True)
class IssuerRef:
    name: str = ""
    kind: str = ""
    group: str = ""

    def with_defaults(self) -> IssuerRef:
        """Fill in the kind and group the signer assumes when they are omitted."""
        return IssuerRef(
            name=self.name,
            kind=self.kind or DEFAULT_ISSUER_KIND,
            group=self.group or DEFAULT_ISSUER_GROUP,
        )


@dataclass(slots=True)
class CertificateRequest:
    namespace: str
    username: str
    issuer_ref: IssuerRef = field(default_factory=IssuerRef)
    name: str = ""
    groups: List[str] = field(default_factory=list)
    uid: Optional[str] = None


@dataclass(slots=True)
class IssuerRefSelector:
    name: Optional[str] = None
    kind: Optional[str] = None
    group: Optional[str] = None


@dataclass(slots=True)
class NamespaceSelector:
    match_names: List[str] = field(default_factory=list)
    match_labels: Dict[str, str] = field(default_factory=dict)


@dataclass(slots=True)
class PolicySelector:
    issuer_ref: Optional[IssuerRefSelector] = None
    namespace: Optional[NamespaceSelector] = None


@dataclass(slots=True)
class PolicyCondition:
    type: str
    status: str
    reason: Optional[str] = None
    message: Optional[str] = None


@dataclass(slots=True)
class Policy:
    name: str
    selector: PolicySelector = field(default_factory=PolicySelector)
    conditions: List[PolicyCondition] = field(default_factory=list)
    spec: Mapping[str, Any] = field(default_factory=dict)
    explicit_status: bool = False

    def condition(self, condition_type: str) -> Optional[PolicyCondition]:
        for condition in self.conditions:
            if condition.type == condition_type:
                return condition
        return None


@dataclass(slots=True)
class Namespace:
    name: str
    labels: Dict[str, str] = field(default_factory=dict)


@dataclass(slots=True)
class PolicyRule:
    verbs: List[str] = field(default_factory=list)
    api_groups: List[str] = field(default_factory=list)
    resources: List[str] = field(default_factory=list)
    resource_names: List[str] = field(default_factory=list)


@dataclass(slots=True)
class Role:
    """A Role, or a ClusterRole when ``namespace`` is None."""

    name: str
    namespace: Optional[str] = None
    rules: List[PolicyRule] = field(default_factory=list)


@dataclass(slots=True)
class Subject:
    kind: str
    name: str
    namespace: Optional[str] = None


@dataclass(slots=True)
class RoleRef:
    kind: str
    name: str


@dataclass(slots=True)
class RoleBinding:
    """A RoleBinding, or a ClusterRoleBinding when ``namespace`` is None."""

    name: str
    role_ref: RoleRef
    namespace: Optional[str] = None
    subjects: List[Subject] = field(default_factory=list)


@dataclass(slots=True)
class ResourceSet:
    policies: List[Policy] = field(default_factory=list)
    namespaces: List[Namespace] = field(default_factory=list)
    cluster_roles: List[Role] = field(default_factory=list)
    cluster_role_bindings: List[RoleBinding] = field(default_factory=list)
    roles: List[Role] = field(default_factory=list)
    role_bindings: List[RoleBinding] = field(default_factory=list)


def _mapping(value: Any, ctx: str) -> Mapping[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ResourceError(f"Expected mapping for {ctx}")
    return value


def _string_list(value: Any, ctx: str) -> List[str]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise ResourceError(f"Expected list for {ctx}")
    return [str(item) for item in value]


def _string_map(value: Any, ctx: str) -> Dict[str, str]:
    return {str(key): str(item) for key, item in _mapping(value, ctx).items()}


def _optional_str(raw: Mapping[str, Any], key: str) -> Optional[str]:
    value = raw.get(key)
    return str(value) if value is not None else None


def _metadata(raw: Mapping[str, Any], ctx: str, *, namespaced: bool = False) -> tuple[str, Optional[str]]:
    meta = _mapping(raw.get("metadata"), f"{ctx}.metadata")
    name = meta.get("name")
    if not name:
        raise ResourceError(f"Missing field 'metadata.name' in {ctx}")
    namespace = _optional_str(meta, "namespace")
    if namespaced and not namespace:
        raise ResourceError(f"Missing field 'metadata.namespace' in {ctx} '{name}'")
    return str(name), namespace


def _load_issuer_ref(raw: Mapping[str, Any]) -> IssuerRef:
    return IssuerRef(
        name=str(raw.get("name") or ""),
        kind=str(raw.get("kind") or ""),
        group=str(raw.get("group") or ""),
    )


def _load_selector(raw: Mapping[str, Any]) -> PolicySelector:
    issuer_ref = None
    if raw.get("issuerRef") is not None:
        issuer_raw = _mapping(raw["issuerRef"], "selector.issuerRef")
        issuer_ref = IssuerRefSelector(
            name=_optional_str(issuer_raw, "name"),
            kind=_optional_str(issuer_raw, "kind"),
            group=_optional_str(issuer_raw, "group"),
        )

    namespace = None
    if raw.get("namespace") is not None:
        ns_raw = _mapping(raw["namespace"], "selector.namespace")
        namespace = NamespaceSelector(
            match_names=_string_list(ns_raw.get("matchNames"), "selector.namespace.matchNames"),
            match_labels=_string_map(ns_raw.get("matchLabels"), "selector.namespace.matchLabels"),
        )

    return PolicySelector(issuer_ref=issuer_ref, namespace=namespace)


def _load_condition(raw: Any) -> PolicyCondition:
    cond = _mapping(raw, "status.conditions[]")
    if not cond.get("type"):
        raise ResourceError("Missing field 'type' in status condition")
    status = str(cond.get("status", CONDITION_UNKNOWN))
    if status not in _CONDITION_STATUSES:
        raise ResourceError(f"Invalid condition status '{status}'")
    return PolicyCondition(
        type=str(cond["type"]),
        status=status,
        reason=_optional_str(cond, "reason"),
        message=_optional_str(cond, "message"),
    )


def load_policy(raw: Mapping[str, Any]) -> Policy:
    name, _ = _metadata(raw, "CertificateRequestPolicy")
    spec = _mapping(raw.get("spec"), "spec")
    selector = _load_selector(_mapping(spec.get("selector"), "spec.selector"))

    status_raw = raw.get("status")
    conditions: List[PolicyCondition] = []
    if status_raw is not None:
        status = _mapping(status_raw, "status")
        conditions_raw = status.get("conditions") or []
        if not isinstance(conditions_raw, list):
            raise ResourceError("Expected list for status.conditions")
        conditions = [_load_condition(item) for item in conditions_raw]

    return Policy(
        name=name,
        selector=selector,
        conditions=conditions,
        spec=dict(spec),
        explicit_status=status_raw is not None,
    )


def load_namespace(raw: Mapping[str, Any]) -> Namespace:
    name, _ = _metadata(raw, "Namespace")
    meta = _mapping(raw.get("metadata"), "Namespace.metadata")
    return Namespace(name=name, labels=_string_map(meta.get("labels"), "metadata.labels"))


def _load_rule(raw: Any) -> PolicyRule:
    rule = _mapping(raw, "rules[]")
    return PolicyRule(
        verbs=_string_list(rule.get("verbs"), "rules[].verbs"),
        api_groups=_string_list(rule.get("apiGroups"), "rules[].apiGroups"),
        resources=_string_list(rule.get("resources"), "rules[].resources"),
        resource_names=_string_list(rule.get("resourceNames"), "rules[].resourceNames"),
    )


def load_role(raw: Mapping[str, Any], *, cluster: bool) -> Role:
    kind = "ClusterRole" if cluster else "Role"
    name, namespace = _metadata(raw, kind, namespaced=not cluster)
    rules_raw = raw.get("rules") or []
    if not isinstance(rules_raw, list):
        raise ResourceError(f"Expected list for {kind}.rules")
    return Role(
        name=name,
        namespace=None if cluster else namespace,
        rules=[_load_rule(item) for item in rules_raw],
    )


def _load_subject(raw: Any) -> Subject:
    subject = _mapping(raw, "subjects[]")
    if not subject.get("kind") or not subject.get("name"):
        raise ResourceError("Subjects require 'kind' and 'name'")
    return Subject(
        kind=str(subject["kind"]),
        name=str(subject["name"]),
        namespace=_optional_str(subject, "namespace"),
    )


def load_role_binding(raw: Mapping[str, Any], *, cluster: bool) -> RoleBinding:
    kind = "ClusterRoleBinding" if cluster else "RoleBinding"
    name, namespace = _metadata(raw, kind, namespaced=not cluster)
    ref_raw = _mapping(raw.get("roleRef"), f"{kind}.roleRef")
    if not ref_raw.get("kind") or not ref_raw.get("name"):
        raise ResourceError(f"{kind} '{name}' requires roleRef.kind and roleRef.name")
    role_ref = RoleRef(kind=str(ref_raw["kind"]), name=str(ref_raw["name"]))
    if cluster and role_ref.kind != "ClusterRole":
        raise ResourceError(f"ClusterRoleBinding '{name}' may only reference a ClusterRole")
    subjects_raw = raw.get("subjects") or []
    if not isinstance(subjects_raw, list):
        raise ResourceError(f"Expected list for {kind}.subjects")
    return RoleBinding(
        name=name,
        namespace=None if cluster else namespace,
        role_ref=role_ref,
        subjects=[_load_subject(item) for item in subjects_raw],
    )


def load_certificate_request(raw: Any) -> CertificateRequest:
    """Decode a CertificateRequest-shaped payload into a review request."""
    if not isinstance(raw, Mapping):
        raise ResourceError("CertificateRequest payload must be an object")
    meta = _mapping(raw.get("metadata"), "metadata")
    spec = _mapping(raw.get("spec"), "spec")

    namespace = meta.get("namespace")
    if not namespace:
        raise ResourceError("Missing field 'metadata.namespace' in CertificateRequest")
    username = spec.get("username")
    if not username:
        raise ResourceError("Missing field 'spec.username' in CertificateRequest")

    return CertificateRequest(
        name=str(meta.get("name") or ""),
        namespace=str(namespace),
        username=str(username),
        groups=_string_list(spec.get("groups"), "spec.groups"),
        uid=_optional_str(spec, "uid"),
        issuer_ref=_load_issuer_ref(_mapping(spec.get("issuerRef"), "spec.issuerRef")),
    )


__all__ = [
    "CONDITION_FALSE",
    "CONDITION_READY",
    "CONDITION_TRUE",
    "CONDITION_UNKNOWN",
    "DEFAULT_ISSUER_GROUP",
    "DEFAULT_ISSUER_KIND",
    "CertificateRequest",
    "IssuerRef",
    "IssuerRefSelector",
    "Namespace",
    "NamespaceSelector",
    "Policy",
    "PolicyCondition",
    "PolicyRule",
    "PolicySelector",
    "ResourceError",
    "ResourceSet",
    "Role",
    "RoleBinding",
    "RoleRef",
    "Subject",
    "load_certificate_request",
    "load_namespace",
    "load_policy",
    "load_role",
    "load_role_binding",
]
