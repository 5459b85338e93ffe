"""Read-only access to policies, namespaces and RBAC objects."""
from __future__ import annotations

from typing import Dict, List, Optional, Tuple

from .resources import Namespace, Policy, ResourceSet, Role, RoleBinding


class StoreError(RuntimeError):
    pass


class ObjectStore:
    """Abstract base class for the resource backend the predicates read from.

    Every lookup is a coroutine so that implementations talking to a remote API
    can be cancelled along with the review that triggered them.
    """

    async def list_policies(self) -> List[Policy]:
        raise NotImplementedError

    async def list_cluster_role_bindings(self) -> List[RoleBinding]:
        raise NotImplementedError

    async def list_role_bindings(self, namespace: str) -> List[RoleBinding]:
        raise NotImplementedError

    async def get_cluster_role(self, name: str) -> Optional[Role]:
        raise NotImplementedError

    async def get_role(self, namespace: str, name: str) -> Optional[Role]:
        raise NotImplementedError

    async def get_namespace(self, name: str) -> Optional[Namespace]:
        raise NotImplementedError


class MemoryStore(ObjectStore):
    """Serves a fixed resource snapshot, typically loaded from resources.json."""

    def __init__(self, resources: ResourceSet):
        self._policies = list(resources.policies)
        self._namespaces: Dict[str, Namespace] = {ns.name: ns for ns in resources.namespaces}
        self._cluster_roles: Dict[str, Role] = {role.name: role for role in resources.cluster_roles}
        self._roles: Dict[Tuple[str, str], Role] = {
            (role.namespace or "", role.name): role for role in resources.roles
        }
        self._cluster_role_bindings = list(resources.cluster_role_bindings)
        self._role_bindings: Dict[str, List[RoleBinding]] = {}
        for binding in resources.role_bindings:
            self._role_bindings.setdefault(binding.namespace or "", []).append(binding)

    async def list_policies(self) -> List[Policy]:
        return list(self._policies)

    async def list_cluster_role_bindings(self) -> List[RoleBinding]:
        return list(self._cluster_role_bindings)

    async def list_role_bindings(self, namespace: str) -> List[RoleBinding]:
        return list(self._role_bindings.get(namespace, []))

    async def get_cluster_role(self, name: str) -> Optional[Role]:
        return self._cluster_roles.get(name)

    async def get_role(self, namespace: str, name: str) -> Optional[Role]:
        return self._roles.get((namespace, name))

    async def get_namespace(self, name: str) -> Optional[Namespace]:
        return self._namespaces.get(name)


__all__ = ["MemoryStore", "ObjectStore", "StoreError"]
