"""Configuration loading and validation for crp-approver."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from threading import RLock
from typing import Any, Callable, List, Mapping, MutableMapping, Optional, TypeVar

from .resources import (
    ResourceError,
    ResourceSet,
    load_namespace,
    load_policy,
    load_role,
    load_role_binding,
)

log = logging.getLogger(__name__)

DEFAULT_SOCKET_PATH = "/var/crp-approver/approver.sock"

T = TypeVar("T")


class ConfigError(RuntimeError):
    """Configuration error exception

    Raised whenever daemon.json or resources.json is missing,
    not valid JSON or describes invalid objects
    """

@dataclass(slots=True)
class ListenConfig:
    """Listener configuration for the review endpoint.

    Without ``host_v4`` or ``host_v6`` the daemon listens on a Unix domain
    socket, by default below ``/var/crp-approver``."""

    host_v4: Optional[str] = None
    host_v6: Optional[str] = None
    port: Optional[int] = None
    unix_socket: Optional[str] = None


@dataclass(slots=True)
class AdminConfig:
    """Administration interface configuration

    Admin endpoints (reload, shutdown, policy listing) share the review
    listener and are reachable from loopback, the unix socket and the
    networks listed in ``allowed_networks``"""

    allowed_networks: List[str] = field(default_factory=list)


@dataclass(slots=True)
class LoggingConfig:
    level: str = "INFO"
    access_log: bool = True
    file: Optional[str] = None
    audit_file: Optional[str] = None


@dataclass(slots=True)
class ReloadConfig:
    """SIGHUP handler

    If enabled SIGHUP re-reads daemon.json and resources.json"""

    enable_sighup: bool = True


@dataclass(slots=True)
class ReviewConfig:
    """Evaluators run for every applicable policy, in this order, and the
    bearer keys accepted by the review endpoint (none configured: open)"""

    evaluators: List[str] = field(default_factory=list)
    api_keys: List[str] = field(default_factory=list)


@dataclass(slots=True)
class DaemonConfig:
    listen: ListenConfig
    admin: AdminConfig
    logging: LoggingConfig
    reload: ReloadConfig
    review: ReviewConfig


@dataclass(slots=True)
class ConfigBundle:
    daemon: DaemonConfig
    resources: ResourceSet


def _expect(obj: MutableMapping[str, Any], key: str, ctx: str) -> Any:
    if key not in obj:
        raise ConfigError(f"Missing field '{key}' in {ctx}")
    return obj[key]


def _load_list(value: Any, ctx: str) -> List[Any]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise ConfigError(f"Expected list for {ctx}")
    return value


def _load_mapping(value: Any, ctx: str) -> Mapping[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ConfigError(f"Expected mapping for {ctx}")
    return value


def _load_objects(data: Mapping[str, Any], key: str, loader: Callable[[Mapping[str, Any]], T]) -> List[T]:
    objects: List[T] = []
    for index, raw in enumerate(_load_list(data.get(key), key)):
        if not isinstance(raw, Mapping):
            raise ConfigError(f"Expected mapping for {key}[{index}]")
        try:
            objects.append(loader(raw))
        except ResourceError as exc:
            raise ConfigError(f"Invalid entry {key}[{index}]: {exc}") from exc
    return objects


def _check_unique(items: List[Any], key: str) -> None:
    seen = set()
    for item in items:
        ident = (getattr(item, "namespace", None), item.name)
        if ident in seen:
            raise ConfigError(f"Duplicate name '{item.name}' in {key}")
        seen.add(ident)


def load_resources_config(path: Path) -> ResourceSet:
    data = _load_json(path)
    if not isinstance(data, Mapping):
        raise ConfigError("resources.json must contain an object")

    resources = ResourceSet(
        policies=_load_objects(data, "policies", load_policy),
        namespaces=_load_objects(data, "namespaces", load_namespace),
        cluster_roles=_load_objects(data, "clusterRoles", lambda raw: load_role(raw, cluster=True)),
        cluster_role_bindings=_load_objects(
            data, "clusterRoleBindings", lambda raw: load_role_binding(raw, cluster=True)
        ),
        roles=_load_objects(data, "roles", lambda raw: load_role(raw, cluster=False)),
        role_bindings=_load_objects(data, "roleBindings", lambda raw: load_role_binding(raw, cluster=False)),
    )

    _check_unique(resources.policies, "policies")
    _check_unique(resources.namespaces, "namespaces")
    _check_unique(resources.cluster_roles, "clusterRoles")
    _check_unique(resources.cluster_role_bindings, "clusterRoleBindings")
    _check_unique(resources.roles, "roles")
    _check_unique(resources.role_bindings, "roleBindings")
    return resources


def load_daemon_config(path: Path) -> DaemonConfig:
    data = _load_json(path)
    if not isinstance(data, Mapping):
        raise ConfigError("daemon.json must contain an object")

    listen_raw = _load_mapping(_expect(dict(data), "listen", "daemon"), "listen")
    admin_raw = _load_mapping(data.get("admin"), "admin")
    logging_raw = _load_mapping(data.get("logging"), "logging")
    reload_raw = _load_mapping(data.get("reload"), "reload")
    review_raw = _load_mapping(data.get("review"), "review")

    host_v4_value = listen_raw.get("host_v4")
    host_v6_value = listen_raw.get("host_v6")
    unix_socket_value = listen_raw.get("unix_socket")
    port_value = listen_raw.get("port")

    host_v4 = str(host_v4_value) if host_v4_value is not None else None
    host_v6 = str(host_v6_value) if host_v6_value is not None else None

    port: Optional[int]
    if port_value is not None:
        port = int(port_value)
    elif host_v4 or host_v6:
        port = 8443
    else:
        port = None

    unix_socket = str(unix_socket_value) if unix_socket_value is not None else None
    if unix_socket is None and not host_v4 and not host_v6:
        unix_socket = DEFAULT_SOCKET_PATH

    listen = ListenConfig(
        host_v4=host_v4,
        host_v6=host_v6,
        port=port,
        unix_socket=unix_socket,
    )

    admin = AdminConfig(
        allowed_networks=[
            str(item) for item in _load_list(admin_raw.get("allowed_networks"), "admin.allowed_networks")
        ],
    )

    logging_cfg = LoggingConfig(
        level=str(logging_raw.get("level", "INFO")),
        access_log=bool(logging_raw.get("access_log", True)),
        file=(
            str(logging_raw.get("file"))
            if logging_raw.get("file") is not None
            else None
        ),
        audit_file=(
            str(logging_raw.get("audit_file"))
            if logging_raw.get("audit_file") is not None
            else None
        ),
    )

    reload_cfg = ReloadConfig(enable_sighup=bool(reload_raw.get("enable_sighup", True)))

    review_cfg = ReviewConfig(
        evaluators=[str(item) for item in _load_list(review_raw.get("evaluators"), "review.evaluators")],
        api_keys=[str(item) for item in _load_list(review_raw.get("api_keys"), "review.api_keys")],
    )

    return DaemonConfig(
        listen=listen,
        admin=admin,
        logging=logging_cfg,
        reload=reload_cfg,
        review=review_cfg,
    )


def _load_json(path: Path) -> Any:
    try:
        raw = path.read_text(encoding="utf-8")
    except FileNotFoundError as exc:
        raise ConfigError(f"Configuration file missing: {path}") from exc
    try:
        return json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ConfigError(f"Invalid JSON in {path}: {exc}") from exc


class ConfigManager:
    """Thread-safe holder for active configuration bundle."""

    def __init__(self, daemon_path: Path, resources_path: Path):
        self._daemon_path = daemon_path
        self._resources_path = resources_path
        self._lock = RLock()
        self._bundle: Optional[ConfigBundle] = None

    def load(self) -> ConfigBundle:
        """Load both configuration files and swap the active bundle."""
        with self._lock:
            log.debug("Loading configuration files")
            daemon = load_daemon_config(self._daemon_path)
            resources = load_resources_config(self._resources_path)
            self._bundle = ConfigBundle(daemon=daemon, resources=resources)
            return self._bundle

    def current(self) -> ConfigBundle:
        with self._lock:
            if self._bundle is None:
                raise ConfigError("Configuration has not been loaded yet")
            return self._bundle


__all__ = [
    "AdminConfig",
    "ConfigBundle",
    "ConfigError",
    "ConfigManager",
    "DEFAULT_SOCKET_PATH",
    "DaemonConfig",
    "ListenConfig",
    "LoggingConfig",
    "ReloadConfig",
    "ReviewConfig",
    "load_daemon_config",
    "load_resources_config",
]
