"""Runtime wiring for the approver."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from pathlib import Path
from typing import Any, Dict, List, Optional

from .auth import AuthError, AuthManager
from .config import ConfigBundle, ConfigError, ConfigManager
from .evaluators import Evaluator, load_evaluator
from .log import audit_logger
from .manager import ReviewError, ReviewManager, ReviewResponse
from .readiness import reconcile_ready
from .resources import CONDITION_READY, CertificateRequest
from .store import MemoryStore

log = logging.getLogger(__name__)


class ApproverRuntime:
    def __init__(self, config_dir: Path):
        self._config_dir = config_dir
        self._config_manager = ConfigManager(
            config_dir / "daemon.json",
            config_dir / "resources.json",
        )
        self._bundle: Optional[ConfigBundle] = None
        self._store: Optional[MemoryStore] = None
        self._manager: Optional[ReviewManager] = None
        self._auth_manager: Optional[AuthManager] = None
        self._lock = asyncio.Lock()

    @property
    def config_bundle(self) -> ConfigBundle:
        if self._bundle is None:
            raise ConfigError("Configuration not loaded")
        return self._bundle

    async def initialize(self) -> None:
        async with self._lock:
            bundle = self._config_manager.load()
            await self._apply_bundle(bundle)

    async def reload(self) -> None:
        async with self._lock:
            bundle = self._config_manager.load()
            log.info("Configuration reload requested")
            # Build the new components before dropping the old ones so that a
            # broken configuration leaves the running one in place.
            await self._apply_bundle(bundle)

    async def shutdown(self) -> None:
        async with self._lock:
            self._manager = None
            self._store = None
            self._auth_manager = None
            self._bundle = None

    async def _apply_bundle(self, bundle: ConfigBundle) -> None:
        evaluators: List[Evaluator] = []
        for spec in bundle.daemon.review.evaluators:
            try:
                evaluators.append(load_evaluator(spec))
            except ValueError as exc:
                raise ConfigError(str(exc)) from exc

        try:
            policies = await reconcile_ready(bundle.resources.policies, evaluators)
        except Exception as exc:
            raise ConfigError(f"Policy validation failed: {exc}") from exc
        store = MemoryStore(replace(bundle.resources, policies=policies))

        self._store = store
        self._manager = ReviewManager(store, evaluators)
        self._auth_manager = AuthManager(bundle.daemon.review.api_keys)
        self._bundle = bundle
        log.info(
            "Approver runtime initialized with %d policies and %d evaluators",
            len(policies),
            len(evaluators),
        )

    def authenticate(self, api_key: Optional[str]) -> None:
        if self._auth_manager is None:
            raise AuthError("Auth manager not ready")
        self._auth_manager.authenticate(api_key)

    async def review(self, request: CertificateRequest) -> ReviewResponse:
        manager = self._manager
        if manager is None:
            raise ReviewError("Review manager not initialized")
        response = await manager.review(request)
        audit_logger().info(
            "%s %s/%s user=%s: %s",
            response.result.value,
            request.namespace,
            request.name or "<unnamed>",
            request.username,
            response.message,
        )
        return response

    async def policy_summary(self) -> List[Dict[str, Any]]:
        if self._store is None:
            return []
        summary = []
        for policy in await self._store.list_policies():
            condition = policy.condition(CONDITION_READY)
            summary.append(
                {
                    "name": policy.name,
                    "ready": condition.status if condition is not None else None,
                    "message": condition.message if condition is not None else None,
                }
            )
        return summary


__all__ = ["ApproverRuntime"]
