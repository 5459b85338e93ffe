"""ASGI application factory."""

from __future__ import annotations

import os
from pathlib import Path

from fastapi import FastAPI

from .api import admin as admin_router
from .api import review as review_router
from .log import configure_logging
from .runtime import ApproverRuntime
from .signals import install_signal_handlers

CONFIG_DIR_ENV = "CRPAPPROVER_CONFIG_DIR"


def resolve_config_dir(config_dir: str | os.PathLike[str] | None) -> Path:
    if config_dir is not None:
        return Path(config_dir)
    env_dir = os.environ.get(CONFIG_DIR_ENV)
    if env_dir:
        return Path(env_dir)
    return Path.cwd() / "config"


def create_app(
    config_dir: str | os.PathLike[str] | None = None,
    *,
    install_signals: bool = True,
) -> FastAPI:
    cfg_dir = resolve_config_dir(config_dir)
    runtime = ApproverRuntime(cfg_dir)

    app = FastAPI(
        title="crp-approver",
        version="0.1.0",
        docs_url=None,
        redoc_url=None,
        openapi_url="/openapi.json",
    )

    app.include_router(review_router.router)
    app.include_router(admin_router.router)

    app.state.runtime = runtime

    @app.on_event("startup")
    async def on_startup() -> None:
        await runtime.initialize()
        configure_logging(runtime.config_bundle.daemon.logging)
        if install_signals:
            install_signal_handlers(runtime, runtime.config_bundle.daemon.reload.enable_sighup)

    @app.on_event("shutdown")
    async def on_shutdown() -> None:
        await runtime.shutdown()

    return app


__all__ = ["create_app", "resolve_config_dir"]
