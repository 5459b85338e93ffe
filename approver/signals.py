"""Signal handling for the approver daemon.

SIGTERM drops the loaded policies and review manager. SIGHUP (when
``reload.enable_sighup`` is set) re-reads daemon.json and resources.json in a
background task; a reload that fails is logged and the running configuration
stays in place.
"""
from __future__ import annotations

import asyncio
import signal
import logging

from .runtime import ApproverRuntime

log = logging.getLogger(__name__)


def _reload_task(runtime: ApproverRuntime) -> None:
    async def _reload() -> None:
        try:
            await runtime.reload()
        except Exception:
            log.exception("Configuration reload failed; keeping previous configuration")

    asyncio.create_task(_reload())


def install_signal_handlers(runtime: ApproverRuntime, enable_reload: bool) -> None:
    loop = asyncio.get_running_loop()

    def _sigterm_handler():
        log.info("SIGTERM received; shutting down approver")
        asyncio.create_task(runtime.shutdown())

    try:
        loop.add_signal_handler(signal.SIGTERM, _sigterm_handler)
    except NotImplementedError:  # pragma: no cover - Windows
        signal.signal(signal.SIGTERM, lambda *_: asyncio.create_task(runtime.shutdown()))

    if enable_reload:
        def _sighup_handler():
            log.info("SIGHUP received; reloading configuration")
            _reload_task(runtime)

        try:
            loop.add_signal_handler(signal.SIGHUP, _sighup_handler)
        except (AttributeError, NotImplementedError):  # pragma: no cover
            signal.signal(signal.SIGHUP, lambda *_: _reload_task(runtime))

__all__ = ["install_signal_handlers"]
