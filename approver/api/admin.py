"""
    Admin endpoints.

    Reachable from loopback, through the unix domain socket, or from the networks
    listed in ``admin.allowed_networks``. They allow reloading the configuration
    and shutting the daemon down (like SIGHUP and SIGTERM) and list the loaded
    policies with their readiness.
"""
from __future__ import annotations

import ipaddress
from typing import Iterable

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse

from ..config import ConfigError
from ..runtime import ApproverRuntime

router = APIRouter()


async def get_runtime(request: Request) -> ApproverRuntime:
    runtime = getattr(request.app.state, "runtime", None)
    if runtime is None:
        raise HTTPException(status_code=503, detail="Approver not ready")
    return runtime


def _in_networks(remote_ip: str, networks: Iterable[str]) -> bool:
    try:
        address = ipaddress.ip_address(remote_ip)
    except ValueError:
        return False
    for cidr in networks:
        try:
            if address in ipaddress.ip_network(cidr, strict=False):
                return True
        except ValueError:
            continue
    return False


def _require_local_access(request: Request, runtime: ApproverRuntime) -> None:
    client = request.client
    listen_cfg = runtime.config_bundle.daemon.listen

    if client is None:
        if listen_cfg.unix_socket:
            return
        raise HTTPException(status_code=403, detail="Forbidden")

    host = client.host
    if host in {"127.0.0.1", "::1"}:
        return

    if not _in_networks(host, runtime.config_bundle.daemon.admin.allowed_networks):
        raise HTTPException(status_code=403, detail="Forbidden")


@router.get("/admin/policies")
async def admin_policies(request: Request, runtime: ApproverRuntime = Depends(get_runtime)):
    """
        Loaded CertificateRequestPolicies and their Ready condition
    """
    _require_local_access(request, runtime)
    return JSONResponse({"policies": await runtime.policy_summary()})


@router.post("/admin/reload")
async def admin_reload(request: Request, runtime: ApproverRuntime = Depends(get_runtime)):
    """
        Re-reads daemon.json and resources.json (equal to SIGHUP)
    """
    _require_local_access(request, runtime)
    try:
        await runtime.reload()
    except ConfigError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    return JSONResponse({"status": "reloaded"})


@router.post("/admin/shutdown")
async def admin_shutdown(request: Request, runtime: ApproverRuntime = Depends(get_runtime)):
    """
        Terminate our server like SIGTERM
    """
    _require_local_access(request, runtime)
    server = getattr(request.app.state, "server", None)
    if server is None:
        raise HTTPException(status_code=503, detail="Shutdown controller unavailable")
    if hasattr(server, "should_exit"):
        server.should_exit = True
    return JSONResponse({"status": "shutting_down"})


__all__ = ["router"]
