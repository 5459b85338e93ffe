"""Review endpoint consumed by the signing path."""
from __future__ import annotations

import logging
from typing import Any, Dict

from fastapi import APIRouter, Body, Depends, Header, HTTPException, Request
from fastapi.responses import JSONResponse

from ..auth import AuthError, mask_api_key
from ..manager import ReviewError
from ..resources import ResourceError, load_certificate_request
from ..runtime import ApproverRuntime

log = logging.getLogger(__name__)

router = APIRouter(prefix="/v1")


async def get_runtime(request: Request) -> ApproverRuntime:
    runtime = getattr(request.app.state, "runtime", None)
    if runtime is None:
        raise HTTPException(status_code=503, detail="Approver not ready")
    return runtime


def _bearer_token(authorization: str | None) -> str | None:
    if not authorization:
        return None
    if not authorization.lower().startswith("bearer "):
        raise HTTPException(status_code=401, detail="Invalid Authorization header")
    return authorization.split(" ", 1)[1].strip()


@router.post("/review")
async def review(
    payload: Dict[str, Any] = Body(...),
    authorization: str | None = Header(default=None),
    runtime: ApproverRuntime = Depends(get_runtime),
):
    """
        Review a CertificateRequest against the loaded policies. A 500 response
        means no verdict could be reached; callers should treat it as a denial.
    """
    api_key = _bearer_token(authorization)
    try:
        runtime.authenticate(api_key)
    except AuthError as exc:
        log.warning("Rejected review call with key %s: %s", mask_api_key(api_key or ""), exc)
        raise HTTPException(status_code=401, detail=str(exc)) from exc

    try:
        request = load_certificate_request(payload)
    except ResourceError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    try:
        response = await runtime.review(request)
    except ReviewError as exc:
        log.warning("Review of %s/%s failed: %s", request.namespace, request.name or "<unnamed>", exc)
        raise HTTPException(status_code=500, detail=f"review could not be completed: {exc}") from exc

    return JSONResponse({"result": response.result.value, "message": response.message})


__all__ = ["router"]
