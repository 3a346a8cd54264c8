# powerctl/api/wake.py
import hmac
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Request

from powerctl.errors import UnknownTarget
from powerctl.models import Reason
from powerctl.safety.lock import WAKE_BATCH, describe_holder
from powerctl.wake.dispatcher import default_options

log = logging.getLogger("powerctl.api")

router = APIRouter(tags=["wake"])


def require_wake_secret(request: Request, x_wake_secret: Optional[str] = Header(None)):
    expected = request.app.state.settings.wake_api_secret
    if not expected:
        raise HTTPException(status_code=503, detail="wake API secret not configured")
    if not x_wake_secret or not hmac.compare_digest(x_wake_secret, expected):
        raise HTTPException(status_code=401, detail="invalid or missing X-Wake-Secret")


@router.post("/wake/all", dependencies=[Depends(require_wake_secret)])
def wake_all(request: Request, verify: bool = False):
    state = request.app.state
    # the shared secret stands in for the interactive confirmation
    decision = state.gate.evaluate("wake all registered nodes", assume_yes=True)
    if not decision.allowed:
        raise HTTPException(status_code=403, detail={"reason": decision.reason.value, "message": decision.message})

    if not state.locks.acquire(WAKE_BATCH, timeout=0):
        holder = describe_holder(state.locks.holder(WAKE_BATCH))
        raise HTTPException(status_code=409, detail={"reason": Reason.LOCK_TIMEOUT.value,
                                                     "message": f"wake batch already running ({holder})"})
    try:
        targets = state.dispatcher.select(all_nodes=True)
        log.info("API wake of all %d nodes (verify=%s)", len(targets), verify)
        summary = state.dispatcher.wake_batch(targets, default_options(state.settings, verify=verify))
    finally:
        state.locks.release(WAKE_BATCH)
    return summary.as_dict()


@router.post("/wake/{hostname}", dependencies=[Depends(require_wake_secret)])
def wake_one(hostname: str, request: Request, verify: bool = False):
    state = request.app.state
    try:
        state.dispatcher.resolve(hostname)
    except UnknownTarget as e:
        raise HTTPException(status_code=404, detail=e.to_dict())
    log.info("API wake of %s (verify=%s)", hostname, verify)
    result = state.dispatcher.wake(hostname, default_options(state.settings, verify=verify))
    return result.model_dump(mode="json")


@router.get("/status", dependencies=[Depends(require_wake_secret)])
def status(request: Request):
    return {"nodes": request.app.state.dispatcher.list_status()}


@router.get("/health", dependencies=[Depends(require_wake_secret)])
def health(request: Request):
    state = request.app.state
    return {"status": "ok", "hostname": state.settings.hostname, "nodes": len(state.dispatcher.registry)}
