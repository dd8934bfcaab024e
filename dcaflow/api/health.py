from typing import Any, Dict

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

router = APIRouter()


async def _check_database(runtime) -> Dict[str, Any]:
    try:
        await runtime.store.ping()
        return {"status": "healthy"}
    except Exception as e:
        return {"status": "unhealthy", "error": e.__class__.__name__}


async def _check_rpc(runtime) -> Dict[str, Any]:
    try:
        chain_id = await runtime.rpc.chain_id()
    except Exception as e:
        return {"status": "unhealthy", "error": e.__class__.__name__}

    expected = runtime.settings.chain_id
    if chain_id != expected:
        return {"status": "unhealthy", "error": f"chain id {chain_id} != {expected}"}
    return {"status": "healthy", "chainId": chain_id}


@router.get("/healthz")
async def health_check(request: Request):
    """Health check endpoint that verifies database and RPC reachability"""

    runtime = getattr(request.app.state, "runtime", None)
    if runtime is None:
        return JSONResponse(status_code=503, content={"status": "starting"})

    components = {
        "database": await _check_database(runtime),
        "rpc": await _check_rpc(runtime),
    }
    healthy = all(c["status"] == "healthy" for c in components.values())

    return JSONResponse(
        status_code=200 if healthy else 503,
        content={"status": "healthy" if healthy else "degraded", "components": components},
    )
