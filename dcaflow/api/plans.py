"""
Plan Execution API Endpoints

- POST /plan/{planHash}/execute: run a plan's initial swap
- POST /plan/{planHash}/reconcile: record a swap that landed but was never recorded (operator only)
"""

import hmac
import logging

from fastapi import APIRouter, Depends, Header, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from dcaflow.config import settings
from dcaflow.core.errors import PlanExecutionError
from dcaflow.core.plans.executor import PlanExecutor

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/plan", tags=["Plans"])


# =============================================================================
# Request/Response Models
# =============================================================================


class ExecutePlanResponse(BaseModel):
    """Successful execution."""
    success: bool = True
    tx_hash: str = Field(..., alias="txHash")
    amount_out: str = Field(..., alias="amountOut", description="Destination token base units")
    fee_amount: str = Field(..., alias="feeAmount", description="USDC base units")

    model_config = ConfigDict(populate_by_name=True)


class ReconcileRequest(BaseModel):
    """Transaction to attribute to a plan."""
    tx_hash: str = Field(..., alias="txHash", description="Swap transaction hash")

    model_config = ConfigDict(populate_by_name=True)


# =============================================================================
# Dependencies
# =============================================================================


def get_plan_executor(request: Request) -> PlanExecutor:
    """Executor built at startup and attached to the app state."""
    runtime = getattr(request.app.state, "runtime", None)
    if runtime is None:
        raise HTTPException(status_code=503, detail="Executor not initialised")
    return runtime.executor


def verify_operator_key(x_operator_key: str = Header(None, alias="X-Operator-Key")) -> bool:
    """Verify the operator API key for the reconcile endpoint."""
    expected = settings.operator_api_key.get_secret_value()
    if not expected or not x_operator_key or not hmac.compare_digest(x_operator_key, expected):
        raise HTTPException(status_code=401, detail="Invalid operator API key")
    return True


def _error_response(error: PlanExecutionError) -> JSONResponse:
    return JSONResponse(status_code=error.http_status, content=error.to_response())


# =============================================================================
# Endpoints
# =============================================================================


@router.post("/{plan_hash}/execute", response_model=ExecutePlanResponse)
async def execute_plan(
    plan_hash: str,
    executor: PlanExecutor = Depends(get_plan_executor),
):
    """
    Execute the initial investment of a plan.

    Error responses carry ``{success: false, error, code, details?}`` with the
    HTTP status of the failure kind.
    """
    try:
        result = await executor.execute(plan_hash)
    except PlanExecutionError as e:
        logger.info("Plan %s execute rejected: %s (%s)", plan_hash, e.kind.value, e.http_status)
        return _error_response(e)

    return JSONResponse(status_code=200, content=result.to_response())


@router.post("/{plan_hash}/reconcile", response_model=ExecutePlanResponse)
async def reconcile_plan(
    plan_hash: str,
    body: ReconcileRequest,
    executor: PlanExecutor = Depends(get_plan_executor),
    _authorized: bool = Depends(verify_operator_key),
):
    """Record a confirmed swap for a plan that has no execution yet."""
    try:
        result = await executor.reconcile(plan_hash, body.tx_hash)
    except PlanExecutionError as e:
        logger.info("Plan %s reconcile rejected: %s (%s)", plan_hash, e.kind.value, e.http_status)
        return _error_response(e)

    return JSONResponse(status_code=200, content=result.to_response())
