from decimal import Decimal
from fastapi import APIRouter, Depends, HTTPException
from custody.core.deps import get_engine
from custody.engine import Engine
from custody.schemas.withdrawal import WithdrawalOut, WithdrawalRequest
from custody.services.assets import resolve_asset

router = APIRouter(prefix="/api/withdrawal", tags=["withdrawal"])


@router.post("/request")
async def request_withdrawal(body: WithdrawalRequest, engine: Engine = Depends(get_engine)):
    """Queue a withdrawal; the settler broadcasts it on its next tick."""
    asset = resolve_asset(engine.assets, body.asset)
    if asset is None:
        raise HTTPException(400, f"Unknown asset: {body.asset}")
    ceiling = engine.settler.max_daily_withdrawal
    if ceiling is not None and body.amount > ceiling:
        raise HTTPException(400, f"Amount exceeds daily withdrawal limit ({ceiling} {asset.symbol})")
    try:
        asset.to_base_units(body.amount)
    except ValueError:
        raise HTTPException(400, f"{asset.symbol} supports at most {asset.decimals} decimals")

    withdrawal = await engine.withdrawals.create(
        requester=body.requester,
        asset=asset.symbol,
        amount=Decimal(body.amount),
        to_address=body.destination,
    )
    return {
        "success": True,
        "withdrawalId": withdrawal.id,
        "status": withdrawal.status,
        "message": f"Withdrawal queued; it is processed automatically within {engine.cfg.SETTLE_INTERVAL_SEC}s.",
    }


@router.get("/failed", response_model=list[WithdrawalOut])
async def failed_withdrawals(engine: Engine = Depends(get_engine)):
    """Failed requests awaiting manual reconciliation."""
    return await engine.withdrawals.failed()


@router.get("/{withdrawal_id}", response_model=WithdrawalOut)
async def get_withdrawal(withdrawal_id: int, engine: Engine = Depends(get_engine)):
    w = await engine.withdrawals.get(withdrawal_id)
    if not w:
        raise HTTPException(404, "Withdrawal not found")
    return w
