from fastapi import APIRouter, Depends
from custody.core.deps import get_engine
from custody.engine import Engine
from custody.schemas.deposit import DepositOut, MarkProcessedRequest

router = APIRouter(prefix="/api/deposits", tags=["deposits"])


@router.get("/{identity}/pending", response_model=list[DepositOut])
async def pending_deposits(identity: str, engine: Engine = Depends(get_engine)):
    """Confirmed deposits the user has not credited yet."""
    return await engine.deposits.pending_for(identity)


@router.post("/mark-processed")
async def mark_processed(body: MarkProcessedRequest, engine: Engine = Depends(get_engine)):
    processed = await engine.deposits.mark_processed(body.deposit_ids)
    return {"success": True, "requested": len(body.deposit_ids), "processed": processed}
