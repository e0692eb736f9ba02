from fastapi import APIRouter, Body, HTTPException

from api.services.identify_service import get_identity, identify_trace, identify_tx
from identifiers.config import ConfigError

router = APIRouter()


@router.post("/trace")
def trace(payload: dict = Body(...)):
    frame = payload.get("trace")
    if not isinstance(frame, dict):
        raise HTTPException(status_code=400, detail="trace must be a callTracer frame")
    persist = payload.get("persist", False)
    if not isinstance(persist, bool):
        raise HTTPException(status_code=400, detail="persist must be a boolean")
    try:
        return identify_trace(frame, persist=persist)
    except ConfigError as e:
        raise HTTPException(status_code=500, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=f"malformed trace: {e}")


@router.get("/tx/{tx_hash}")
def tx(tx_hash: str, persist: bool = False):
    try:
        return identify_tx(tx_hash, persist=persist)
    except ConfigError as e:
        raise HTTPException(status_code=500, detail=str(e))
    except (RuntimeError, ValueError) as e:
        raise HTTPException(status_code=502, detail=str(e))


@router.get("/address/{address}")
def address(address: str):
    item = get_identity(address)
    if not item:
        raise HTTPException(status_code=404, detail="address not identified")
    return item
