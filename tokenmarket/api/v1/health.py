from fastapi import APIRouter, Depends, Request
from sqlalchemy import text
from sqlalchemy.orm import Session

from tokenmarket.core.config import settings
from tokenmarket.core.deps import get_db

router = APIRouter()


@router.get("/health")
def health(request: Request, db: Session = Depends(get_db)):
    """
    Database round-trip plus the contract gateway state: "connected",
    "unavailable" (configured but not reachable at startup) or "disabled".
    """
    db.execute(text("SELECT 1"))

    if getattr(request.app.state, "contract_gateway", None) is not None:
        chain = "connected"
    elif settings.chain_configured:
        chain = "unavailable"
    else:
        chain = "disabled"
    return {"status": "ok", "database": "ok", "chain": chain}
