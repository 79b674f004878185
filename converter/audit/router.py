# FILE: converter/audit/router.py
"""
Conversion history endpoints (localhost only).

    GET /api/conversions?limit=&offset=
    GET /api/conversions/{conversion_id}
    GET /api/stats
"""

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy.orm import Session

from converter.api.schemas import ConversionListResponse
from converter.audit import service
from converter.config import ALLOWED_HISTORY_IPS
from converter.db import get_db


def require_local_client(request: Request) -> None:
    host = request.client.host if request.client else ""
    if host not in ALLOWED_HISTORY_IPS:
        raise HTTPException(status_code=403, detail="History is only available from localhost")


router = APIRouter(prefix="/api", tags=["history"], dependencies=[Depends(require_local_client)])


@router.get("/conversions", response_model=ConversionListResponse)
def list_conversions(
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
):
    rows = service.list_conversions(db, limit=limit, offset=offset)
    return ConversionListResponse(
        conversions=[service.conversion_to_dict(r) for r in rows],
        total=service.count_conversions(db),
        limit=limit,
        offset=offset,
    )


@router.get("/conversions/{conversion_id}")
def get_conversion(conversion_id: str, db: Session = Depends(get_db)):
    conversion = service.get_conversion(db, conversion_id)
    if not conversion:
        raise HTTPException(status_code=404, detail="Conversion not found")
    return service.conversion_to_dict(conversion, include_contracts=True)


@router.get("/stats")
def stats(db: Session = Depends(get_db)):
    return service.get_stats(db)
