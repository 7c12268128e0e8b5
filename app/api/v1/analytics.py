from fastapi import APIRouter, Depends, Query

from app.analytics import db as analytics_db
from app.api.v1.cv_ai import get_principal
from app.core.security import Principal, require_admin

router = APIRouter()


def _admin(principal: Principal = Depends(get_principal)) -> Principal:
    require_admin(principal)
    return principal


@router.get("/analytics/provider-calls/summary")
def summary(_: Principal = Depends(_admin)):
    return analytics_db.get_summary()


@router.get("/analytics/provider-calls/latest")
def latest(
    limit: int = Query(default=20, ge=1, le=200),
    _: Principal = Depends(_admin),
):
    return analytics_db.get_latest(limit=limit)
