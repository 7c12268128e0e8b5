from fastapi import APIRouter, Depends, File, Form, Header, HTTPException, Query, Request, UploadFile, status

from app.core.config import settings
from app.core.rate_limit import rate_limit
from app.core.security import Principal, check_api_key, ensure_can_act_for, resolve_principal
from app.schemas.cv_ai import (
    AnalyzeRequest,
    AnalyzeResponse,
    CoverLetterRequest,
    CoverLetterResponse,
    ParseResponse,
    TierInfoResponse,
    UsageSnapshot,
)
from app.services.cv_ai_service import CVAIService, CVServiceError

router = APIRouter()


def get_principal(
    x_user_id: str | None = Header(default=None, alias="X-User-Id"),
    x_user_tier: str | None = Header(default=None, alias="X-User-Tier"),
    x_user_role: str | None = Header(default=None, alias="X-User-Role"),
    x_api_key: str | None = Header(default=None, alias="X-API-Key"),
) -> Principal:
    return resolve_principal(x_user_id, x_user_tier, x_user_role, x_api_key)


def _service(request: Request) -> CVAIService:
    return request.app.state.cv_ai_service


def _target_user(principal: Principal, user_id: str | None) -> str:
    target = (user_id or "").strip() or principal.user_id
    ensure_can_act_for(principal, target)
    return target


def _raise_service_error(exc: CVServiceError) -> None:
    raise HTTPException(status_code=exc.status_code, detail=exc.as_detail()) from exc


@router.post("/cv/analyze", response_model=AnalyzeResponse)
@rate_limit()
async def cv_analyze(
    request: Request,
    payload: AnalyzeRequest,
    principal: Principal = Depends(get_principal),
):
    user_id = _target_user(principal, payload.user_id)
    try:
        return await _service(request).analyze(
            user_id,
            principal.tier_id,
            payload.document_id.strip(),
            payload.job_description,
        )
    except CVServiceError as exc:
        _raise_service_error(exc)


@router.post("/cv/cover-letter", response_model=CoverLetterResponse)
@rate_limit()
async def cv_cover_letter(
    request: Request,
    payload: CoverLetterRequest,
    principal: Principal = Depends(get_principal),
):
    user_id = _target_user(principal, payload.user_id)
    try:
        return await _service(request).cover_letter(
            user_id,
            principal.tier_id,
            payload.document_id.strip(),
            payload.job_description,
        )
    except CVServiceError as exc:
        _raise_service_error(exc)


@router.post("/cv/parse", response_model=ParseResponse)
@rate_limit()
async def cv_parse(
    request: Request,
    file: UploadFile = File(...),
    user_id: str | None = Form(default=None),
    principal: Principal = Depends(get_principal),
):
    target = _target_user(principal, user_id)
    filename = file.filename or "uploaded-file"
    max_bytes = settings.max_upload_bytes

    chunks: list[bytes] = []
    total = 0
    while True:
        chunk = await file.read(1024 * 64)
        if not chunk:
            break
        total += len(chunk)
        if total > max_bytes:
            raise HTTPException(
                status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
                detail={
                    "error": "PAYLOAD_TOO_LARGE",
                    "details": f"File too large. Maximum allowed size is {max_bytes // (1024 * 1024)} MB.",
                },
            )
        chunks.append(chunk)

    try:
        return await _service(request).parse(target, principal.tier_id, filename, b"".join(chunks))
    except CVServiceError as exc:
        _raise_service_error(exc)


@router.get("/cv/usage", response_model=UsageSnapshot)
@rate_limit()
async def cv_usage(
    request: Request,
    user_id: str | None = Query(default=None, max_length=200),
    principal: Principal = Depends(get_principal),
):
    target = _target_user(principal, user_id)
    try:
        return await _service(request).usage(target, principal.tier_id)
    except CVServiceError as exc:
        _raise_service_error(exc)


@router.get("/cv/tier-info", response_model=TierInfoResponse)
@rate_limit()
async def cv_tier_info(
    request: Request,
    tier_id: str | None = Query(default=None, max_length=50),
    x_api_key: str | None = Header(default=None, alias="X-API-Key"),
):
    check_api_key(x_api_key)
    return _service(request).tier_info(tier_id)
