from fastapi import APIRouter, Request

router = APIRouter()


@router.get("/health", summary="Health Check", description="Service status and which AI providers are usable.")
async def health_check(request: Request):
    service = getattr(request.app.state, "cv_ai_service", None)
    if service is None:
        return {"status": "starting", "providers": {}}
    providers = {name: adapter.healthy for name, adapter in sorted(service.context.adapters.items())}
    return {"status": "healthy", "providers": providers}
