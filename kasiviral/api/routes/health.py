from fastapi import APIRouter, Depends, Request

from kasiviral.api.dependencies.auth import get_app_settings
from kasiviral.config.settings import Settings
from kasiviral.platform.health import HealthChecker

router = APIRouter(tags=["health"])


@router.get("/health")
def health(request: Request, settings: Settings = Depends(get_app_settings)):
    checker = HealthChecker(settings, getattr(request.app.state, "session_factory", None))
    return checker.get_health_status()


@router.get("/api/env")
def public_env(settings: Settings = Depends(get_app_settings)):
    """Identity provider settings the browser client needs. Nothing secret."""
    return {
        "SUPABASE_URL": settings.supabase_url,
        "SUPABASE_ANON_KEY": settings.supabase_anon_key,
    }
