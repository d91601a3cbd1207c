"""
Service health checks.

Provides:
- Database connectivity (SELECT 1 through the app's session factory)
- Configuration presence (identity provider, billing secret, thread generation)
- Service status reporting
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from kasiviral.config.settings import Settings
from kasiviral.database.session import SessionFactory

logger = logging.getLogger(__name__)

SERVICE_NAME = "kasiviral-api"


class HealthChecker:
    """Health check service for the API process."""

    def __init__(self, settings: Settings, session_factory: Optional[SessionFactory] = None):
        self.settings = settings
        self.session_factory = session_factory

    def check_database(self) -> Dict[str, Any]:
        """
        Check database connectivity.

        Returns:
            Dict with 'status' (ok/error) and 'message'
        """
        if self.session_factory is None:
            return {"status": "error", "message": "Database not configured"}

        session = self.session_factory()
        try:
            session.execute(text("SELECT 1")).fetchone()
            return {"status": "ok", "message": "Database connection successful"}
        except SQLAlchemyError as e:
            logger.error("Database connection failed", extra={"error": str(e)})
            return {"status": "error", "message": "Database connection failed"}
        finally:
            session.close()

    def check_configuration(self) -> Dict[str, Any]:
        """
        Check which collaborators are configured. Values are never reported.
        """
        settings = self.settings
        identity = bool(settings.supabase_jwt_secret or (settings.supabase_url and settings.supabase_anon_key))
        present = {
            "identity_provider": identity,
            "billing_webhook": bool(settings.billing_webhook_secret),
            "thread_generation": bool(settings.openai_api_key),
        }
        missing = [name for name, ok in present.items() if not ok]

        # Only identity is required to serve the entitlement endpoints
        return {
            "status": "ok" if identity else "error",
            "present": [name for name, ok in present.items() if ok],
            "missing": missing,
        }

    def get_health_status(self) -> Dict[str, Any]:
        """
        Get comprehensive health status.

        Overall status is "ok" only when the database answers and an identity
        provider is configured; otherwise "degraded".
        """
        db_check = self.check_database()
        config_check = self.check_configuration()

        overall_status = "ok"
        if db_check["status"] != "ok" or config_check["status"] != "ok":
            overall_status = "degraded"

        return {
            "status": overall_status,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "service": SERVICE_NAME,
            "environment": self.settings.app_env,
            "checks": {
                "database": db_check,
                "configuration": config_check,
            },
        }
