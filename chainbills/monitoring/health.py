"""
Health checks for liveness/readiness probes.

Checks:
- Database connectivity
- VTpass credentials configuration
"""
from typing import Any, Dict, Optional

import structlog
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from chainbills.config import Settings, get_settings
from chainbills.database.connection import get_session_factory

logger = structlog.get_logger(__name__)


class HealthCheckError(Exception):
    """Raised when health check fails."""

    pass


class HealthCheck:
    """Health check service for the gateway's dependencies."""

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self.settings = settings or get_settings()
        self._session_factory = session_factory

    async def check_database(self) -> Dict[str, Any]:
        """
        Check database connectivity.

        Raises:
            HealthCheckError: If the database cannot answer ``SELECT 1``
        """
        try:
            session_factory = self._session_factory or get_session_factory()
            async with session_factory() as db:
                result = await db.execute(text("SELECT 1"))
                result.scalar()
        except (SQLAlchemyError, OSError) as e:
            logger.error("database_health_check_failed", error=str(e))
            raise HealthCheckError(f"Database health check failed: {e}")

        return {
            "status": "healthy",
            "service": "database",
            "message": "Database connection successful",
        }

    async def check_vtpass(self) -> Dict[str, Any]:
        """
        Check that VTpass credentials are configured.

        No request is sent to VTpass.

        Raises:
            HealthCheckError: If any credential is missing
        """
        missing = [
            name
            for name, value in (
                ("VTPASS_API_KEY", self.settings.vtpass_api_key),
                ("VTPASS_PUBLIC_KEY", self.settings.vtpass_public_key),
                ("VTPASS_SECRET_KEY", self.settings.vtpass_secret_key),
            )
            if not value
        ]
        if missing:
            logger.warning("vtpass_health_check_failed", missing=missing)
            raise HealthCheckError(f"VTpass credentials not configured: {', '.join(missing)}")

        return {
            "status": "healthy",
            "service": "vtpass",
            "message": "VTpass credentials configured",
            "base_url": self.settings.vtpass_url,
        }

    async def check_all(self) -> Dict[str, Any]:
        """Run all health checks."""
        checks: Dict[str, Any] = {}
        all_healthy = True

        for name, check in (("database", self.check_database), ("vtpass", self.check_vtpass)):
            try:
                checks[name] = await check()
            except HealthCheckError as e:
                checks[name] = {"status": "unhealthy", "service": name, "error": str(e)}
                all_healthy = False

        return {
            "status": "healthy" if all_healthy else "unhealthy",
            "checks": checks,
        }

    async def liveness(self) -> Dict[str, Any]:
        """Liveness probe; does not touch external dependencies."""
        return {
            "status": "alive",
            "message": "Application is running",
        }

    async def readiness(self) -> Dict[str, Any]:
        return await self.check_all()
