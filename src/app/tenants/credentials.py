"""
Per-tenant credential resolution.

Credentials have historically been stored in several places. This module is
the only reader; callers receive one resolved value.

Precedence (first populated source wins):
    1. ``tenants.settings["voice"]`` dict (``apiKey``, ``webhookSecret``, ``enabled``)
    2. ``tenants.voice_private_key`` column
    3. ``tenants.voice_api_key`` column
    4. platform defaults from Settings (``voice_api_key``, ``webhook_default_secret``)

The webhook secret follows the same order, with ``tenants.webhook_secret``
taking the place of the key columns.
"""

from dataclasses import dataclass
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import Settings, get_settings
from app.shared.logging import get_logger, mask_secret
from app.tenants.models import Tenant

logger = get_logger(__name__)


@dataclass(frozen=True)
class TenantCredentials:
    """Resolved credentials for one tenant."""

    tenant_id: UUID | None
    voice_api_key: str
    webhook_secret: str
    enabled: bool = True
    source: str = "platform"


def _voice_settings(tenant: Tenant) -> dict[str, Any]:
    settings = tenant.settings or {}
    voice = settings.get("voice")
    return voice if isinstance(voice, dict) else {}


def credentials_for_tenant(tenant: Tenant | None, settings: Settings | None = None) -> TenantCredentials:
    """Resolve credentials from an already loaded tenant row."""
    settings = settings or get_settings()

    if tenant is None:
        return TenantCredentials(
            tenant_id=None,
            voice_api_key=settings.voice_api_key,
            webhook_secret=settings.webhook_default_secret,
        )

    voice = _voice_settings(tenant)
    enabled = voice.get("enabled") is not False

    api_key = ""
    source = "platform"
    if voice.get("apiKey"):
        api_key, source = str(voice["apiKey"]), "settings.voice"
    elif tenant.voice_private_key:
        api_key, source = tenant.voice_private_key, "voice_private_key"
    elif tenant.voice_api_key:
        api_key, source = tenant.voice_api_key, "voice_api_key"
    else:
        api_key = settings.voice_api_key

    secret = (
        str(voice.get("webhookSecret") or "")
        or (tenant.webhook_secret or "")
        or settings.webhook_default_secret
    )

    return TenantCredentials(
        tenant_id=tenant.id,
        voice_api_key=api_key,
        webhook_secret=secret,
        enabled=enabled,
        source=source,
    )


async def resolve_tenant_credentials(
    session: AsyncSession,
    tenant_id: UUID | None,
    settings: Settings | None = None,
) -> TenantCredentials:
    """Load the tenant and resolve its credentials.

    Unknown tenants resolve to the platform defaults.
    """
    tenant = None
    if tenant_id is not None:
        result = await session.execute(select(Tenant).where(Tenant.id == tenant_id))
        tenant = result.scalar_one_or_none()
        if tenant is None:
            logger.warning("Tenant not found for credentials", extra={"tenant_id": str(tenant_id)})

    creds = credentials_for_tenant(tenant, settings)
    logger.debug(
        "Tenant credentials resolved",
        extra={
            "tenant_id": str(tenant_id) if tenant_id else None,
            "source": creds.source,
            "voice_api_key": mask_secret(creds.voice_api_key),
            "enabled": creds.enabled,
        },
    )
    return creds
