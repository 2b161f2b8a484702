"""
Request-scoped dependencies shared by the routers
"""
from typing import Optional

from fastapi import Header, HTTPException, Request, status

from lodgecore.providers.registry import ProviderRegistry


def get_tenant_id(x_tenant_id: Optional[str] = Header(None, alias="X-Tenant-ID")) -> int:
    """Tenant resolved upstream and forwarded in X-Tenant-ID"""
    if not x_tenant_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="X-Tenant-ID header is required")
    try:
        return int(x_tenant_id)
    except ValueError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="X-Tenant-ID must be an integer")


def get_actor(x_actor: Optional[str] = Header(None, alias="X-Actor")) -> Optional[str]:
    return x_actor


def get_providers(request: Request) -> ProviderRegistry:
    return request.app.state.providers
