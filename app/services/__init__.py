# app/services/__init__.py
"""
Service layer initialization.
Provides singleton instances of services.
"""
from typing import Optional

from app.services.cta_flow_client import CtaFlowApiClient
from app.services.session_registry import SessionRegistry
from app.services.snapshot_service import SnapshotService
from app.services.template_catalog import TemplateCatalogClient

# Global instances
_registry: Optional[SessionRegistry] = None
_snapshot_service: Optional[SnapshotService] = None


def get_session_registry() -> SessionRegistry:
    """Get the process-wide editor session registry"""
    global _registry
    if _registry is None:
        _registry = SessionRegistry()
    return _registry


def set_session_registry(registry: Optional[SessionRegistry]) -> None:
    global _registry
    _registry = registry


def get_snapshot_service() -> SnapshotService:
    global _snapshot_service
    if _snapshot_service is None:
        _snapshot_service = SnapshotService()
    return _snapshot_service


def get_flow_api_client(token: Optional[str] = None) -> CtaFlowApiClient:
    """Persistence API client; `token` overrides the configured service token"""
    return CtaFlowApiClient(token=token)


def get_template_catalog(token: Optional[str] = None) -> TemplateCatalogClient:
    return TemplateCatalogClient(token=token)


__all__ = [
    'CtaFlowApiClient',
    'TemplateCatalogClient',
    'SessionRegistry',
    'SnapshotService',
    'get_session_registry',
    'set_session_registry',
    'get_snapshot_service',
    'get_flow_api_client',
    'get_template_catalog',
]
