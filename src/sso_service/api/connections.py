"""
SSO connection administration routes.

Provides CRUD and activation for an organization's SSO connections.
All routes require an owner or admin of the organization in the path;
connections of other organizations are reported as not found.
"""

from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends, Response, status

from sso_service.api.dependencies import get_connection_registry
from sso_service.domain.api_sso import ConnectionCreate, ConnectionResponse, ConnectionUpdate
from sso_service.errors import ConnectionNotFoundError
from sso_service.middleware.auth import require_org_admin
from sso_service.models import SSOConnection, User
from sso_service.services.connection_registry import ConnectionRegistry

router = APIRouter(
    prefix="/api/v1/organizations/{organization_id}/sso/connections",
    tags=["sso-connections"],
)


async def _get_org_connection(
    registry: ConnectionRegistry, organization_id: UUID, connection_id: int
) -> SSOConnection:
    # Multi-tenant isolation: another organization's connection does not exist here
    connection = await registry.get(connection_id)
    if connection.organization_id != organization_id:
        raise ConnectionNotFoundError(
            f"connection {connection_id} does not belong to organization {organization_id}"
        )
    return connection


@router.post("", response_model=ConnectionResponse, status_code=status.HTTP_201_CREATED)
async def create_connection(
    organization_id: UUID,
    request: ConnectionCreate,
    registry: ConnectionRegistry = Depends(get_connection_registry),
    current_user: User = Depends(require_org_admin),
):
    """
    Create an SSO connection for an organization.

    The connection starts in ``draft`` and must be activated before use.

    Args:
        organization_id: Organization UUID
        request: Connection data
        registry: Connection registry
        current_user: Authenticated organization admin

    Returns:
        Created connection
    """
    connection = await registry.create(organization_id, request)
    return ConnectionResponse.from_connection(connection)


@router.get("", response_model=List[ConnectionResponse])
async def list_connections(
    organization_id: UUID,
    registry: ConnectionRegistry = Depends(get_connection_registry),
    current_user: User = Depends(require_org_admin),
):
    """List SSO connections of an organization."""
    connections = await registry.list_by_organization(organization_id)
    return [ConnectionResponse.from_connection(c) for c in connections]


@router.get("/by-uuid/{connection_uuid}", response_model=ConnectionResponse)
async def get_connection_by_uuid(
    organization_id: UUID,
    connection_uuid: UUID,
    registry: ConnectionRegistry = Depends(get_connection_registry),
    current_user: User = Depends(require_org_admin),
):
    """Get an SSO connection by its public UUID."""
    connection = await registry.get_by_uuid(connection_uuid)
    if connection.organization_id != organization_id:
        raise ConnectionNotFoundError(
            f"connection {connection_uuid} does not belong to organization {organization_id}"
        )
    return ConnectionResponse.from_connection(connection)


@router.get("/{connection_id}", response_model=ConnectionResponse)
async def get_connection(
    organization_id: UUID,
    connection_id: int,
    registry: ConnectionRegistry = Depends(get_connection_registry),
    current_user: User = Depends(require_org_admin),
):
    """Get an SSO connection by ID."""
    connection = await _get_org_connection(registry, organization_id, connection_id)
    return ConnectionResponse.from_connection(connection)


@router.put("/{connection_id}", response_model=ConnectionResponse)
async def update_connection(
    organization_id: UUID,
    connection_id: int,
    request: ConnectionUpdate,
    registry: ConnectionRegistry = Depends(get_connection_registry),
    current_user: User = Depends(require_org_admin),
):
    """
    Update an SSO connection.

    Setting ``status`` to ``active`` runs the same checks as activation;
    setting it to ``inactive`` disables logins through the connection.
    """
    await _get_org_connection(registry, organization_id, connection_id)
    connection = await registry.update(connection_id, request)
    return ConnectionResponse.from_connection(connection)


@router.delete("/{connection_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_connection(
    organization_id: UUID,
    connection_id: int,
    registry: ConnectionRegistry = Depends(get_connection_registry),
    current_user: User = Depends(require_org_admin),
):
    """Delete an SSO connection and its pending login states."""
    await _get_org_connection(registry, organization_id, connection_id)
    await registry.delete(connection_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{connection_id}/activate", response_model=ConnectionResponse)
async def activate_connection(
    organization_id: UUID,
    connection_id: int,
    registry: ConnectionRegistry = Depends(get_connection_registry),
    current_user: User = Depends(require_org_admin),
):
    """Activate an SSO connection once its configuration is complete."""
    await _get_org_connection(registry, organization_id, connection_id)
    connection = await registry.activate(connection_id)
    return ConnectionResponse.from_connection(connection)
