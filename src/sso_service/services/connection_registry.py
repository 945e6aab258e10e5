"""SSO Connection Registry

Purpose: Create, look up and maintain per-organization SSO connections

Rules:
- Domains are normalized (trimmed, lower-cased) and unique across all
  organizations; a domain routes to exactly one connection
- The protocol is fixed at creation; a config whose tag disagrees with it
  is rejected with ProtocolMismatchError
- SP entity ID and ACS URL are generated once, right after the row gets its
  id, and never change afterwards
- A connection only leaves ``draft`` through the activation gate
"""

import logging
from typing import Any, Optional, Union
from uuid import UUID

from pydantic import ValidationError
from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from sso_service.auth.saml import build_sp_metadata
from sso_service.config.settings import Settings
from sso_service.domain.api_sso import ConnectionCreate, ConnectionUpdate
from sso_service.domain.sso import (
    ConnectionStatus,
    OIDCConfig,
    SAMLConfig,
    SSOProtocol,
    parse_connection_config,
)
from sso_service.errors import (
    ConnectionNotFoundError,
    ConnectionValidationError,
    DomainConflictError,
    OrganizationNotFoundError,
    ProtocolMismatchError,
)
from sso_service.models import Organization, SSOConnection, SSOState

logger = logging.getLogger(__name__)


def normalize_domain(domain: str) -> str:
    """Lower-case and trim an email domain"""
    return (domain or "").strip().lower()


def parse_config_for_protocol(
    protocol: str, raw: Optional[dict[str, Any]]
) -> Union[SAMLConfig, OIDCConfig]:
    """Parse a request config for a connection of ``protocol``.

    A config without a ``protocol`` tag takes the connection's protocol.

    Raises:
        ProtocolMismatchError: Config missing or tagged with another protocol
        ConnectionValidationError: Config fields fail validation
    """
    if raw is None:
        raise ProtocolMismatchError(f"no configuration supplied for {protocol} connection")

    tagged = dict(raw)
    tagged.setdefault("protocol", protocol)
    if tagged["protocol"] != protocol:
        raise ProtocolMismatchError(
            f"{tagged['protocol']!r} configuration supplied for {protocol} connection"
        )

    try:
        return parse_connection_config(tagged)
    except ValidationError as e:
        raise ConnectionValidationError(f"invalid {protocol} configuration: {e.errors()[0]['msg']}") from e


class ConnectionRegistry:
    """Persistence and lifecycle rules for SSO connections"""

    def __init__(self, db: AsyncSession, settings: Settings):
        self.db = db
        self.settings = settings

    def sp_entity_id_for(self, connection_id: int) -> str:
        return f"{self.settings.base_url.rstrip('/')}/api/v1/sso/metadata/{connection_id}"

    @property
    def sp_acs_url(self) -> str:
        return f"{self.settings.base_url.rstrip('/')}/api/v1/sso/saml/acs"

    async def create(self, organization_id: UUID, request: ConnectionCreate) -> SSOConnection:
        """Create a connection in ``draft`` status.

        Args:
            organization_id: Owning organization
            request: Validated create payload

        Returns:
            The persisted connection with SP URLs filled in

        Raises:
            OrganizationNotFoundError: Organization does not exist
            ConnectionValidationError: Empty domain or incomplete SAML config
            ProtocolMismatchError: Config tag differs from ``protocol``
            DomainConflictError: Domain already routed to a connection
        """
        result = await self.db.execute(
            select(Organization).where(
                Organization.id == organization_id, Organization.deleted_at.is_(None)
            )
        )
        if result.scalar_one_or_none() is None:
            raise OrganizationNotFoundError(f"organization {organization_id} not found")

        domain = normalize_domain(request.domain)
        if not domain:
            raise ConnectionValidationError("domain is required")

        protocol = request.protocol.value
        config = parse_config_for_protocol(protocol, request.config)
        if isinstance(config, SAMLConfig):
            missing = config.missing_required_fields()
            if missing:
                raise ConnectionValidationError(
                    f"SAML configuration requires {', '.join(missing)}"
                )

        await self._ensure_domain_free(domain)

        connection = SSOConnection(
            organization_id=organization_id,
            protocol=protocol,
            name=request.name.strip(),
            domain=domain,
            status=ConnectionStatus.DRAFT.value,
            config=config.model_dump(),
            default_role=request.default_role,
            auto_provision=request.auto_provision,
            jit_provisioning=request.jit_provisioning,
        )
        self.db.add(connection)

        try:
            # SP URLs embed the generated id
            await self.db.flush()
            connection.sp_entity_id = self.sp_entity_id_for(connection.id)
            connection.sp_acs_url = self.sp_acs_url
            await self.db.commit()
        except IntegrityError as e:
            await self.db.rollback()
            raise DomainConflictError(f"domain {domain} was claimed concurrently") from e

        await self.db.refresh(connection)

        logger.info(
            f"SSO connection created: id={connection.id} org={organization_id} "
            f"protocol={protocol} domain={domain}"
        )
        return connection

    async def get(self, connection_id: int) -> SSOConnection:
        """Get a connection by id (any status)."""
        result = await self.db.execute(select(SSOConnection).where(SSOConnection.id == connection_id))
        connection = result.scalar_one_or_none()
        if connection is None:
            raise ConnectionNotFoundError(f"connection {connection_id} not found")
        return connection

    async def get_by_uuid(self, connection_uuid: UUID) -> SSOConnection:
        result = await self.db.execute(
            select(SSOConnection).where(SSOConnection.uuid == connection_uuid)
        )
        connection = result.scalar_one_or_none()
        if connection is None:
            raise ConnectionNotFoundError(f"connection {connection_uuid} not found")
        return connection

    async def get_by_domain(self, domain: str) -> SSOConnection:
        """Get the connection routing ``domain`` (any status)."""
        normalized = normalize_domain(domain)
        result = await self.db.execute(select(SSOConnection).where(SSOConnection.domain == normalized))
        connection = result.scalar_one_or_none()
        if connection is None:
            raise ConnectionNotFoundError(f"no connection for domain {normalized!r}")
        return connection

    async def list_by_organization(self, organization_id: UUID) -> list[SSOConnection]:
        result = await self.db.execute(
            select(SSOConnection)
            .where(SSOConnection.organization_id == organization_id)
            .order_by(SSOConnection.id)
        )
        return list(result.scalars().all())

    async def update(self, connection_id: int, request: ConnectionUpdate) -> SSOConnection:
        """Apply a partial update.

        All checks run before the connection is modified, so a rejected
        update leaves the row untouched.

        Raises:
            ConnectionNotFoundError: Unknown connection
            DomainConflictError: New domain belongs to another connection
            ProtocolMismatchError: Config tag differs from the stored protocol
            ConnectionValidationError: Activation gate failed
        """
        connection = await self.get(connection_id)
        changes = {k: v for k, v in request.model_dump(exclude_unset=True).items() if v is not None}

        domain = connection.domain
        if "domain" in changes:
            domain = normalize_domain(changes["domain"])
            if not domain:
                raise ConnectionValidationError("domain is required")
            if domain != connection.domain:
                await self._ensure_domain_free(domain, exclude_id=connection.id)

        config = connection.config
        if "config" in changes:
            config = parse_config_for_protocol(connection.protocol, changes["config"]).model_dump()

        status = ConnectionStatus(changes.get("status", connection.status)).value
        if status == ConnectionStatus.ACTIVE.value:
            self._check_activation(connection.id, connection.protocol, config)

        connection.domain = domain
        connection.config = config
        connection.status = status
        if "name" in changes:
            connection.name = changes["name"].strip()
        for field in ("auto_provision", "default_role", "jit_provisioning"):
            if field in changes:
                setattr(connection, field, changes[field])

        try:
            await self.db.commit()
        except IntegrityError as e:
            await self.db.rollback()
            raise DomainConflictError(f"domain {domain} was claimed concurrently") from e

        await self.db.refresh(connection)
        logger.info(f"SSO connection updated: id={connection.id} fields={sorted(changes)}")
        return connection

    async def delete(self, connection_id: int) -> None:
        """Delete a connection together with its pending login states."""
        connection = await self.get(connection_id)
        domain = connection.domain

        await self.db.execute(delete(SSOState).where(SSOState.connection_id == connection.id))
        await self.db.delete(connection)
        await self.db.commit()

        logger.info(f"SSO connection deleted: id={connection_id} domain={domain}")

    async def activate(self, connection_id: int) -> SSOConnection:
        """Move a connection to ``active`` once its config is complete."""
        connection = await self.get(connection_id)
        self._check_activation(connection.id, connection.protocol, connection.config)

        connection.status = ConnectionStatus.ACTIVE.value
        await self.db.commit()
        await self.db.refresh(connection)

        logger.info(f"SSO connection activated: id={connection.id} domain={connection.domain}")
        return connection

    async def get_sp_metadata(self, connection_id: int) -> str:
        """SP metadata XML for a connection (cached copy wins)."""
        connection = await self.get(connection_id)
        if connection.sp_metadata:
            return connection.sp_metadata

        saml = connection.saml_config
        want_signed = saml.want_assertion_signed if saml is not None else True
        return build_sp_metadata(connection.sp_entity_id, connection.sp_acs_url, want_signed)

    def _check_activation(self, connection_id: int, protocol: str, raw_config: Optional[dict]) -> None:
        try:
            config = parse_connection_config(raw_config)
        except ValidationError as e:
            raise ConnectionValidationError("stored configuration is invalid") from e

        if config is None or config.protocol != protocol:
            raise ProtocolMismatchError(f"connection {connection_id} has no {protocol} configuration")

        missing = config.missing_required_fields()
        if missing:
            label = "SAML" if protocol == SSOProtocol.SAML.value else "OIDC"
            raise ConnectionValidationError(
                f"{label} connection cannot be activated without {', '.join(missing)}"
            )

    async def _ensure_domain_free(self, domain: str, exclude_id: Optional[int] = None) -> None:
        query = select(SSOConnection.id).where(SSOConnection.domain == domain)
        if exclude_id is not None:
            query = query.where(SSOConnection.id != exclude_id)
        result = await self.db.execute(query)
        if result.first() is not None:
            raise DomainConflictError(f"domain {domain} is already configured")
