"""
Access API routes.

One router per entity kind, mounted under the kind's plural:

- GET    /{kind}s/{id}/rights
- POST   /{kind}s/{id}/api-keys            (and GET list, GET/PUT/DELETE one)
- PUT    /{kind}s/{id}/collaborators       (and GET list, GET/DELETE one)
- POST   /{kind}s                          registers a new entity

Every handler delegates to AccessService; errors surface through the
handlers in ``app.access.errors``.
"""

from fastapi import APIRouter, Depends, Query, Request, Response, status

from app.access.factory import get_access_service
from app.access.schemas import (
    APIKeyModel,
    AssertGatewayRightsRequest,
    CollaboratorModel,
    CreateAPIKeyRequest,
    CreatedAPIKeyModel,
    ListAPIKeysResponse,
    ListCollaboratorsResponse,
    RegisterEntityRequest,
    RightsResponse,
    SetCollaboratorRequest,
    UpdateAPIKeyRequest,
)
from app.access.service import AccessService
from identity_core.auth.dependencies import get_auth_context, require_authenticated
from identity_core.config import settings
from identity_core.domain.auth import AuthContext
from identity_core.domain.identifiers import EntityKind, GatewayID, parse_account_id, parse_entity_id
from identity_core.domain.rights import Rights
from identity_core.infrastructure.rate_limiter import limiter

TOTAL_COUNT_HEADER = "X-Total-Count"


def build_router(kind: EntityKind, *, api_keys: bool = True, collaborators: bool = True) -> APIRouter:
    """Build the access router for one entity kind.

    Args:
        kind: Entity kind served by the router.
        api_keys: Mount the API key routes.
        collaborators: Mount the collaborator routes.
    """
    router = APIRouter(prefix=f"/{kind.plural}", tags=[kind.plural.capitalize()])

    @router.get("/{entity_id}/rights", response_model=RightsResponse)
    async def list_rights(
        entity_id: str,
        auth: AuthContext = Depends(get_auth_context),
        service: AccessService = Depends(get_access_service),
    ):
        rights = await service.list_rights(auth, parse_entity_id(kind, entity_id))
        return RightsResponse(rights=rights.to_strings())

    if kind is not EntityKind.USER:

        @router.post("", status_code=status.HTTP_201_CREATED)
        async def register(
            body: RegisterEntityRequest,
            auth: AuthContext = Depends(require_authenticated),
            service: AccessService = Depends(get_access_service),
        ):
            entity = parse_entity_id(kind, body.id)
            owner = body.owner.to_domain() if body.owner else None
            await service.register_entity(auth, entity, owner)
            return {"id": entity.id}

        @router.delete("/{entity_id}", status_code=status.HTTP_204_NO_CONTENT)
        async def purge(
            entity_id: str,
            auth: AuthContext = Depends(get_auth_context),
            service: AccessService = Depends(get_access_service),
        ):
            await service.purge_entity(auth, parse_entity_id(kind, entity_id))
            return Response(status_code=status.HTTP_204_NO_CONTENT)

    if api_keys:
        _mount_api_keys(router, kind)
    if collaborators:
        _mount_collaborators(router, kind)
    return router


def _mount_api_keys(router: APIRouter, kind: EntityKind) -> None:
    @router.post("/{entity_id}/api-keys", response_model=CreatedAPIKeyModel, status_code=status.HTTP_201_CREATED)
    @limiter.limit(settings.RATE_LIMIT_CREATE_API_KEY)
    async def create_api_key(
        request: Request,
        entity_id: str,
        body: CreateAPIKeyRequest,
        auth: AuthContext = Depends(get_auth_context),
        service: AccessService = Depends(get_access_service),
    ):
        issued = await service.create_api_key(
            auth,
            parse_entity_id(kind, entity_id),
            name=body.name,
            rights=Rights(body.rights),
            expires_at=body.expires_at,
        )
        return CreatedAPIKeyModel(**APIKeyModel.from_domain(issued.api_key).model_dump(), key=issued.key)

    @router.get("/{entity_id}/api-keys", response_model=ListAPIKeysResponse)
    async def list_api_keys(
        entity_id: str,
        response: Response,
        limit: int = Query(0, ge=0),
        page: int = Query(1, ge=1),
        auth: AuthContext = Depends(get_auth_context),
        service: AccessService = Depends(get_access_service),
    ):
        keys, total = await service.list_api_keys(auth, parse_entity_id(kind, entity_id), limit, page)
        response.headers[TOTAL_COUNT_HEADER] = str(total)
        return ListAPIKeysResponse(api_keys=[APIKeyModel.from_domain(k) for k in keys])

    @router.get("/{entity_id}/api-keys/{key_id}", response_model=APIKeyModel)
    async def get_api_key(
        entity_id: str,
        key_id: str,
        auth: AuthContext = Depends(get_auth_context),
        service: AccessService = Depends(get_access_service),
    ):
        key = await service.get_api_key(auth, parse_entity_id(kind, entity_id), key_id)
        return APIKeyModel.from_domain(key)

    @router.put("/{entity_id}/api-keys/{key_id}", response_model=APIKeyModel | None)
    async def update_api_key(
        entity_id: str,
        key_id: str,
        body: UpdateAPIKeyRequest,
        auth: AuthContext = Depends(get_auth_context),
        service: AccessService = Depends(get_access_service),
    ):
        key = await service.update_api_key(
            auth,
            parse_entity_id(kind, entity_id),
            key_id,
            name=body.api_key.name,
            rights=Rights(body.api_key.rights),
            expires_at=body.api_key.expires_at,
            field_mask=body.field_mask.paths,
        )
        if key is None:
            return Response(status_code=status.HTTP_204_NO_CONTENT)
        return APIKeyModel.from_domain(key)

    @router.delete("/{entity_id}/api-keys/{key_id}", status_code=status.HTTP_204_NO_CONTENT)
    async def delete_api_key(
        entity_id: str,
        key_id: str,
        auth: AuthContext = Depends(get_auth_context),
        service: AccessService = Depends(get_access_service),
    ):
        await service.delete_api_key(auth, parse_entity_id(kind, entity_id), key_id)
        return Response(status_code=status.HTTP_204_NO_CONTENT)


def _mount_collaborators(router: APIRouter, kind: EntityKind) -> None:
    @router.put("/{entity_id}/collaborators", status_code=status.HTTP_204_NO_CONTENT)
    async def set_collaborator(
        entity_id: str,
        body: SetCollaboratorRequest,
        auth: AuthContext = Depends(get_auth_context),
        service: AccessService = Depends(get_access_service),
    ):
        await service.set_collaborator(
            auth,
            parse_entity_id(kind, entity_id),
            body.collaborator.account.to_domain(),
            Rights(body.collaborator.rights),
        )
        return Response(status_code=status.HTTP_204_NO_CONTENT)

    @router.get("/{entity_id}/collaborators", response_model=ListCollaboratorsResponse)
    async def list_collaborators(
        entity_id: str,
        response: Response,
        limit: int = Query(0, ge=0),
        page: int = Query(1, ge=1),
        auth: AuthContext = Depends(get_auth_context),
        service: AccessService = Depends(get_access_service),
    ):
        members, total = await service.list_collaborators(auth, parse_entity_id(kind, entity_id), limit, page)
        response.headers[TOTAL_COUNT_HEADER] = str(total)
        return ListCollaboratorsResponse(collaborators=[CollaboratorModel.from_domain(m) for m in members])

    @router.get("/{entity_id}/collaborators/{account_kind}/{account_id}", response_model=CollaboratorModel)
    async def get_collaborator(
        entity_id: str,
        account_kind: str,
        account_id: str,
        auth: AuthContext = Depends(get_auth_context),
        service: AccessService = Depends(get_access_service),
    ):
        collaborator = await service.get_collaborator(
            auth, parse_entity_id(kind, entity_id), parse_account_id(account_kind, account_id)
        )
        return CollaboratorModel.from_domain(collaborator)

    @router.delete("/{entity_id}/collaborators/{account_kind}/{account_id}", status_code=status.HTTP_204_NO_CONTENT)
    async def delete_collaborator(
        entity_id: str,
        account_kind: str,
        account_id: str,
        auth: AuthContext = Depends(get_auth_context),
        service: AccessService = Depends(get_access_service),
    ):
        await service.delete_collaborator(
            auth, parse_entity_id(kind, entity_id), parse_account_id(account_kind, account_id)
        )
        return Response(status_code=status.HTTP_204_NO_CONTENT)


gateway_batch_router = APIRouter(prefix="/gateways", tags=["Gateways"])


@gateway_batch_router.post("/rights:assert", status_code=status.HTTP_204_NO_CONTENT)
async def assert_gateway_rights(
    body: AssertGatewayRightsRequest,
    auth: AuthContext = Depends(get_auth_context),
    service: AccessService = Depends(get_access_service),
):
    """Require the same rights on a batch of gateways, failing on the first miss."""
    await service.assert_gateway_rights(auth, [GatewayID(g) for g in body.gateway_ids], Rights(body.required))
    return Response(status_code=status.HTTP_204_NO_CONTENT)


routers = [
    gateway_batch_router,
    build_router(EntityKind.APPLICATION),
    build_router(EntityKind.GATEWAY),
    build_router(EntityKind.ORGANIZATION),
    build_router(EntityKind.USER, collaborators=False),
    build_router(EntityKind.CLIENT, api_keys=False),
]
