"""
Request/response schemas for the access API.
"""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

from identity_core.domain.identifiers import AccountID, parse_account_id
from identity_core.domain.models import APIKey, Collaborator


class RightsResponse(BaseModel):
    rights: list[str]


class APIKeyModel(BaseModel):
    """An API key as returned by reads. The secret is never included."""

    id: str
    name: str
    rights: list[str]
    created_at: datetime
    updated_at: datetime
    expires_at: datetime | None = None

    @classmethod
    def from_domain(cls, key: APIKey) -> APIKeyModel:
        return cls(
            id=key.id,
            name=key.name,
            rights=key.rights.to_strings(),
            created_at=key.created_at,
            updated_at=key.updated_at,
            expires_at=key.expires_at,
        )


class CreatedAPIKeyModel(APIKeyModel):
    """Returned once by CreateAPIKey; ``key`` is the bearer string."""

    key: str


class CreateAPIKeyRequest(BaseModel):
    name: str = Field("", max_length=50)
    rights: list[str]
    expires_at: datetime | None = None


class APIKeyUpdate(BaseModel):
    name: str | None = Field(None, max_length=50)
    rights: list[str] = Field(default_factory=list)
    expires_at: datetime | None = None


class FieldMask(BaseModel):
    paths: list[str] = Field(default_factory=list)


class UpdateAPIKeyRequest(BaseModel):
    api_key: APIKeyUpdate
    field_mask: FieldMask = Field(default_factory=FieldMask)


class ListAPIKeysResponse(BaseModel):
    api_keys: list[APIKeyModel]


class AccountModel(BaseModel):
    kind: Literal["user", "organization"]
    id: str

    def to_domain(self) -> AccountID:
        return parse_account_id(self.kind, self.id)

    @classmethod
    def from_domain(cls, account: AccountID) -> AccountModel:
        return cls(kind=account.kind.value, id=account.id)


class CollaboratorModel(BaseModel):
    account: AccountModel
    rights: list[str] = Field(default_factory=list)

    @classmethod
    def from_domain(cls, collaborator: Collaborator) -> CollaboratorModel:
        return cls(
            account=AccountModel.from_domain(collaborator.account),
            rights=collaborator.rights.to_strings(),
        )


class SetCollaboratorRequest(BaseModel):
    collaborator: CollaboratorModel


class ListCollaboratorsResponse(BaseModel):
    collaborators: list[CollaboratorModel]


class RegisterEntityRequest(BaseModel):
    id: str
    owner: AccountModel | None = None


class AssertGatewayRightsRequest(BaseModel):
    gateway_ids: list[str] = Field(..., min_length=1, max_length=100)
    required: list[str] = Field(..., min_length=1)
