"""Client ID Metadata Document model.

A CIMD lets an HTTPS URL serve as an OAuth ``client_id``: the authorization
server fetches the URL and reads the client's registration from it.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class ClientIDMetadataDocument(BaseModel):
    """Client metadata published at the ``client_id`` URL.

    Field semantics follow RFC 7591 client metadata. Structural checks
    (origin binding, grant types) live in ``validate_client_id_metadata``.
    """

    model_config = ConfigDict(extra="allow")

    client_id: str
    redirect_uris: list[str] = Field(min_length=1)

    client_name: str | None = None
    client_uri: str | None = None
    logo_uri: str | None = None
    policy_uri: str | None = None
    tos_uri: str | None = None
    contacts: list[str] | None = None
    scope: str | None = None

    grant_types: list[str] | None = None
    response_types: list[str] | None = None
    token_endpoint_auth_method: str | None = None
    code_challenge_methods_supported: list[str] | None = None

    jwks_uri: str | None = None
    jwks: dict[str, Any] | None = None
    software_id: str | None = None
    software_version: str | None = None

    def to_json_dict(self) -> dict[str, Any]:
        return self.model_dump(exclude_none=True)
