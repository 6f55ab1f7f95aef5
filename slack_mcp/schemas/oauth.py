from __future__ import annotations
from typing import List, Optional
from pydantic import BaseModel


class OAuthServerConfig(BaseModel):
    issuer: str
    authorization_endpoint: str
    token_endpoint: str
    client_id: str
    scopes: List[str] = ["read", "write"]
    scopes_supported: List[str] = ["read", "write"]
    response_types_supported: List[str] = ["code"]
    grant_types_supported: List[str] = ["authorization_code"]


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int
    scope: str = "read write"


class AuthorizeForm(BaseModel):
    slack_token: Optional[str] = None
    redirect_uri: Optional[str] = None
    state: Optional[str] = None
    client_id: Optional[str] = None


class TokenRequest(BaseModel):
    grant_type: Optional[str] = None
    code: Optional[str] = None
    client_id: Optional[str] = None
    redirect_uri: Optional[str] = None
