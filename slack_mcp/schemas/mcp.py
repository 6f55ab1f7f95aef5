from __future__ import annotations
from typing import List, Optional, Dict, Any
from pydantic import BaseModel, Field


MCP_JSONRPC_VERSION = "2.0"


class JsonRpcRequest(BaseModel):
    jsonrpc: str = Field(MCP_JSONRPC_VERSION)
    method: str
    id: Optional[Any] = None
    params: Optional[Dict[str, Any]] = None


class ToolDef(BaseModel):
    name: str
    description: Optional[str] = None
    inputSchema: Optional[Dict[str, Any]] = Field(default=None, description="JSON Schema for input")


class ManifestResponse(BaseModel):
    tools: List[ToolDef]
