"""API key validation endpoint."""

from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException, status

from ..services import Services
from .dependencies import get_services
from .schemas import ValidateKeysRequest

router = APIRouter(prefix="/api", tags=["keys"])


@router.post("/validate-keys")
async def validate_keys(
    payload: ValidateKeysRequest,
    services: Services = Depends(get_services),
) -> Dict[str, Any]:
    """Check the embedding endpoint with the supplied key."""

    if not payload.modelscope_api_key:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="缺少 API 密钥")

    clients = services.clients_factory(payload.modelscope_api_key)
    valid, error = await clients.embedder.validate()
    return {"valid": valid, "modelscope": {"valid": valid, "error": error}}
