from __future__ import annotations

from fastapi import APIRouter, Depends

from ..config import AuthConfig
from ..dependencies import get_config, get_store
from ..storage import ProfileStore


router = APIRouter()


@router.get("/health")
def health(config: AuthConfig = Depends(get_config), store: ProfileStore = Depends(get_store)):
    return {
        "ok": True,
        "secret_source": config.secret_source,
        "insecure": config.insecure,
        "store": store.kind,
    }
