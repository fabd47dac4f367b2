"""Status HTTP handler."""
from typing import Optional

from fastapi import APIRouter, Depends

from api.deps import require_user
from api.responses import APIResponse, success
from core.errors import WebcoreError
from core.manager import DEFAULT_KEY
from libraries.auth import User
from modules.status.service import StatusService


class StatusHandler:
    def __init__(self):
        self.service: Optional[StatusService] = None

    def _service(self) -> StatusService:
        if self.service is None:
            raise WebcoreError("Status module is not initialized")
        return self.service

    def router(self) -> APIRouter:
        router = APIRouter()

        @router.get("", response_model=APIResponse, response_model_exclude_none=True, response_model_by_alias=True)
        async def get_status(refresh: bool = False):
            return success(await self._service().report(refresh=refresh))

        @router.get(
            "/libraries/{name}",
            response_model=APIResponse,
            response_model_exclude_none=True,
            response_model_by_alias=True,
        )
        async def get_library(name: str, key: str = DEFAULT_KEY):
            return success(self._service().library(name, key))

        @router.get("/me", response_model=APIResponse, response_model_exclude_none=True, response_model_by_alias=True)
        async def get_me(user: User = Depends(require_user)):
            return success({"id": user.id, "name": user.name, "roles": sorted(user.roles)})

        return router
