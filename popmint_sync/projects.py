from __future__ import annotations

import logging
from typing import Any

from pydantic import ValidationError

from popmint_sync.api_client import ApiClient
from popmint_sync.config import settings
from popmint_sync.errors import ApiCallError
from popmint_sync.schemas import Project, ProjectCreate, ProjectUpdate

logger = logging.getLogger(__name__)


class ProjectsApi:
    def __init__(self, api: ApiClient, *, user_id: str | None = None) -> None:
        self.api = api
        self.user_id = user_id or settings.POPMINT_DEFAULT_USER_ID

    async def list_projects(self) -> list[Project]:
        body = await self.api.api_call("/api/projects")
        rows = body.get("projects") or []
        if not isinstance(rows, list):
            raise ApiCallError(message="Projects response must contain a projects list", path="/api/projects")
        return [self._parse_project(row, context="list_projects") for row in rows]

    async def create_project(self, payload: ProjectCreate) -> Project:
        if not payload.user_id:
            payload = payload.model_copy(update={"user_id": self.user_id})
        body = await self.api.api_call(
            "/api/projects",
            method="POST",
            json=payload.model_dump(mode="json", exclude_none=True),
        )
        return self._parse_project(body.get("project"), context="create_project")

    async def get_project(self, project_id: str) -> Project:
        body = await self.api.api_call(f"/api/projects/{project_id}")
        return self._parse_project(body.get("project"), context="get_project")

    async def update_project(self, project_id: str, payload: ProjectUpdate) -> Project:
        body = await self.api.api_call(
            f"/api/projects/{project_id}",
            method="PATCH",
            json=payload.model_dump(mode="json", exclude_unset=True),
        )
        return self._parse_project(body.get("project"), context="update_project")

    async def delete_project(self, project_id: str) -> None:
        await self.api.api_call(f"/api/projects/{project_id}", method="DELETE")

    @staticmethod
    def _parse_project(payload: Any, *, context: str) -> Project:
        if not isinstance(payload, dict):
            raise ApiCallError(message=f"Project payload missing for {context}")
        try:
            return Project.model_validate(payload)
        except ValidationError as exc:
            raise ApiCallError(
                message=f"Project payload validation failed for {context}: {exc}",
                details={"payload": payload},
            ) from exc
