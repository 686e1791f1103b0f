import asyncio
import itertools
import os
import sys
from collections import defaultdict, deque
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any
from uuid import uuid4

import httpx
import pytest
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

ROOT_DIR = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT_DIR))

os.environ.setdefault("POPMINT_API_BASE_URL", "http://testserver")
os.environ.setdefault("POPMINT_RETRY_MAX_RETRIES", "3")
os.environ.setdefault("POPMINT_RETRY_DELAY_SECONDS", "1.0")
os.environ.setdefault("POPMINT_DEFAULT_USER_ID", "default-user")

BASE_URL = "http://testserver"
_EPOCH = datetime(2024, 1, 1, tzinfo=timezone.utc)


class FakeBackend:
    """In-memory stand-in for the playground CRUD routes."""

    def __init__(self) -> None:
        self.chat: dict[str, list[dict[str, Any]]] = defaultdict(list)
        self.canvas: dict[str, dict[str, dict[str, Any]]] = defaultdict(dict)
        self.projects: dict[str, dict[str, Any]] = {}
        self.requests: list[tuple[str, str]] = []
        self.bodies: list[tuple[str, str, dict[str, Any]]] = []
        self._failures: dict[tuple[str, str], deque[int]] = defaultdict(deque)
        self._gates: dict[tuple[str, str], asyncio.Event] = {}
        self._ticks = itertools.count(1)
        self.app = self._build_app()

    def transport(self) -> httpx.ASGITransport:
        return httpx.ASGITransport(app=self.app)

    def fail(self, method: str, path: str, status_code: int, *, times: int = 1) -> None:
        self._failures[(method, path)].extend([status_code] * times)

    def hold(self, method: str, path: str) -> asyncio.Event:
        gate = asyncio.Event()
        self._gates[(method, path)] = gate
        return gate

    def count(self, method: str, path: str) -> int:
        return sum(1 for request in self.requests if request == (method, path))

    def sent(self, method: str, path: str) -> list[dict[str, Any]]:
        return [body for m, p, body in self.bodies if m == method and p == path]

    def timestamp(self) -> str:
        return (_EPOCH + timedelta(seconds=next(self._ticks))).isoformat()

    def seed_message(self, project_id: str, role: str, content: str, message_type: str = "text") -> dict[str, Any]:
        row = {
            "id": str(uuid4()),
            "project_id": project_id,
            "role": role,
            "content": content,
            "message_type": message_type,
            "image_urls": [],
            "created_at": self.timestamp(),
        }
        self.chat[project_id].append(row)
        return row

    def seed_object(self, project_id: str, **fields: Any) -> dict[str, Any]:
        row = {
            "id": fields.pop("id", str(uuid4())),
            "project_id": project_id,
            "type": "image",
            "x": 0,
            "y": 0,
            "width": None,
            "height": None,
            "rotation": 0,
            "src": None,
            "props": {},
            "updated_at": self.timestamp(),
        }
        row.update(fields)
        self.canvas[project_id][row["id"]] = row
        return row

    def seed_project(self, name: str) -> dict[str, Any]:
        now = self.timestamp()
        project = {
            "id": str(uuid4()),
            "name": name,
            "description": "",
            "thumbnail_url": None,
            "user_id": "default-user",
            "session_id": None,
            "created_at": now,
            "updated_at": now,
        }
        self.projects[project["id"]] = project
        return project

    def _build_app(self) -> FastAPI:
        app = FastAPI()

        @app.middleware("http")
        async def scripted(request: Request, call_next):
            key = (request.method, request.url.path)
            self.requests.append(key)
            gate = self._gates.get(key)
            if gate is not None:
                await gate.wait()
            failures = self._failures.get(key)
            if failures:
                return JSONResponse({"error": "scripted failure"}, status_code=failures.popleft())
            return await call_next(request)

        @app.get("/api/projects")
        async def list_projects():
            rows = sorted(self.projects.values(), key=lambda row: row["updated_at"], reverse=True)
            return {"projects": rows}

        @app.post("/api/projects", status_code=201)
        async def create_project(payload: dict[str, Any]):
            self.bodies.append(("POST", "/api/projects", payload))
            if not payload.get("name"):
                return JSONResponse({"error": "Project name is required"}, status_code=400)
            project = self.seed_project(payload["name"])
            project.update(
                description=payload.get("description", ""),
                user_id=payload.get("user_id") or "default-user",
                session_id=payload.get("session_id"),
            )
            return {"project": project}

        @app.get("/api/projects/{project_id}")
        async def get_project(project_id: str):
            project = self.projects.get(project_id)
            if project is None:
                return JSONResponse({"error": "Project not found"}, status_code=404)
            return {"project": project}

        @app.patch("/api/projects/{project_id}")
        async def update_project(project_id: str, payload: dict[str, Any]):
            self.bodies.append(("PATCH", f"/api/projects/{project_id}", payload))
            project = self.projects.get(project_id)
            if project is None:
                return JSONResponse({"error": "Project not found"}, status_code=404)
            project.update(payload, updated_at=self.timestamp())
            return {"project": project}

        @app.delete("/api/projects/{project_id}")
        async def delete_project(project_id: str):
            self.projects.pop(project_id, None)
            self.chat.pop(project_id, None)
            self.canvas.pop(project_id, None)
            return {"success": True}

        @app.get("/api/projects/{project_id}/chat")
        async def list_chat(project_id: str):
            return {"messages": sorted(self.chat[project_id], key=lambda row: row["created_at"])}

        @app.post("/api/projects/{project_id}/chat", status_code=201)
        async def create_chat(project_id: str, payload: dict[str, Any]):
            self.bodies.append(("POST", f"/api/projects/{project_id}/chat", payload))
            row = self.seed_message(
                project_id,
                payload["role"],
                payload["content"],
                payload.get("message_type", "text"),
            )
            row["image_urls"] = list(payload.get("image_urls") or [])
            return {"message": row}

        @app.get("/api/projects/{project_id}/canvas")
        async def list_canvas(project_id: str):
            rows = sorted(self.canvas[project_id].values(), key=lambda row: row["updated_at"])
            return {"objects": rows}

        @app.post("/api/projects/{project_id}/canvas", status_code=201)
        async def create_canvas(project_id: str, payload: dict[str, Any]):
            self.bodies.append(("POST", f"/api/projects/{project_id}/canvas", payload))
            return {"object": self.seed_object(project_id, **payload)}

        @app.patch("/api/projects/{project_id}/canvas/objects/{object_id}")
        async def update_canvas(project_id: str, object_id: str, payload: dict[str, Any]):
            self.bodies.append(("PATCH", f"/api/projects/{project_id}/canvas/objects/{object_id}", payload))
            row = self.canvas[project_id].get(object_id)
            if row is None:
                return JSONResponse({"error": "Object not found"}, status_code=404)
            row.update(payload, updated_at=self.timestamp())
            return {"object": row}

        @app.delete("/api/projects/{project_id}/canvas/objects/{object_id}")
        async def delete_canvas(project_id: str, object_id: str):
            self.canvas[project_id].pop(object_id, None)
            return {"success": True}

        return app


class RecordingSleep:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


class FakeClock:
    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def sleeper() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def api(backend: FakeBackend, sleeper: RecordingSleep):
    from popmint_sync.api_client import ApiClient

    return ApiClient(base_url=BASE_URL, transport=backend.transport(), sleep=sleeper)
