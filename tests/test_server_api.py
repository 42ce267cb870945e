"""Tests for the HTTP API."""

from __future__ import annotations

import pytest
from httpx import ASGITransport, AsyncClient

from fakes import FakeAgent, FakeDirectory
from task_orchestrator.config import OrchestratorSettings
from task_orchestrator.orchestrator.service import build_service
from task_orchestrator.server.api import create_app

PLAN = "1. Collect requirements\ntype: requirement\npriority: high\n2. Build it\ntype: implementation"


@pytest.fixture
def agent() -> FakeAgent:
    return FakeAgent(result={"content": PLAN})


@pytest.fixture
def app(agent: FakeAgent):
    service = build_service(OrchestratorSettings(), directory=FakeDirectory([agent]))
    return create_app(service=service, enable_cors=False, start_scheduler=False)


@pytest.fixture
async def client(app):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


@pytest.mark.anyio
class TestTaskEndpoints:
    async def test_list_empty(self, client: AsyncClient) -> None:
        resp = await client.get("/api/tasks")
        assert resp.status_code == 200
        assert resp.json() == {"tasks": [], "total": 0}

    async def test_create_and_get(self, client: AsyncClient) -> None:
        resp = await client.post("/api/tasks", json={
            "description": "Implement OAuth2 login\nwith refresh tokens",
            "task_type": "implementation",
            "priority": "high",
        })
        assert resp.status_code == 201
        task = resp.json()["task"]
        assert task["title"] == "Implement OAuth2 login"
        assert task["status"] == "pending"
        assert task["priority"] == "high"

        resp = await client.get(f"/api/tasks/{task['id']}")
        assert resp.status_code == 200
        assert resp.json()["task"]["id"] == task["id"]

    async def test_get_nonexistent(self, client: AsyncClient) -> None:
        resp = await client.get("/api/tasks/task-missing")
        assert resp.status_code == 404
        body = resp.json()
        assert body["kind"] == "not_found"
        assert body["details"] == {"task_id": "task-missing"}

    async def test_create_rejects_bad_input(self, client: AsyncClient) -> None:
        resp = await client.post("/api/tasks", json={"description": "x", "priority": "P0"})
        assert resp.status_code == 422
        resp = await client.post("/api/tasks", json={"description": ""})
        assert resp.status_code == 422

    async def test_create_in_unknown_project(self, client: AsyncClient) -> None:
        resp = await client.post("/api/tasks", json={"description": "x", "project_id": "proj-missing"})
        assert resp.status_code == 404

    async def test_update_and_filter(self, client: AsyncClient) -> None:
        task = (await client.post("/api/tasks", json={"description": "Write docs"})).json()["task"]
        resp = await client.patch(f"/api/tasks/{task['id']}", json={"priority": "low", "title": "Docs"})
        assert resp.status_code == 200
        assert resp.json()["task"]["priority"] == "low"

        resp = await client.get("/api/tasks", params={"priority": "low", "search": "docs"})
        assert resp.json()["total"] == 1

    async def test_invalid_status_transition(self, client: AsyncClient) -> None:
        task = (await client.post("/api/tasks", json={"description": "x"})).json()["task"]
        resp = await client.patch(f"/api/tasks/{task['id']}", json={"status": "completed"})
        assert resp.status_code == 422
        assert resp.json()["kind"] == "validation_failure"

    async def test_status_patch_leaves_task_queued(self, client: AsyncClient) -> None:
        task = (await client.post("/api/tasks", json={"description": "x"})).json()["task"]
        resp = await client.patch(f"/api/tasks/{task['id']}", json={"status": "assigned"})
        assert resp.status_code == 422
        assert (await client.get(f"/api/tasks/{task['id']}")).json()["task"]["status"] == "pending"
        metrics = (await client.get("/api/capacity/metrics")).json()
        assert metrics["queue_depth"] == 1

    async def test_delete(self, client: AsyncClient) -> None:
        task = (await client.post("/api/tasks", json={"description": "x"})).json()["task"]
        resp = await client.delete(f"/api/tasks/{task['id']}")
        assert resp.json() == {"deleted": True, "task_id": task["id"]}
        assert (await client.get(f"/api/tasks/{task['id']}")).status_code == 404

    async def test_execute(self, client: AsyncClient, agent: FakeAgent) -> None:
        task = (await client.post("/api/tasks", json={"description": "Run me"})).json()["task"]
        resp = await client.post(f"/api/tasks/{task['id']}/execute")
        assert resp.status_code == 200
        body = resp.json()
        assert body["task"]["status"] == "completed"
        assert body["response"]["success"] is True
        assert body["response"]["agent_id"] == "agent-1"

        resp = await client.post(f"/api/tasks/{task['id']}/execute")
        assert resp.status_code == 409

    async def test_execute_agent_exception(self, client: AsyncClient, agent: FakeAgent) -> None:
        agent.raises = RuntimeError("agent crashed")
        task = (await client.post("/api/tasks", json={"description": "Run me"})).json()["task"]
        resp = await client.post(f"/api/tasks/{task['id']}/execute")
        assert resp.status_code == 502
        assert "agent crashed" in resp.json()["error"]


@pytest.mark.anyio
class TestNoAgents:
    @pytest.fixture
    def app(self):
        service = build_service(OrchestratorSettings(), directory=FakeDirectory([]))
        return create_app(service=service, enable_cors=False, start_scheduler=False)

    async def test_execute_without_agents(self, client: AsyncClient) -> None:
        task = (await client.post("/api/tasks", json={"description": "x"})).json()["task"]
        resp = await client.post(f"/api/tasks/{task['id']}/execute")
        assert resp.status_code == 503
        assert resp.json()["kind"] == "no_available_agent"
        assert (await client.get(f"/api/tasks/{task['id']}")).json()["task"]["status"] == "pending"


@pytest.mark.anyio
class TestProjectEndpoints:
    async def _create(self, client: AsyncClient, **extra) -> dict:
        resp = await client.post("/api/projects", json={"name": "Shop", "description": "Store", **extra})
        assert resp.status_code == 201
        return resp.json()["project"]

    async def test_crud(self, client: AsyncClient) -> None:
        project = await self._create(client)
        assert project["status"] == "planning"

        resp = await client.get("/api/projects")
        assert resp.json()["total"] == 1

        resp = await client.patch(f"/api/projects/{project['id']}", json={"status": "cancelled"})
        assert resp.json()["project"]["status"] == "cancelled"

        resp = await client.delete(f"/api/projects/{project['id']}")
        assert resp.json() == {"deleted": True, "project_id": project["id"]}
        assert (await client.get(f"/api/projects/{project['id']}")).status_code == 404

    async def test_decompose(self, client: AsyncClient, agent: FakeAgent) -> None:
        project = await self._create(client, prd="Sell shoes")
        resp = await client.post(f"/api/projects/{project['id']}/decompose")
        assert resp.status_code == 200
        body = resp.json()
        assert body["total"] == 2
        assert [t["title"] for t in body["tasks"]] == ["Collect requirements", "Build it"]
        assert body["project"]["status"] == "active"
        assert "PRD: Sell shoes" in agent.requests[0].prompt

        tasks = (await client.get(f"/api/projects/{project['id']}/tasks")).json()
        assert tasks["total"] == 2
        reqs = (await client.get(f"/api/projects/{project['id']}/requirements")).json()["requirements"]
        assert [r["description"] for r in reqs] == ["Collect requirements"]
        milestones = (await client.get(f"/api/projects/{project['id']}/milestones")).json()["milestones"]
        assert milestones[-1]["name"] == "Project Complete"

    async def test_decompose_unknown_project(self, client: AsyncClient) -> None:
        resp = await client.post("/api/projects/proj-missing/decompose")
        assert resp.status_code == 404

    async def test_refine(self, client: AsyncClient) -> None:
        project = await self._create(client)
        tasks = (await client.post(f"/api/projects/{project['id']}/decompose")).json()["tasks"]
        build_id = tasks[1]["id"]

        resp = await client.post(f"/api/projects/{project['id']}/decompose/refine", json={
            "tasks_to_add": [{"title": "Test it", "task_type": "test", "dependencies": ["Build it"]}],
            "dependencies_to_add": [{"from": tasks[0]["id"], "to": build_id}],
        })
        assert resp.status_code == 200
        summary = resp.json()["summary"]
        assert summary["tasks_added"] == 1
        assert summary["dependencies_added"] == 1
        assert summary["task_count"] == 3

        build = (await client.get(f"/api/tasks/{build_id}")).json()["task"]
        assert build["dependencies"] == [tasks[0]["id"]]

    async def test_refine_rejects_bad_template(self, client: AsyncClient) -> None:
        project = await self._create(client)
        resp = await client.post(f"/api/projects/{project['id']}/decompose/refine", json={
            "tasks_to_add": [{"title": ""}],
        })
        assert resp.status_code == 422


@pytest.mark.anyio
class TestOperationalEndpoints:
    async def test_health(self, client: AsyncClient) -> None:
        resp = await client.get("/api/health")
        assert resp.json() == {"status": "ok", "scheduler_running": False, "in_flight": 0}

    async def test_capacity_metrics(self, client: AsyncClient) -> None:
        await client.post("/api/tasks", json={"description": "x"})
        metrics = (await client.get("/api/capacity/metrics")).json()
        assert metrics["queue_depth"] == 1
        assert metrics["available_agents"] == ["agent-1"]

    async def test_events(self, client: AsyncClient) -> None:
        await client.post("/api/projects", json={"name": "p"})
        await client.post("/api/tasks", json={"description": "x"})
        body = (await client.get("/api/events", params={"limit": 1})).json()
        assert [e["type"] for e in body["events"]] == ["task:created"]
        assert body["summaries"][0]["event"] == "task:created"
        assert (await client.get("/api/events", params={"limit": 0})).status_code == 422
