"""Integration tests for API endpoints."""

import json

import pytest
from httpx import AsyncClient

from shipyard.models.deployment import DeploymentKind


def parse_ndjson(body: str) -> list[dict]:
    return [json.loads(line) for line in body.splitlines() if line]


class TestHealthEndpoint:
    """Tests for health check endpoint."""

    @pytest.mark.asyncio
    async def test_health_check(self, client: AsyncClient):
        response = await client.get("/v1/health", headers={"Authorization": ""})

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["deployment_in_progress"] is False
        assert "version" in data
        assert "timestamp" in data


class TestAuthentication:
    """Deployment endpoints require a bearer token."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "method,path",
        [
            ("post", "/v1/deploy"),
            ("get", "/v1/deploy/status"),
            ("post", "/v1/deploy/reset"),
            ("get", "/v1/deployment-history"),
        ],
    )
    async def test_missing_token(self, client: AsyncClient, method: str, path: str):
        response = await client.request(method.upper(), path, headers={"Authorization": ""})
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_wrong_token(self, client: AsyncClient, orchestrator):
        response = await client.post(
            "/v1/deploy",
            json={"target": "staging"},
            headers={"Authorization": "Bearer nope"},
        )

        assert response.status_code == 401
        assert not orchestrator.in_progress

    @pytest.mark.asyncio
    async def test_token_compared_in_full(self, client: AsyncClient, test_settings):
        test_settings.api_tokens = ["test-token", "rotated-token"]

        near_miss = await client.get(
            "/v1/deploy/status", headers={"Authorization": "Bearer test-tokeN"}
        )
        prefix = await client.get("/v1/deploy/status", headers={"Authorization": "Bearer test"})
        rotated = await client.get(
            "/v1/deploy/status", headers={"Authorization": "Bearer rotated-token"}
        )

        assert near_miss.status_code == 401
        assert prefix.status_code == 401
        assert rotated.status_code == 200


class TestDeployEndpoint:
    """Tests for the streaming deploy endpoint."""

    @pytest.mark.asyncio
    async def test_deploy_streams_progress(self, client: AsyncClient):
        response = await client.post("/v1/deploy", json={"target": "staging"})

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("application/x-ndjson")
        assert "x-deployment-id" in response.headers

        events = parse_ndjson(response.text)
        assert events[0]["type"] == "log"
        progress = [e["percentage"] for e in events if e["type"] == "progress"]
        assert progress == sorted(progress)
        assert progress[-1] == 100
        assert events[-1]["type"] == "success"
        assert events[-1]["percentage"] == 100

    @pytest.mark.asyncio
    async def test_deploy_busy(self, client: AsyncClient, orchestrator):
        orchestrator.lock.try_acquire(DeploymentKind.DEPLOYMENT)

        response = await client.post("/v1/deploy", json={"target": "staging"})

        assert response.status_code == 409
        error = response.json()["error"]
        assert error["code"] == "BUSYERROR"
        assert error["message"].startswith("Deployment already in progress")
        assert await orchestrator.history.list_records() == []

    @pytest.mark.asyncio
    async def test_deploy_unknown_target(self, client: AsyncClient):
        response = await client.post("/v1/deploy", json={"target": "qa"})

        assert response.status_code == 404
        assert response.json()["error"]["details"] == {"target": "qa"}

    @pytest.mark.asyncio
    async def test_deploy_failure_reported_in_stream(self, client: AsyncClient, remote_host):
        remote_host.connect_error = "authentication failed"

        response = await client.post("/v1/deploy", json={"target": "staging"})

        assert response.status_code == 200
        events = parse_ndjson(response.text)
        assert events[-1]["type"] == "error"
        assert "authentication failed" in events[-1]["message"]


class TestStatusAndReset:
    """Tests for deployment status and reset."""

    @pytest.mark.asyncio
    async def test_status_idle(self, client: AsyncClient):
        response = await client.get("/v1/deploy/status")

        assert response.status_code == 200
        assert response.json()["inProgress"] is False

    @pytest.mark.asyncio
    async def test_status_running_then_reset(self, client: AsyncClient, orchestrator):
        orchestrator.lock.try_acquire(DeploymentKind.PROXY_SETUP)

        status = (await client.get("/v1/deploy/status")).json()
        assert status["inProgress"] is True
        assert status["kind"] == "proxy-setup"

        response = await client.post("/v1/deploy/reset")
        assert response.status_code == 200
        assert response.json() == {"message": "Deployment status reset", "inProgress": False}

        status = (await client.get("/v1/deploy/status")).json()
        assert status["inProgress"] is False

    @pytest.mark.asyncio
    async def test_reset_when_idle(self, client: AsyncClient):
        response = await client.post("/v1/deploy/reset")

        assert response.status_code == 200
        assert response.json()["inProgress"] is False


class TestProxySetupEndpoint:
    """Tests for the proxy setup endpoint."""

    @pytest.mark.asyncio
    async def test_setup_proxy_streams_progress(self, client: AsyncClient):
        response = await client.post(
            "/v1/deploy/setup-proxy",
            json={"host": "203.0.113.20", "username": "root", "domain": "example.com"},
        )

        assert response.status_code == 200
        events = parse_ndjson(response.text)
        assert events[-1] == {
            "type": "success",
            "message": "Nginx and SSL setup completed!",
            "percentage": 100,
            "timestamp": events[-1]["timestamp"],
        }

    @pytest.mark.asyncio
    async def test_setup_proxy_rejects_bad_domain(self, client: AsyncClient):
        response = await client.post(
            "/v1/deploy/setup-proxy",
            json={"host": "203.0.113.20", "username": "root", "domain": "example.com; rm -rf /"},
        )

        assert response.status_code == 422


class TestConnectionTestEndpoint:
    """Tests for the SSH connection test endpoint."""

    @pytest.mark.asyncio
    async def test_connection_test(self, client: AsyncClient, remote_host):
        remote_host.respond("whoami", stdout="root\n")

        response = await client.post(
            "/v1/deploy/test", json={"host": "203.0.113.10", "username": "root"}
        )

        assert response.status_code == 200
        assert response.json() == {
            "success": True,
            "message": "Connection successful. Connected as: root",
        }


class TestTargetsAndHistory:
    """Tests for target listing and deployment history."""

    @pytest.mark.asyncio
    async def test_list_targets(self, client: AsyncClient):
        response = await client.get("/v1/deploy/targets")

        assert response.status_code == 200
        names = [target["name"] for target in response.json()["targets"]]
        assert names == ["staging", "production"]

    @pytest.mark.asyncio
    async def test_history_after_deploy(self, client: AsyncClient):
        await client.post("/v1/deploy", json={"target": "staging"})
        await client.post(
            "/v1/deploy/setup-proxy",
            json={"host": "203.0.113.20", "username": "root", "domain": "example.com"},
        )

        response = await client.get("/v1/deployment-history")

        assert response.status_code == 200
        records = response.json()
        assert [r["kind"] for r in records] == ["proxy-setup", "deployment"]
        assert all(r["status"] == "success" for r in records)
        assert "startTime" in records[0]
        assert records[0]["duration"] is not None

        limited = (await client.get("/v1/deployment-history", params={"limit": 1})).json()
        assert len(limited) == 1
