"""Unit tests for the /status and /health endpoints."""

import os
from fastapi.testclient import TestClient
from unittest.mock import patch

from bizrag.main import app

client = TestClient(app)


class TestStatusEndpoint:
    """Test cases for the /status endpoint."""

    def test_status_endpoint_basic(self):
        """Test that /status endpoint returns correct structure."""
        response = client.get("/status")

        assert response.status_code == 200
        data = response.json()

        assert "status" in data
        assert "build" in data
        assert "sha" in data
        assert "env" in data
        assert data["status"] == "ok"

    def test_status_endpoint_with_environment_variables(self):
        """Test /status endpoint with CI-injected environment variables."""
        test_env_vars = {
            "BUILD_NUMBER": "123",
            "GIT_SHA": "abc123def456",
            "ENVIRONMENT": "production",
        }

        with patch.dict(os.environ, test_env_vars):
            response = client.get("/status")

            assert response.status_code == 200
            data = response.json()

            assert data["build"] == "123"
            assert data["sha"] == "abc123def456"
            assert data["env"] == "production"

    def test_status_endpoint_with_github_sha(self):
        """Test /status endpoint falls back to GITHUB_SHA and ENV."""
        test_env_vars = {
            "BUILD_NUMBER": "456",
            "GITHUB_SHA": "github123sha456",
            "ENV": "staging",
        }

        with patch.dict(os.environ, test_env_vars):
            os.environ.pop("GIT_SHA", None)
            os.environ.pop("ENVIRONMENT", None)
            response = client.get("/status")

            data = response.json()
            assert data["sha"] == "github123sha456"
            assert data["env"] == "staging"

    def test_status_endpoint_local_development(self):
        """Test /status endpoint in local development (no CI env vars)."""
        with patch.dict(os.environ, {}, clear=True):
            response = client.get("/status")

            assert response.status_code == 200
            data = response.json()

            assert data["build"] == "local-dev"
            assert data["env"] == "development"
            assert data["sha"] in ["local-dev"] or len(data["sha"]) >= 8


class TestHealthEndpoints:
    """Health endpoints report degraded before startup has run."""

    def test_root(self):
        response = client.get("/")
        assert response.status_code == 200
        assert response.json()["status"] == "operational"

    def test_health_degraded_without_database(self):
        response = client.get("/health")

        assert response.status_code == 503
        data = response.json()
        assert data["status"] == "degraded"
        assert data["vector_store"] == "not_ready"

    def test_health_db_degraded_without_database(self):
        response = client.get("/health/db")

        assert response.status_code == 503
        assert response.json()["db"] == "unavailable"
