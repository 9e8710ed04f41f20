"""Tests for Correlation Service HTTP handler."""
from unittest.mock import MagicMock, patch

import pytest

from moodlink.shared.errors import InsufficientDataError
from moodlink.services.audit_service import AuditRepository
from moodlink.services.correlation_service import (
    CorrelationConfig,
    InMemoryResultCache,
    RedisResultCache,
)
from moodlink.services.correlation_service.handler import app, build_engine, set_engine


@pytest.fixture
def engine():
    engine = MagicMock()
    set_engine(engine)
    yield engine
    set_engine(None)


@pytest.fixture
def client():
    app.config["TESTING"] = True
    with app.test_client() as client:
        yield client


class TestHealthEndpoints:
    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json == {"status": "healthy", "service": "correlation-service"}

    @patch("moodlink.services.correlation_service.handler.get_connection_manager")
    def test_ready(self, mock_manager, client):
        mock_manager.return_value.health_check.return_value = {"healthy": True, "status": "connected"}

        response = client.get("/ready")

        assert response.status_code == 200
        assert response.json["status"] == "ready"

    @patch("moodlink.services.correlation_service.handler.get_connection_manager")
    def test_not_ready_without_database(self, mock_manager, client):
        mock_manager.return_value.health_check.return_value = {
            "healthy": False, "status": "error", "error": "could not connect",
        }

        response = client.get("/ready")

        assert response.status_code == 503
        assert response.json["status"] == "not_ready"


class TestCorrelationsEndpoint:
    def test_runs_analysis(self, client, engine):
        engine.analyze_correlations.return_value = {"analysis_type": "cross_app"}

        response = client.post("/correlations", json={
            "analysis_type": "cross_app",
            "subjects": ["app_a", "app_b"],
            "min_correlation_strength": "0.4",
        })

        assert response.status_code == 200
        assert response.json == {"analysis_type": "cross_app"}
        engine.analyze_correlations.assert_called_once_with(
            analysis_type="cross_app",
            timeframe="30d",
            subjects=["app_a", "app_b"],
            variables=None,
            min_correlation_strength=0.4,
            include_statistical_tests=False,
        )

    @pytest.mark.parametrize("body", [
        {},
        {"analysis_type": "cross_app", "subjects": "app_a,app_b"},
        {"analysis_type": "cross_app", "variables": "sentiment"},
        {"analysis_type": "cross_app", "min_correlation_strength": "strong"},
        {"analysis_type": "cross_app", "min_correlation_strength": True},
        {"analysis_type": "temporal", "timeframe": 30},
        {"analysis_type": "temporal", "timeframe": None},
        {"analysis_type": "cross_app", "subjects": None},
        {"analysis_type": "cross_app", "subjects": ["app_a", 7]},
        {"analysis_type": "cross_app", "variables": [{"name": "sentiment"}]},
        {"analysis_type": "cross_app", "include_statistical_tests": "false"},
        {"analysis_type": ["cross_app"]},
    ])
    def test_malformed_body(self, client, engine, body):
        response = client.post("/correlations", json=body)

        assert response.status_code == 400
        assert response.json["error"]["code"] == "INVALID_CONFIGURATION"
        engine.analyze_correlations.assert_not_called()

    def test_statistical_tests_flag_passed_through(self, client, engine):
        engine.analyze_correlations.return_value = {"analysis_type": "temporal"}

        response = client.post("/correlations", json={
            "analysis_type": "temporal",
            "timeframe": "7d",
            "variables": ["sentiment"],
            "include_statistical_tests": True,
        })

        assert response.status_code == 200
        kwargs = engine.analyze_correlations.call_args.kwargs
        assert kwargs["include_statistical_tests"] is True
        assert kwargs["variables"] == ["sentiment"]
        assert kwargs["timeframe"] == "7d"

    def test_non_object_body(self, client, engine):
        response = client.post("/correlations", json=["cross_app"])

        assert response.status_code == 400

    def test_insufficient_data(self, client, engine):
        engine.analyze_correlations.side_effect = InsufficientDataError("3 qualifying rows")

        response = client.post("/correlations", json={"analysis_type": "temporal"})

        assert response.status_code == 400
        assert response.json["error"] == {
            "code": "INSUFFICIENT_DATA",
            "message": "3 qualifying rows",
        }


class TestBuildEngine:
    @patch("moodlink.services.correlation_service.handler.get_connection_manager")
    def test_in_memory_cache_without_redis(self, mock_manager):
        engine = build_engine(CorrelationConfig())

        assert isinstance(engine.cache, InMemoryResultCache)
        assert engine.audit_logger is not None

    @patch("moodlink.services.correlation_service.handler.get_connection_manager")
    @patch("redis.Redis.from_url")
    def test_redis_cache(self, mock_from_url, mock_manager):
        engine = build_engine(CorrelationConfig(redis_url="redis://cache:6379/0"))

        assert isinstance(engine.cache, RedisResultCache)
        mock_from_url.assert_called_once()

    @patch("moodlink.services.correlation_service.handler.get_connection_manager")
    def test_audit_trail_is_durable(self, mock_manager):
        engine = build_engine(CorrelationConfig())

        assert isinstance(engine.audit_logger.repository, AuditRepository)
        assert engine.audit_logger.repository.connection_manager is mock_manager.return_value
