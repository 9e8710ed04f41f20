"""Correlation Service HTTP Handler - research correlation API.

Endpoints:
- GET /health - Health check
- GET /ready - Readiness check
- POST /correlations - Run a correlation analysis

Caller errors return {"error": {"code", "message"}} with status 400.
"""
import logging
import os
from typing import Any, Dict, List, Optional

from flask import Flask, jsonify, request

from moodlink.shared.database import SentimentRepository, get_connection_manager
from moodlink.shared.errors import InvalidConfigurationError, MoodlinkError
from moodlink.shared.utils import configure_pii_salt_from_env
from moodlink.services.audit_service import AuditLogger, AuditRepository
from .cache import InMemoryResultCache, RedisResultCache
from .config import CorrelationConfig
from .engine import CorrelationEngine

logger = logging.getLogger(__name__)

app = Flask(__name__)


def build_engine(config: Optional[CorrelationConfig] = None) -> CorrelationEngine:
    """Wire an engine against PostgreSQL, the result cache and the audit store."""
    config = config or CorrelationConfig.from_env()
    connection_manager = get_connection_manager()

    if config.redis_url:
        cache = RedisResultCache.from_url(config.redis_url)
    else:
        cache = InMemoryResultCache()

    return CorrelationEngine(
        source=SentimentRepository(connection_manager),
        config=config,
        cache=cache,
        audit_logger=AuditLogger(repository=AuditRepository(connection_manager)),
    )


# Global engine instance
_engine: Optional[CorrelationEngine] = None


def get_engine() -> CorrelationEngine:
    """Get or create the global engine instance."""
    global _engine
    if _engine is None:
        _engine = build_engine()
    return _engine


def set_engine(engine: Optional[CorrelationEngine]) -> None:
    """Set the global engine (for testing)."""
    global _engine
    _engine = engine


def _error_response(error: MoodlinkError, status: int = 400):
    return jsonify({"error": error.to_dict()}), status


def _string_list(value: Any, name: str) -> List[str]:
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise InvalidConfigurationError(f"{name} must be a list of strings")
    return value


def _parse_request(data: Dict[str, Any]) -> Dict[str, Any]:
    """Translate the JSON body into analyze_correlations arguments."""
    analysis_type = data.get("analysis_type")
    if not analysis_type or not isinstance(analysis_type, str):
        raise InvalidConfigurationError("analysis_type is required")

    timeframe = data.get("timeframe", "30d")
    if not isinstance(timeframe, str):
        raise InvalidConfigurationError("timeframe must be a string such as 30d")

    subjects = _string_list(data.get("subjects", []), "subjects")
    variables = data.get("variables")
    if variables is not None:
        variables = _string_list(variables, "variables")

    min_strength = data.get("min_correlation_strength", 0.3)
    if isinstance(min_strength, bool):
        raise InvalidConfigurationError("min_correlation_strength must be a number")
    try:
        min_strength = float(min_strength)
    except (TypeError, ValueError):
        raise InvalidConfigurationError("min_correlation_strength must be a number")

    include_tests = data.get("include_statistical_tests", False)
    if not isinstance(include_tests, bool):
        raise InvalidConfigurationError("include_statistical_tests must be true or false")

    return {
        "analysis_type": analysis_type,
        "timeframe": timeframe,
        "subjects": subjects,
        "variables": variables,
        "min_correlation_strength": min_strength,
        "include_statistical_tests": include_tests,
    }


# Flask routes
@app.route("/health", methods=["GET"])
def health():
    """Health check endpoint."""
    return jsonify({"status": "healthy", "service": "correlation-service"})


@app.route("/ready", methods=["GET"])
def ready():
    """Readiness check endpoint; 503 while the database is unreachable."""
    database = get_connection_manager().health_check()
    if not database["healthy"]:
        return jsonify({
            "status": "not_ready",
            "service": "correlation-service",
            "database": database,
        }), 503
    return jsonify({"status": "ready", "service": "correlation-service"})


@app.route("/correlations", methods=["POST"])
def correlations():
    """Run a correlation analysis.

    Request body:
        analysis_type: Required - cross_app, temporal, behavioral,
            health_outcome or intervention_effectiveness
        timeframe: Optional - 7d, 30d, 90d, 1y or <N>d (default 30d)
        subjects: App names (at least 2 for pairwise analyses)
        variables: Optional - aggregate variables to correlate
        min_correlation_strength: Optional - 0.0-1.0 (default 0.3)
        include_statistical_tests: Optional - attach approximate intervals
    """
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return _error_response(InvalidConfigurationError("Request body must be a JSON object"))

    try:
        params = _parse_request(data)
        result = get_engine().analyze_correlations(**params)
    except MoodlinkError as e:
        logger.warning(
            "CORRELATION_REQUEST_REJECTED",
            extra={"code": e.code, "analysis_type": data.get("analysis_type")}
        )
        return _error_response(e)

    return jsonify(result)


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    configure_pii_salt_from_env()
    port = int(os.getenv("PORT", "8080"))
    app.run(host="0.0.0.0", port=port)
