"""
DamDoh API - Flask Application Entry Point

This module builds the Flask application with OpenAPI 3.0 support,
configures middleware, and wires the services behind the agricultural
networking and marketplace platform.
"""

import os
import time
from datetime import datetime
from typing import Any, Dict, Optional

import psutil
from flask import jsonify
from flask_openapi3 import OpenAPI, Info, Tag

from .observability.config import setup_observability, tracing_enabled
from .observability.middleware import add_observability_middleware
from .middleware.cors import configure_cors
from .middleware.error_handler import ErrorHandlerMiddleware, register_custom_error_handlers
from .middleware.validation import ValidationMiddleware
from .middleware.auth import AuthMiddleware
from .services.hal import create_hal_formatter
from .services.mongodb import MongoDBService
from .services.redis import RedisService
from .services.auth import AuthService
from .services.amqp import create_amqp_service
from .services.health import HealthCheckService, SERVICE_NAME, SERVICE_VERSION

info = Info(
    title="DamDoh API",
    version=SERVICE_VERSION,
    description="Multi-stakeholder agricultural networking and marketplace API with HAL support"
)

tags = [
    Tag(name="Health", description="System health and status")
]


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == 'true'


def load_config() -> Dict[str, Any]:
    """Read application configuration from environment variables."""
    environment = os.getenv('ENVIRONMENT', 'development')

    return {
        # General
        'ENVIRONMENT': environment,
        'DEBUG': environment == 'development',
        'DOCS_ENABLED': _env_flag('DOCS_ENABLED', 'true'),
        'BASE_URL': os.getenv('BASE_URL', 'http://localhost:5000'),
        'FRONTEND_URL': os.getenv('FRONTEND_URL'),
        'CORS_ALLOWED_ORIGINS': os.getenv('CORS_ALLOWED_ORIGINS'),

        # Database
        'MONGODB_URI': os.getenv('MONGODB_URI', 'mongodb://localhost:27017/damdoh_dev'),
        'MONGODB_DATABASE': os.getenv('MONGODB_DATABASE', 'damdoh_dev'),
        'REDIS_URL': os.getenv('REDIS_URL', ''),
        'REDIS_TOKEN': os.getenv('REDIS_TOKEN', ''),

        # Security
        'JWT_ACCESS_TOKEN_MINUTES': int(os.getenv('JWT_ACCESS_TOKEN_MINUTES', '15')),
        'JWT_REFRESH_TOKEN_DAYS': int(os.getenv('JWT_REFRESH_TOKEN_DAYS', '7')),

        # Message queue
        'AMQP_URL': os.getenv('AMQP_URL', ''),

        # Feature flags
        'OTEL_ENABLED': _env_flag('OTEL_ENABLED', 'true'),

        # Caching
        'DASHBOARD_CACHE_TTL': int(os.getenv('DASHBOARD_CACHE_TTL', '300')),
    }


def create_app(config: Optional[Dict[str, Any]] = None, **services) -> OpenAPI:
    """
    Create the DamDoh API application.

    Args:
        config: Values overriding the environment configuration
        **services: Prebuilt services (mongodb_service, redis_service,
            auth_service, amqp_service, health_service); missing ones are
            created from the configuration

    Returns:
        Configured OpenAPI application
    """
    settings = load_config()
    settings.update(config or {})

    setup_observability(settings['ENVIRONMENT'])

    app = OpenAPI(
        __name__,
        info=info,
        doc_prefix='/openapi',
        doc_ui=settings['DOCS_ENABLED']
    )
    app.config.update(settings)

    add_observability_middleware(
        app, instrument=settings['OTEL_ENABLED'] and tracing_enabled(settings['ENVIRONMENT'])
    )

    # Services
    mongodb_service = services.get('mongodb_service') or MongoDBService(
        app.config['MONGODB_URI'], app.config['MONGODB_DATABASE']
    )
    redis_service = services.get('redis_service') or RedisService(
        app.config['REDIS_URL'] or None,
        app.config['REDIS_TOKEN'] or None
    )
    auth_service = services.get('auth_service') or AuthService(
        access_token_expire_minutes=app.config['JWT_ACCESS_TOKEN_MINUTES'],
        refresh_token_expire_days=app.config['JWT_REFRESH_TOKEN_DAYS']
    )
    if 'amqp_service' in services:
        amqp_service = services['amqp_service']
    else:
        amqp_service = create_amqp_service() if app.config['AMQP_URL'] else None
    health_service = services.get('health_service') or HealthCheckService(
        mongodb_service, redis_service, amqp_service
    )

    # Middleware
    hal_formatter = create_hal_formatter(app.config['BASE_URL'])
    validation_middleware = ValidationMiddleware()
    auth_middleware = AuthMiddleware(auth_service, redis_service)
    ErrorHandlerMiddleware(app, hal_formatter)

    configure_cors(app, allow_credentials=True)
    register_custom_error_handlers(app, hal_formatter)

    # Make services available to routes
    app.mongodb_service = mongodb_service
    app.redis_service = redis_service
    app.auth_service = auth_service
    app.amqp_service = amqp_service
    app.health_service = health_service
    app.hal_formatter = hal_formatter
    app.validation_middleware = validation_middleware
    app.auth_middleware = auth_middleware

    _register_blueprints(app)
    _register_system_routes(app)

    return app


def _register_blueprints(app: OpenAPI) -> None:
    from .routes.auth import auth_bp
    from .routes.profiles import profiles_bp
    from .routes.farms import farms_bp
    from .routes.marketplace import marketplace_bp
    from .routes.forums import forums_bp
    from .routes.financial import financial_bp
    from .routes.insurance import insurance_bp
    from .routes.traceability import traceability_bp
    from .routes.notifications import notifications_bp
    from .routes.dashboards import dashboards_bp

    for blueprint in (auth_bp, profiles_bp, farms_bp, marketplace_bp, forums_bp, financial_bp,
                      insurance_bp, traceability_bp, notifications_bp, dashboards_bp):
        app.register_api(blueprint)


def _register_system_routes(app: OpenAPI) -> None:
    health_tag = tags[0]

    @app.get('/api/healthz', tags=[health_tag])
    def health_check():
        """Health check with dependency monitoring"""
        health_data = app.health_service.get_comprehensive_health()

        # degraded is still operational
        status_code = 503 if health_data["status"] == "unhealthy" else 200

        return jsonify(app.hal_formatter.builder.build_resource_response(
            health_data, "/api/healthz"
        )), status_code

    @app.get('/api/status', tags=[health_tag])
    def system_status():
        """System status, configuration summary and feature flags"""
        status_data = {
            "service": SERVICE_NAME,
            "version": SERVICE_VERSION,
            "environment": app.config['ENVIRONMENT'],
            "timestamp": datetime.utcnow().isoformat() + "Z",
            "uptime": _get_application_uptime(),
            "configuration": _get_configuration_summary(app),
            "feature_flags": _get_feature_flags_status(app),
            "openapi_status": _get_openapi_status(app),
        }

        return jsonify(app.hal_formatter.builder.build_resource_response(
            status_data, "/api/status"
        )), 200


def _get_application_uptime() -> Dict[str, Any]:
    """Get application uptime information."""
    try:
        process = psutil.Process(os.getpid())
        create_time = process.create_time()
        return {
            "uptime_seconds": round(time.time() - create_time, 2),
            "started_at": datetime.utcfromtimestamp(create_time).isoformat() + "Z",
            "process_id": os.getpid()
        }
    except psutil.Error as e:
        return {"error": f"Failed to get uptime: {str(e)}"}


def _get_configuration_summary(app: OpenAPI) -> Dict[str, Any]:
    return {
        "mongodb_configured": bool(app.config.get('MONGODB_URI')),
        "redis_configured": bool(app.config.get('REDIS_URL')),
        "amqp_configured": bool(app.config.get('AMQP_URL')),
        "base_url": app.config.get('BASE_URL', 'not_set'),
        "debug_mode": app.config.get('DEBUG', False),
        "dashboard_cache_ttl": app.config.get('DASHBOARD_CACHE_TTL'),
    }


def _get_feature_flags_status(app: OpenAPI) -> Dict[str, Any]:
    return {
        "docs_enabled": app.config.get('DOCS_ENABLED', False),
        "otel_enabled": app.config.get('OTEL_ENABLED', True),
        "debug_mode": app.config.get('DEBUG', False)
    }


def _get_openapi_status(app: OpenAPI) -> Dict[str, Any]:
    docs_enabled = app.config.get('DOCS_ENABLED', False)
    return {
        "spec_endpoint": "/openapi/openapi.json",
        "docs_endpoint": "/openapi/swagger" if docs_enabled else None,
        "redoc_endpoint": "/openapi/redoc" if docs_enabled else None,
    }


if __name__ == '__main__':
    # Development server
    application = create_app()
    application.run(
        host='0.0.0.0',
        port=int(os.getenv('PORT', 5000)),
        debug=application.config['DEBUG']
    )
