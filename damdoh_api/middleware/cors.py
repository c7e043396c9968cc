# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
CORS headers for the DamDoh web and mobile frontends.

Allowed origins come from FRONTEND_URL and CORS_ALLOWED_ORIGINS, whose
entries may contain ``*`` wildcards (``https://preview-*``). Local dev
servers are allowed outside production.
"""

from fnmatch import fnmatchcase
from flask import Flask, Response, request, make_response
from typing import List, Optional
import logging

logger = logging.getLogger(__name__)

LOCAL_ORIGINS = [
    'http://localhost:3000',
    'http://localhost:9002',
    'http://127.0.0.1:3000',
    'http://127.0.0.1:9002'
]

ALLOWED_METHODS = 'GET, POST, PUT, PATCH, DELETE, OPTIONS, HEAD'
ALLOWED_HEADERS = 'Accept, Accept-Language, Authorization, Content-Type, X-Requested-With, X-Session-ID, X-Request-ID'
EXPOSED_HEADERS = 'Content-Length, Content-Type, X-Request-ID, X-Trace-Id'


def default_allowed_origins(environment: str, frontend_url: Optional[str],
                            custom_origins: Optional[str]) -> List[str]:
    origins = list(LOCAL_ORIGINS) if environment in ('development', 'test') else []
    if frontend_url:
        origins.append(frontend_url.rstrip('/'))
    if custom_origins:
        origins += [entry.strip() for entry in custom_origins.split(',') if entry.strip()]
    return origins


class CORSMiddleware:
    """Answers preflight requests and decorates responses for allowed origins."""

    def __init__(self, app: Flask, allowed_origins: Optional[List[str]] = None,
                 allow_credentials: bool = True, max_age: int = 86400):
        if allowed_origins is None:
            allowed_origins = default_allowed_origins(
                app.config.get('ENVIRONMENT', 'development'),
                app.config.get('FRONTEND_URL'),
                app.config.get('CORS_ALLOWED_ORIGINS')
            )
        self.allowed_origins = allowed_origins
        self.allow_credentials = allow_credentials
        self.max_age = max_age

        app.before_request(self._preflight)
        app.after_request(self._decorate)

    def is_origin_allowed(self, origin: Optional[str]) -> bool:
        return bool(origin) and any(fnmatchcase(origin, pattern) for pattern in self.allowed_origins)

    def _apply_headers(self, response: Response, origin: str) -> Response:
        headers = response.headers
        headers['Access-Control-Allow-Origin'] = origin
        headers['Vary'] = 'Origin'
        headers['Access-Control-Allow-Methods'] = ALLOWED_METHODS
        headers['Access-Control-Allow-Headers'] = ALLOWED_HEADERS
        headers['Access-Control-Expose-Headers'] = EXPOSED_HEADERS
        headers['Access-Control-Max-Age'] = str(self.max_age)
        if self.allow_credentials:
            headers['Access-Control-Allow-Credentials'] = 'true'
        return response

    def _preflight(self) -> Optional[Response]:
        if request.method != 'OPTIONS':
            return None

        origin = request.headers.get('Origin')
        if not self.is_origin_allowed(origin):
            logger.warning("CORS preflight rejected", extra={"origin": origin, "path": request.path})
            return make_response('', 403)
        return self._apply_headers(make_response('', 200), origin)

    def _decorate(self, response: Response) -> Response:
        origin = request.headers.get('Origin')
        if self.is_origin_allowed(origin):
            self._apply_headers(response, origin)
        return response


def configure_cors(app: Flask, **kwargs) -> CORSMiddleware:
    return CORSMiddleware(app, **kwargs)
