# SPDX-License-Identifier: Apache-2.0

"""
Authentication service: RS256 JWTs and bcrypt password hashes.

Access tokens carry the user's stakeholder role and the permissions derived
from it, so handlers authorize without a database round trip. Refresh
tokens carry the identity only; permissions are recomputed on refresh.
"""

import os
import uuid
import jwt
import bcrypt
from datetime import datetime, timedelta, timezone
from typing import Optional, Dict, Any, List, Tuple
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from opentelemetry import trace
import logging

from ..models.entities import User

tracer = trace.get_tracer(__name__)
logger = logging.getLogger(__name__)

ALGORITHM = "RS256"
BCRYPT_ROUNDS = 12
REQUIRED_CLAIMS = ["sub", "exp", "jti", "type"]


class AuthenticationError(Exception):
    """Raised when a token cannot be issued."""
    pass


class TokenValidationError(Exception):
    """Raised when a token is invalid, expired or of the wrong type."""
    pass


def generate_key_pair() -> Tuple[str, str]:
    """New RSA-2048 key pair as (private PEM, public PEM)."""
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)

    private_pem = key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption()
    )
    public_pem = key.public_key().public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo
    )
    return private_pem.decode('utf-8'), public_pem.decode('utf-8')


class AuthService:
    """Issues and validates JWTs and hashes passwords."""

    def __init__(self, private_key: Optional[str] = None, public_key: Optional[str] = None,
                 access_token_expire_minutes: Optional[int] = None,
                 refresh_token_expire_days: Optional[int] = None):
        """
        Args:
            private_key: PEM signing key, defaults to JWT_PRIVATE_KEY
            public_key: PEM verification key, defaults to JWT_PUBLIC_KEY
            access_token_expire_minutes: Defaults to JWT_ACCESS_TOKEN_MINUTES or 15
            refresh_token_expire_days: Defaults to JWT_REFRESH_TOKEN_DAYS or 7
        """
        private_key = private_key or os.getenv("JWT_PRIVATE_KEY")
        public_key = public_key or os.getenv("JWT_PUBLIC_KEY")
        if not (private_key and public_key):
            # Tokens from a generated pair die with the process
            logger.warning("No JWT key pair configured, generating a development key pair")
            private_key, public_key = generate_key_pair()

        self.private_key = private_key
        self.public_key = public_key
        self.access_token_expire_minutes = access_token_expire_minutes or int(
            os.getenv("JWT_ACCESS_TOKEN_MINUTES", "15")
        )
        self.refresh_token_expire_days = refresh_token_expire_days or int(
            os.getenv("JWT_REFRESH_TOKEN_DAYS", "7")
        )

    # Passwords

    def hash_password(self, password: str) -> str:
        with tracer.start_as_current_span("auth.hash_password"):
            return bcrypt.hashpw(password.encode('utf-8'), bcrypt.gensalt(rounds=BCRYPT_ROUNDS)).decode('utf-8')

    def verify_password(self, password: str, hashed_password: str) -> bool:
        """False for a wrong password and for a malformed hash."""
        with tracer.start_as_current_span("auth.verify_password") as span:
            try:
                matches = bcrypt.checkpw(password.encode('utf-8'), hashed_password.encode('utf-8'))
            except ValueError as e:
                logger.error("Stored password hash is malformed", extra={"error": str(e)})
                matches = False
            span.set_attribute("auth.password_match", matches)
            return matches

    # Tokens

    def _issue(self, token_type: str, identity: Dict[str, Any], lifetime: timedelta,
               **claims) -> Tuple[str, datetime]:
        now = datetime.now(timezone.utc)
        expires_at = now + lifetime
        payload = {
            **identity,
            **claims,
            "iat": now,
            "exp": expires_at,
            "jti": uuid.uuid4().hex,
            "type": token_type,
        }
        try:
            return jwt.encode(payload, self.private_key, algorithm=ALGORITHM), expires_at
        except (jwt.PyJWTError, ValueError, TypeError) as e:
            logger.error("Token signing failed", extra={"user_id": identity.get("sub"), "error": str(e)})
            raise AuthenticationError(f"Failed to issue {token_type} token: {e}")

    def _access_lifetime(self) -> timedelta:
        return timedelta(minutes=self.access_token_expire_minutes)

    def generate_tokens(self, user: User, permissions: List[str]) -> Dict[str, Any]:
        """
        Issue an access and refresh token pair for a user.

        Returns:
            access_token, refresh_token, token_type and expires_in (seconds)
        """
        with tracer.start_as_current_span("auth.generate_tokens", attributes={
            "user.id": user.id, "user.role": user.primary_role
        }):
            identity = {
                "sub": user.id,
                "email": user.email,
                "name": user.display_name,
                "role": user.primary_role,
            }
            access_token, access_expires = self._issue(
                "access", identity, self._access_lifetime(), permissions=permissions
            )
            refresh_token, _ = self._issue(
                "refresh", identity, timedelta(days=self.refresh_token_expire_days)
            )

            logger.info("Tokens issued", extra={"user_id": user.id, "access_expires_at": access_expires.isoformat()})
            return {
                "access_token": access_token,
                "refresh_token": refresh_token,
                "token_type": "Bearer",
                "expires_in": self.access_token_expire_minutes * 60
            }

    def validate_token(self, token: str, token_type: str = "access") -> Dict[str, Any]:
        """
        Verify a token's signature, expiry and type.

        Raises:
            TokenValidationError: With "expired" in the message for expired tokens
        """
        with tracer.start_as_current_span("auth.validate_token", attributes={"auth.token_type": token_type}) as span:
            try:
                payload = jwt.decode(
                    token, self.public_key, algorithms=[ALGORITHM], options={"require": REQUIRED_CLAIMS}
                )
            except jwt.ExpiredSignatureError:
                span.set_attribute("auth.validation_result", "expired")
                raise TokenValidationError("Token has expired")
            except jwt.InvalidTokenError as e:
                span.set_attribute("auth.validation_result", "invalid")
                logger.warning("Rejected invalid token", extra={"error": str(e)})
                raise TokenValidationError(f"Invalid token: {e}")

            if payload["type"] != token_type:
                span.set_attribute("auth.validation_result", "wrong_type")
                raise TokenValidationError(f"Invalid token type. Expected {token_type}")

            span.set_attributes({"auth.validation_result": "success", "user.id": payload["sub"]})
            return payload

    def refresh_access_token(self, refresh_token: str, permissions: List[str]) -> Dict[str, Any]:
        """
        Issue a new access token from a refresh token.

        Args:
            refresh_token: A valid refresh token
            permissions: Permissions for the user's current role

        Raises:
            TokenValidationError: If the refresh token is invalid
        """
        with tracer.start_as_current_span("auth.refresh_access_token"):
            claims = self.validate_token(refresh_token, "refresh")
            identity = {key: claims.get(key) for key in ("sub", "email", "name", "role")}

            access_token, expires_at = self._issue(
                "access", identity, self._access_lifetime(), permissions=permissions
            )

            logger.info("Access token refreshed", extra={"user_id": claims["sub"], "expires_at": expires_at.isoformat()})
            return {
                "access_token": access_token,
                "token_type": "Bearer",
                "expires_in": self.access_token_expire_minutes * 60
            }

    def extract_token_id(self, token: str) -> str:
        """
        Read a token's jti without verifying it, for blocklist lookups.

        Raises:
            TokenValidationError: If the token cannot be decoded or has no jti
        """
        try:
            claims = jwt.decode(token, options={"verify_signature": False})
        except jwt.InvalidTokenError as e:
            raise TokenValidationError(f"Invalid token format: {e}")

        if not claims.get("jti"):
            raise TokenValidationError("Token has no identifier")
        return claims["jti"]

    @staticmethod
    def remaining_lifetime(payload: Dict[str, Any]) -> int:
        """Seconds until the token expires, 0 once it has."""
        exp = payload.get("exp")
        if not exp:
            return 0
        return max(0, int(exp) - int(datetime.now(timezone.utc).timestamp()))
