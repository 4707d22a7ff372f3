"""
Flask decorators for caller authentication.

The console trusts the identity provider to authenticate callers: each API
request carries an OAuth 2.0 Bearer token (RFC 6750) issued by Keycloak.
The token is validated here and turned into a ``Principal`` (id, console
role, organization) that the role engine consumes as already verified.

Security:
- RSA-SHA256 signature verification via JWKS (RFC 7517)
- Expiration, not-before and issuer validation (RFC 7519)
- JWKS caching (1-hour refresh)
"""

import logging
from functools import wraps
from typing import Optional

import jwt
from jwt import PyJWKClient
from jwt.exceptions import (
    DecodeError,
    ExpiredSignatureError,
    InvalidIssuerError,
    InvalidSignatureError,
    InvalidTokenError,
    PyJWKClientError,
)
from flask import current_app, g, jsonify, request

from admin_console.core.models import Principal
from admin_console.core.roles import Role

logger = logging.getLogger(__name__)

# Global JWKS client (cached singleton)
_jwks_client: Optional[PyJWKClient] = None


class TokenValidationError(Exception):
    """Exception raised when JWT token validation fails."""
    pass


def get_jwks_client() -> PyJWKClient:
    """
    Get cached JWKS client (singleton pattern).

    Keys are fetched from the realm's certs endpoint and selected by the
    ``kid`` of the JWT header.
    """
    global _jwks_client

    if _jwks_client is None:
        cfg = current_app.config["APP_CONFIG"]
        jwks_url = f"{cfg.keycloak_server_url}/protocol/openid-connect/certs"
        logger.info("Initializing JWKS client for: %s", jwks_url)
        _jwks_client = PyJWKClient(
            jwks_url,
            cache_keys=True,
            max_cached_keys=16,
            lifespan=3600,
            headers={"User-Agent": "Tenant-Admin-Console/1.0"},
        )

    return _jwks_client


def validate_jwt_token(token: str) -> dict:
    """
    Validate a JWT Bearer token: signature, exp, nbf and issuer.

    Raises:
        TokenValidationError: If any validation fails
    """
    cfg = current_app.config["APP_CONFIG"]

    try:
        signing_key = get_jwks_client().get_signing_key_from_jwt(token)
        claims = jwt.decode(
            token,
            signing_key.key,
            algorithms=["RS256"],
            issuer=cfg.keycloak_issuer,
            options={
                "verify_signature": True,
                "verify_exp": True,
                "verify_nbf": True,
                "verify_iss": True,
                "verify_aud": False,
                "require": ["exp", "iat", "sub"],
            },
            leeway=5,
        )
    except ExpiredSignatureError:
        raise TokenValidationError("Token expired (exp claim)")
    except InvalidIssuerError as e:
        raise TokenValidationError(f"Invalid issuer (token from wrong realm): {e}")
    except InvalidSignatureError:
        raise TokenValidationError("Invalid signature (token tampered or wrong key)")
    except DecodeError as e:
        raise TokenValidationError(f"Token decode error (malformed JWT): {e}")
    except (InvalidTokenError, PyJWKClientError) as e:
        raise TokenValidationError(f"Token validation failed: {e}")

    logger.debug("JWT validated for subject: %s", claims.get("sub"))
    return claims


def principal_from_claims(claims: dict) -> Principal:
    """Build the caller principal from validated token claims.

    Raises:
        TokenValidationError: If the token carries no usable console role
    """
    cfg = current_app.config["APP_CONFIG"]
    raw_role = claims.get(cfg.principal_role_claim)
    if isinstance(raw_role, list):
        roles = []
        for value in raw_role:
            try:
                roles.append(Role.parse(value))
            except ValueError:
                continue
        # Several console roles on one token: act with the most privileged
        role = max(roles, key=lambda r: r.rank) if roles else None
    else:
        try:
            role = Role.parse(raw_role) if raw_role else None
        except ValueError:
            role = None
    if role is None:
        raise TokenValidationError(f"Token has no valid '{cfg.principal_role_claim}' claim")

    return Principal(
        id=str(claims["sub"]),
        role=role,
        organization_id=claims.get(cfg.principal_org_claim) or None,
    )


def _unauthorized(message: str):
    response = jsonify({"error": "Unauthorized", "message": message})
    response.status_code = 401
    response.headers["WWW-Authenticate"] = 'Bearer realm="admin-console"'
    return response


def require_principal(fn):
    """Require a valid Bearer token and expose the caller as ``g.principal``."""
    @wraps(fn)
    def wrapper(*args, **kwargs):
        auth_header = request.headers.get("Authorization", "")
        if not auth_header:
            logger.warning("API request missing Authorization header")
            return _unauthorized("Authorization header required. Use 'Authorization: Bearer <token>'")

        if not auth_header.startswith("Bearer "):
            logger.warning("API request with invalid Authorization format")
            return _unauthorized("Invalid Authorization header format. Expected 'Bearer <token>'")

        token = auth_header[7:].strip()
        if not token:
            return _unauthorized("Bearer token is empty")

        try:
            g.principal = principal_from_claims(validate_jwt_token(token))
        except TokenValidationError as e:
            logger.warning("JWT validation failed: %s", e)
            return _unauthorized(str(e))

        return fn(*args, **kwargs)
    return wrapper


def current_principal() -> Optional[Principal]:
    """Caller of the current request; only set behind ``require_principal``."""
    return g.get("principal")
