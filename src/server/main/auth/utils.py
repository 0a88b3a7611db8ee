import base64
import logging
from typing import Any, Dict, List, Optional, Tuple

import requests
from cryptography.hazmat.backends import default_backend
from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from jose import jwt
from jose.exceptions import JOSEError

from main.config import (
    ENVIRONMENT, SELF_HOST_AUTH_SECRET,
    AES_SECRET_KEY, AES_IV, AUTH0_SCOPE,
    AUTH0_DOMAIN, AUTH0_AUDIENCE, ALGORITHMS,
)

logger = logging.getLogger(__name__)

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="token")

SELF_HOST_USER_ID = "self-hosted-user"
# Granted to the single self-hosted user when AUTH0_SCOPE is not configured.
SELF_HOST_PERMISSIONS = [
    "read:chat", "write:chat",
    "read:agents", "write:agents",
    "read:memory", "write:memory",
    "read:config", "write:config",
]
REQUIRED_KEY_FIELDS = ("kty", "n", "e")
JWKS_TIMEOUT_SECONDS = 10

_jwks_cache: Optional[Dict[str, Any]] = None

def get_jwks() -> Optional[Dict[str, Any]]:
    """
    Auth0 signing keys, fetched on first use and cached for the life of the process.
    A failed fetch is not cached, so the next request tries again.
    """
    global _jwks_cache
    if _jwks_cache is not None:
        return _jwks_cache
    if not AUTH0_DOMAIN:
        logger.warning("AUTH0_DOMAIN not set. Only self-host tokens can be accepted.")
        return None

    jwks_url = f"https://{AUTH0_DOMAIN}/.well-known/jwks.json"
    try:
        response = requests.get(jwks_url, timeout=JWKS_TIMEOUT_SECONDS)
        response.raise_for_status()
        _jwks_cache = response.json()
    except requests.exceptions.RequestException as e:
        logger.error(f"Could not fetch JWKS from {jwks_url}: {e}")
        return None
    logger.info(f"Loaded {len(_jwks_cache.get('keys', []))} signing keys from {jwks_url}")
    return _jwks_cache

def find_signing_key(jwks: Dict[str, Any], kid: str) -> Optional[Dict[str, str]]:
    """The RSA key with this kid, reduced to the fields jose needs. None when absent or incomplete."""
    for key in jwks.get("keys", []):
        if not isinstance(key, dict) or key.get("kid") != kid:
            continue
        if all(field in key for field in REQUIRED_KEY_FIELDS):
            return {field: key[field] for field in ("kty", "kid", "use", "n", "e") if field in key}
    return None

def _unauthorized(detail: str = "Could not validate credentials") -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )

class AuthHelper:
    def _self_host_claims(self, token: str) -> Dict[str, Any]:
        if not SELF_HOST_AUTH_SECRET:
            logger.critical("selfhost mode is active but SELF_HOST_AUTH_SECRET is not set.")
            raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Self-host auth secret not configured.")
        if token != SELF_HOST_AUTH_SECRET:
            raise _unauthorized("Invalid self-host token")
        permissions = AUTH0_SCOPE.split() if AUTH0_SCOPE else list(SELF_HOST_PERMISSIONS)
        return {"sub": SELF_HOST_USER_ID, "permissions": permissions}

    def _auth0_claims(self, token: str) -> Dict[str, Any]:
        jwks = get_jwks()
        if not jwks:
            raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Auth service config error (JWKS).")

        try:
            kid = jwt.get_unverified_header(token).get("kid")
            signing_key = find_signing_key(jwks, kid) if kid else None
            if not signing_key:
                raise _unauthorized()
            return jwt.decode(
                token, signing_key, algorithms=ALGORITHMS,
                audience=AUTH0_AUDIENCE, issuer=f"https://{AUTH0_DOMAIN}/",
            )
        except JOSEError as e:
            # JWTError and ExpiredSignatureError are both JOSEError subclasses
            logger.warning(f"Rejected token: {e}")
            raise _unauthorized()

    async def get_current_user_id_and_permissions(self, token: str = Depends(oauth2_scheme)) -> Tuple[str, List[str]]:
        if ENVIRONMENT == "selfhost":
            claims = self._self_host_claims(token)
        else:
            claims = self._auth0_claims(token)

        user_id = claims.get("sub")
        if not user_id:
            raise _unauthorized("User ID (sub) not in token")
        return user_id, claims.get("permissions", [])

class PermissionChecker:
    """Route dependency that resolves the caller's user id once every required permission is granted."""

    def __init__(self, required_permissions: List[str]):
        self.required_permissions = set(required_permissions)

    def missing(self, granted: List[str]) -> List[str]:
        return sorted(self.required_permissions - set(granted))

    async def __call__(self, token: str = Depends(oauth2_scheme)) -> str:
        from main.dependencies import auth_helper

        user_id, granted = await auth_helper.get_current_user_id_and_permissions(token=token)
        missing = self.missing(granted)
        if missing:
            logger.info(f"User {user_id} denied, missing {missing}")
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=f"Missing permissions: {', '.join(missing)}")
        return user_id

# --- Field encryption (AES-256-CBC, PKCS7, base64) ---

def _cipher() -> Cipher:
    if not AES_SECRET_KEY or not AES_IV:
        raise ValueError("AES encryption keys are not configured.")
    return Cipher(algorithms.AES(AES_SECRET_KEY), modes.CBC(AES_IV), backend=default_backend())

def aes_encrypt(data: str) -> str:
    encryptor = _cipher().encryptor()
    padder = padding.PKCS7(algorithms.AES.block_size).padder()
    padded = padder.update(data.encode()) + padder.finalize()
    return base64.b64encode(encryptor.update(padded) + encryptor.finalize()).decode()

def aes_decrypt(encrypted_data: str) -> str:
    decryptor = _cipher().decryptor()
    decrypted = decryptor.update(base64.b64decode(encrypted_data)) + decryptor.finalize()
    unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
    return (unpadder.update(decrypted) + unpadder.finalize()).decode()
