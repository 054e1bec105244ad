"""Admin API guard: HTTP Basic against ADMIN_WEB_PASSWORD.

ADMIN_WEB_USERNAME optionally pins the user name; when empty any name is
accepted. The admin API is closed (503) until a password is configured.
"""

from __future__ import annotations

import logging
import secrets

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPBasic, HTTPBasicCredentials

from vatwatch.config import settings

logger = logging.getLogger(__name__)

REALM = "VatWatch admin"

admin_basic = HTTPBasic(realm=REALM)


def _same(given: str, expected: str) -> bool:
    return secrets.compare_digest(given.encode("utf-8"), expected.encode("utf-8"))


async def verify_admin(
    request: Request,
    credentials: HTTPBasicCredentials = Depends(admin_basic),  # noqa: B008
) -> str:
    """Return the admin user name; 503 when unconfigured, 401 on bad credentials."""
    password = settings.security.admin_web_password
    if not password:
        logger.warning("Admin API called but ADMIN_WEB_PASSWORD is empty")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Admin API disabled: ADMIN_WEB_PASSWORD is not set",
        )

    username = settings.security.admin_web_username
    # evaluate both so timing does not reveal which one failed
    user_ok = _same(credentials.username, username) if username else True
    password_ok = _same(credentials.password, password)
    if not (user_ok and password_ok):
        logger.warning("Rejected admin credentials for %s %s", request.method, request.url.path)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Admin credentials required",
            headers={"WWW-Authenticate": f'Basic realm="{REALM}"'},
        )

    return credentials.username
