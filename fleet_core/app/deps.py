import secrets
from typing import Optional

from fastapi import Depends, Header, HTTPException, Request, status

from .config import Settings
from .services.reconciliation import ReconciliationEngine


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_engine(request: Request) -> ReconciliationEngine:
    return request.app.state.engine


def require_admin(
    x_admin_passphrase: Optional[str] = Header(None),
    settings: Settings = Depends(get_settings),
):
    """Static shared passphrase for admin-only mutations; not a security boundary"""
    if not x_admin_passphrase or not secrets.compare_digest(
        x_admin_passphrase.encode("utf-8"), settings.admin_passphrase.encode("utf-8")
    ):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin passphrase required",
        )
    return True
