from __future__ import annotations

from dataclasses import dataclass

from fastapi import HTTPException, status

from app.core.config import settings

ADMIN_ROLE = "admin"


@dataclass(frozen=True)
class Principal:
    """The already-authenticated caller, as handed over by the gateway."""

    user_id: str
    tier_id: str
    is_admin: bool = False

    def can_act_for(self, user_id: str) -> bool:
        return self.is_admin or user_id == self.user_id


def _auth_error(code: str, message: str, status_code: int) -> HTTPException:
    return HTTPException(status_code=status_code, detail={"error": code, "details": message})


def check_api_key(x_api_key: str | None) -> None:
    if not settings.api_key:
        return
    if x_api_key != settings.api_key:
        raise _auth_error("UNAUTHORIZED", "Please provide a valid API key.", status.HTTP_401_UNAUTHORIZED)


def resolve_principal(
    x_user_id: str | None,
    x_user_tier: str | None,
    x_user_role: str | None,
    x_api_key: str | None = None,
) -> Principal:
    check_api_key(x_api_key)
    user_id = (x_user_id or "").strip()
    if not user_id:
        raise _auth_error("UNAUTHORIZED", "Authentication required.", status.HTTP_401_UNAUTHORIZED)
    roles = {item.strip().lower() for item in (x_user_role or "").split(",") if item.strip()}
    return Principal(
        user_id=user_id,
        tier_id=(x_user_tier or "").strip(),
        is_admin=ADMIN_ROLE in roles,
    )


def ensure_can_act_for(principal: Principal, user_id: str) -> None:
    if not principal.can_act_for(user_id):
        raise _auth_error(
            "FORBIDDEN",
            "You can only access your own CV data.",
            status.HTTP_403_FORBIDDEN,
        )


def require_admin(principal: Principal) -> None:
    if not principal.is_admin:
        raise _auth_error("FORBIDDEN", "Admin access required.", status.HTTP_403_FORBIDDEN)
