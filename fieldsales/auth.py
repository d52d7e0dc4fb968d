from dataclasses import dataclass
from enum import Enum

from fastapi import Depends, HTTPException, Request, status


class Role(str, Enum):
    SALESMAN = "salesman"
    SHOP_OWNER = "shop_owner"
    REP = "rep"
    STOREKEEPER = "storekeeper"
    ADMIN = "admin"


ROLE_ALIASES = {
    "representative": Role.REP,
    "keeper": Role.STOREKEEPER,
}

DASHBOARD_PATHS = {
    Role.SALESMAN: "/api/salesman/home",
    Role.SHOP_OWNER: "/api/salesman/home",
    Role.REP: "/api/rep/home",
    Role.STOREKEEPER: "/api/storekeeper/home",
    Role.ADMIN: "/admin/dashboard",
}


class UnknownRoleError(ValueError):
    def __init__(self, raw_role: str | None, hint: str | None = None) -> None:
        self.raw_role = raw_role
        if raw_role:
            message = f"Unknown role: {raw_role}"
        else:
            message = "User role not found"
        if hint:
            message = f"{message}. {hint}"
        super().__init__(message)


@dataclass
class Principal:
    id: str
    email: str
    name: str
    role: Role
    shop_id: int | None
    access_token: str | None = None
    is_demo: bool = False


def resolve_role(raw_role: str | None) -> Role:
    normalized = (raw_role or "").strip().lower()
    if not normalized:
        raise UnknownRoleError(None)
    if normalized in ROLE_ALIASES:
        return ROLE_ALIASES[normalized]
    try:
        return Role(normalized)
    except ValueError as exc:
        raise UnknownRoleError(raw_role) from exc


def dashboard_for_role(role: Role) -> str:
    return DASHBOARD_PATHS[role]


def get_current_principal(request: Request) -> Principal:
    principal = getattr(request.state, "principal", None)
    if not principal:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED)
    return principal


def require_role(*allowed: Role):
    def _dep(principal: Principal = Depends(get_current_principal)) -> Principal:
        if principal.role not in allowed:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN)
        return principal

    return _dep


def assert_shop_scope(principal: Principal, target_shop_id: int) -> None:
    if principal.role not in {Role.SALESMAN, Role.SHOP_OWNER}:
        return
    if principal.shop_id is not None and principal.shop_id != target_shop_id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN)
