from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Protocol, Sequence


class BackendError(Exception):
    """Raised when the backend rejects a request."""

    def __init__(self, message: str, *, code: str | None = None, status: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.status = status


class BackendUnavailableError(BackendError):
    """Network failure, timeout or aborted request. Safe to retry."""


class InvalidCredentialsError(BackendError):
    pass


class RecordNotFoundError(BackendError):
    pass


FILTER_OPERATORS = {'eq', 'neq', 'in', 'gt', 'gte', 'lt', 'lte', 'ilike', 'is'}


@dataclass(frozen=True)
class Filter:
    column: str
    op: str
    value: Any

    def __post_init__(self) -> None:
        if self.op not in FILTER_OPERATORS:
            raise ValueError(f'Unsupported filter operator: {self.op}')


def eq(column: str, value: Any) -> Filter:
    return Filter(column, 'eq', value)


def neq(column: str, value: Any) -> Filter:
    return Filter(column, 'neq', value)


def in_(column: str, values: Sequence[Any]) -> Filter:
    return Filter(column, 'in', tuple(values))


def gte(column: str, value: Any) -> Filter:
    return Filter(column, 'gte', value)


def lte(column: str, value: Any) -> Filter:
    return Filter(column, 'lte', value)


def ilike(column: str, pattern: str) -> Filter:
    return Filter(column, 'ilike', pattern)


@dataclass(frozen=True)
class Select:
    table: str
    columns: str = '*'
    filters: tuple[Filter, ...] = ()
    any_of: tuple[Filter, ...] = ()
    order_by: tuple[tuple[str, bool], ...] = ()
    limit_to: int | None = None

    def where(self, *filters: Filter) -> Select:
        return replace(self, filters=self.filters + tuple(filters))

    def where_any(self, *filters: Filter) -> Select:
        return replace(self, any_of=self.any_of + tuple(filters))

    def order(self, column: str, *, desc: bool = False) -> Select:
        return replace(self, order_by=self.order_by + ((column, desc),))

    def limit(self, count: int) -> Select:
        return replace(self, limit_to=count)


@dataclass(frozen=True)
class AuthUser:
    id: str
    email: str | None


@dataclass(frozen=True)
class AuthSession:
    access_token: str
    user: AuthUser
    refresh_token: str | None = None
    expires_in: int | None = None
    raw: dict = field(default_factory=dict, compare=False, repr=False)


class BackendClient(Protocol):
    def with_access_token(self, access_token: str | None) -> BackendClient: ...

    def select(self, query: Select) -> list[dict]: ...

    def count(self, query: Select) -> int: ...

    def insert(self, table: str, rows: list[dict]) -> list[dict]: ...

    def update(self, table: str, values: dict, filters: Sequence[Filter]) -> list[dict]: ...

    def upsert(self, table: str, row: dict, *, on_conflict: str) -> list[dict]: ...

    def delete(self, table: str, filters: Sequence[Filter]) -> None: ...

    def rpc(self, name: str, params: dict) -> Any: ...

    def sign_in(self, *, email: str, password: str) -> AuthSession: ...

    def sign_out(self, access_token: str) -> None: ...

    def get_user(self, access_token: str) -> AuthUser | None: ...


def select_one(backend: BackendClient, query: Select) -> dict:
    rows = backend.select(query.limit(1))
    if not rows:
        raise RecordNotFoundError(f'No {query.table} row matched', code='PGRST116', status=406)
    return rows[0]


def select_one_or_none(backend: BackendClient, query: Select) -> dict | None:
    rows = backend.select(query.limit(1))
    return rows[0] if rows else None
