"""Scenario configuration.

Values come from built-in defaults, an optional JSON file and environment
variables, in increasing order of precedence. Request addresses are composed
here by plain string concatenation so that the address carried by a server
error can be compared verbatim with the address a step issued.
"""

from __future__ import annotations

import json
import os
from collections.abc import Mapping
from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from .exceptions import ConfigError
from .models import Item, Principal

DEFAULT_HOST = "http://localhost:5984"
DEFAULT_DATABASE = "auth-test-database"
DEFAULT_ROLE = "testrole"
DEFAULT_ADMIN_CONFIG_PATH = "/_config/admins"

DEFAULT_ITEMS: tuple[dict[str, str], ...] = (
    {"_id": "thenewyorker", "title": "The New Yorker", "url": "http://www.newyorker.com/"},
    {"_id": "slate", "title": "Slate", "url": "http://www.slate.com/"},
    {"_id": "motherjones", "title": "Mother Jones", "url": "http://www.motherjones.com/"},
)

ENV_VARS = {
    "COUCHDB_URL": "host",
    "COUCHDB_DATABASE": "database",
    "COUCHAUTH_TEARDOWN_ORDER": "teardown_order",
    "COUCHDB_TIMEOUT": "timeout",
}


class TeardownOrder(str, Enum):
    """When the admin account is removed relative to the other teardown calls."""

    ADMIN_FIRST = "admin-first"
    ADMIN_LAST = "admin-last"


def _default_admin() -> Principal:
    return Principal(name="anna", password="secret")


def _default_member() -> Principal:
    return Principal(name="fruits", password="bananas")


def _default_outsider() -> Principal:
    return Principal(name="vegetables", password="carrots")


def _default_items() -> list[Item]:
    return [Item(**doc) for doc in DEFAULT_ITEMS]


class ScenarioConfig(BaseModel):
    host: str = DEFAULT_HOST
    database: str = DEFAULT_DATABASE
    admin: Principal = Field(default_factory=_default_admin)
    member: Principal = Field(default_factory=_default_member)
    outsider: Principal = Field(default_factory=_default_outsider)
    role: str = DEFAULT_ROLE
    items: list[Item] = Field(default_factory=_default_items)
    edit: dict[str, Any] = Field(default_factory=lambda: {"twitter": "@NewYorker"})
    admin_config_path: str = DEFAULT_ADMIN_CONFIG_PATH
    teardown_order: TeardownOrder = TeardownOrder.ADMIN_FIRST
    timeout: float = Field(default=30.0, gt=0)
    max_workers: int = Field(default=4, ge=1)
    check_revocation: bool = False

    @field_validator("host")
    @classmethod
    def _strip_host(cls, value: str) -> str:
        value = value.strip().rstrip("/")
        if not value.startswith(("http://", "https://")):
            raise ValueError("host must be an http(s) URL")
        return value

    @field_validator("database")
    @classmethod
    def _database_name(cls, value: str) -> str:
        if not value or value.startswith("_") or any(c in value for c in "/?#"):
            raise ValueError("database must be a non-empty name without '/', '?', '#'")
        return value

    @field_validator("admin_config_path")
    @classmethod
    def _config_path(cls, value: str) -> str:
        return "/" + value.strip("/")

    @field_validator("role")
    @classmethod
    def _role_non_empty(cls, value: str) -> str:
        if not value or value.strip() == "":
            raise ValueError("role must be non-empty")
        return value

    @model_validator(mode="after")
    def _check_scenario(self) -> ScenarioConfig:
        if not self.items:
            raise ValueError("at least one item is required")
        ids = [item.id for item in self.items]
        if len(ids) != len(set(ids)):
            raise ValueError("item ids must be unique")
        names = [self.admin.name, self.member.name, self.outsider.name]
        if len(names) != len(set(names)):
            raise ValueError("admin, member and outsider must have distinct names")
        if self.member.roles or self.outsider.roles:
            raise ValueError("regular principals are created with empty role sets")
        if any(key.startswith("_") for key in self.edit):
            raise ValueError("edit fields must not start with '_'")
        return self

    @classmethod
    def from_file(cls, path: Path | str) -> ScenarioConfig:
        """Load configuration from a JSON file, applying defaults for missing keys."""
        path = Path(path)
        if not path.is_file():
            raise ConfigError(f"config file not found: {path}")
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            raise ConfigError(f"invalid JSON in {path}: {exc}") from exc
        if not isinstance(data, dict):
            raise ConfigError(f"config file must contain a JSON object: {path}")
        return cls.load(data)

    @classmethod
    def from_env(
        cls, environ: Mapping[str, str] | None = None, base: ScenarioConfig | None = None
    ) -> ScenarioConfig:
        """Overlay environment variables on ``base`` (or on the defaults)."""
        environ = os.environ if environ is None else environ
        data = base.model_dump(by_alias=True) if base is not None else {}
        for env_name, field_name in ENV_VARS.items():
            value = environ.get(env_name)
            if value:
                data[field_name] = value
        admin_user = environ.get("COUCHDB_ADMIN_USER")
        admin_password = environ.get("COUCHDB_ADMIN_PASSWORD")
        if admin_user or admin_password:
            admin = dict(data.get("admin") or _default_admin().model_dump())
            if admin_user:
                admin["name"] = admin_user
            if admin_password:
                admin["password"] = admin_password
            data["admin"] = admin
        return cls.load(data)

    @classmethod
    def load(cls, data: Mapping[str, Any]) -> ScenarioConfig:
        try:
            return cls.model_validate(dict(data))
        except ValidationError as exc:
            raise ConfigError(f"invalid scenario configuration: {exc}") from exc

    def with_overrides(self, **overrides: Any) -> ScenarioConfig:
        """Return a validated copy with the non-None overrides applied."""
        data = self.model_dump(by_alias=True)
        data.update({key: value for key, value in overrides.items() if value is not None})
        return self.load(data)

    @property
    def principals(self) -> tuple[Principal, Principal]:
        """The regular principals, in creation order."""
        return (self.member, self.outsider)

    @property
    def probe_item(self) -> Item:
        return self.items[0]

    @property
    def admin_url(self) -> str:
        return f"{self.host}{self.admin_config_path}/{self.admin.name}"

    @property
    def database_url(self) -> str:
        return f"{self.host}/{self.database}"

    @property
    def bulk_docs_url(self) -> str:
        return f"{self.database_url}/_bulk_docs"

    @property
    def security_url(self) -> str:
        return f"{self.database_url}/_security"

    def item_url(self, item_id: str) -> str:
        return f"{self.database_url}/{item_id}"

    def principal_url(self, principal: Principal) -> str:
        return f"{self.host}/_users/{principal.doc_id}"
