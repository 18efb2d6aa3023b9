from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

USER_ID_PREFIX = "org.couchdb.user:"


class NameValidatorMixin(BaseModel):
    """Mixin class validating identifiers that end up inside request addresses.

    Addresses are composed by plain string concatenation, so a name must be
    non-empty and must not contain characters that change the URL structure.
    """

    @field_validator("name", "username", mode="before", check_fields=False)
    @classmethod
    def _address_safe(cls, value: str) -> str:
        if not isinstance(value, str) or not value.strip():
            raise ValueError("value must be non-empty")
        if any(char in value for char in "/?#"):
            raise ValueError("value must not contain '/', '?' or '#'")
        return value


class Credentials(NameValidatorMixin):
    username: str
    password: str = Field(repr=False)


class Principal(NameValidatorMixin):
    name: str
    password: str = Field(repr=False)
    roles: list[str] = Field(default_factory=list)

    @property
    def doc_id(self) -> str:
        return f"{USER_ID_PREFIX}{self.name}"

    @property
    def credentials(self) -> Credentials:
        return Credentials(username=self.name, password=self.password)

    def to_user_doc(self) -> dict[str, Any]:
        """Return the ``_users`` document registering this principal."""
        return {
            "name": self.name,
            "password": self.password,
            "roles": list(self.roles),
            "type": "user",
        }


class Item(BaseModel):
    """A document with a unique identifier and arbitrary extra fields."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    id: str = Field(alias="_id")

    @field_validator("id")
    @classmethod
    def _id_non_empty(cls, value: str) -> str:
        if not value or value.strip() == "":
            raise ValueError("_id must be non-empty")
        if value.startswith("_"):
            raise ValueError("_id must not start with '_'")
        if any(char in value for char in "/?#"):
            raise ValueError("_id must not contain '/', '?' or '#'")
        return value

    @property
    def fields(self) -> dict[str, Any]:
        return dict(self.model_extra or {})

    def to_doc(self) -> dict[str, Any]:
        return {"_id": self.id, **self.fields}


class PolicySection(BaseModel):
    """One capability class of an access policy."""

    roles: list[str] = Field(default_factory=list)
    names: list[str] = Field(default_factory=list)

    @property
    def empty(self) -> bool:
        return not self.roles and not self.names

    def admits(self, name: str | None, roles: list[str] | tuple[str, ...] = ()) -> bool:
        """Return True if the class lists the name directly or one of its roles."""
        if name is not None and name in self.names:
            return True
        return any(role in self.roles for role in roles)


class AccessPolicy(BaseModel):
    """The ``_security`` document attached to a database."""

    admins: PolicySection = Field(default_factory=PolicySection)
    members: PolicySection = Field(default_factory=PolicySection)

    @classmethod
    def for_member_role(cls, role: str) -> AccessPolicy:
        return cls(members=PolicySection(roles=[role]))

    def can_manage(self, name: str | None, roles: list[str] | tuple[str, ...] = ()) -> bool:
        return self.admins.admits(name, roles)

    def can_read_write(self, name: str | None, roles: list[str] | tuple[str, ...] = ()) -> bool:
        """Return True if a principal may read and write items.

        A database without members is public. Database admins are members too.
        """
        if self.members.empty:
            return True
        return self.members.admits(name, roles) or self.can_manage(name, roles)
