import pytest

from couchauth.models import AccessPolicy, Credentials, Item, PolicySection, Principal


def test_principal_rejects_empty_name():
    with pytest.raises(ValueError):
        Principal(name=" ", password="secret")


def test_principal_rejects_slash_in_name():
    with pytest.raises(ValueError):
        Principal(name="fruits/../admin", password="secret")


def test_principal_user_doc():
    principal = Principal(name="fruits", password="bananas")
    assert principal.doc_id == "org.couchdb.user:fruits"
    assert principal.to_user_doc() == {
        "name": "fruits",
        "password": "bananas",
        "roles": [],
        "type": "user",
    }


def test_credentials_hide_password_in_repr():
    credentials = Principal(name="anna", password="secret").credentials
    assert credentials == Credentials(username="anna", password="secret")
    assert "secret" not in repr(credentials)


def test_item_keeps_extra_fields():
    item = Item(**{"_id": "slate", "title": "Slate", "url": "http://www.slate.com/"})
    assert item.id == "slate"
    assert item.fields == {"title": "Slate", "url": "http://www.slate.com/"}
    assert item.to_doc() == {"_id": "slate", "title": "Slate", "url": "http://www.slate.com/"}


def test_item_rejects_reserved_id():
    with pytest.raises(ValueError):
        Item(**{"_id": "_design"})


def test_policy_section_admits_by_name_or_role():
    section = PolicySection(roles=["testrole"], names=["anna"])
    assert section.admits("anna")
    assert section.admits("fruits", ["testrole"])
    assert not section.admits("vegetables", [])
    assert not section.admits(None, ["otherrole"])


def test_empty_policy_is_public():
    policy = AccessPolicy()
    assert policy.can_read_write(None)
    assert policy.can_read_write("vegetables")


def test_member_role_policy_gates_access():
    policy = AccessPolicy.for_member_role("testrole")
    assert policy.model_dump() == {
        "admins": {"roles": [], "names": []},
        "members": {"roles": ["testrole"], "names": []},
    }
    assert policy.can_read_write("fruits", ["testrole"])
    assert not policy.can_read_write("vegetables", [])
    assert not policy.can_read_write(None)


def test_database_admins_are_members():
    policy = AccessPolicy(
        admins=PolicySection(names=["owner"]), members=PolicySection(roles=["testrole"])
    )
    assert policy.can_manage("owner")
    assert policy.can_read_write("owner")
