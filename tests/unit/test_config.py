import json

import pytest

from couchauth.config import ScenarioConfig, TeardownOrder
from couchauth.exceptions import ConfigError


def test_defaults_match_scenario():
    config = ScenarioConfig()
    assert config.host == "http://localhost:5984"
    assert config.database == "auth-test-database"
    assert config.admin.name == "anna"
    assert config.member.name == "fruits"
    assert config.outsider.name == "vegetables"
    assert config.role == "testrole"
    assert [item.id for item in config.items] == ["thenewyorker", "slate", "motherjones"]
    assert config.teardown_order is TeardownOrder.ADMIN_FIRST


def test_addresses_are_plain_concatenation():
    config = ScenarioConfig(host="http://couch.test:5984/")
    assert config.admin_url == "http://couch.test:5984/_config/admins/anna"
    assert config.database_url == "http://couch.test:5984/auth-test-database"
    assert config.bulk_docs_url == "http://couch.test:5984/auth-test-database/_bulk_docs"
    assert config.security_url == "http://couch.test:5984/auth-test-database/_security"
    assert config.item_url("slate") == "http://couch.test:5984/auth-test-database/slate"
    assert (
        config.principal_url(config.member)
        == "http://couch.test:5984/_users/org.couchdb.user:fruits"
    )


def test_admin_config_path_is_normalized():
    config = ScenarioConfig(admin_config_path="_node/_local/_config/admins/")
    assert config.admin_url == "http://localhost:5984/_node/_local/_config/admins/anna"


def test_from_env_overrides_defaults():
    config = ScenarioConfig.from_env(
        {
            "COUCHDB_URL": "https://db.example.com",
            "COUCHDB_DATABASE": "probe-db",
            "COUCHDB_ADMIN_USER": "root",
            "COUCHDB_ADMIN_PASSWORD": "hunter2",
            "COUCHAUTH_TEARDOWN_ORDER": "admin-last",
            "COUCHDB_TIMEOUT": "2.5",
        }
    )
    assert config.host == "https://db.example.com"
    assert config.database == "probe-db"
    assert config.admin.name == "root"
    assert config.admin.password == "hunter2"
    assert config.teardown_order is TeardownOrder.ADMIN_LAST
    assert config.timeout == 2.5


def test_from_env_keeps_file_values(tmp_path):
    path = tmp_path / "scenario.json"
    path.write_text(json.dumps({"database": "from-file", "role": "editors"}))
    base = ScenarioConfig.from_file(path)
    config = ScenarioConfig.from_env({"COUCHDB_URL": "http://other:5984"}, base=base)
    assert config.database == "from-file"
    assert config.role == "editors"
    assert config.host == "http://other:5984"


def test_from_file_missing(tmp_path):
    with pytest.raises(ConfigError, match="not found"):
        ScenarioConfig.from_file(tmp_path / "missing.json")


def test_from_file_invalid_json(tmp_path):
    path = tmp_path / "broken.json"
    path.write_text("{not json")
    with pytest.raises(ConfigError, match="invalid JSON"):
        ScenarioConfig.from_file(path)


@pytest.mark.parametrize(
    "overrides",
    [
        {"host": "localhost:5984"},
        {"database": "_users"},
        {"items": []},
        {"items": [{"_id": "slate"}, {"_id": "slate"}]},
        {"outsider": {"name": "fruits", "password": "x"}},
        {"member": {"name": "fruits", "password": "x", "roles": ["testrole"]}},
        {"edit": {"_rev": "1-abc"}},
        {"timeout": 0},
    ],
)
def test_invalid_configuration_is_rejected(overrides):
    with pytest.raises(ConfigError):
        ScenarioConfig.load(overrides)


def test_with_overrides_ignores_none():
    config = ScenarioConfig().with_overrides(host=None, teardown_order="admin-last")
    assert config.host == "http://localhost:5984"
    assert config.teardown_order is TeardownOrder.ADMIN_LAST
