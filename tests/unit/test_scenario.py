from __future__ import annotations

from couchauth.client import CouchClient
from couchauth.config import TeardownOrder
from couchauth.exceptions import AssertionMismatch, BulkItemError, ConflictError, SetupFailed
from couchauth.runner import ScenarioRunner, StepStatus
from couchauth.scenario import ScenarioState, build_plan, run_scenario, sweep
from shared.fake_couchdb import FakeDatabase


def _steps(result, status=None):
    return [record.step for record in result.records if status is None or record.status == status]


def _assert_server_clean(couchdb):
    assert couchdb.admins == {}
    assert couchdb.users == {}
    assert couchdb.databases == {}


def test_member_role_scenario_passes(couchdb, config):
    result = run_scenario(config)

    assert result.passed, result.summary()
    assert result.exit_code == 0
    assert _steps(result) == [
        "create-admin",
        "create-database",
        "insert-items",
        "create-principal-fruits",
        "create-principal-vegetables",
        "fetch-member-record",
        "grant-role",
        "set-access-policy",
        "outsider-denied",
        "member-reads-item",
        "member-edits-item",
        "remove-admin",
        "fetch-revision-fruits",
        "fetch-revision-vegetables",
        "drop-database",
        "delete-principal-fruits",
        "delete-principal-vegetables",
    ]
    _assert_server_clean(couchdb)


def test_outsider_is_forbidden_for_the_probe_item(couchdb, config):
    result = run_scenario(config)

    record = next(record for record in result.records if record.step == "outsider-denied")
    assert record.status == StepStatus.PASS
    assert record.principal == "vegetables"
    assert record.address == f"{couchdb.url}/auth-test-database/thenewyorker"
    assert record.detail.startswith("denied (403 forbidden")


def test_member_edit_is_applied(couchdb, config):
    state = ScenarioState()
    result = run_scenario(config, state=state)

    assert result.passed
    assert state.item is not None
    assert state.item_revs["thenewyorker"].startswith("2-")
    assert state.created == set()


def test_security_document_lists_member_role(couchdb, config):
    seen = {}

    def snapshot(record):
        if record.step == "set-access-policy":
            seen.update(couchdb.databases[config.database].security)

    run_scenario(config, on_record=snapshot)

    assert seen == {
        "admins": {"roles": [], "names": []},
        "members": {"roles": ["testrole"], "names": []},
    }


def test_rejected_item_aborts_before_policy(couchdb, config):
    couchdb.reject_ids.add("slate")

    result = run_scenario(config)

    assert isinstance(result.failure, SetupFailed)
    assert isinstance(result.failure.cause, BulkItemError)
    assert [failure[0] for failure in result.failure.cause.failures] == ["slate"]
    assert result.failed_step == 3
    assert result.exit_code == 1
    assert "grant-role" not in _steps(result)
    assert "create-principal-fruits" not in _steps(result)
    assert set(_steps(result, StepStatus.SKIP)) == {
        "fetch-revision-fruits",
        "fetch-revision-vegetables",
        "delete-principal-fruits",
        "delete-principal-vegetables",
    }
    _assert_server_clean(couchdb)


def test_existing_database_is_left_alone(couchdb, config):
    couchdb.databases[config.database] = FakeDatabase(docs={"keep": {"_id": "keep"}})

    result = run_scenario(config)

    assert isinstance(result.failure, SetupFailed)
    assert isinstance(result.failure.cause, ConflictError)
    assert result.failed_step == 2
    assert "drop-database" in _steps(result, StepStatus.SKIP)
    assert "keep" in couchdb.databases[config.database].docs
    assert couchdb.admins == {}


def test_teardown_twice_is_a_no_op(couchdb, config):
    state = ScenarioState()
    client = CouchClient(timeout=config.timeout)
    plan = build_plan(config)
    first = ScenarioRunner(client).run(plan, state)
    requests_after_first = len(couchdb.requests)

    failures = ScenarioRunner(client).teardown(plan, state)

    assert first.passed
    assert failures == []
    assert len(couchdb.requests) == requests_after_first


def test_admin_last_teardown(couchdb, config):
    config = config.with_overrides(teardown_order=TeardownOrder.ADMIN_LAST)

    result = run_scenario(config)

    assert result.exit_code == 0, result.summary()
    teardown = [record for record in result.records if record.phase.value == "teardown"]
    assert teardown[-1].step == "remove-admin"
    assert {record.principal for record in teardown} == {"anna"}
    _assert_server_clean(couchdb)


def test_revocation_check(couchdb, config):
    config = config.with_overrides(check_revocation=True)

    result = run_scenario(config)

    assert result.passed, result.summary()
    assert _steps(result)[11:15] == [
        "member-reads-edit",
        "refetch-member-record",
        "revoke-role",
        "member-denied-after-revocation",
    ]
    _assert_server_clean(couchdb)


def test_sweep_removes_leftovers(couchdb, config):
    couchdb.admins["anna"] = "secret"
    couchdb.databases[config.database] = FakeDatabase()
    couchdb.users["org.couchdb.user:fruits"] = {
        "_id": "org.couchdb.user:fruits",
        "_rev": "1-abc",
        "name": "fruits",
        "password": "bananas",
        "roles": ["testrole"],
        "type": "user",
    }

    result = sweep(config)

    assert result.exit_code == 0, result.summary()
    assert "delete-principal-vegetables" in _steps(result, StepStatus.SKIP)
    _assert_server_clean(couchdb)


def test_sweep_reports_incomplete_teardown(couchdb, config):
    result = sweep(config)

    assert result.passed
    assert result.exit_code == 2
    assert [failure.step for failure in result.teardown_failures] == ["remove-admin"]
    assert "drop-database" in _steps(result, StepStatus.PASS)


def test_server_ignoring_security_fails_and_cleans_up(couchdb, config):
    couchdb.ignore_security = True

    result = run_scenario(config)

    assert isinstance(result.failure, AssertionMismatch)
    assert result.failure.step == "outsider-denied"
    assert result.failed_step == 8
    assert result.exit_code == 1
    assert "member-reads-item" not in _steps(result)
    assert set(_steps(result, StepStatus.FAIL)) == {"outsider-denied"}
    _assert_server_clean(couchdb)
