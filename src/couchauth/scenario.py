"""The CouchDB member-role scenario.

Does the server honour member roles listed in a database's ``_security``
document? Starting from a server without admins:

1. Add an admin (ending the admin party)
2. Create a database and add some documents to it
3. Create two regular users with no roles
4. Give one of them a role, and list that role under the database's members
5. The user without the role must be denied; the user with it must be able to
   read and modify a document
6. Remove everything that was created
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from functools import partial
from typing import Any

from .client import CouchClient, Request, Response, raise_for_bulk_errors
from .config import ScenarioConfig, TeardownOrder
from .models import AccessPolicy, Credentials, Principal
from .runner import (
    ExpectDenied,
    ExpectSuccess,
    FanOut,
    Phase,
    PlanEntry,
    ScenarioResult,
    ScenarioRunner,
    Step,
    StepRecord,
)

ADMIN_KEY = "admin"
DATABASE_KEY = "database"


def principal_key(principal: Principal) -> str:
    return f"principal:{principal.name}"


@dataclass
class ScenarioState:
    """Correlation data threaded between steps.

    ``created`` is the teardown ledger: only entities recorded there are removed.
    """

    created: set[str] = field(default_factory=set)
    records: dict[str, dict[str, Any]] = field(default_factory=dict)
    revisions: dict[str, str] = field(default_factory=dict)
    item_revs: dict[str, str] = field(default_factory=dict)
    item: dict[str, Any] | None = None


def mark_all_created(config: ScenarioConfig, state: ScenarioState) -> None:
    """Put every fixed-name entity in the ledger, to sweep leftovers of an earlier run."""
    state.created.update({ADMIN_KEY, DATABASE_KEY})
    state.created.update(principal_key(principal) for principal in config.principals)


# Setup


def _create_admin(config: ScenarioConfig, state: ScenarioState) -> Request:
    return Request("PUT", config.admin_url, payload=config.admin.password)


def _create_database(config: ScenarioConfig, state: ScenarioState) -> Request:
    return Request("PUT", config.database_url, config.admin.credentials)


def _insert_items(config: ScenarioConfig, state: ScenarioState) -> Request:
    docs = [item.to_doc() for item in config.items]
    return Request("POST", config.bulk_docs_url, config.admin.credentials, {"docs": docs})


def _create_principal(
    principal: Principal, config: ScenarioConfig, state: ScenarioState
) -> Request:
    return Request("PUT", config.principal_url(principal), payload=principal.to_user_doc())


def _mark_created(key: str, state: ScenarioState, response: Response) -> None:
    state.created.add(key)


def _capture_items(state: ScenarioState, response: Response) -> None:
    raise_for_bulk_errors(response.body)
    for entry in response.body:
        state.item_revs[entry["id"]] = entry["rev"]


# Policy


def _fetch_record(principal: Principal, config: ScenarioConfig, state: ScenarioState) -> Request:
    return Request("GET", config.principal_url(principal), config.admin.credentials)


def _capture_record(principal: Principal, state: ScenarioState, response: Response) -> None:
    if not isinstance(response.body, dict) or "_rev" not in response.body:
        raise ValueError(f"principal record for {principal.name} has no revision")
    state.records[principal.name] = response.body


def _save_roles(
    principal: Principal, grant: bool, config: ScenarioConfig, state: ScenarioState
) -> Request:
    record = dict(state.records[principal.name])
    roles = [role for role in record.get("roles", []) if role != config.role]
    if grant:
        roles.append(config.role)
    record["roles"] = roles
    return Request("PUT", config.principal_url(principal), config.admin.credentials, record)


def _capture_saved_record(principal: Principal, state: ScenarioState, response: Response) -> None:
    state.records.pop(principal.name, None)


def _set_access_policy(config: ScenarioConfig, state: ScenarioState) -> Request:
    policy = AccessPolicy.for_member_role(config.role)
    return Request("PUT", config.security_url, config.admin.credentials, policy.model_dump())


# Verification


def _read_item(principal: Principal, config: ScenarioConfig, state: ScenarioState) -> Request:
    return Request("GET", config.item_url(config.probe_item.id), principal.credentials)


def _capture_item(state: ScenarioState, response: Response) -> None:
    state.item = response.body


def _edit_item(config: ScenarioConfig, state: ScenarioState) -> Request:
    if state.item is None:
        raise RuntimeError("no item was retrieved to edit")
    doc = {**state.item, **config.edit}
    return Request("PUT", config.item_url(config.probe_item.id), config.member.credentials, doc)


def _capture_edit(state: ScenarioState, response: Response) -> None:
    state.item_revs[response.body["id"]] = response.body["rev"]


# Teardown


def _teardown_credentials(config: ScenarioConfig, state: ScenarioState) -> Credentials | None:
    if config.teardown_order is TeardownOrder.ADMIN_LAST and ADMIN_KEY in state.created:
        return config.admin.credentials
    return None


def _remove_admin(config: ScenarioConfig, state: ScenarioState) -> Request | None:
    if ADMIN_KEY not in state.created:
        return None
    return Request("DELETE", config.admin_url, config.admin.credentials)


def _drop_database(config: ScenarioConfig, state: ScenarioState) -> Request | None:
    if DATABASE_KEY not in state.created:
        return None
    return Request("DELETE", config.database_url, _teardown_credentials(config, state))


def _fetch_revision(
    principal: Principal, config: ScenarioConfig, state: ScenarioState
) -> Request | None:
    if principal_key(principal) not in state.created:
        return None
    return Request("GET", config.principal_url(principal), _teardown_credentials(config, state))


def _capture_revision(principal: Principal, state: ScenarioState, response: Response) -> None:
    rev = response.field("_rev") if response.ok else None
    if rev:
        state.revisions[principal.name] = rev
    else:
        state.created.discard(principal_key(principal))


def _delete_principal(
    principal: Principal, config: ScenarioConfig, state: ScenarioState
) -> Request | None:
    rev = state.revisions.get(principal.name)
    if principal_key(principal) not in state.created or rev is None:
        return None
    return Request(
        "DELETE",
        config.principal_url(principal),
        _teardown_credentials(config, state),
        rev=rev,
    )


def _forget_principal(principal: Principal, state: ScenarioState, response: Response) -> None:
    state.created.discard(principal_key(principal))
    state.revisions.pop(principal.name, None)


def _forget(key: str, state: ScenarioState, response: Response) -> None:
    state.created.discard(key)


def _teardown_plan(config: ScenarioConfig) -> list[PlanEntry]:
    gone = ExpectSuccess(missing_ok=True)
    remove_admin = Step(
        "remove-admin",
        Phase.TEARDOWN,
        partial(_remove_admin, config),
        gone,
        partial(_forget, ADMIN_KEY),
    )
    fetch_and_drop = FanOut(
        "fetch-revisions-and-drop-database",
        Phase.TEARDOWN,
        (
            *(
                Step(
                    f"fetch-revision-{principal.name}",
                    Phase.TEARDOWN,
                    partial(_fetch_revision, principal, config),
                    gone,
                    partial(_capture_revision, principal),
                )
                for principal in config.principals
            ),
            Step(
                "drop-database",
                Phase.TEARDOWN,
                partial(_drop_database, config),
                gone,
                partial(_forget, DATABASE_KEY),
            ),
        ),
    )
    delete_principals = FanOut(
        "delete-principals",
        Phase.TEARDOWN,
        tuple(
            Step(
                f"delete-principal-{principal.name}",
                Phase.TEARDOWN,
                partial(_delete_principal, principal, config),
                gone,
                partial(_forget_principal, principal),
            )
            for principal in config.principals
        ),
    )
    if config.teardown_order is TeardownOrder.ADMIN_LAST:
        return [fetch_and_drop, delete_principals, remove_admin]
    return [remove_admin, fetch_and_drop, delete_principals]


def build_plan(config: ScenarioConfig) -> list[PlanEntry]:
    """Return the ordered plan: setup, policy, verification, then teardown."""
    member = config.member
    probe = config.probe_item
    plan: list[PlanEntry] = [
        Step(
            "create-admin",
            Phase.SETUP,
            partial(_create_admin, config),
            capture=partial(_mark_created, ADMIN_KEY),
        ),
        Step(
            "create-database",
            Phase.SETUP,
            partial(_create_database, config),
            capture=partial(_mark_created, DATABASE_KEY),
        ),
        Step("insert-items", Phase.SETUP, partial(_insert_items, config), capture=_capture_items),
        FanOut(
            "create-principals",
            Phase.SETUP,
            tuple(
                Step(
                    f"create-principal-{principal.name}",
                    Phase.SETUP,
                    partial(_create_principal, principal, config),
                    capture=partial(_mark_created, principal_key(principal)),
                )
                for principal in config.principals
            ),
        ),
        Step(
            "fetch-member-record",
            Phase.POLICY,
            partial(_fetch_record, member, config),
            capture=partial(_capture_record, member),
        ),
        Step(
            "grant-role",
            Phase.POLICY,
            partial(_save_roles, member, True, config),
            capture=partial(_capture_saved_record, member),
        ),
        Step("set-access-policy", Phase.POLICY, partial(_set_access_policy, config)),
        Step(
            "outsider-denied",
            Phase.VERIFY,
            partial(_read_item, config.outsider, config),
            ExpectDenied(),
        ),
        Step(
            "member-reads-item",
            Phase.VERIFY,
            partial(_read_item, member, config),
            ExpectSuccess(fields=probe.to_doc()),
            _capture_item,
        ),
        Step(
            "member-edits-item",
            Phase.VERIFY,
            partial(_edit_item, config),
            capture=_capture_edit,
        ),
    ]
    if config.check_revocation:
        plan.extend(
            [
                Step(
                    "member-reads-edit",
                    Phase.VERIFY,
                    partial(_read_item, member, config),
                    ExpectSuccess(fields={**probe.to_doc(), **config.edit}),
                    _capture_item,
                ),
                Step(
                    "refetch-member-record",
                    Phase.VERIFY,
                    partial(_fetch_record, member, config),
                    capture=partial(_capture_record, member),
                ),
                Step(
                    "revoke-role",
                    Phase.VERIFY,
                    partial(_save_roles, member, False, config),
                    capture=partial(_capture_saved_record, member),
                ),
                Step(
                    "member-denied-after-revocation",
                    Phase.VERIFY,
                    partial(_read_item, member, config),
                    ExpectDenied(),
                ),
            ]
        )
    plan.extend(_teardown_plan(config))
    return plan


def run_scenario(
    config: ScenarioConfig,
    client: CouchClient | None = None,
    on_record: Callable[[StepRecord], None] | None = None,
    state: ScenarioState | None = None,
) -> ScenarioResult:
    """Run the full scenario against ``config.host``."""
    client = client or CouchClient(timeout=config.timeout)
    runner = ScenarioRunner(client, max_workers=config.max_workers, on_record=on_record)
    return runner.run(build_plan(config), state if state is not None else ScenarioState())


def sweep(
    config: ScenarioConfig,
    client: CouchClient | None = None,
    on_record: Callable[[StepRecord], None] | None = None,
) -> ScenarioResult:
    """Run only the teardown phase, assuming every fixed-name entity may exist."""
    client = client or CouchClient(timeout=config.timeout)
    state = ScenarioState()
    mark_all_created(config, state)
    runner = ScenarioRunner(client, max_workers=config.max_workers, on_record=on_record)
    teardown_plan = _teardown_plan(config)
    result = ScenarioResult()
    result.teardown_failures = runner.teardown(teardown_plan, state, result)
    return result


__all__ = [
    "ScenarioState",
    "StepRecord",
    "build_plan",
    "mark_all_created",
    "run_scenario",
    "sweep",
]
