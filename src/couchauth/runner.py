"""Ordered setup/verify/teardown scenario runner.

A plan is an ordered sequence of ``Step`` and ``FanOut`` entries, each tagged
with a ``Phase``. The runner executes the non-teardown entries in order until
the first failure, then always executes every teardown entry. Data produced by
one step reaches later ones only through the explicit ``state`` object: a step
builds its request from the state and its capture writes results back into it.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Generic, Protocol, TypeVar

from .client import Request, Response
from .exceptions import (
    AssertionMismatch,
    DeniedError,
    NotFoundError,
    ResponseError,
    SetupFailed,
    StepFailure,
    TeardownFailed,
    UnexpectedFailure,
)
from .logging_config import get_logger

logger = get_logger(__name__)

StateT = TypeVar("StateT")


class Phase(str, Enum):
    SETUP = "setup"
    POLICY = "policy"
    VERIFY = "verify"
    TEARDOWN = "teardown"


class StepStatus(str, Enum):
    PASS = "PASS"
    FAIL = "FAIL"
    SKIP = "SKIP"


class Transport(Protocol):
    def send(self, req: Request) -> Response: ...


@dataclass
class Outcome:
    """What a single call produced: a response, or the error it raised."""

    request: Request
    response: Response | None = None
    error: Exception | None = None

    @property
    def succeeded(self) -> bool:
        return self.response is not None

    @property
    def denied(self) -> bool:
        return isinstance(self.error, DeniedError)

    @property
    def missing(self) -> bool:
        return isinstance(self.error, NotFoundError)

    def describe(self) -> str:
        if self.response is not None:
            return f"success ({self.response.status})"
        if isinstance(self.error, DeniedError):
            return f"denied ({self.error.status} {self.error.error}: {self.error.reason})"
        if isinstance(self.error, NotFoundError):
            return f"missing ({self.error.reason})"
        return f"failure ({type(self.error).__name__}: {self.error})"


@dataclass(frozen=True)
class ExpectSuccess:
    """The call must succeed.

    ``fields`` must be present with equal values in the response body.
    With ``missing_ok`` a 404 counts as success: the entity is already gone.
    """

    fields: dict[str, Any] | None = None
    missing_ok: bool = False

    def describe(self) -> str:
        if self.fields:
            return f"success with {self.fields}"
        return "success or missing" if self.missing_ok else "success"

    def mismatch(self, outcome: Outcome) -> str | None:
        if outcome.response is None:
            if self.missing_ok and outcome.missing:
                return None
            return outcome.describe()
        if self.fields:
            body = outcome.response.body if isinstance(outcome.response.body, dict) else {}
            differing = {
                key: body.get(key) for key, value in self.fields.items() if body.get(key) != value
            }
            if differing:
                return f"success with differing fields {differing}"
        return None


@dataclass(frozen=True)
class ExpectDenied:
    """The call must be rejected as denied, for exactly the address that was issued.

    ``error`` optionally pins the server's error name (``unauthorized``,
    ``forbidden``).
    """

    error: str | None = None

    def describe(self) -> str:
        return f"denied ({self.error})" if self.error else "denied"

    def mismatch(self, outcome: Outcome) -> str | None:
        if not isinstance(outcome.error, DeniedError):
            return outcome.describe()
        if outcome.error.url != outcome.request.address:
            return f"denial for another address ({outcome.error.url})"
        if self.error is not None and outcome.error.error != self.error:
            return outcome.describe()
        return None


Expectation = ExpectSuccess | ExpectDenied


@dataclass(frozen=True)
class Step(Generic[StateT]):
    name: str
    phase: Phase
    build: Callable[[StateT], Request | None]
    expect: Expectation = ExpectSuccess()
    capture: Callable[[StateT, Response], None] | None = None


@dataclass(frozen=True)
class FanOut(Generic[StateT]):
    """Independent steps issued concurrently and joined before the plan proceeds."""

    name: str
    phase: Phase
    members: tuple[Step[StateT], ...]


PlanEntry = Step[Any] | FanOut[Any]


@dataclass
class StepRecord:
    step: str
    phase: Phase
    status: StepStatus
    method: str | None = None
    address: str | None = None
    principal: str | None = None
    detail: str = ""
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> dict[str, Any]:
        return {
            "step": self.step,
            "phase": self.phase.value,
            "status": self.status.value,
            "method": self.method,
            "address": self.address,
            "principal": self.principal,
            "detail": self.detail,
            "timestamp": self.timestamp,
        }


@dataclass
class ScenarioResult:
    records: list[StepRecord] = field(default_factory=list)
    failure: StepFailure | None = None
    failed_step: int | None = None
    teardown_failures: list[TeardownFailed] = field(default_factory=list)

    @property
    def passed(self) -> bool:
        return self.failure is None

    @property
    def teardown_complete(self) -> bool:
        return not self.teardown_failures

    @property
    def exit_code(self) -> int:
        if not self.passed:
            return 1
        if not self.teardown_complete:
            return 2
        return 0

    def summary(self) -> str:
        if self.failure is not None:
            text = f"scenario failed at step {self.failed_step} ({self.failure})"
        else:
            text = "scenario passed"
        if self.teardown_failures:
            steps = ", ".join(failure.step for failure in self.teardown_failures)
            text += f"; teardown incomplete ({steps})"
        return text


def _failure(
    step: Step[Any],
    cause: BaseException | None = None,
    expected: str | None = None,
    actual: str | None = None,
) -> StepFailure:
    """Build the failure type that fits the step's phase."""
    message: BaseException | str = (
        cause if cause is not None else f"expected {expected}, got {actual}"
    )
    if step.phase is Phase.TEARDOWN:
        return TeardownFailed(step.name, message)
    if step.phase in (Phase.SETUP, Phase.POLICY):
        return SetupFailed(step.name, message)
    if expected is not None and (cause is None or isinstance(cause, ResponseError)):
        return AssertionMismatch(step.name, expected, actual or "", cause)
    if cause is None:
        cause = RuntimeError(actual or "step failed")
    return UnexpectedFailure(step.name, cause)


class ScenarioRunner:
    """Execute a plan against a server, guaranteeing the teardown phase runs."""

    def __init__(
        self,
        client: Transport,
        *,
        max_workers: int = 4,
        on_record: Callable[[StepRecord], None] | None = None,
    ) -> None:
        self.client = client
        self.max_workers = max_workers
        self.on_record = on_record

    def run(self, plan: Sequence[PlanEntry], state: Any) -> ScenarioResult:
        result = ScenarioResult()
        main = [entry for entry in plan if entry.phase is not Phase.TEARDOWN]
        logger.info("scenario_started", steps=len(main))
        try:
            for index, entry in enumerate(main, start=1):
                failures = self._execute(entry, state, result)
                if failures:
                    result.failure = failures[0]
                    result.failed_step = index
                    logger.error(
                        "scenario_aborted",
                        step=entry.name,
                        index=index,
                        failures=[str(failure) for failure in failures],
                    )
                    break
        finally:
            result.teardown_failures.extend(self._teardown(plan, state, result))

        logger.info(
            "scenario_finished",
            passed=result.passed,
            teardown_complete=result.teardown_complete,
            summary=result.summary(),
        )
        return result

    def teardown(
        self, plan: Sequence[PlanEntry], state: Any, result: ScenarioResult | None = None
    ) -> list[TeardownFailed]:
        """Run only the teardown phase of ``plan``, recording into ``result`` if given."""
        return self._teardown(plan, state, result if result is not None else ScenarioResult())

    def _teardown(
        self, plan: Sequence[PlanEntry], state: Any, result: ScenarioResult
    ) -> list[TeardownFailed]:
        entries = [entry for entry in plan if entry.phase is Phase.TEARDOWN]
        logger.info("teardown_started", steps=len(entries))
        failures: list[TeardownFailed] = []
        for entry in entries:
            for failure in self._execute(entry, state, result):
                if isinstance(failure, TeardownFailed):
                    failures.append(failure)
                else:
                    failures.append(TeardownFailed(failure.step, failure))
        return failures

    def _execute(self, entry: PlanEntry, state: Any, result: ScenarioResult) -> list[StepFailure]:
        if isinstance(entry, FanOut):
            return self._execute_fanout(entry, state, result)
        try:
            req = entry.build(state)
        except Exception as exc:
            return [self._fail(entry, None, _failure(entry, exc), result)]
        if req is None:
            self._skip(entry, result)
            return []
        return self._settle(entry, self._call(req), state, result)

    def _execute_fanout(
        self, fanout: FanOut[Any], state: Any, result: ScenarioResult
    ) -> list[StepFailure]:
        failures: list[StepFailure] = []
        pending: list[tuple[Step[Any], Request]] = []
        for member in fanout.members:
            try:
                req = member.build(state)
            except Exception as exc:
                failures.append(self._fail(member, None, _failure(member, exc), result))
                continue
            if req is None:
                self._skip(member, result)
            else:
                pending.append((member, req))

        if pending:
            logger.info("fanout_started", fanout=fanout.name, members=len(pending))
            workers = min(self.max_workers, len(pending))
            with ThreadPoolExecutor(max_workers=workers) as executor:
                futures = [executor.submit(self._call, req) for _, req in pending]
                outcomes = [future.result() for future in futures]
            for (member, _), outcome in zip(pending, outcomes, strict=True):
                failures.extend(self._settle(member, outcome, state, result))
        return failures

    def _call(self, req: Request) -> Outcome:
        try:
            return Outcome(request=req, response=self.client.send(req))
        except Exception as exc:
            # settled against the step, so later teardown entries still run
            return Outcome(request=req, error=exc)

    def _settle(
        self, step: Step[Any], outcome: Outcome, state: Any, result: ScenarioResult
    ) -> list[StepFailure]:
        mismatch = step.expect.mismatch(outcome)
        if mismatch is not None:
            failure = _failure(
                step, outcome.error, expected=step.expect.describe(), actual=mismatch
            )
            return [self._fail(step, outcome.request, failure, result)]

        response = outcome.response
        if response is None and isinstance(outcome.error, NotFoundError):
            # an accepted missing outcome hands the 404 to the capture
            response = Response(
                method=outcome.error.method,
                url=outcome.error.url,
                status=outcome.error.status,
                body=outcome.error.body,
            )
        if step.capture is not None and response is not None:
            try:
                step.capture(state, response)
            except Exception as exc:
                return [self._fail(step, outcome.request, _failure(step, exc), result)]

        self._record(
            result,
            StepRecord(
                step=step.name,
                phase=step.phase,
                status=StepStatus.PASS,
                method=outcome.request.method,
                address=outcome.request.address,
                principal=outcome.request.principal,
                detail=outcome.describe(),
            ),
        )
        logger.info(
            "step_passed",
            step=step.name,
            phase=step.phase.value,
            method=outcome.request.method,
            url=outcome.request.address,
            principal=outcome.request.principal,
            outcome=outcome.describe(),
        )
        return []

    def _fail(
        self,
        step: Step[Any],
        req: Request | None,
        failure: StepFailure,
        result: ScenarioResult,
    ) -> StepFailure:
        expected = getattr(failure, "expected", step.expect.describe())
        logger.error(
            "step_failed",
            step=step.name,
            phase=step.phase.value,
            method=req.method if req else None,
            url=req.address if req else None,
            principal=req.principal if req else None,
            expected=expected,
            error=str(failure),
            failure=type(failure).__name__,
        )
        self._record(
            result,
            StepRecord(
                step=step.name,
                phase=step.phase,
                status=StepStatus.FAIL,
                method=req.method if req else None,
                address=req.address if req else None,
                principal=req.principal if req else None,
                detail=str(failure),
            ),
        )
        return failure

    def _skip(self, step: Step[Any], result: ScenarioResult) -> None:
        logger.info("step_skipped", step=step.name, phase=step.phase.value)
        self._record(
            result,
            StepRecord(
                step=step.name, phase=step.phase, status=StepStatus.SKIP, detail="nothing to do"
            ),
        )

    def _record(self, result: ScenarioResult, record: StepRecord) -> None:
        result.records.append(record)
        if self.on_record is not None:
            self.on_record(record)
