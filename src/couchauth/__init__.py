from .client import CouchClient, Request, Response, raise_for_bulk_errors
from .config import ScenarioConfig, TeardownOrder
from .exceptions import (
    AssertionMismatch,
    BulkItemError,
    ConfigError,
    ConflictError,
    CouchAuthError,
    CouchError,
    DeniedError,
    NotFoundError,
    ResponseError,
    SetupFailed,
    StepFailure,
    TeardownFailed,
    TransportError,
    UnexpectedFailure,
)
from .models import AccessPolicy, Credentials, Item, PolicySection, Principal
from .runner import (
    ExpectDenied,
    ExpectSuccess,
    FanOut,
    Phase,
    ScenarioResult,
    ScenarioRunner,
    Step,
    StepRecord,
)
from .scenario import ScenarioState, build_plan, run_scenario, sweep

__all__ = [
    # Models
    "AccessPolicy",
    "Credentials",
    "Item",
    "PolicySection",
    "Principal",
    "ScenarioConfig",
    "TeardownOrder",
    # Client
    "CouchClient",
    "Request",
    "Response",
    "raise_for_bulk_errors",
    # Runner
    "ExpectDenied",
    "ExpectSuccess",
    "FanOut",
    "Phase",
    "ScenarioResult",
    "ScenarioRunner",
    "ScenarioState",
    "Step",
    "StepRecord",
    "build_plan",
    "run_scenario",
    "sweep",
    # Exceptions
    "AssertionMismatch",
    "BulkItemError",
    "ConfigError",
    "ConflictError",
    "CouchAuthError",
    "CouchError",
    "DeniedError",
    "NotFoundError",
    "ResponseError",
    "SetupFailed",
    "StepFailure",
    "TeardownFailed",
    "TransportError",
    "UnexpectedFailure",
]

__version__ = "0.1.0"
