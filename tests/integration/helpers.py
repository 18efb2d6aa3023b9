import os
import uuid

import pytest

from couchauth.config import ScenarioConfig


def require_couchdb_url() -> str:
    url = os.environ.get("COUCHDB_URL")
    if not url:
        pytest.skip("COUCHDB_URL not set")
    return url.rstrip("/")


def live_config(**overrides: object) -> ScenarioConfig:
    """Scenario settings for a live server, with a database name unique to this run.

    The server must be in admin party mode: the scenario creates its own admin.
    """
    require_couchdb_url()
    config = ScenarioConfig.from_env()
    database = f"couchauth-it-{uuid.uuid4().hex[:8]}"
    return config.with_overrides(database=database, **overrides)
