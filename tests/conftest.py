import os
import sys
from importlib import reload
from pathlib import Path

import httpx
import pytest
from fastapi.testclient import TestClient

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


def _swap_env(new_env: dict) -> dict:
    old_env = {k: os.environ.get(k) for k in new_env}
    os.environ.update(new_env)
    return old_env


def _restore_env(old_env: dict):
    for key, value in old_env.items():
        if value is None:
            os.environ.pop(key, None)
        else:
            os.environ[key] = value


@pytest.fixture(scope="function")
def app_module(tmp_path_factory):
    """
    Reload the hub with a disposable SQLite DB.
    """
    db_path = tmp_path_factory.mktemp("data") / "cashdesk.db"
    old_env = _swap_env({
        "DB_URL": f"sqlite:///{db_path}",
        "BEARER_TOKEN": "testtoken",
        "LEDGER_BASE_URL": "http://mock-ledger:8001",
        "RETRY_BACKOFF_SECONDS": "0",
    })

    try:
        import cashdesk.config as config
        import cashdesk.database as database
        import cashdesk.models as models
        import cashdesk.security as security
        import cashdesk.clients.ledger_client as ledger_client
        import cashdesk.main as main

        reload(config)
        reload(database)
        reload(models)
        reload(security)
        reload(ledger_client)
        reload(main)

        main.app.dependency_overrides[main.require_bearer_token] = lambda: None

        models.Base.metadata.drop_all(bind=database.engine)
        models.Base.metadata.create_all(bind=database.engine)
        return main, database, models
    finally:
        _restore_env(old_env)


@pytest.fixture(scope="function")
def mock_ledger(tmp_path_factory):
    """
    Reload the mock ledger against its own disposable SQLite DB.
    """
    db_path = tmp_path_factory.mktemp("ledger") / "ledger.db"
    old_env = _swap_env({"MOCK_LEDGER_DB_URL": f"sqlite:///{db_path}"})
    try:
        import mock_ledger.main as mock_main

        reload(mock_main)
        return mock_main
    finally:
        _restore_env(old_env)


@pytest.fixture
def ledger_admin(mock_ledger):
    """Direct client on the mock ledger, used to seed players and wallets."""
    with TestClient(mock_ledger.app) as admin:
        yield admin


@pytest.fixture
def ledger(app_module, mock_ledger):
    from cashdesk.clients.ledger_client import LedgerClient

    return LedgerClient(
        base_url="http://mock-ledger",
        token="ledger-token",
        transport=httpx.ASGITransport(app=mock_ledger.app),
        retry_backoff_seconds=0,
    )


@pytest.fixture
def client(app_module, ledger):
    main, _, _ = app_module
    main.app.dependency_overrides[main.get_ledger] = lambda: ledger
    with TestClient(main.app) as client:
        yield client
    main.app.dependency_overrides.pop(main.get_ledger, None)
