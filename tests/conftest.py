import logging

import pytest

from awsmgr.session import Connection

logging.basicConfig(level=logging.NOTSET)


@pytest.fixture(name="conn")
def conn_fixture(mocker):
    """Connection whose clients are MagicMocks, one per (service, region)."""
    conn = Connection("AKIDEXAMPLE", "secret")
    clients = {}

    def client(service, region=None):
        key = (service, region or conn.bootstrap_region)
        if key not in clients:
            clients[key] = mocker.MagicMock(name="{}-{}".format(*key))
        return clients[key]

    mocker.patch.object(conn, "client", side_effect=client)
    conn.clients = clients
    return conn


@pytest.fixture(name="no_sleep", autouse=True)
def no_sleep_fixture(mocker, request):
    """Skip poll delays unless a test is marked real_sleep."""
    if "real_sleep" in request.node.keywords:
        return None
    return mocker.patch("awsmgr.convergence.time.sleep")


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "real_sleep: let the poller really sleep"
    )
