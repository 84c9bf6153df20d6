"""
Shared test config
"""
# Standard
from unittest import mock

# Third Party
import pytest

# Local
from nslabel.test_helpers.helpers import configure_logging
from nslabel.watch_manager import WatchManagerBase

configure_logging()


@pytest.fixture(autouse=True)
def no_local_kubeconfig():
    """This fixture makes sure the tests run as if KUBECONFIG is not exported in
    the environment, even if it is
    """
    with mock.patch(
        "kubernetes.config.new_client_from_config", side_effect=RuntimeError
    ):
        yield


@pytest.fixture(autouse=True)
def clear_registered_watches():
    """Every watch manager registers itself globally, so each test starts with
    an empty registry
    """
    WatchManagerBase.clear_all()
    yield
    WatchManagerBase.clear_all()
