"""
Tests for the WatchThread
"""
# Standard
from queue import Queue
from unittest import mock

# Third Party
import pytest

# Local
from nslabel.constants import API_VERSION, KIND
from nslabel.deploy_manager import DryRunDeployManager, KubeEventType
from nslabel.test_helpers.helpers import library_config, make_namespacelabel
from nslabel.watch_manager.python_watch_manager.threads.watch import WatchThread

## Helpers #####################################################################


def make_reconcile_thread():
    reconcile_thread = mock.MagicMock()
    reconcile_thread.requests = Queue()
    reconcile_thread.push_request.side_effect = reconcile_thread.requests.put
    return reconcile_thread


## Tests #######################################################################


@pytest.mark.timeout(10)
def test_watch_thread_happy_path():
    dm = DryRunDeployManager(resources=[make_namespacelabel(name="first")])
    reconcile_thread = make_reconcile_thread()
    watch_thread = WatchThread(
        reconcile_thread=reconcile_thread,
        kind=KIND,
        api_version=API_VERSION,
        deploy_manager=dm,
    )
    watch_thread.start_thread()
    try:
        initial = reconcile_thread.requests.get(timeout=5)
        assert initial.type == KubeEventType.ADDED
        assert initial.identity() == "test/first"

        dm.deploy([make_namespacelabel(name="second", namespace="other")])
        added = reconcile_thread.requests.get(timeout=5)
        assert added.type == KubeEventType.ADDED
        assert added.identity() == "other/second"

        dm.deploy([make_namespacelabel(name="first", labels={"a": "1"})])
        modified = reconcile_thread.requests.get(timeout=5)
        assert modified.type == KubeEventType.MODIFIED
        assert modified.identity() == "test/first"
    finally:
        watch_thread.stop_thread()


@pytest.mark.timeout(10)
def test_watch_thread_namespaced():
    dm = DryRunDeployManager(
        resources=[
            make_namespacelabel(name="first"),
            make_namespacelabel(name="second", namespace="other"),
        ]
    )
    reconcile_thread = make_reconcile_thread()
    watch_thread = WatchThread(
        reconcile_thread=reconcile_thread,
        kind=KIND,
        api_version=API_VERSION,
        namespace="other",
        deploy_manager=dm,
    )
    assert watch_thread.name.endswith("_other")
    watch_thread.start_thread()
    try:
        request = reconcile_thread.requests.get(timeout=5)
        assert request.identity() == "other/second"
    finally:
        watch_thread.stop_thread()


@pytest.mark.timeout(10)
def test_watch_thread_exits_after_retries():
    """A watch that keeps failing is restarted until the retries run out and
    then the process exits
    """
    dm = mock.MagicMock()
    dm.watch_objects.side_effect = RuntimeError("watch failed")
    with library_config(
        python_watch_manager={"watch_retry_count": 2, "watch_retry_delay_seconds": 0}
    ):
        watch_thread = WatchThread(
            reconcile_thread=make_reconcile_thread(),
            kind=KIND,
            api_version=API_VERSION,
            deploy_manager=dm,
        )

    with mock.patch(
        "nslabel.watch_manager.python_watch_manager.threads.watch.os._exit",
        side_effect=lambda _: watch_thread.stop_thread(),
    ) as exit_mock:
        watch_thread.start_thread()
        watch_thread.join(5)

    assert not watch_thread.is_alive()
    exit_mock.assert_called_once_with(1)
    assert dm.watch_objects.call_count == 3


@pytest.mark.timeout(10)
def test_watch_thread_recovers_after_failure():
    dm = DryRunDeployManager(resources=[make_namespacelabel()])
    real_watch = dm.watch_objects
    calls = []

    def flaky_watch(*args, **kwargs):
        calls.append(kwargs)
        if len(calls) == 1:
            raise RuntimeError("watch failed")
        return real_watch(*args, **kwargs)

    reconcile_thread = make_reconcile_thread()
    with library_config(python_watch_manager={"watch_retry_delay_seconds": 0}):
        watch_thread = WatchThread(
            reconcile_thread=reconcile_thread,
            kind=KIND,
            api_version=API_VERSION,
            deploy_manager=dm,
        )
    with mock.patch.object(dm, "watch_objects", side_effect=flaky_watch):
        watch_thread.start_thread()
        try:
            request = reconcile_thread.requests.get(timeout=5)
            assert request.identity() == "test/team-labels"
        finally:
            watch_thread.stop_thread()
    assert len(calls) == 2
    assert calls[1]["resource_version"] is None
