"""
Tests for the ReconcileThread
"""
# Standard
from datetime import timedelta
import queue
import time

# Third Party
import pytest

# Local
from nslabel.deploy_manager import KubeEventType
from nslabel.reconcile import ReconciliationResult, RequeueParams
from nslabel.test_helpers.pwm_helpers import (
    MockedReconcileThread,
    RecordingReconciler,
    make_resource,
)
from nslabel.watch_manager.python_watch_manager.utils import (
    ReconcileRequest,
    ReconcileRequestType,
)

## Helpers #####################################################################


def make_request(name="team-labels", namespace="test", event_type=None):
    return ReconcileRequest(
        type=event_type or KubeEventType.ADDED,
        resource=make_resource(name=name, namespace=namespace),
    )


## Tests #######################################################################


@pytest.mark.timeout(10)
def test_reconcile_thread_happy_path():
    reconciler = RecordingReconciler()
    reconcile_thread = MockedReconcileThread(reconciler)
    reconcile_thread.start_thread()
    try:
        reconcile_thread.push_request(make_request())
        assert reconciler.get_call() == ("test", "team-labels")
    finally:
        reconcile_thread.stop_thread()

    # No requeue was requested so nothing is scheduled
    assert not reconcile_thread.event_map
    assert not reconcile_thread.running_reconciles
    assert not reconcile_thread.is_alive()


@pytest.mark.timeout(10)
def test_reconcile_thread_serializes_same_identity():
    """Requests for a NamespaceLabel that is already reconciling collapse into
    a single pending reconcile
    """
    reconciler = RecordingReconciler(reconcile_time=0.5)
    reconcile_thread = MockedReconcileThread(reconciler, max_concurrent_reconciles=4)
    reconcile_thread.start_thread()
    try:
        for _ in range(3):
            reconcile_thread.push_request(
                make_request(event_type=KubeEventType.MODIFIED)
            )
        assert reconciler.get_call() == ("test", "team-labels")
        assert reconciler.get_call() == ("test", "team-labels")
        with pytest.raises(queue.Empty):
            reconciler.get_call(timeout=1)
    finally:
        reconcile_thread.stop_thread()
    assert reconciler.max_active == 1


@pytest.mark.timeout(10)
def test_reconcile_thread_different_identities_run_concurrently():
    reconciler = RecordingReconciler(reconcile_time=0.5)
    reconcile_thread = MockedReconcileThread(reconciler, max_concurrent_reconciles=4)
    reconcile_thread.start_thread()
    try:
        reconcile_thread.push_request(make_request(namespace="a"))
        reconcile_thread.push_request(make_request(namespace="b"))
        calls = {reconciler.get_call(), reconciler.get_call()}
    finally:
        reconcile_thread.stop_thread()
    assert calls == {("a", "team-labels"), ("b", "team-labels")}
    assert reconciler.max_active == 2


@pytest.mark.timeout(10)
def test_reconcile_thread_max_concurrent_reconciles():
    """Requests beyond the worker limit wait and are started once workers
    free up
    """
    reconciler = RecordingReconciler(reconcile_time=0.3)
    reconcile_thread = MockedReconcileThread(reconciler, max_concurrent_reconciles=2)
    reconcile_thread.start_thread()
    namespaces = ["a", "b", "c", "d"]
    try:
        for namespace in namespaces:
            reconcile_thread.push_request(make_request(namespace=namespace))
        calls = {reconciler.get_call() for _ in namespaces}
    finally:
        reconcile_thread.stop_thread()
    assert calls == {(namespace, "team-labels") for namespace in namespaces}
    assert reconciler.max_active <= 2
    assert not reconcile_thread.pending_reconciles


@pytest.mark.timeout(10)
def test_reconcile_thread_requeue():
    """A failed reconcile is pushed again through the timer"""
    reconciler = RecordingReconciler(
        result=ReconciliationResult(
            requeue=True, requeue_params=RequeueParams(requeue_after=timedelta(0))
        )
    )
    reconcile_thread = MockedReconcileThread(reconciler)
    reconcile_thread.start_thread()
    try:
        reconcile_thread.push_request(make_request())
        assert reconcile_thread.get_request(timeout=1).type == KubeEventType.ADDED
        assert reconciler.get_call() == ("test", "team-labels")

        requeue = reconcile_thread.get_request(timeout=5)
        assert requeue.type == ReconcileRequestType.REQUEUED
        assert requeue.identity() == "test/team-labels"
        assert reconciler.get_call() == ("test", "team-labels")
    finally:
        reconcile_thread.stop_thread()


def test_reconcile_thread_pending_keeps_newest_request():
    reconcile_thread = MockedReconcileThread(RecordingReconciler())
    older = make_request(event_type=KubeEventType.ADDED)
    newer = make_request(event_type=KubeEventType.MODIFIED)
    reconcile_thread._push_to_pending_reconcile(newer)
    reconcile_thread._push_to_pending_reconcile(older)
    assert reconcile_thread.pending_reconciles["test/team-labels"] is newer
    reconcile_thread.stop_thread()


def test_reconcile_thread_no_requeue_when_pending():
    """A newer pending request replaces any scheduled requeue"""
    reconcile_thread = MockedReconcileThread(RecordingReconciler())
    request = make_request()
    reconcile_thread._push_to_pending_reconcile(request)
    event = reconcile_thread._create_timer_event_for_request(
        request, ReconciliationResult(requeue=True)
    )
    assert event is None
    reconcile_thread.stop_thread()


@pytest.mark.timeout(10)
def test_reconcile_thread_stop_waits_for_running():
    reconciler = RecordingReconciler(reconcile_time=0.5)
    reconcile_thread = MockedReconcileThread(reconciler)
    reconcile_thread.start_thread()
    reconcile_thread.push_request(make_request())
    # Make sure the request reached the worker before stopping
    reconcile_thread.get_request(timeout=1)
    while not reconcile_thread.running_reconciles and reconciler.calls.empty():
        time.sleep(0.01)
    reconcile_thread.stop_thread()
    assert not reconcile_thread.is_alive()
    assert reconciler.get_call(timeout=0) == ("test", "team-labels")
