"""
Utils and common classes for the python watch manager tests
"""
# Standard
from queue import Queue
import threading
import time

# First Party
import alog

# Local
from nslabel.managed_object import ManagedObject
from nslabel.reconcile import ReconciliationResult
from nslabel.watch_manager.python_watch_manager.threads.reconcile import (
    ReconcileThread,
)
from nslabel.watch_manager.python_watch_manager.threads.timer import TimerThread
from nslabel.watch_manager.python_watch_manager.utils import ReconcileRequest

log = alog.use_channel("TEST")


class MockedTimerThread(TimerThread):
    _disable_singleton = True


class MockedReconcileThread(ReconcileThread):
    """Subclass of ReconcileThread that records every request and uses its
    own TimerThread
    """

    _disable_singleton = True

    def __init__(self, reconciler, max_concurrent_reconciles=None):
        self.requests = Queue()
        super().__init__(reconciler, max_concurrent_reconciles)
        self.timer_thread = MockedTimerThread()

    def push_request(self, request: ReconcileRequest):
        self.requests.put(request)
        super().push_request(request)

    def get_request(self, timeout=None) -> ReconcileRequest:
        return self.requests.get(timeout=timeout)


class RecordingReconciler:
    """Stand in for the NamespaceLabelReconciler that records the identities it
    reconciles and returns a configured result
    """

    def __init__(self, deploy_manager=None, result=None, reconcile_time=0.0):
        self.deploy_manager = deploy_manager
        self.result = result or ReconciliationResult(requeue=False)
        self.reconcile_time = reconcile_time
        self.calls = Queue()
        self.active = 0
        self.max_active = 0
        self._lock = threading.Lock()

    def safe_reconcile(self, namespace, name):
        with self._lock:
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        try:
            time.sleep(self.reconcile_time)
            self.calls.put((namespace, name))
            return self.result
        finally:
            with self._lock:
                self.active -= 1

    def get_call(self, timeout=5):
        return self.calls.get(timeout=timeout)


def make_resource(name="team-labels", namespace="test", resource_version="1"):
    return ManagedObject(
        {
            "apiVersion": "dana.io/v1alpha1",
            "kind": "NamespaceLabel",
            "metadata": {
                "name": name,
                "namespace": namespace,
                "resourceVersion": resource_version,
            },
        }
    )
