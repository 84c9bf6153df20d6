"""
The ReconcileThread is the heart of the PythonWatchManager. It serializes
reconciles per NamespaceLabel, runs them on a bounded worker pool and schedules
requeues for failed reconciles.
"""
# Standard
from concurrent.futures import Future, ThreadPoolExecutor
from datetime import datetime
from typing import Dict, List, Optional, Union
import os
import queue
import threading

# First Party
import alog

# Local
from .... import config
from ....reconcile import NamespaceLabelReconciler, ReconciliationResult
from ..utils import (
    JOIN_THREAD_TIMEOUT,
    ReconcileCompletion,
    ReconcileRequest,
    ReconcileRequestType,
    Singleton,
    TimerEvent,
)
from .base import ThreadBase
from .timer import TimerThread

log = alog.use_channel("RCLTHRD")


class ReconcileThread(
    ThreadBase, metaclass=Singleton
):  # pylint: disable=too-many-instance-attributes
    """This class dispatches reconcile requests to the worker pool and tracks
    their completion. There is at most one running and one pending reconcile
    per NamespaceLabel at any time.
    """

    def __init__(
        self,
        reconciler: NamespaceLabelReconciler,
        max_concurrent_reconciles: Optional[int] = None,
    ):
        """Initialize the request queue, helper threads and reconcile tracking

        Args:
            reconciler:  NamespaceLabelReconciler
                The reconciler run for every request
            max_concurrent_reconciles:  Optional[int]
                The size of the worker pool. Defaults to
                python_watch_manager.max_concurrent_reconciles or the number of
                cpus.
        """
        super().__init__(
            name="reconcile_thread",
            deploy_manager=reconciler.deploy_manager,
        )
        self.reconciler = reconciler

        # Requests and worker completions share one queue
        self.request_queue = queue.Queue()

        # Setup helper threads
        self.timer_thread: TimerThread = TimerThread()

        # Setup reconcile, request, and event mappings
        self.running_reconciles: Dict[str, Future] = {}
        self.pending_reconciles: Dict[str, ReconcileRequest] = {}
        self.event_map: Dict[str, TimerEvent] = {}

        # Setup control variables
        self.process_overload = threading.Event()

        self.max_concurrent_reconciles = (
            max_concurrent_reconciles
            or config.python_watch_manager.max_concurrent_reconciles
            or os.cpu_count()
        )
        self.executor = ThreadPoolExecutor(
            max_workers=self.max_concurrent_reconciles,
            thread_name_prefix="reconcile_worker",
        )

    def run(self):
        """Wait for either a new reconcile request or a completed reconcile.
        New requests start a reconcile if none is running for the same
        NamespaceLabel and otherwise become the pending request for it.
        Completions schedule any requeue and start the pending work.
        """
        while not self.should_stop():
            items = self._get_all_requests()
            for item in items:
                if isinstance(item, ReconcileCompletion):
                    identity = self._handle_reconcile_end(item)

                    # If overloaded every pending request may now be able to
                    # start. Otherwise only the finished identity can.
                    if self.process_overload.is_set():
                        for pending in list(self.pending_reconciles.keys()):
                            if not self._handle_pending_reconcile(pending):
                                break
                    else:
                        self._handle_pending_reconcile(identity)
                    continue

                if item.type == ReconcileRequestType.STOPPED:
                    log.debug("Received stop request")
                    return

                log.debug3("Got request %s from queue", item)
                if item.identity() in self.running_reconciles:
                    self._push_to_pending_reconcile(item)
                elif not self._start_reconcile_for_request(item):
                    self._push_to_pending_reconcile(item)

    ## Class Interface #########################################################

    def start_thread(self):
        """Override start_thread to start the timer"""
        self.timer_thread.start_thread()
        super().start_thread()

    def stop_thread(self):
        """Override stop_thread to let running reconciles finish"""
        super().stop_thread()

        if self.is_alive():
            log.debug("Pushing stop reconcile request")
            self.request_queue.put(ReconcileRequest(type=ReconcileRequestType.STOPPED))
            self.join(JOIN_THREAD_TIMEOUT)

        log.info("Waiting for Running Reconciles to end")
        self.executor.shutdown(wait=True)
        self.timer_thread.stop_thread()

    ## Public Interface ########################################################

    def push_request(self, request: ReconcileRequest):
        """Push request to reconcile queue

        Args:
            request: ReconcileRequest
                the ReconcileRequest to add to the queue
        """
        log.info("Pushing request '%s' to reconcile queue", request.identity())
        self.request_queue.put(request)

    ## Event Handlers ##########################################################

    def _handle_reconcile_end(self, completion: ReconcileCompletion) -> str:
        """Record a finished reconcile and create a requeue event if the result
        asks for one

        Returns:
            identity: str
                The identity of the NamespaceLabel that finished
        """
        request = completion.request
        result = completion.result
        identity = request.identity()
        self.running_reconciles.pop(identity, None)

        log.info("Reconcile of %s completed with result %s", identity, result)

        # Cancel any existing requeue events
        if identity in self.event_map:
            log.debug2("Marking event as stale: %s", self.event_map[identity])
            self.event_map.pop(identity).cancel()

        event = self._create_timer_event_for_request(request, result)
        if event:
            self.event_map[identity] = event
        return identity

    def _create_timer_event_for_request(
        self, request: ReconcileRequest, result: Optional[ReconciliationResult]
    ) -> Optional[TimerEvent]:
        """Schedule a requeue for a failed reconcile. Nothing is scheduled when
        a newer request is already pending.
        """
        if not result or not result.requeue:
            return None

        if request.identity() in self.pending_reconciles:
            return None

        requeue_time = datetime.now() + result.requeue_params.requeue_after
        future_request = ReconcileRequest(
            type=ReconcileRequestType.REQUEUED, resource=request.resource
        )
        log.debug3("Pushing requeue request to timer: %s", future_request)
        return self.timer_thread.put_event(
            requeue_time, self.push_request, future_request
        )

    ## Pending Event Helpers ###################################################

    def _handle_pending_reconcile(self, identity: str) -> bool:
        """Start the pending reconcile for an identity if there is one

        Returns:
            successful_start: bool
                If there was a pending reconcile that got started
        """
        if (
            identity in self.running_reconciles
            or identity not in self.pending_reconciles
        ):
            return False

        request = self.pending_reconciles[identity]
        log.debug4("Got request %s from pending reconciles", request)
        if self._start_reconcile_for_request(request):
            self.pending_reconciles.pop(identity)
            return True
        return False

    def _push_to_pending_reconcile(self, request: ReconcileRequest):
        """Keep the newest request as the pending request for its identity"""
        identity = request.identity()
        current = self.pending_reconciles.get(identity)
        if current is not None and request.timestamp <= current.timestamp:
            log.debug4("Event in queue is newer than event %s", request)
            return
        log.debug3("Setting pending reconcile for %s", identity)
        self.pending_reconciles[identity] = request

    ## Worker Functions ########################################################

    def _start_reconcile_for_request(self, request: ReconcileRequest) -> bool:
        """Submit a reconcile to the worker pool

        Returns:
            successfully_started: bool
                If a worker could be started
        """
        if self.should_stop():
            return False

        if len(self.running_reconciles) >= self.max_concurrent_reconciles:
            log.warning("Unable to start reconcile, max concurrent jobs reached")
            self.process_overload.set()
            return False

        self.process_overload.clear()
        log.info("Starting reconcile for request %s", request.identity())
        self.running_reconciles[request.identity()] = self.executor.submit(
            self._run_reconcile, request
        )
        return True

    def _run_reconcile(self, request: ReconcileRequest):
        """Worker body. The completion is always posted back to the queue."""
        result = None
        try:
            result = self.reconciler.safe_reconcile(
                request.resource.namespace, request.resource.name
            )
        finally:
            self.request_queue.put(ReconcileCompletion(request=request, result=result))

    ## Queue Functions #########################################################

    def _get_all_requests(
        self,
    ) -> List[Union[ReconcileRequest, ReconcileCompletion]]:
        """Block for the next item then drain everything else in the queue. A
        stop request is returned on its own.
        """
        items = [self.request_queue.get()]
        while True:
            if isinstance(items[-1], ReconcileRequest) and (
                items[-1].type == ReconcileRequestType.STOPPED
            ):
                return [items[-1]]
            try:
                items.append(self.request_queue.get(block=False))
            except queue.Empty:
                return items
