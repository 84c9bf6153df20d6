"""
Python-based implementation of the WatchManager
"""

# Standard
from typing import List, Optional
import threading

# First Party
import alog

# Local
from ... import config
from ...reconcile import NamespaceLabelReconciler
from ..base import WatchManagerBase
from .threads import ReconcileThread, WatchThread

log = alog.use_channel("PYTHW")


class PythonWatchManager(WatchManagerBase):
    """The PythonWatchManager uses the kubernetes watch client to watch
    NamespaceLabels and execute reconciles. It does the following two things

    1. Start a watch thread for each watched namespace (or one cluster-wide)
    2. Start a reconcile thread that runs reconciles on a worker pool
    """

    def __init__(
        self,
        reconciler: Optional[NamespaceLabelReconciler] = None,
        namespace_list: Optional[List[str]] = None,
    ):
        """Initialize the required threads

        Args:
            reconciler: Optional[NamespaceLabelReconciler] = None
                The reconciler to run. Its deploy manager is also used for
                watching.
            namespace_list: Optional[List[str]] = None
                A list of namespaces to watch. Defaults to watch_namespace.
        """
        super().__init__(reconciler or NamespaceLabelReconciler())
        self.deploy_manager = self.reconciler.deploy_manager

        # Setup watch namespace
        self.namespace_list = namespace_list or []
        if not namespace_list and config.watch_namespace != "":
            self.namespace_list = [
                namespace.strip()
                for namespace in config.watch_namespace.split(",")
                if namespace.strip()
            ]

        # Setup Control variables
        self.shutdown = threading.Event()

        # The reconcile thread is a singleton shared across all
        # PythonWatchManagers
        self.reconcile_thread: ReconcileThread = ReconcileThread(self.reconciler)

        self.watch_threads: List[WatchThread] = []
        if len(self.namespace_list) == 0 or "*" in self.namespace_list:
            self.watch_threads.append(self._create_watch_thread())
        else:
            for namespace in self.namespace_list:
                self.watch_threads.append(self._create_watch_thread(namespace))

    ## Interface ###############################################################

    def watch(self) -> bool:
        """Start all threads

        Returns:
            success:  bool
                True if the threads were started
        """
        log.info("Starting PythonWatchManager: %s", self)

        # If watch has been shutdown then exit before starting threads
        if self.shutdown.is_set():
            return False

        self.reconcile_thread.start_thread()
        for watch_thread in self.watch_threads:
            log.debug("Starting watch_thread: %s", watch_thread.name)
            watch_thread.start_thread()
        return True

    def wait(self):
        """Wait shutdown to be signaled"""
        self.shutdown.wait()

    def stop(self):
        """Stop all threads. This waits for running reconciles to finish"""
        log.info("Stopping PythonWatchManager for %s/%s", self.api_version, self.kind)
        self.shutdown.set()
        for watch_thread in self.watch_threads:
            watch_thread.stop_thread()
        self.reconcile_thread.stop_thread()

    ## Helper Functions ########################################################

    def _create_watch_thread(self, namespace: Optional[str] = None) -> WatchThread:
        log.debug3("Adding watch for namespace [%s] to %s", namespace or "*", self)
        return WatchThread(
            reconcile_thread=self.reconcile_thread,
            kind=self.kind,
            api_version=self.api_version,
            namespace=namespace,
            deploy_manager=self.deploy_manager,
        )
