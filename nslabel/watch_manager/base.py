"""
This module holds the base class interface for the various implementations of
WatchManager
"""

# Standard
import abc

# First Party
import alog

# Local
from ..constants import API_VERSION, KIND

log = alog.use_channel("WATCH")

# Forward declaration of the reconciler
RECONCILER_TYPE = "NamespaceLabelReconciler"


class WatchManagerBase(abc.ABC):
    """A WatchManager is responsible for linking NamespaceLabel events with
    the NamespaceLabelReconciler that runs the reconciliation
    """

    # Class-global mapping of all watches managed by this operator
    _ALL_WATCHES = {}

    ## Interface ###############################################################

    def __init__(self, reconciler: RECONCILER_TYPE):
        """Construct with the reconciler that events are dispatched to

        Args:
            reconciler:  NamespaceLabelReconciler
                The reconciler to run for each NamespaceLabel event
        """
        self.reconciler = reconciler
        self.kind = KIND
        self.api_version = API_VERSION

        # Register this watch instance
        watch_key = str(self)
        assert (
            watch_key not in self._ALL_WATCHES
        ), f"Only a single watch manager may watch {self.api_version}/{self.kind}"
        self._ALL_WATCHES[watch_key] = self

    @abc.abstractmethod
    def watch(self) -> bool:
        """Initialize the persistent watch and return whether or not it was
        started successfully.

        Returns:
            success:  bool
                True if the watch was spawned correctly, False otherwise.
        """

    @abc.abstractmethod
    def wait(self):
        """Block until the managed watch has been terminated"""

    @abc.abstractmethod
    def stop(self):
        """Terminate this watch if it is currently running"""

    ## Utilities ###############################################################

    @classmethod
    def start_all(cls) -> bool:
        """Start all registered watches and wait for them to terminate

        Returns:
            success:  bool
                True if all watches started successfully, False otherwise
        """
        started_watches = []
        success = True
        for _, watch in sorted(cls._ALL_WATCHES.items()):
            if watch.watch():
                log.debug("Successfully started %s", watch)
                started_watches.append(watch)
            else:
                log.warning("Failed to start %s", watch)
                success = False
                for started_watch in started_watches:
                    started_watch.stop()
                break

        for watch in cls._ALL_WATCHES.values():
            watch.wait()

        return success

    @classmethod
    def stop_all(cls):
        """Stop all watches"""
        for watch in cls._ALL_WATCHES.values():
            try:
                watch.stop()
                log.debug2("Waiting for %s to terminate", watch)
                watch.wait()
            except Exception as exc:  # pylint: disable=broad-exception-caught
                log.error("Failed to stop watch manager %s", exc, exc_info=True)

    @classmethod
    def clear_all(cls):
        """Forget every registered watch. Registered watches should be stopped
        first.
        """
        cls._ALL_WATCHES.clear()

    ## Implementation Details ##################################################

    def __str__(self):
        return f"Watch[{self.api_version}/{self.kind}]"
