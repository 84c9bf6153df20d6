"""
Dry run implementation of the WatchManager abstraction
"""

# Standard
from typing import Optional

# First Party
import alog

# Local
from ..deploy_manager import DryRunDeployManager
from ..reconcile import NamespaceLabelReconciler, ReconciliationResult
from ..utils import get_metadata
from .base import WatchManagerBase

log = alog.use_channel("DRWAT")


class DryRunWatchManager(WatchManagerBase):
    """
    The DryRunWatchManager implements the WatchManagerBase interface using a
    single shared DryRunDeployManager to manage an in-memory representation
    of the cluster. Reconciles run synchronously inside the write that
    triggered them.
    """

    def __init__(
        self,
        reconciler: Optional[NamespaceLabelReconciler] = None,
        deploy_manager: Optional[DryRunDeployManager] = None,
    ):
        """Construct with an optional reconciler and deploy_manager. Whichever
        is missing is created around the other.

        Args:
            reconciler:  Optional[NamespaceLabelReconciler]
                The reconciler to run. Its deploy manager must be the
                DryRunDeployManager being watched.
            deploy_manager:  Optional[DryRunDeployManager]
                If given, this deploy_manager will be used. This allows for
                there to be pre-populated resources.
        """
        if deploy_manager is None:
            deploy_manager = (
                reconciler.deploy_manager if reconciler else DryRunDeployManager()
            )
        assert isinstance(
            deploy_manager, DryRunDeployManager
        ), "DryRunWatchManager requires a DryRunDeployManager"
        super().__init__(reconciler or NamespaceLabelReconciler(deploy_manager))
        self._deploy_manager = deploy_manager
        self._watching = False

        # Identity of the NamespaceLabel currently being reconciled. Writes made
        # by the reconcile itself trigger callbacks that are skipped.
        self._current = None

    def watch(self) -> bool:
        """Register the watch and finalizer callbacks with the deploy manager"""
        if self._watching:
            log.warning("Cannot watch multiple times!")
            return False

        log.debug("Registering %s with the DeployManager", self)
        self._deploy_manager.register_watch(
            api_version=self.api_version,
            kind=self.kind,
            callback=self.run_reconcile,
        )
        self._deploy_manager.register_finalizer(
            api_version=self.api_version,
            kind=self.kind,
            callback=self.run_reconcile,
        )
        self._watching = True
        return True

    def wait(self):
        """There is nothing to do in wait"""

    def stop(self):
        """There is nothing to do in stop"""

    def run_reconcile(self, resource: dict) -> Optional[ReconciliationResult]:
        """Reconcile the NamespaceLabel from a callback"""
        metadata = get_metadata(resource)
        identity = (metadata.get("namespace"), metadata.get("name"))
        if identity == self._current:
            log.debug3("Skipping nested event for %s", identity)
            return None

        previous = self._current
        self._current = identity
        try:
            result = self.reconciler.safe_reconcile(*identity)
        finally:
            self._current = previous

        if result.requeue:
            log.info(
                "Reconcile of %s failed. Dry run does not requeue: %s",
                identity,
                result.exception,
            )
        return result
