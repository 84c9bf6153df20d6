"""The WatchThread is responsible for monitoring the cluster for NamespaceLabel
events
"""
# Standard
from typing import Optional
import os

# Third Party
from kubernetes import watch

# First Party
import alog

# Local
from .... import config
from ....deploy_manager import DeployManagerBase, KubeWatchEvent
from ..utils import ReconcileRequest
from .base import ThreadBase

log = alog.use_channel("WTCHTHRD")

# Forward declaration of ReconcileThread
RECONCILE_THREAD_TYPE = "ReconcileThread"


class WatchThread(ThreadBase):
    """The WatchThread streams events for one kind, either cluster-wide or for a
    single namespace, and submits a ReconcileRequest for every event
    """

    def __init__(  # pylint: disable=too-many-arguments
        self,
        reconcile_thread: RECONCILE_THREAD_TYPE,
        kind: str,
        api_version: str,
        namespace: Optional[str] = None,
        deploy_manager: Optional[DeployManagerBase] = None,
    ):
        """
        Args:
            reconcile_thread: ReconcileThread
                The reconcile thread to submit requests to
            kind: str
                The kind to watch
            api_version: str
                The api_version to watch
            namespace: Optional[str] = None
                The namespace to watch. If none then cluster-wide
            deploy_manager: Optional[DeployManagerBase]
                The deploy_manager to watch events with
        """
        self.reconcile_thread = reconcile_thread
        self.kind = kind
        self.api_version = api_version
        self.namespace = namespace

        name = f"watch_thread_{self.api_version}_{self.kind}"
        if self.namespace:
            name = name + f"_{self.namespace}"
        super().__init__(name=name, daemon=True, deploy_manager=deploy_manager)

        self.kubernetes_watch = watch.Watch()

        # Variables for tracking retries
        self.attempts_left = config.python_watch_manager.watch_retry_count
        self.retry_delay = float(config.python_watch_manager.watch_retry_delay_seconds)

    def run(self):
        """Watch the DeployManager and push a reconcile request for each event.
        Failed watches are restarted a bounded number of times before the
        process exits.
        """
        resource_version = None
        while True:
            try:
                if self.should_stop():
                    log.debug("Watch stopped. Shutting down")
                    return

                for event in self.deploy_manager.watch_objects(
                    self.kind,
                    self.api_version,
                    namespace=self.namespace,
                    resource_version=resource_version,
                    watch_manager=self.kubernetes_watch,
                ):
                    if self.should_stop():
                        log.debug("Watch stopped. Shutting down")
                        return
                    resource_version = (
                        event.resource.resource_version or resource_version
                    )
                    self._request_reconcile(event)

                if self.should_stop():
                    return
            except Exception as exc:  # pylint: disable=broad-except
                log.info(
                    "Exception raised when attempting to watch %s",
                    repr(exc),
                    exc_info=exc,
                )
                if self.attempts_left <= 0:
                    log.error(
                        "Unable to start watch within %d attempts",
                        config.python_watch_manager.watch_retry_count,
                    )
                    os._exit(1)

                if not self.wait_on_shutdown(self.retry_delay):
                    log.debug("Watch stopped during retry. Shutting down")
                    return
                self.attempts_left = self.attempts_left - 1
                resource_version = None
                log.info("Restarting watch with %d attempts left", self.attempts_left)

    ## Class Interface #########################################################

    def stop_thread(self):
        """Override stop_thread to stop the kubernetes client's Watch as well"""
        super().stop_thread()
        self.kubernetes_watch.stop()

    ## Implementation Details ##################################################

    def _request_reconcile(self, event: KubeWatchEvent):
        log.debug(
            "Requesting reconcile for %s after %s event",
            event.resource,
            event.type.value,
            extra={"resource": event.resource.definition},
        )
        self.reconcile_thread.push_request(
            ReconcileRequest(type=event.type, resource=event.resource)
        )
