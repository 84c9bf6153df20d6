"""
This DeployManager is responsible for delegating cluster operations to the
openshift library. It is the one that will be used when the operator is running
in the cluster or outside the cluster making live changes.
"""
# Standard
from typing import Iterator, List, Optional, Tuple
import threading

# Third Party
from kubernetes import client
from kubernetes.watch import Watch
from openshift.dynamic import DynamicClient
from openshift.dynamic.exceptions import ConflictError as DynamicConflictError
from openshift.dynamic.exceptions import (
    DynamicApiError,
    ForbiddenError,
    NotFoundError,
    ResourceNotFoundError,
    ResourceNotUniqueError,
)
from openshift.dynamic.resource import Resource
import kubernetes
import urllib3

# First Party
import alog

# Local
from ..exceptions import ConflictError, assert_cluster
from ..managed_object import ManagedObject
from ..utils import get_metadata
from .base import DeployManagerBase
from .kube_event import KubeEventType, KubeWatchEvent

log = alog.use_channel("OSFTD")

## Deploy Manager ##############################################################


# See this document for value reasonings
# https://github.com/kubernetes-client/python/blob/master/examples/watch/timeout-settings.md
SERVER_WATCH_TIMEOUT = 3600
CLIENT_WATCH_TIMEOUT = 30

# Name recorded in managedFields for every write this operator makes
FIELD_MANAGER = "namespacelabel-operator"


class OpenshiftDeployManager(DeployManagerBase):
    """This DeployManager uses the openshift DynamicClient to interact with the
    cluster
    """

    def __init__(self, dynamic_client: Optional[DynamicClient] = None):
        """
        Args:
            dynamic_client:  Optional[DynamicClient]
                A preconfigured client. If not given, one is created lazily
                from the in-cluster config or the local kubeconfig.
        """
        self._client = dynamic_client

        # Status writes for the same object from concurrent reconciles would
        # otherwise race into 409s
        self._status_lock = threading.Lock()

    @property
    def client(self):
        """Lazy property access to the client"""
        if self._client is None:
            log.debug("Initializing openshift client")
            self._client = self._setup_client()
        return self._client

    @alog.logged_function(log.debug)
    def deploy(self, resource_definitions: List[dict]) -> Tuple[bool, bool]:
        """Server-side apply each resource in order, stopping at the first
        failure
        """
        changed = False
        for resource_definition in resource_definitions:
            api_version, kind, name, namespace = self._get_resource_identifiers(
                resource_definition
            )
            resource_handle = self._get_resource_handle(kind, api_version)
            assert_cluster(
                resource_handle,
                f"Failed to fetch resource handle for {namespace}/{api_version}/{kind}",
            )
            _, current = self.get_object_current_state(
                kind, name, namespace, api_version
            )
            try:
                applied = resource_handle.server_side_apply(
                    resource_definition,
                    name=name,
                    namespace=namespace,
                    field_manager=FIELD_MANAGER,
                    force_conflicts=True,
                ).to_dict()
            except DynamicApiError as err:
                log.warning(
                    "Failed to apply [%s/%s] in %s: %s", kind, name, namespace, err
                )
                return False, changed
            changed = changed or get_metadata(applied).get(
                "resourceVersion"
            ) != get_metadata(current).get("resourceVersion")
        return True, changed

    @alog.logged_function(log.debug)
    def disable(self, resource_definitions: List[dict]) -> Tuple[bool, bool]:
        """Delete each resource. Missing kinds or objects are a success without
        change.
        """
        changed = False
        for resource_definition in resource_definitions:
            api_version, kind, name, namespace = self._get_resource_identifiers(
                resource_definition
            )
            resource_handle = self._get_resource_handle(kind, api_version)
            if not resource_handle:
                continue
            if not namespace:
                resource_handle.namespaced = False
            try:
                log.debug2(
                    "Attempting to delete [%s/%s/%s] from %s",
                    api_version,
                    kind,
                    name,
                    namespace,
                )
                resource_handle.delete(name=name, namespace=namespace)
                changed = True
            except NotFoundError as err:
                log.debug2(
                    "Valid error caught when disabling [%s/%s]: %s", kind, name, err
                )
            except DynamicApiError as err:
                log.warning("Failed to delete [%s/%s]: %s", kind, name, err)
                return False, changed
        return True, changed

    def get_object_current_state(
        self,
        kind: str,
        name: str,
        namespace: Optional[str] = None,
        api_version: Optional[str] = None,
    ) -> Tuple[bool, Optional[dict]]:
        """Fetch the current state using calls directly to the api client

        Returns:
            success:  bool
                Whether or not the state fetch operation succeeded
            current_state:  dict or None
                The dict representation of the current object's configuration,
                or None if not present
        """
        resources = self._get_resource_handle(kind, api_version)
        if not resources:
            return True, None

        if not namespace:
            resources.namespaced = False

        try:
            resource = resources.get(name=name, namespace=namespace)
        except ForbiddenError:
            log.debug(
                "Fetching objects of kind [%s] forbidden in namespace [%s]",
                kind,
                namespace,
            )
            return False, None
        except NotFoundError:
            log.debug(
                "No object named [%s/%s] found in namespace [%s]", kind, name, namespace
            )
            return True, None

        return True, resource.to_dict()

    def filter_objects_current_state(  # pylint: disable=too-many-arguments
        self,
        kind: str,
        namespace: Optional[str] = None,
        api_version: Optional[str] = None,
        label_selector: Optional[str] = None,
        field_selector: Optional[str] = None,
    ) -> Tuple[bool, List[dict]]:
        resources = self._get_resource_handle(kind, api_version)
        if not resources:
            return True, []

        if not namespace:
            resources.namespaced = False

        try:
            list_obj = resources.get(
                label_selector=label_selector,
                field_selector=field_selector,
                namespace=namespace,
            )
        except ForbiddenError:
            log.debug(
                "Listing objects of kind [%s] forbidden in namespace [%s]",
                kind,
                namespace,
            )
            return False, []
        except NotFoundError:
            log.debug(
                "No objects of kind [%s] found in namespace [%s]", kind, namespace
            )
            return True, []
        except DynamicApiError as err:
            log.warning(
                "Listing objects of kind [%s] in namespace [%s] failed: %s",
                kind,
                namespace,
                err.summary(),
            )
            return False, []

        return True, list_obj.to_dict().get("items", [])

    def update_object(self, resource_definition: dict) -> Tuple[bool, Optional[dict]]:
        """Replace the object with a PUT. The API server rejects the write with
        a 409 if the resourceVersion in the definition is stale.
        """
        api_version, kind, name, namespace = self._get_resource_identifiers(
            resource_definition
        )
        resource_handle = self._get_resource_handle(kind, api_version)
        assert_cluster(
            resource_handle,
            f"Failed to fetch resource handle for {namespace}/{api_version}/{kind}",
        )
        if not namespace:
            resource_handle.namespaced = False

        log.debug2(
            "Attempting to replace [%s/%s/%s] in %s at resourceVersion %s",
            api_version,
            kind,
            name,
            namespace,
            get_metadata(resource_definition).get("resourceVersion"),
        )
        try:
            updated = resource_handle.replace(
                resource_definition,
                name=name,
                namespace=namespace,
                field_manager=FIELD_MANAGER,
            )
        except DynamicConflictError as err:
            raise ConflictError(
                f"Conflict updating [{kind}/{name}] in {namespace}: {err.summary()}"
            ) from err
        except NotFoundError:
            log.debug("[%s/%s] was deleted before it could be updated", kind, name)
            return True, None
        except ForbiddenError as err:
            log.warning("Updating [%s/%s] forbidden: %s", kind, name, err.summary())
            return False, None
        return True, updated.to_dict()

    def set_status(  # pylint: disable=too-many-arguments
        self,
        kind: str,
        name: str,
        namespace: Optional[str],
        status: dict,
        api_version: Optional[str] = None,
    ) -> Tuple[bool, bool]:
        """Write the status subresource if it differs from the current one"""
        resource_handle = self._get_resource_handle(kind, api_version)
        if not resource_handle:
            return False, False
        if not namespace:
            resource_handle.namespaced = False

        with self._status_lock:
            try:
                resource = resource_handle.get(name=name, namespace=namespace).to_dict()
                if resource.get("status") == status:
                    log.debug("Status has not changed. No update")
                    return True, False

                resource["status"] = status
                resource_handle.status.replace(body=resource)
            except NotFoundError:
                log.debug("Did not find [%s/%s] in %s", kind, name, namespace)
                return False, False
            except DynamicConflictError as err:
                raise ConflictError(
                    f"Conflict updating status of [{kind}/{name}]: {err.summary()}"
                ) from err

            log.debug2(
                "Successfully set the status for [%s/%s] in %s", kind, name, namespace
            )
            return True, True

    def watch_objects(  # pylint: disable=too-many-arguments
        self,
        kind: str,
        api_version: Optional[str] = None,
        namespace: Optional[str] = None,
        name: Optional[str] = None,
        label_selector: Optional[str] = None,
        field_selector: Optional[str] = None,
        resource_version: Optional[str] = None,
        watch_manager: Optional[Watch] = None,
    ) -> Iterator[KubeWatchEvent]:
        watch_manager = watch_manager if watch_manager else Watch()
        resource_handle = self._get_resource_handle(kind, api_version)
        assert_cluster(
            resource_handle,
            f"Failed to fetch resource handle for {namespace}/{api_version}/{kind}",
        )

        resource_version = resource_version if resource_version else 0

        while True:
            try:
                for event_obj in watch_manager.stream(
                    resource_handle.get,
                    resource_version=resource_version,
                    namespace=namespace,
                    name=name,
                    label_selector=label_selector,
                    field_selector=field_selector,
                    serialize=False,
                    timeout_seconds=SERVER_WATCH_TIMEOUT,
                    _request_timeout=CLIENT_WATCH_TIMEOUT,
                ):
                    event_type = KubeEventType(event_obj["type"])
                    event_resource = ManagedObject(event_obj["object"])
                    resource_version = event_resource.resource_version
                    yield KubeWatchEvent(event_type, event_resource)
            except client.exceptions.ApiException as exception:
                if exception.status == 410:
                    log.debug2(
                        "Resource age expired, restarting watch %s/%s",
                        kind,
                        api_version,
                    )
                    resource_version = None
                else:
                    log.info("Unknown ApiException received, re-raising")
                    raise
            except urllib3.exceptions.ReadTimeoutError:
                log.debug4(
                    "Watch Socket closed, restarting watch %s/%s", kind, api_version
                )
            except urllib3.exceptions.ProtocolError:
                log.debug2(
                    "Invalid Chunk from server, restarting watch %s/%s",
                    kind,
                    api_version,
                )

            # This is hidden attribute so probably not best to check
            if watch_manager._stop:  # pylint: disable=protected-access
                log.debug(
                    "Internal watch stopped. Stopping deploy manager watch for %s/%s",
                    kind,
                    api_version,
                )
                return

    ## Implementation Helpers ##################################################

    @staticmethod
    def _setup_client():
        """Create a DynamicClient that will work based on where the operator is
        running
        """
        try:
            log.debug2("Running with in-cluster config")
            kube_config = kubernetes.client.Configuration()
            kubernetes.config.load_incluster_config(client_configuration=kube_config)
            api_client = kubernetes.client.ApiClient(kube_config)
            return DynamicClient(api_client)

        except kubernetes.config.ConfigException:
            log.debug2("Running with out-of-cluster config")
            return DynamicClient(kubernetes.config.new_client_from_config())

    def _get_resource_handle(
        self, kind: str, api_version: Optional[str]
    ) -> Optional[Resource]:
        """Get the openshift resource handle for a specified kind and api_version"""
        resources = None
        try:
            resources = self.client.resources.get(kind=kind, api_version=api_version)
        except (ResourceNotFoundError, ResourceNotUniqueError):
            log.debug(
                "No objects of kind [%s] found or multiple objects matching request found",
                kind,
            )
        return resources

    @staticmethod
    def _get_resource_identifiers(
        resource_definition: dict,
    ) -> Tuple[Optional[str], str, str, Optional[str]]:
        metadata = get_metadata(resource_definition)
        kind = resource_definition.get("kind")
        name = metadata.get("name")
        assert None not in [kind, name], "Cannot use resource without kind or name"
        return (
            resource_definition.get("apiVersion"),
            kind,
            name,
            metadata.get("namespace"),
        )
