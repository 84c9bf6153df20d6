"""
This defines the base class for all DeployManager types.
"""

# Standard
from typing import Iterator, List, Optional, Tuple
import abc

# Local
from .kube_event import KubeWatchEvent


class DeployManagerBase(abc.ABC):
    """
    Base class for deploy managers which carry out every read and write the
    operator performs against the cluster. Operations return a success flag
    along with their result so that callers can decide how strict to be.
    """

    @abc.abstractmethod
    def deploy(self, resource_definitions: List[dict]) -> Tuple[bool, bool]:
        """Ensure that the given resources exist in the cluster

        Args:
            resource_definitions:  list(dict)
                List of resource object dicts to apply to the cluster

        Returns:
            success:  bool
                Whether or not the deploy succeeded
            changed:  bool
                Whether or not the deployment resulted in changes
        """

    @abc.abstractmethod
    def disable(self, resource_definitions: List[dict]) -> Tuple[bool, bool]:
        """Request deletion of the given resources. Objects carrying finalizers
        stay in the cluster with a deletionTimestamp until the last finalizer
        is removed.

        Args:
            resource_definitions:  list(dict)
                List of resource object dicts to delete

        Returns:
            success:  bool
                Whether or not the delete succeeded
            changed:  bool
                Whether or not the delete resulted in changes
        """

    @abc.abstractmethod
    def get_object_current_state(
        self,
        kind: str,
        name: str,
        namespace: Optional[str] = None,
        api_version: Optional[str] = None,
    ) -> Tuple[bool, Optional[dict]]:
        """Fetch the current state of a given object by name

        Args:
            kind:  str
                The kind of the object to fetch
            name:  str
                The full name of the object to fetch
            namespace:  Optional[str]
                The namespace to search for the object. None for cluster scoped
                kinds such as Namespace.
            api_version:  Optional[str]
                The api_version of the resource kind to fetch

        Returns:
            success:  bool
                Whether or not the state fetch operation succeeded
            current_state:  dict or None
                The dict representation of the current object's configuration,
                or None if not present
        """

    @abc.abstractmethod
    def filter_objects_current_state(  # pylint: disable=too-many-arguments
        self,
        kind: str,
        namespace: Optional[str] = None,
        api_version: Optional[str] = None,
        label_selector: Optional[str] = None,
        field_selector: Optional[str] = None,
    ) -> Tuple[bool, List[dict]]:
        """Fetch the list of objects of a kind that match either/both the label
        or field selector

        Args:
            kind:  str
                The kind of the object to fetch
            namespace:  Optional[str]
                The namespace to search for the objects
            api_version:  Optional[str]
                The api_version of the resource kind to fetch
            label_selector:  Optional[str]
                The label_selector to filter the resources
            field_selector:  Optional[str]
                The field_selector to filter the resources

        Returns:
            success:  bool
                Whether or not the list operation succeeded
            current_state:  List[dict]
                The matching objects, or an empty list if none match
        """

    @abc.abstractmethod
    def update_object(self, resource_definition: dict) -> Tuple[bool, Optional[dict]]:
        """Replace an object in full. The write is guarded by the
        metadata.resourceVersion of the given definition, so a definition that
        was read before a concurrent change is rejected.

        Args:
            resource_definition:  dict
                The complete object to write, including the resourceVersion it
                was read at

        Returns:
            success:  bool
                Whether or not the update succeeded
            updated:  dict or None
                The object as stored after the update, or None if the object no
                longer exists

        Raises:
            ConflictError: The object changed since the definition was read
        """

    @abc.abstractmethod
    def set_status(  # pylint: disable=too-many-arguments
        self,
        kind: str,
        name: str,
        namespace: Optional[str],
        status: dict,
        api_version: Optional[str] = None,
    ) -> Tuple[bool, bool]:
        """Set the status for an object managed by the operator

        Args:
            kind:  str
                The kind of the object
            name:  str
                The name of the object
            namespace:  Optional[str]
                The namespace of the object
            status:  dict
                The status object to set onto the given object
            api_version:  Optional[str]
                The api_version of the resource to update

        Returns:
            success:  bool
                Whether or not the status update succeeded
            changed:  bool
                Whether or not the status update resulted in a change
        """

    @abc.abstractmethod
    def watch_objects(  # pylint: disable=too-many-arguments
        self,
        kind: str,
        api_version: Optional[str] = None,
        namespace: Optional[str] = None,
        name: Optional[str] = None,
        label_selector: Optional[str] = None,
        field_selector: Optional[str] = None,
        resource_version: Optional[str] = None,
    ) -> Iterator[KubeWatchEvent]:
        """Listen for changes in the cluster and return a stream of
        KubeWatchEvents

        Args:
            kind:  str
                The kind of the objects to watch
            api_version:  Optional[str]
                The api_version of the resource kind to watch
            namespace:  Optional[str]
                The namespace to watch, or None for cluster wide
            name:  Optional[str]
                Restrict the watch to a single object
            label_selector:  Optional[str]
                The label_selector to filter the resources
            field_selector:  Optional[str]
                The field_selector to filter the resources
            resource_version:  Optional[str]
                The resource_version the events must be newer than

        Returns:
            watch_stream: Iterator[KubeWatchEvent]
                A stream of KubeWatchEvents generated while watching
        """
