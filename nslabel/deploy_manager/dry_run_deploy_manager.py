"""
The DryRunDeployManager implements the DeployManager interface but does not
actually interact with the cluster and instead holds the state of the cluster in
a local map.
"""

# Standard
from datetime import datetime, timedelta
from queue import Empty, Queue
from threading import RLock
from typing import Callable, Iterator, List, Optional, Tuple
import copy
import itertools
import uuid

# First Party
import alog

# Local
from ..exceptions import ConflictError
from ..managed_object import ManagedObject
from ..utils import get_finalizers, get_metadata, is_being_deleted
from .base import DeployManagerBase
from .kube_event import KubeEventType, KubeWatchEvent

log = alog.use_channel("DRY-RUN")


class DryRunDeployManager(DeployManagerBase):
    """
    Deploy manager which doesn't actually deploy!

    Every write assigns a new resourceVersion from a counter, and
    update_object rejects definitions read at an older version, so the
    optimistic concurrency behavior of the API server is reproduced.
    """

    def __init__(self, resources: Optional[List[dict]] = None):
        """Construct with an optional set of resources to seed the cluster with

        Args:
            resources:  Optional[List[dict]]
                Manifests to store before any watches are registered
        """
        # {namespace: {kind: {api_version: {name: manifest}}}}
        self._cluster_content = {}
        self._resource_versions = itertools.count(1)
        self._lock = RLock()

        # Dicts of registered watches and finalizers
        self._watches = {}
        self._finalizers = {}

        for resource in resources or []:
            self._store(copy.deepcopy(resource), call_watches=False)

    ## Interface ###############################################################

    def deploy(self, resource_definitions):
        log.info("DRY RUN deploy")
        changed = False
        for resource in resource_definitions:
            changed = (
                self._store(copy.deepcopy(resource), call_watches=True) or changed
            )
        return True, changed

    def disable(self, resource_definitions):
        log.info("DRY RUN disable")
        changed = False
        for resource in resource_definitions:
            api_version = resource.get("apiVersion")
            kind = resource.get("kind")
            metadata = get_metadata(resource)
            name = metadata.get("name")
            namespace = metadata.get("namespace")

            with self._lock:
                current = self._lookup(kind, name, namespace, api_version)
                if current is None:
                    continue
                changed = True
                current_metadata = current.setdefault("metadata", {})
                if not current_metadata.get("deletionTimestamp"):
                    current_metadata["deletionTimestamp"] = datetime.now().strftime(
                        "%Y-%m-%dT%H:%M:%SZ"
                    )
                    current_metadata["deletionGracePeriodSeconds"] = 0
                    current_metadata["resourceVersion"] = self._next_resource_version()
                snapshot = copy.deepcopy(current)

            # Call any registered finalizers
            for key, callback in self._get_registered_watches(
                api_version, kind, namespace, name, finalizer=True
            ):
                log.debug2("Calling registered finalizer [%s] for [%s]", callback, key)
                callback(copy.deepcopy(snapshot))

            # Objects without finalizers go away right away. The others linger
            # until the last finalizer is removed by an update.
            with self._lock:
                current = self._lookup(kind, name, namespace, api_version)
                if current is not None and not get_finalizers(current):
                    self._delete_key(namespace, kind, api_version, name)

        return True, changed

    def get_object_current_state(self, kind, name, namespace=None, api_version=None):
        log.debug(
            "DRY RUN get_object_current_state of [%s/%s] in [%s]", kind, name, namespace
        )
        with self._lock:
            current = self._lookup(kind, name, namespace, api_version)
            return True, copy.deepcopy(current)

    def filter_objects_current_state(
        self,
        kind,
        namespace=None,
        api_version=None,
        label_selector=None,
        field_selector=None,
    ):  # pylint: disable=too-many-arguments
        log.debug(
            "DRY RUN filter_objects_current_state of [%s] in [%s]", kind, namespace
        )
        matches = []
        with self._lock:
            kind_entries = self._cluster_content.get(namespace, {}).get(kind, {})
            for api_ver, entries in kind_entries.items():
                if api_version is not None and api_ver != api_version:
                    continue
                for resource in entries.values():
                    labels = get_metadata(resource).get("labels") or {}
                    if label_selector and not _match_selector(labels, label_selector):
                        continue
                    if field_selector and not _match_selector(
                        _flatten(resource), field_selector
                    ):
                        continue
                    matches.append(copy.deepcopy(resource))
        log.debug2("Found %d matches for [%s] in %s", len(matches), kind, namespace)
        return True, matches

    def update_object(self, resource_definition):
        api_version = resource_definition.get("apiVersion")
        kind = resource_definition.get("kind")
        metadata = get_metadata(resource_definition)
        name = metadata.get("name")
        namespace = metadata.get("namespace")
        log.debug("DRY RUN update_object [%s/%s] in [%s]", kind, name, namespace)

        with self._lock:
            current = self._lookup(kind, name, namespace, api_version)
            if current is None:
                log.debug2("[%s/%s] no longer exists", kind, name)
                return True, None

            expected_version = metadata.get("resourceVersion")
            current_version = get_metadata(current).get("resourceVersion")
            if expected_version and expected_version != current_version:
                raise ConflictError(
                    f"Operation cannot be fulfilled on {kind} [{name}]: the object "
                    f"has been modified (expected resourceVersion {expected_version}, "
                    f"found {current_version})"
                )

            resource = copy.deepcopy(resource_definition)
            changed = self._store(resource, call_watches=False)
            result = copy.deepcopy(self._lookup(kind, name, namespace, api_version))

        if changed:
            self._call_watches(api_version, kind, namespace, name, result)
        return True, result

    def set_status(
        self,
        kind,
        name,
        namespace,
        status,
        api_version=None,
    ):  # pylint: disable=too-many-arguments
        log.debug(
            "DRY RUN set_status of [%s.%s/%s] in %s: %s",
            api_version,
            kind,
            name,
            namespace,
            status,
        )
        with self._lock:
            current = self._lookup(kind, name, namespace, api_version)
            if current is None:
                log.debug("Did not find [%s/%s] in %s", kind, name, namespace)
                return False, False
            prev_status = current.get("status")
            if prev_status == status:
                return True, False
            current["status"] = copy.deepcopy(status)
            current.setdefault("metadata", {})[
                "resourceVersion"
            ] = self._next_resource_version()
        return True, True

    def watch_objects(  # pylint: disable=too-many-arguments,unused-argument
        self,
        kind: str,
        api_version: Optional[str] = None,
        namespace: Optional[str] = None,
        name: Optional[str] = None,
        label_selector: Optional[str] = None,
        field_selector: Optional[str] = None,
        resource_version: Optional[str] = None,
        timeout: Optional[int] = 15,
        **kwargs,
    ) -> Iterator[KubeWatchEvent]:
        """Watch the DryRunDeployManager for resource changes by registering
        callbacks
        """
        event_queue = Queue()
        seen = set()

        def add_event(manifest: dict):
            resource = ManagedObject(manifest)
            event_type = KubeEventType.ADDED
            if str(resource) in seen:
                event_type = KubeEventType.MODIFIED
            seen.add(str(resource))
            event_queue.put(KubeWatchEvent(type=event_type, resource=resource))

        def delete_event(manifest: dict):
            resource = ManagedObject(manifest)
            seen.discard(str(resource))
            event_queue.put(
                KubeWatchEvent(type=KubeEventType.DELETED, resource=resource)
            )

        # Initial list
        _, manifests = self.filter_objects_current_state(
            kind=kind,
            api_version=api_version,
            namespace=namespace,
            label_selector=label_selector,
            field_selector=field_selector,
        )
        for manifest in manifests:
            resource = ManagedObject(manifest)
            if name and resource.name != name:
                continue
            seen.add(str(resource))
            event = KubeWatchEvent(type=KubeEventType.ADDED, resource=resource)
            log.debug2("Yielding initial event %s", event)
            yield event

        self.register_watch(
            api_version=api_version,
            kind=kind,
            namespace=namespace,
            name=name,
            callback=add_event,
        )
        self.register_finalizer(
            api_version=api_version,
            kind=kind,
            namespace=namespace,
            name=name,
            callback=delete_event,
        )

        end_time = datetime.max
        if timeout:
            end_time = datetime.now() + timedelta(seconds=timeout)
        log.debug2("Waiting till %s", end_time)
        while datetime.now() < end_time:
            remaining = min((end_time - datetime.now()).total_seconds(), 1.0)
            try:
                event = event_queue.get(timeout=max(remaining, 0.01))
            except Empty:
                continue
            log.debug2("Yielding event %s", event)
            yield event

    ## Dry Run Methods #########################################################

    def register_watch(  # pylint: disable=too-many-arguments
        self,
        api_version: str,
        kind: str,
        callback: Callable[[dict], None],
        namespace="",
        name="",
    ):
        """Register a callback to watch for write events on a given
        api_version/kind
        """
        watch_key = self._watch_key(
            api_version=api_version, kind=kind, namespace=namespace, name=name
        )
        log.debug("Registering watch for %s", watch_key)
        self._watches.setdefault(watch_key, []).append(callback)

    def register_finalizer(  # pylint: disable=too-many-arguments
        self,
        api_version: str,
        kind: str,
        callback: Callable[[dict], None],
        namespace="",
        name="",
    ):
        """Register a callback to call on deletion events on a given
        api_version/kind
        """
        watch_key = self._watch_key(
            api_version=api_version, kind=kind, namespace=namespace, name=name
        )
        log.debug("Registering finalizer for %s", watch_key)
        self._finalizers.setdefault(watch_key, []).append(callback)

    ## Implementation Details ##################################################

    @staticmethod
    def _watch_key(api_version="", kind="", namespace="", name=""):
        return ":".join([api_version or "", kind or "", namespace or "", name or ""])

    def _next_resource_version(self) -> str:
        return str(next(self._resource_versions))

    def _lookup(self, kind, name, namespace, api_version) -> Optional[dict]:
        """Find the stored manifest. Callers must hold the lock."""
        kind_entries = self._cluster_content.get(namespace, {}).get(kind, {})
        matches = [
            entries[name]
            for api_ver, entries in kind_entries.items()
            if name in entries and (api_version is None or api_ver == api_version)
        ]
        if len(matches) == 1:
            return matches[0]
        if matches:
            log.warning("Found multiple [%s/%s] across api versions", kind, name)
        return None

    def _get_registered_watches(  # pylint: disable=too-many-arguments
        self,
        api_version: str = "",
        kind: str = "",
        namespace: str = "",
        name: str = "",
        finalizer: bool = False,
    ) -> List[Tuple[str, Callable]]:
        """Get every callback registered for the object, its namespace, or its
        kind cluster wide
        """
        candidate_keys = [
            self._watch_key(
                api_version=api_version, kind=kind, namespace=namespace, name=name
            ),
            self._watch_key(api_version=api_version, kind=kind, namespace=namespace),
            self._watch_key(api_version=api_version, kind=kind),
        ]
        callback_map = self._finalizers if finalizer else self._watches
        return [
            (key, callback)
            for key, callback_list in list(callback_map.items())
            if key in candidate_keys
            for callback in list(callback_list)
        ]

    def _call_watches(self, api_version, kind, namespace, name, resource):
        if resource is None:
            return
        for key, callback in self._get_registered_watches(
            api_version, kind, namespace, name
        ):
            log.debug2("Calling registered watch [%s] for [%s]", callback, key)
            callback(copy.deepcopy(resource))

    def _delete_key(self, namespace, kind, api_version, name):
        log.debug2("Removing [%s/%s] from %s", kind, name, namespace)
        del self._cluster_content[namespace][kind][api_version][name]
        if not self._cluster_content[namespace][kind][api_version]:
            del self._cluster_content[namespace][kind][api_version]
        if not self._cluster_content[namespace][kind]:
            del self._cluster_content[namespace][kind]
        if not self._cluster_content[namespace]:
            del self._cluster_content[namespace]

    def _store(self, resource: dict, call_watches: bool) -> bool:
        """Write a manifest into the cluster map, assigning server-managed
        metadata. Returns whether the content changed.
        """
        api_version = resource.get("apiVersion")
        kind = resource.get("kind")
        metadata = resource.setdefault("metadata", {})
        name = metadata.get("name")
        namespace = metadata.get("namespace")
        log.debug2("DRY RUN store [%s/%s/%s/%s]", namespace, kind, api_version, name)
        log.debug4(resource)

        with self._lock:
            entries = (
                self._cluster_content.setdefault(namespace, {})
                .setdefault(kind, {})
                .setdefault(api_version, {})
            )
            previous = entries.get(name)
            previous_metadata = get_metadata(previous)

            comparable_previous = copy.deepcopy(previous or {})
            comparable_previous.get("metadata", {}).pop("resourceVersion", None)
            comparable_new = copy.deepcopy(resource)
            comparable_new["metadata"].pop("resourceVersion", None)
            for key in ("uid", "creationTimestamp"):
                comparable_new["metadata"].setdefault(
                    key, previous_metadata.get(key)
                )
            changed = comparable_previous != comparable_new

            metadata["uid"] = previous_metadata.get("uid", str(uuid.uuid4()))
            metadata["creationTimestamp"] = previous_metadata.get(
                "creationTimestamp", datetime.now().isoformat()
            )
            if previous is None or changed:
                metadata["resourceVersion"] = self._next_resource_version()
            else:
                metadata["resourceVersion"] = previous_metadata.get("resourceVersion")
            entries[name] = resource

            # Removing the last finalizer from an object pending deletion
            # completes the deletion
            deleted = is_being_deleted(resource) and not get_finalizers(resource)
            if deleted:
                self._delete_key(namespace, kind, api_version, name)

        if call_watches and changed and not deleted:
            self._call_watches(api_version, kind, namespace, name, resource)

        return changed


## Selectors ###################################################################


def _match_selector(values: dict, selector: str) -> bool:
    """Match a flat dict against an equality based selector. Supported terms
    are 'key=value', 'key==value', 'key!=value', 'key' and '!key', joined with
    commas.
    """
    for term in (part.strip() for part in selector.split(",")):
        if not term:
            continue
        if "!=" in term:
            key, expected = (piece.strip() for piece in term.split("!=", 1))
            if str(values.get(key)) == expected:
                return False
        elif "=" in term:
            key, expected = (
                piece.strip() for piece in term.replace("==", "=").split("=", 1)
            )
            if values.get(key) is None or str(values.get(key)) != expected:
                return False
        elif term.startswith("!"):
            if term[1:].strip() in values:
                return False
        elif term not in values:
            return False
    return True


def _flatten(dictionary: dict, prefix: str = "") -> dict:
    """Convert nested dicts to a single level keyed by dotted paths so field
    selectors like metadata.name=foo can be matched
    """
    if not isinstance(dictionary, dict):
        return {prefix: dictionary}
    flat = {}
    for key, value in dictionary.items():
        flat.update(_flatten(value, f"{prefix}.{key}" if prefix else key))
    return flat
