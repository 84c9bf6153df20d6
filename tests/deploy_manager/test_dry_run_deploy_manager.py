"""
Tests for the DryRunDeployManager
"""
# Standard
from threading import Thread
import time

# Third Party
import pytest

# Local
from nslabel.deploy_manager import DryRunDeployManager, KubeEventType
from nslabel.exceptions import ConflictError
from nslabel.test_helpers.helpers import (
    TEST_NAME,
    TEST_NAMESPACE,
    make_namespace,
    make_namespacelabel,
)

## Helpers #####################################################################


def get_declaration(deploy_manager, name=TEST_NAME):
    return deploy_manager.get_object_current_state(
        "NamespaceLabel", name, TEST_NAMESPACE
    )[1]


def get_version(obj):
    return int(obj["metadata"]["resourceVersion"])


## Watches and finalizers ######################################################


def test_watches_triggered():
    """Writes call watches registered for the kind"""
    deploy_manager = DryRunDeployManager()
    events = []
    deploy_manager.register_watch(
        api_version="dana.io/v1alpha1", kind="NamespaceLabel", callback=events.append
    )
    deploy_manager.deploy([make_namespacelabel()])
    assert len(events) == 1
    assert events[0]["metadata"]["name"] == TEST_NAME


def test_watches_not_triggered_other_resource():
    deploy_manager = DryRunDeployManager()
    events = []
    deploy_manager.register_watch(
        api_version="dana.io/v1alpha1", kind="NamespaceLabel", callback=events.append
    )
    deploy_manager.deploy([make_namespace()])
    assert not events


def test_watches_not_triggered_without_change():
    deploy_manager = DryRunDeployManager(resources=[make_namespacelabel()])
    events = []
    deploy_manager.register_watch(
        api_version="dana.io/v1alpha1", kind="NamespaceLabel", callback=events.append
    )
    current = get_declaration(deploy_manager)
    deploy_manager.update_object(current)
    deploy_manager.deploy([make_namespacelabel()])
    assert not events


def test_finalizer_triggered():
    """Deleting an object with finalizers calls the finalizer callbacks and
    leaves the object until the finalizers are removed
    """
    deploy_manager = DryRunDeployManager(
        resources=[make_namespacelabel(finalizers=["my/finalizer"])]
    )
    deleted = []
    deploy_manager.register_finalizer(
        api_version="dana.io/v1alpha1", kind="NamespaceLabel", callback=deleted.append
    )
    success, changed = deploy_manager.disable([make_namespacelabel()])
    assert success and changed
    assert len(deleted) == 1
    assert deleted[0]["metadata"]["deletionTimestamp"]

    current = get_declaration(deploy_manager)
    assert current["metadata"]["deletionTimestamp"]
    current["metadata"]["finalizers"] = []
    deploy_manager.update_object(current)
    assert get_declaration(deploy_manager) is None


def test_disable_without_finalizers():
    deploy_manager = DryRunDeployManager(resources=[make_namespacelabel()])
    deploy_manager.disable([make_namespacelabel()])
    assert get_declaration(deploy_manager) is None
    assert deploy_manager.disable([make_namespacelabel()]) == (True, False)


## Optimistic concurrency ######################################################


def test_resource_versions_are_monotonic():
    deploy_manager = DryRunDeployManager(resources=[make_namespacelabel()])
    first = get_declaration(deploy_manager)
    updated = dict(first, spec={"labels": {"a": "1"}})
    _, result = deploy_manager.update_object(updated)
    assert get_version(result) > get_version(first)
    assert result["metadata"]["uid"] == first["metadata"]["uid"]


def test_unchanged_update_keeps_version():
    deploy_manager = DryRunDeployManager(resources=[make_namespacelabel()])
    first = get_declaration(deploy_manager)
    _, result = deploy_manager.update_object(first)
    assert get_version(result) == get_version(first)


def test_stale_update_conflicts():
    """An update read at an older resourceVersion is rejected"""
    deploy_manager = DryRunDeployManager(resources=[make_namespacelabel()])
    stale = get_declaration(deploy_manager)
    fresh = get_declaration(deploy_manager)
    fresh["spec"] = {"labels": {"a": "1"}}
    deploy_manager.update_object(fresh)

    stale["spec"] = {"labels": {"b": "2"}}
    with pytest.raises(ConflictError):
        deploy_manager.update_object(stale)
    assert get_declaration(deploy_manager)["spec"] == {"labels": {"a": "1"}}


def test_update_missing_object():
    deploy_manager = DryRunDeployManager()
    assert deploy_manager.update_object(make_namespacelabel()) == (True, None)


def test_returned_objects_are_copies():
    deploy_manager = DryRunDeployManager(resources=[make_namespacelabel()])
    get_declaration(deploy_manager)["spec"] = "mutated"
    assert "spec" not in get_declaration(deploy_manager)


## Status ######################################################################


def test_set_status():
    deploy_manager = DryRunDeployManager(resources=[make_namespacelabel()])
    events = []
    deploy_manager.register_watch(
        api_version="dana.io/v1alpha1", kind="NamespaceLabel", callback=events.append
    )
    status = {"conditions": []}
    assert deploy_manager.set_status(
        "NamespaceLabel", TEST_NAME, TEST_NAMESPACE, status
    ) == (True, True)
    assert deploy_manager.set_status(
        "NamespaceLabel", TEST_NAME, TEST_NAMESPACE, status
    ) == (True, False)
    assert get_declaration(deploy_manager)["status"] == status
    assert not events


def test_set_status_missing_object():
    deploy_manager = DryRunDeployManager()
    assert deploy_manager.set_status(
        "NamespaceLabel", TEST_NAME, TEST_NAMESPACE, {}
    ) == (False, False)


## Listing #####################################################################


def test_filter_objects_current_state():
    deploy_manager = DryRunDeployManager(
        resources=[
            make_namespacelabel(name="a", metadata={"labels": {"team": "x"}}),
            make_namespacelabel(name="b", metadata={"labels": {"team": "y"}}),
            make_namespacelabel(name="c", namespace="elsewhere"),
            make_namespace(),
        ]
    )
    _, found = deploy_manager.filter_objects_current_state(
        "NamespaceLabel", TEST_NAMESPACE
    )
    assert sorted(obj["metadata"]["name"] for obj in found) == ["a", "b"]

    _, found = deploy_manager.filter_objects_current_state(
        "NamespaceLabel", TEST_NAMESPACE, label_selector="team=x"
    )
    assert [obj["metadata"]["name"] for obj in found] == ["a"]

    _, found = deploy_manager.filter_objects_current_state(
        "NamespaceLabel", TEST_NAMESPACE, label_selector="team!=x"
    )
    assert [obj["metadata"]["name"] for obj in found] == ["b"]

    _, found = deploy_manager.filter_objects_current_state(
        "NamespaceLabel", TEST_NAMESPACE, field_selector="metadata.name=b"
    )
    assert [obj["metadata"]["name"] for obj in found] == ["b"]

    _, found = deploy_manager.filter_objects_current_state(
        "NamespaceLabel", TEST_NAMESPACE, api_version="other/v1"
    )
    assert found == []


def test_cluster_scoped_objects():
    deploy_manager = DryRunDeployManager(resources=[make_namespace()])
    _, namespace = deploy_manager.get_object_current_state(
        "Namespace", TEST_NAMESPACE, api_version="v1"
    )
    assert namespace["metadata"]["name"] == TEST_NAMESPACE


## Watch streams ###############################################################


@pytest.mark.timeout(10)
def test_watch_objects():
    """The watch stream yields the initial objects, then later writes"""
    deploy_manager = DryRunDeployManager(resources=[make_namespacelabel(name="a")])
    events = []

    def watch():
        for event in deploy_manager.watch_objects(
            "NamespaceLabel", "dana.io/v1alpha1", namespace=TEST_NAMESPACE, timeout=2
        ):
            events.append(event)

    watch_thread = Thread(target=watch)
    watch_thread.start()
    time.sleep(0.5)
    deploy_manager.deploy([make_namespacelabel(name="b")])
    deploy_manager.deploy([make_namespacelabel(name="a", spec={"labels": {"x": "y"}})])
    deploy_manager.disable([make_namespacelabel(name="b")])
    watch_thread.join()

    assert [(event.type, event.resource.name) for event in events] == [
        (KubeEventType.ADDED, "a"),
        (KubeEventType.ADDED, "b"),
        (KubeEventType.MODIFIED, "a"),
        (KubeEventType.DELETED, "b"),
    ]
