"""
This module holds common helper functions for making testing easy
"""

# Standard
from contextlib import contextmanager
from typing import Dict, List, Optional
from unittest import mock
import copy
import inspect
import os

# First Party
import aconfig
import alog

# Local
from nslabel.cmd.base import CmdBase
from nslabel.config import library_config as config_detail_dict
from nslabel.constants import (
    API_VERSION,
    FINALIZER_NAME,
    KIND,
    NAMESPACE_API_VERSION,
    NAMESPACE_KIND,
    OWNED_LABELS_ANNOTATION_NAME,
)
from nslabel.deploy_manager.dry_run_deploy_manager import DryRunDeployManager
from nslabel.exceptions import ConflictError
from nslabel.utils import get_metadata

log = alog.use_channel("TEST")


def configure_logging():
    alog.configure(
        os.environ.get("LOG_LEVEL", "off"),
        os.environ.get("LOG_FILTERS", ""),
        formatter="json"
        if os.environ.get("LOG_JSON", "").lower() == "true"
        else "pretty",
        thread_id=os.environ.get("LOG_THREAD_ID", "").lower() == "true",
    )


configure_logging()

TEST_NAMESPACE = "test"
TEST_NAME = "team-labels"
SOME_OTHER_NAMESPACE = "somewhere"

## Manifests ###################################################################


def make_namespace(
    name: str = TEST_NAMESPACE,
    labels: Optional[Dict[str, str]] = None,
    annotations: Optional[Dict[str, str]] = None,
) -> dict:
    """Make a Namespace manifest"""
    namespace = {
        "apiVersion": NAMESPACE_API_VERSION,
        "kind": NAMESPACE_KIND,
        "metadata": {"name": name},
    }
    if labels is not None:
        namespace["metadata"]["labels"] = dict(labels)
    if annotations is not None:
        namespace["metadata"]["annotations"] = dict(annotations)
    return namespace


def make_namespacelabel(
    name: str = TEST_NAME,
    namespace: str = TEST_NAMESPACE,
    labels: Optional[Dict[str, str]] = None,
    finalizers: Optional[List[str]] = None,
    deleting: bool = False,
    **kwargs,
) -> dict:
    """Make a NamespaceLabel manifest. Extra kwargs are merged at the top
    level.
    """
    declaration = copy.deepcopy(kwargs)
    declaration.setdefault("apiVersion", API_VERSION)
    declaration.setdefault("kind", KIND)
    metadata = declaration.setdefault("metadata", {})
    metadata.setdefault("name", name)
    metadata.setdefault("namespace", namespace)
    if finalizers is not None:
        metadata["finalizers"] = list(finalizers)
    if deleting:
        metadata["deletionTimestamp"] = "2024-01-01T00:00:00Z"
        metadata.setdefault("finalizers", [FINALIZER_NAME])
    if labels is not None:
        declaration.setdefault("spec", {})["labels"] = dict(labels)
    return declaration


def get_namespace_labels(
    deploy_manager: DryRunDeployManager, namespace: str = TEST_NAMESPACE
) -> Optional[Dict[str, str]]:
    """Get the current labels of a namespace, or None if it does not exist"""
    _, namespace_obj = deploy_manager.get_object_current_state(
        kind=NAMESPACE_KIND, name=namespace, api_version=NAMESPACE_API_VERSION
    )
    if namespace_obj is None:
        return None
    return get_metadata(namespace_obj).get("labels") or {}


def get_ownership_annotation(
    deploy_manager: DryRunDeployManager, namespace: str = TEST_NAMESPACE
) -> Optional[str]:
    """Get the raw ownership record stored on a namespace"""
    _, namespace_obj = deploy_manager.get_object_current_state(
        kind=NAMESPACE_KIND, name=namespace, api_version=NAMESPACE_API_VERSION
    )
    annotations = get_metadata(namespace_obj).get("annotations") or {}
    return annotations.get(OWNED_LABELS_ANNOTATION_NAME)


def get_declaration(
    deploy_manager: DryRunDeployManager,
    name: str = TEST_NAME,
    namespace: str = TEST_NAMESPACE,
) -> Optional[dict]:
    _, declaration = deploy_manager.get_object_current_state(
        kind=KIND, name=name, namespace=namespace, api_version=API_VERSION
    )
    return declaration


## Config ######################################################################


@contextmanager
def library_config(**config_overrides):
    """This context manager sets library config values temporarily and reverts
    them on completion. Nested sections are given as dicts and only the keys
    given are overridden.
    """
    restore = _override_config(config_detail_dict, config_overrides)
    try:
        yield
    finally:
        for restore_fn in reversed(restore):
            restore_fn()


def _override_config(config_obj: dict, overrides: dict) -> list:
    restore = []
    for key, val in overrides.items():
        current = config_obj.get(key)
        if isinstance(val, dict) and isinstance(current, aconfig.AttributeAccessDict):
            restore.extend(_override_config(current, val))
            continue

        if key in config_obj:
            old_val = config_obj[key]

            def restore_fn(obj=config_obj, key=key, old_val=old_val):
                obj[key] = old_val

        else:

            def restore_fn(obj=config_obj, key=key):
                del obj[key]

        restore.append(restore_fn)
        config_obj[key] = val
    return restore


## Failure Injection ###########################################################


def get_failable_method(fail_flag, method, failure_return=False):
    log.debug4(
        "Setting up failable mock of [%s] with fail flag: %s", str(method), fail_flag
    )

    def failable_method(*args, **kwargs):
        if isinstance(fail_flag, Exception) or (
            inspect.isclass(fail_flag) and issubclass(fail_flag, Exception)
        ):
            log.debug4("Raising in failable mock")
            raise fail_flag
        if callable(fail_flag):
            res = fail_flag(*args, **kwargs)
            if res is not None:
                return res
        elif fail_flag:
            log.debug4("Returning %s", failure_return)
            return failure_return
        return method(*args, **kwargs)

    return failable_method


class FailNTimes:
    """Helper callable that fails on the first N calls and passes through on
    every call after that
    """

    def __init__(self, fail_val, fail_count=1, kind=None):
        self.call_count = 0
        self.fail_count = fail_count
        self.fail_val = fail_val
        self.kind = kind

    def __call__(self, *args, **kwargs):
        if self.kind is not None and _get_kind(*args, **kwargs) != self.kind:
            return None
        self.call_count += 1
        if self.call_count <= self.fail_count:
            log.debug("Failing on call %d with %s", self.call_count, self.fail_val)
            if isinstance(self.fail_val, type) and issubclass(self.fail_val, Exception):
                raise self.fail_val("Raising!")
            return self.fail_val
        return None


def _get_kind(*args, **kwargs) -> Optional[str]:
    if "kind" in kwargs:
        return kwargs["kind"]
    if args and isinstance(args[0], dict):
        return args[0].get("kind")
    if args:
        return args[0]
    return None


class MockDeployManager(DryRunDeployManager):
    """The MockDeployManager wraps a standard DryRunDeployManager and adds
    configuration options to simulate failures in each of its operations.
    """

    def __init__(
        self,
        get_state_fail=False,
        filter_fail=False,
        update_fail=False,
        update_conflicts=0,
        update_conflict_kind=None,
        set_status_fail=False,
        resources=None,
        resource_dir=None,
    ):
        """This DeployManager can be configured to have various failure cases
        and will mock the state of the cluster so that get_object_current_state
        will pull its information from the local dict.

        Args:
            update_conflicts:  int
                The number of update_object calls that raise ConflictError
                before updates pass through
            update_conflict_kind:  Optional[str]
                If set, only updates of this kind conflict
        """
        resources = (resources or []) + CmdBase.parse_resource_dir(resource_dir)
        super().__init__(resources)

        self.get_state_fail = get_state_fail
        self.filter_fail = filter_fail
        self.set_status_fail = set_status_fail
        self.update_fail = update_fail
        if update_conflicts:
            self.update_fail = FailNTimes(
                ConflictError, update_conflicts, kind=update_conflict_kind
            )

        self.get_object_current_state = mock.Mock(
            side_effect=get_failable_method(
                self.get_state_fail, super().get_object_current_state, (False, None)
            )
        )
        self.filter_objects_current_state = mock.Mock(
            side_effect=get_failable_method(
                self.filter_fail, super().filter_objects_current_state, (False, [])
            )
        )
        self.update_object = mock.Mock(
            side_effect=get_failable_method(
                self.update_fail, super().update_object, (False, None)
            )
        )
        self.set_status = mock.Mock(
            side_effect=get_failable_method(
                self.set_status_fail, super().set_status, (False, False)
            )
        )

    def get_obj(self, kind, name, namespace=None, api_version=None):
        return self.get_object_current_state(kind, name, namespace, api_version)[1]

    def has_obj(self, *args, **kwargs):
        return self.get_obj(*args, **kwargs) is not None
