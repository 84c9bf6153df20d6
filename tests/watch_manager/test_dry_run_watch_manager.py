"""
Tests for the DryRunWatchManager
"""

# Standard
from unittest import mock
import logging

# Third Party
import pytest

# Local
from nslabel.constants import FINALIZER_NAME
from nslabel.deploy_manager import DryRunDeployManager
from nslabel.reconcile import NamespaceLabelReconciler
from nslabel.test_helpers.helpers import (
    MockDeployManager,
    get_declaration,
    get_namespace_labels,
    get_ownership_annotation,
    library_config,
    make_namespace,
    make_namespacelabel,
)
from nslabel.watch_manager import DryRunWatchManager

## Tests #######################################################################


def test_full_lifecycle():
    """Deploying, updating and deleting a NamespaceLabel drives the namespace
    labels through the watch callbacks
    """
    deploy_manager = DryRunDeployManager(
        resources=[make_namespace(labels={"foreign": "x"})]
    )
    wm = DryRunWatchManager(deploy_manager=deploy_manager)
    assert wm.watch()

    deploy_manager.deploy(
        [make_namespacelabel(labels={"label_1": "a", "label_2": "b"})]
    )
    assert get_namespace_labels(deploy_manager) == {
        "foreign": "x",
        "label_1": "a",
        "label_2": "b",
    }
    assert FINALIZER_NAME in get_declaration(deploy_manager)["metadata"]["finalizers"]

    declaration = get_declaration(deploy_manager)
    declaration["spec"]["labels"] = {"label_1": "updated"}
    deploy_manager.deploy([declaration])
    assert get_namespace_labels(deploy_manager) == {
        "foreign": "x",
        "label_1": "updated",
    }

    deploy_manager.disable([declaration])
    assert get_declaration(deploy_manager) is None
    assert get_namespace_labels(deploy_manager) == {"foreign": "x"}
    assert get_ownership_annotation(deploy_manager) is None


def test_second_declaration_is_refused():
    deploy_manager = DryRunDeployManager(resources=[make_namespace()])
    DryRunWatchManager(deploy_manager=deploy_manager).watch()
    deploy_manager.deploy([make_namespacelabel(name="first", labels={"a": "1"})])
    deploy_manager.deploy([make_namespacelabel(name="second", labels={"b": "2"})])
    assert get_namespace_labels(deploy_manager) == {"a": "1"}
    second = get_declaration(deploy_manager, name="second")
    assert second["status"]["conditions"][0]["reason"] == "PolicyViolation"


def test_nested_events_are_skipped():
    """Writes made by a reconcile do not start a nested reconcile for the same
    NamespaceLabel
    """
    deploy_manager = DryRunDeployManager(resources=[make_namespace()])
    wm = DryRunWatchManager(deploy_manager=deploy_manager)
    wm.watch()
    with mock.patch.object(
        wm.reconciler, "safe_reconcile", wraps=wm.reconciler.safe_reconcile
    ) as safe_reconcile:
        deploy_manager.deploy([make_namespacelabel(labels={"a": "1"})])
    assert safe_reconcile.call_count == 1
    assert get_namespace_labels(deploy_manager) == {"a": "1"}


def test_construct_around_reconciler():
    deploy_manager = DryRunDeployManager()
    reconciler = NamespaceLabelReconciler(deploy_manager)
    wm = DryRunWatchManager(reconciler=reconciler)
    assert wm.reconciler is reconciler


def test_requires_dry_run_deploy_manager():
    with pytest.raises(AssertionError):
        DryRunWatchManager(deploy_manager=object())


def test_watch_twice():
    wm = DryRunWatchManager()
    assert wm.watch()
    assert not wm.watch()


def test_failed_reconcile_returns_result():
    deploy_manager = MockDeployManager(
        resources=[make_namespace(), make_namespacelabel(labels={"k8s.io/a": "b"})]
    )
    wm = DryRunWatchManager(deploy_manager=deploy_manager)
    result = wm.run_reconcile(make_namespacelabel())
    assert result.requeue


def test_reconcile_leaves_log_formatters_alone():
    """A reconcile never swaps the formatters of the process log handlers"""
    formatters = {
        handler: handler.formatter for handler in logging.getLogger().handlers
    }
    deploy_manager = DryRunDeployManager(resources=[make_namespace()])
    wm = DryRunWatchManager(deploy_manager=deploy_manager)
    with library_config(log_json=True):
        wm.run_reconcile(make_namespacelabel())
    for handler, formatter in formatters.items():
        assert handler.formatter is formatter
