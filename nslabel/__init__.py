"""
Package exports
"""

# Local
from . import config, status, watch_manager
from .admission import AdmissionResult, NamespaceLabelValidator
from .deploy_manager import DeployManagerBase
from .exceptions import assert_cluster, assert_config, assert_policy
from .reconcile import NamespaceLabelReconciler, ReconciliationResult
