"""
The NamespaceLabelReconciler drives a namespace's labels to match the
NamespaceLabel declared in it. Every change to the namespace is one
optimistic-concurrency update that carries both the label delta and the new
ownership record, and the whole read-compute-write cycle is retried on
conflict.

A NamespaceLabel moves through these states:

    Gone <- Active-no-finalizer -> Active-with-finalizer -> Deletion-pending -> Gone

Cleanup of owned labels only ever runs in Deletion-pending, before the
finalizer is cleared.
"""

# Standard
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Optional
import base64
import datetime
import time
import uuid

# First Party
import alog

# Local
from . import config, status
from .constants import (
    API_VERSION,
    FINALIZER_NAME,
    KIND,
    NAMESPACE_API_VERSION,
    NAMESPACE_KIND,
)
from .deploy_manager import (
    DeployManagerBase,
    DryRunDeployManager,
    OpenshiftDeployManager,
)
from .exceptions import ClusterError, ConflictError, PolicyError, assert_cluster
from .labels import (
    OwnershipRecord,
    apply_label_delta,
    compute_label_delta,
    get_declared_labels,
    labels_owned_by_others,
    record_changed,
)
from .log_format import reconcile_context
from .policy import check_protected_labels, check_single_declaration
from .utils import get_finalizers, get_metadata, is_being_deleted

log = alog.use_channel("RECONCILE")


## Data models #################################################################


@dataclass
class RequeueParams:
    """RequeueParams holds parameters for requeue request"""

    requeue_after: datetime.timedelta = field(
        default_factory=lambda: datetime.timedelta(
            seconds=float(config.requeue_after_seconds)
        )
    )


@dataclass
class ReconciliationResult:
    """ReconciliationResult is the result of a reconciliation"""

    # Flag to control requeue of current reconcile request
    requeue: bool
    # Parameters for requeue request
    requeue_params: RequeueParams = field(default_factory=RequeueParams)
    # The exception that stopped the reconciliation, if any
    exception: Optional[Exception] = None


class DeclarationState(Enum):
    """Lifecycle state of a NamespaceLabel as seen by the reconciler"""

    GONE = "Gone"
    ACTIVE_NO_FINALIZER = "ActiveNoFinalizer"
    ACTIVE_WITH_FINALIZER = "ActiveWithFinalizer"
    DELETION_PENDING = "DeletionPending"
    # Being deleted, but our finalizer is not on it so there is nothing to
    # clean up
    DELETION_UNMANAGED = "DeletionUnmanaged"


def get_declaration_state(declaration: Optional[dict]) -> DeclarationState:
    """Classify a NamespaceLabel by its deletion marker and finalizer"""
    if declaration is None:
        return DeclarationState.GONE
    has_finalizer = FINALIZER_NAME in get_finalizers(declaration)
    if is_being_deleted(declaration):
        if has_finalizer:
            return DeclarationState.DELETION_PENDING
        return DeclarationState.DELETION_UNMANAGED
    if has_finalizer:
        return DeclarationState.ACTIVE_WITH_FINALIZER
    return DeclarationState.ACTIVE_NO_FINALIZER


## Conflict retries ############################################################


def retry_on_conflict(
    operation: Callable,
    max_retries: Optional[int] = None,
    backoff_base_seconds: Optional[float] = None,
):
    """Run an operation, running it again from scratch whenever it raises a
    ConflictError. The operation must re-read everything it writes.

    Args:
        operation:  Callable
            A no-argument callable performing one read-compute-write cycle
        max_retries:  Optional[int]
            The number of retries after the first attempt. Defaults to
            retry_on_conflict.max_retries.
        backoff_base_seconds:  Optional[float]
            The n-th retry waits n times this long. Defaults to
            retry_on_conflict.backoff_base_seconds.

    Returns:
        result:  Any
            The return value of the first successful attempt

    Raises:
        ConflictError: Every attempt conflicted
    """
    if max_retries is None:
        max_retries = config.retry_on_conflict.max_retries
    if backoff_base_seconds is None:
        backoff_base_seconds = config.retry_on_conflict.backoff_base_seconds

    attempt = 0
    while True:
        try:
            return operation()
        except ConflictError as err:
            if attempt >= max_retries:
                log.warning("Giving up after %d conflicting attempts", attempt + 1)
                raise
            attempt += 1
            backoff_duration = backoff_base_seconds * attempt
            log.debug2("Handling ConflictError: %s", err)
            log.debug3("Retry %d/%d in %fs", attempt, max_retries, backoff_duration)
            time.sleep(backoff_duration)


## NamespaceLabelReconciler ####################################################


class NamespaceLabelReconciler:
    """This class runs reconciliations of NamespaceLabels against the cluster
    through a DeployManager
    """

    def __init__(self, deploy_manager: Optional[DeployManagerBase] = None):
        """
        Args:
            deploy_manager:  Optional[DeployManagerBase]
                Deploy manager to use. If not given, one is created based on
                the dry_run config.
        """
        if deploy_manager is None:
            deploy_manager = (
                DryRunDeployManager() if config.dry_run else OpenshiftDeployManager()
            )
        self.deploy_manager = deploy_manager

    @alog.logged_function(log.info)
    @alog.timed_function(log.info, "Reconcile finished in: ")
    def reconcile(self, namespace: str, name: str) -> ReconciliationResult:
        """Reconcile a single NamespaceLabel. Errors propagate to the caller.

        Args:
            namespace:  str
                The namespace of the NamespaceLabel (and the target namespace)
            name:  str
                The name of the NamespaceLabel

        Returns:
            reconcile_result:  ReconciliationResult
                A result that does not requeue

        Raises:
            PolicyError: The NamespaceLabel breaks a policy
            ClusterError: A required cluster operation failed
            ConflictError: Conflicts persisted through every retry
        """
        declaration = self._get_declaration(namespace, name)
        state = get_declaration_state(declaration)
        log.debug("NamespaceLabel [%s/%s] is %s", namespace, name, state.value)

        if state is DeclarationState.GONE:
            log.info("NamespaceLabel [%s/%s] not found. Nothing to do", namespace, name)
            return ReconciliationResult(requeue=False)

        with reconcile_context(declaration, self.generate_id()):
            if state is DeclarationState.DELETION_UNMANAGED:
                log.debug(
                    "NamespaceLabel [%s/%s] has no finalizer to run", namespace, name
                )
            elif state is DeclarationState.DELETION_PENDING:
                self._finalize(namespace, name)
            else:
                self._reconcile_active(namespace, name, declaration, state)

        return ReconciliationResult(requeue=False)

    def safe_reconcile(self, namespace: str, name: str) -> ReconciliationResult:
        """Call reconcile, catching every error. This function guarantees a safe
        result, which the watch managers depend on.

        Args:
            namespace:  str
                The namespace of the NamespaceLabel
            name:  str
                The name of the NamespaceLabel

        Returns:
            reconcile_result:  ReconciliationResult
                No requeue on success. On error, a requeue after
                requeue_after_seconds with the error attached.
        """
        try:
            return self.reconcile(namespace, name)
        except Exception as exc:  # pylint: disable=broad-except
            log.warning("Handling caught error in reconcile: %s", exc, exc_info=True)
            error = exc

        if config.manage_status:
            try:
                self._update_error_status(namespace, name, error)
                log.debug("Updated NamespaceLabel status with error message")
            except Exception as exc:  # pylint: disable=broad-except
                log.error("Failed to update status: %s", exc, exc_info=True)

        log.info("Requeuing NamespaceLabel due to error during reconcile")
        return ReconciliationResult(
            requeue=True, requeue_params=RequeueParams(), exception=error
        )

    ## Logging #################################################################

    @classmethod
    def generate_id(cls) -> str:
        """Generates a unique human readable id for this reconciliation

        Returns:
            id: str
                A unique base32 encoded id
        """
        base32_str = base64.b32encode(uuid.uuid4().bytes).decode("utf-8")
        reconcile_id = base32_str[:22]
        log.debug("Generated reconcile id: %s", reconcile_id)
        return reconcile_id

    ## Reconciliation Stages ###################################################

    def _reconcile_active(
        self, namespace: str, name: str, declaration: dict, state: DeclarationState
    ):
        desired = get_declared_labels(declaration)
        self._check_policy(namespace, desired)
        if state is DeclarationState.ACTIVE_NO_FINALIZER:
            self._ensure_finalizer(namespace, name)
        record = self._apply_declared_labels(namespace, name, desired)
        self._update_status(
            namespace,
            name,
            ready_reason=status.ReadyReason.STABLE,
            ready_message=(
                f"Applied {len(record.labels)} label(s) to namespace {namespace}"
            ),
            owned_labels=record.labels,
        )

    def _get_declaration(self, namespace: str, name: str) -> Optional[dict]:
        success, declaration = self.deploy_manager.get_object_current_state(
            kind=KIND, name=name, namespace=namespace, api_version=API_VERSION
        )
        assert_cluster(
            success, f"Failed to fetch NamespaceLabel [{namespace}/{name}]"
        )
        return declaration

    def _get_namespace(self, namespace: str) -> Optional[dict]:
        success, namespace_obj = self.deploy_manager.get_object_current_state(
            kind=NAMESPACE_KIND, name=namespace, api_version=NAMESPACE_API_VERSION
        )
        assert_cluster(success, f"Failed to fetch namespace [{namespace}]")
        return namespace_obj

    def _check_policy(self, namespace: str, desired: dict):
        """Raise a PolicyError if the namespace holds more than one active
        NamespaceLabel or the declared labels include a protected key
        """
        success, declarations = self.deploy_manager.filter_objects_current_state(
            kind=KIND, namespace=namespace, api_version=API_VERSION
        )
        assert_cluster(
            success, f"Failed to list NamespaceLabels in namespace [{namespace}]"
        )
        check_single_declaration(declarations)
        check_protected_labels(desired)

    def _ensure_finalizer(self, namespace: str, name: str):
        def add_finalizer():
            declaration = self._get_declaration(namespace, name)
            if declaration is None or FINALIZER_NAME in get_finalizers(declaration):
                return
            log.debug("Adding finalizer to [%s/%s]", namespace, name)
            metadata = declaration.setdefault("metadata", {})
            metadata["finalizers"] = get_finalizers(declaration) + [FINALIZER_NAME]
            success, _ = self.deploy_manager.update_object(declaration)
            assert_cluster(success, f"Failed to add finalizer to [{namespace}/{name}]")

        retry_on_conflict(add_finalizer)

    def _apply_declared_labels(
        self, namespace: str, name: str, desired: dict
    ) -> OwnershipRecord:
        """Apply the declared labels and the matching ownership record in one
        update

        Returns:
            record:  OwnershipRecord
                The ownership record now stored on the namespace
        """

        def apply_labels() -> OwnershipRecord:
            namespace_obj = self._get_namespace(namespace)
            new_record = OwnershipRecord.create(name, desired)
            if namespace_obj is None:
                log.warning("Namespace [%s] not found. Nothing to label", namespace)
                return OwnershipRecord(owner=name)

            owned = OwnershipRecord.parse(namespace_obj, name)
            current_labels = get_metadata(namespace_obj).get("labels") or {}
            delta = compute_label_delta(
                desired,
                owned.labels,
                current_labels,
                claimed=labels_owned_by_others(namespace_obj, name),
            )
            if delta.empty() and not record_changed(namespace_obj, new_record):
                log.debug("Namespace [%s] labels already up to date", namespace)
                return new_record

            log.info(
                "Updating namespace [%s]: setting %s, removing %s",
                namespace,
                sorted(delta.to_set),
                sorted(delta.to_remove),
            )
            success, _ = self.deploy_manager.update_object(
                apply_label_delta(namespace_obj, delta, new_record)
            )
            assert_cluster(success, f"Failed to update namespace [{namespace}]")
            return new_record

        return retry_on_conflict(apply_labels)

    def _finalize(self, namespace: str, name: str):
        """Remove the owned labels, then the finalizer"""
        self._remove_owned_labels(namespace, name)

        def remove_finalizer():
            declaration = self._get_declaration(namespace, name)
            if declaration is None or FINALIZER_NAME not in get_finalizers(declaration):
                return
            log.debug("Removing finalizer from [%s/%s]", namespace, name)
            declaration["metadata"]["finalizers"] = [
                finalizer
                for finalizer in get_finalizers(declaration)
                if finalizer != FINALIZER_NAME
            ]
            success, _ = self.deploy_manager.update_object(declaration)
            assert_cluster(
                success, f"Failed to remove finalizer from [{namespace}/{name}]"
            )

        retry_on_conflict(remove_finalizer)

    def _remove_owned_labels(self, namespace: str, name: str):
        def remove_labels():
            namespace_obj = self._get_namespace(namespace)
            if namespace_obj is None:
                log.debug("Namespace [%s] already gone", namespace)
                return

            owned = OwnershipRecord.parse(namespace_obj, name)
            current_labels = get_metadata(namespace_obj).get("labels") or {}
            delta = compute_label_delta(
                {},
                owned.labels,
                current_labels,
                claimed=labels_owned_by_others(namespace_obj, name),
            )
            released = OwnershipRecord(owner=name)
            if delta.empty() and not record_changed(namespace_obj, released):
                log.debug("No labels owned by [%s] on [%s]", name, namespace)
                return

            log.info(
                "Removing labels %s owned by [%s] from namespace [%s]",
                sorted(delta.to_remove),
                name,
                namespace,
            )
            success, _ = self.deploy_manager.update_object(
                apply_label_delta(namespace_obj, delta, released)
            )
            assert_cluster(success, f"Failed to update namespace [{namespace}]")

        retry_on_conflict(remove_labels)

    ## Status ##################################################################

    def _update_status(self, namespace: str, name: str, **kwargs):
        if not config.manage_status:
            return
        retry_on_conflict(
            lambda: status.update_resource_status(
                self.deploy_manager,
                kind=KIND,
                api_version=API_VERSION,
                name=name,
                namespace=namespace,
                **kwargs,
            )
        )

    def _update_error_status(self, namespace: str, name: str, error: Exception):
        """Set the Ready condition from the error that stopped the reconcile.
        The owned labels are left as they are.
        """
        if isinstance(error, PolicyError):
            ready_reason = status.ReadyReason.POLICY_VIOLATION
        elif isinstance(error, ClusterError):
            ready_reason = status.ReadyReason.CLUSTER_ERROR
        else:
            ready_reason = status.ReadyReason.ERRORED
        self._update_status(
            namespace, name, ready_reason=ready_reason, ready_message=str(error)
        )
