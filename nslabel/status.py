"""
This module holds the functionality used to represent the status of
NamespaceLabel resources.

The status carries a single Ready condition and the label keys the
NamespaceLabel currently owns on its namespace:
{
    "ownedLabels": [sorted list of owned label keys],
    "conditions": [
        {
            "type": "Ready",
            "status": "True" | "False",
            "reason": <ReadyReason>,
            "message": <str>,
            "lastTransactionTime": <iso timestamp>,
        }
    ]
}

The ownedLabels field mirrors the ownership record on the namespace for
visibility only. The record on the namespace is the source of truth.
"""

# Standard
from datetime import datetime
from enum import Enum
from typing import Iterable, List, Optional, Union
import copy

# Third Party
from deepdiff import DeepDiff

# First Party
import alog

log = alog.use_channel("STTUS")

## Public ######################################################################

# The "type" value of the condition
READY_CONDITION = "Ready"

# The key in the condition used for the timestamp
TIMESTAMP_KEY = "lastTransactionTime"

# The key holding the owned label keys
OWNED_LABELS_KEY = "ownedLabels"


class ReadyReason(Enum):
    """Reason constants for the Ready condition"""

    # The declared labels are applied to the namespace
    STABLE = "Stable"

    # The NamespaceLabel breaks a policy and will not be applied until edited
    POLICY_VIOLATION = "PolicyViolation"

    # An operation against the cluster failed unexpectedly
    CLUSTER_ERROR = "ClusterError"

    # Any other error
    ERRORED = "Errored"


def make_namespacelabel_status(
    ready_reason: Optional[Union[ReadyReason, str]] = None,
    ready_message: str = "",
    owned_labels: Optional[Iterable[str]] = None,
    external_conditions: Optional[List[dict]] = None,
    external_status: Optional[dict] = None,
) -> dict:
    """Create a full status object for a NamespaceLabel

    Args:
        ready_reason:  Optional[ReadyReason or str]
            The reason enum for the Ready condition
        ready_message:  str
            Plain-text message explaining the Ready condition value
        owned_labels:  Optional[Iterable[str]]
            The label keys currently owned on the namespace
        external_conditions:  Optional[List[dict]]
            Additional conditions to include in the update
        external_status:  Optional[dict]
            Additional key/value status elements besides "conditions" that
            should be preserved through the update

    Returns:
        status:  dict
            Dict representation of the status for the NamespaceLabel
    """
    now = datetime.now()
    conditions = []
    if ready_reason is not None:
        conditions.append(_make_ready_condition(ready_reason, ready_message, now))
    conditions.extend(external_conditions or [])

    status = copy.deepcopy(external_status or {})
    status["conditions"] = conditions
    if owned_labels is not None:
        status[OWNED_LABELS_KEY] = sorted(owned_labels)
    return status


def update_namespacelabel_status(current_status: dict, **kwargs) -> dict:
    """Create an updated status that keeps everything from the current status
    that the kwargs do not replace

    Args:
        current_status:  dict
            The current status of the NamespaceLabel
        **kwargs:
            Keyword args to pass to make_namespacelabel_status

    Returns:
        updated_status:  dict
            The new status
    """
    current_status = copy.deepcopy(current_status or {})
    current_conditions = current_status.get("conditions", [])
    ready_cond = get_condition(READY_CONDITION, current_status)

    if ready_cond.get("reason") and "ready_reason" not in kwargs:
        kwargs["ready_reason"] = ReadyReason(ready_cond["reason"])
        kwargs.setdefault("ready_message", ready_cond.get("message", ""))

    kwargs["external_conditions"] = [
        cond for cond in current_conditions if cond.get("type") != READY_CONDITION
    ]
    kwargs["external_status"] = {
        key: val for key, val in current_status.items() if key != "conditions"
    }
    log.debug3("Merged status kwargs: %s", kwargs)
    return make_namespacelabel_status(**kwargs)


def update_resource_status(
    deploy_manager: "DeployManagerBase",  # noqa: F821
    kind: str,
    api_version: str,
    name: str,
    namespace: str,
    **kwargs,
) -> dict:
    """Fetch the current status, merge in the update, and write it back if it
    changed meaningfully

    Args:
        deploy_manager: DeployManagerBase
            The deploy manager used to get and set status
        kind: str
            The kind of the resource
        api_version: str
            The api_version of the resource
        name: str
            The name of the resource
        namespace: str
            The namespace the resource is located in
        **kwargs:
            Any additional keyword arguments to pass to
            update_namespacelabel_status

    Returns:
        status_object: dict
            The applied status if successful, otherwise an empty dict
    """
    log.debug3("Updating status for %s/%s.%s/%s", namespace, api_version, kind, name)

    success, current_state = deploy_manager.get_object_current_state(
        api_version=api_version,
        kind=kind,
        name=name,
        namespace=namespace,
    )
    if not success or current_state is None:
        log.warning("Failed to fetch current state for %s/%s/%s", namespace, kind, name)
        return {}
    current_status = current_state.get("status") or {}
    log.debug3("Pre-update status: %s", current_status)

    status_object = update_namespacelabel_status(current_status, **kwargs)
    log.debug3("Updated status: %s", status_object)

    if status_changed(current_status, status_object):
        log.debug("Found meaningful change. Updating status")
        log.debug2("(current) %s != (updated) %s", current_status, status_object)
        success, _ = deploy_manager.set_status(
            kind=kind,
            name=name,
            namespace=namespace,
            api_version=api_version,
            status=status_object,
        )

        # A failed status write never fails the reconcile
        if not success:
            log.warning("Failed to update status for [%s/%s/%s]", namespace, kind, name)
            return {}

    return status_object


def status_changed(current_status: dict, new_status: dict) -> bool:
    """Compare two status objects to determine if there is a meaningful change.
    A meaningful change is any change besides a timestamp.

    Args:
        current_status:  dict
            The raw status dict from the current NamespaceLabel
        new_status:  dict
            The proposed new status

    Returns:
        status_changed:  bool
            True if there is a meaningful change between the current status and
            the new status
    """
    if not isinstance(current_status, dict) or not isinstance(new_status, dict):
        return True

    return bool(
        DeepDiff(
            current_status,
            new_status,
            exclude_obj_callback=lambda _, path: path.endswith(f"{TIMESTAMP_KEY}']"),
        )
    )


def get_condition(type_name: str, current_status: dict) -> dict:
    """Extract the given condition type from a status object

    Args:
        type_name:  str
            The condition type to fetch
        current_status:  dict
            The dict representation of the status

    Returns:
        condition:  dict
            The condition object if found, empty dict otherwise
    """
    cond = [
        cond
        for cond in (current_status or {}).get("conditions", [])
        if cond.get("type") == type_name
    ]
    if cond:
        assert len(cond) == 1, f"Found multiple condition entries for {type_name}"
        return cond[0]
    return {}


## Implementation Details ######################################################


def _make_ready_condition(
    reason: Union[ReadyReason, str],
    message: str,
    last_transaction_time: datetime,
) -> dict:
    """Construct a ready condition whose status follows from the reason"""
    if isinstance(reason, str):
        reason = ReadyReason(reason)
    ready_status = reason == ReadyReason.STABLE
    log.debug2("%s status %s: %s", READY_CONDITION, ready_status, reason)
    return {
        "type": READY_CONDITION,
        "status": str(ready_status),
        "reason": reason.value,
        "message": message,
        TIMESTAMP_KEY: last_transaction_time.isoformat(),
    }
