"""
Admission validation for NamespaceLabels. The validator answers
admission.k8s.io/v1 AdmissionReview requests so that a namespace never
receives a second NamespaceLabel and no NamespaceLabel ever declares a
protected label. It only reads the cluster and never mutates anything.
"""

# Standard
from dataclasses import dataclass
from http import HTTPStatus
from typing import Iterable, Optional

# First Party
import alog

# Local
from .constants import API_VERSION, KIND
from .deploy_manager import DeployManagerBase
from .exceptions import DecodeError, NslabelError
from .labels import get_declared_labels
from .policy import (
    PROTECTED_LABEL_MESSAGE,
    SINGLE_DECLARATION_MESSAGE,
    active_declarations,
    find_protected_label,
)
from .utils import get_metadata, is_being_deleted

log = alog.use_channel("ADMIT")

ADMISSION_API_VERSION = "admission.k8s.io/v1"
ADMISSION_KIND = "AdmissionReview"

# Operations that are admitted without any checks
UNCHECKED_OPERATIONS = ["DELETE", "CONNECT"]


@dataclass(frozen=True)
class AdmissionResult:
    """The decision for a single admission request"""

    allowed: bool
    message: str = ""
    code: int = HTTPStatus.OK

    @classmethod
    def allow(cls) -> "AdmissionResult":
        return cls(allowed=True)

    @classmethod
    def deny(cls, message: str) -> "AdmissionResult":
        return cls(allowed=False, message=message, code=HTTPStatus.FORBIDDEN)

    @classmethod
    def errored(cls, code: int, message: str) -> "AdmissionResult":
        return cls(allowed=False, message=message, code=code)


def is_terminating(incoming) -> bool:
    """Updates to a NamespaceLabel that is being deleted, such as removing its
    finalizer, are never refused
    """
    return isinstance(incoming, dict) and is_being_deleted(incoming)


class NamespaceLabelValidator:
    """Validates NamespaceLabel create and update requests"""

    def __init__(self, deploy_manager: DeployManagerBase):
        self.deploy_manager = deploy_manager

    @staticmethod
    def validate(incoming: dict, existing: Iterable[dict]) -> AdmissionResult:
        """Decide whether a NamespaceLabel may be persisted

        Args:
            incoming:  dict
                The NamespaceLabel being created or updated
            existing:  Iterable[dict]
                The NamespaceLabels already stored in the same namespace

        Returns:
            result:  AdmissionResult
                A denial naming the first rule broken, or an allow

        Raises:
            DecodeError: The incoming object is not a valid NamespaceLabel
        """
        if is_terminating(incoming):
            log.debug(
                "Allowing [%s]: already being deleted",
                get_metadata(incoming).get("name"),
            )
            return AdmissionResult.allow()

        labels = get_declared_labels(incoming)
        name = get_metadata(incoming).get("name")

        others = active_declarations(existing, exclude_name=name)
        if others:
            log.debug(
                "Denying [%s]: found %s",
                name,
                [get_metadata(other).get("name") for other in others],
            )
            return AdmissionResult.deny(SINGLE_DECLARATION_MESSAGE)

        protected_key = find_protected_label(labels)
        if protected_key is not None:
            log.debug("Denying [%s]: protected label [%s]", name, protected_key)
            return AdmissionResult.deny(PROTECTED_LABEL_MESSAGE.format(protected_key))

        return AdmissionResult.allow()

    @alog.logged_function(log.debug2)
    def handle(self, review: dict) -> dict:
        """Answer an AdmissionReview

        Args:
            review:  dict
                The AdmissionReview sent by the API server

        Returns:
            response_review:  dict
                The AdmissionReview carrying the response

        Raises:
            DecodeError: The review has no request uid to answer
        """
        request = review.get("request") if isinstance(review, dict) else None
        if not isinstance(request, dict) or not request.get("uid"):
            raise DecodeError("AdmissionReview has no request.uid")
        uid = request["uid"]
        operation = request.get("operation")
        log.debug("Handling %s admission request [%s]", operation, uid)

        if operation in UNCHECKED_OPERATIONS:
            result = AdmissionResult.allow()
        else:
            result = self._review_request(request)

        log.info(
            "Admission request [%s] %s: %s",
            uid,
            "allowed" if result.allowed else "denied",
            result.message,
        )
        return self.make_response(review, uid, result)

    @staticmethod
    def make_response(review: dict, uid: str, result: AdmissionResult) -> dict:
        response = {"uid": uid, "allowed": result.allowed}
        if not result.allowed:
            response["status"] = {"code": int(result.code), "message": result.message}
        return {
            "apiVersion": (review or {}).get("apiVersion") or ADMISSION_API_VERSION,
            "kind": ADMISSION_KIND,
            "response": response,
        }

    ## Implementation Details ##################################################

    def _review_request(self, request: dict) -> AdmissionResult:
        incoming = request.get("object")
        if is_terminating(incoming):
            return self.validate(incoming, [])

        try:
            get_declared_labels(incoming)
        except DecodeError as err:
            log.warning("Failed to decode admission object: %s", err)
            return AdmissionResult.errored(HTTPStatus.BAD_REQUEST, str(err))

        namespace = request.get("namespace") or get_metadata(incoming).get("namespace")
        existing = self._list_existing(namespace)
        if existing is None:
            return AdmissionResult.errored(
                HTTPStatus.INTERNAL_SERVER_ERROR,
                f"failed to list NamespaceLabels in namespace {namespace}",
            )
        return self.validate(incoming, existing)

    def _list_existing(self, namespace: Optional[str]) -> Optional[list]:
        """List the NamespaceLabels in the namespace, or None on failure"""
        try:
            success, existing = self.deploy_manager.filter_objects_current_state(
                kind=KIND, namespace=namespace, api_version=API_VERSION
            )
        except NslabelError as err:
            log.warning("Listing NamespaceLabels in [%s] failed: %s", namespace, err)
            return None
        if not success:
            log.warning("Listing NamespaceLabels in [%s] failed", namespace)
            return None
        return existing
