"""
Custom logging formats that add NamespaceLabel reconcile details to json logs.

Reconciles run concurrently on worker threads, so the NamespaceLabel being
reconciled is tracked per thread and read back by the formatter of whichever
thread emits the log line.
"""

# Standard
from contextlib import contextmanager
from typing import Optional, Tuple
import threading

# First Party
from alog import AlogJsonFormatter

_reconcile_context = threading.local()


@contextmanager
def reconcile_context(manifest: dict, reconciliation_id: str):
    """Attribute every log line emitted by the current thread inside this
    context to the given NamespaceLabel and reconciliationId

    Args:
        manifest:  dict
            The NamespaceLabel being reconciled
        reconciliation_id:  str
            The id of this reconcile
    """
    previous = get_reconcile_context()
    _reconcile_context.current = (manifest, reconciliation_id)
    try:
        yield
    finally:
        _reconcile_context.current = previous


def get_reconcile_context() -> Tuple[Optional[dict], Optional[str]]:
    """Get the (manifest, reconciliation_id) of the current thread's reconcile"""
    return getattr(_reconcile_context, "current", (None, None))


class NslabelJsonFormatter(AlogJsonFormatter):
    """Json log format that extends AlogJsonFormatter with thread information,
    the identity of the NamespaceLabel being reconciled, and the
    reconciliationId
    """

    _FIELDS_TO_PRINT = AlogJsonFormatter._FIELDS_TO_PRINT + [
        "process",
        "thread",
        "threadName",
        "kind",
        "apiVersion",
        "resourceVersion",
        "resourceName",
        "resourceNamespace",
        "reconciliationId",
    ]

    def format(self, record):
        manifest, reconciliation_id = get_reconcile_context()
        if reconciliation_id:
            record.reconciliationId = reconciliation_id

        if resource := getattr(record, "resource", manifest):
            record.kind = resource.get("kind")
            record.apiVersion = resource.get("apiVersion")

            metadata = resource.get("metadata", {})
            record.resourceVersion = metadata.get("resourceVersion")
            record.resourceName = metadata.get("name")
            record.resourceNamespace = metadata.get("namespace")

        return super().format(record)
