"""
The policy rules that keep NamespaceLabels safe to reconcile. Both the
admission webhook and the reconciler enforce them:

* At most one NamespaceLabel may exist per namespace
* No NamespaceLabel may set a protected or management label
"""

# Standard
from typing import Dict, Iterable, List, Optional

# First Party
import alog

# Local
from . import config
from .exceptions import assert_policy
from .utils import get_metadata, is_being_deleted

log = alog.use_channel("POLCY")

# Stable messages surfaced to users. Clients match on these.
SINGLE_DECLARATION_MESSAGE = "only one NamespaceLabel allowed per namespace"
PROTECTED_LABEL_MESSAGE = "cannot add protected or management label '{}'"


## Protected labels ############################################################


def is_protected_label(key: str) -> bool:
    """Determine whether a label key is reserved for the platform

    A key is protected when its prefix (the part before the '/', or the whole
    key when there is none) is one of the configured protected domains or a
    subdomain of one, or when the key is one of the configured reserved keys.

    Args:
        key:  str
            The label key to check

    Returns:
        protected:  bool
            True if the key may not be set by a NamespaceLabel
    """
    if key in (config.protected_labels or []):
        return True
    prefix = key.split("/", 1)[0]
    for domain in config.protected_label_prefixes or []:
        if prefix == domain or prefix.endswith(f".{domain}"):
            log.debug2("Label [%s] matches protected domain [%s]", key, domain)
            return True
    return False


def find_protected_label(labels: Optional[Dict[str, str]]) -> Optional[str]:
    """Get the first protected key in sorted order so the reported key is
    deterministic
    """
    for key in sorted(labels or {}):
        if is_protected_label(key):
            return key
    return None


def check_protected_labels(labels: Optional[Dict[str, str]]):
    """Raise a PolicyError naming the first protected key, if any"""
    protected_key = find_protected_label(labels)
    assert_policy(
        protected_key is None, PROTECTED_LABEL_MESSAGE.format(protected_key)
    )


## Single declaration ##########################################################


def active_declarations(
    declarations: Iterable[dict],
    exclude_name: Optional[str] = None,
) -> List[dict]:
    """Filter a list of NamespaceLabels down to the ones that are not pending
    deletion, optionally excluding one by name

    Args:
        declarations:  Iterable[dict]
            NamespaceLabel manifests from a single namespace
        exclude_name:  Optional[str]
            Name of a NamespaceLabel to leave out (e.g. the previous version
            of the object being updated)

    Returns:
        active:  List[dict]
            The NamespaceLabels that count against the per-namespace limit
    """
    return [
        declaration
        for declaration in declarations
        if not is_being_deleted(declaration)
        and (
            exclude_name is None
            or get_metadata(declaration).get("name") != exclude_name
        )
    ]


def check_single_declaration(declarations: Iterable[dict]):
    """Raise a PolicyError if more than one active NamespaceLabel is present"""
    active = active_declarations(declarations)
    log.debug2("Found %d active NamespaceLabels", len(active))
    assert_policy(len(active) <= 1, SINGLE_DECLARATION_MESSAGE)
