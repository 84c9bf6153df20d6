"""
Pure label bookkeeping for reconciliation. Nothing in here talks to the
cluster: given the declared labels, the ownership record and the current
namespace, compute what to change and produce the updated namespace manifest.

The ownership record lives in an annotation on the namespace itself so that
the label changes and the new record are always written in the same update.
It holds one entry per NamespaceLabel, and a NamespaceLabel only ever
rewrites its own entry.
"""

# Standard
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Iterable, Optional
import copy
import json

# First Party
import alog

# Local
from .constants import OWNED_LABELS_ANNOTATION_NAME
from .exceptions import DecodeError
from .utils import get_metadata

log = alog.use_channel("LABLS")


## Ownership ###################################################################


def parse_ownership(namespace_obj: Optional[dict]) -> Dict[str, FrozenSet[str]]:
    """Read every NamespaceLabel's ownership entry from a namespace manifest

    The annotation holds a JSON object mapping each NamespaceLabel name to the
    sorted label keys it applied. A record that is not a JSON object reads as
    empty. Entries that are not a list of strings are skipped.

    Args:
        namespace_obj:  Optional[dict]
            The current namespace manifest

    Returns:
        owners:  Dict[str, FrozenSet[str]]
            The owned label keys keyed by NamespaceLabel name
    """
    annotations = get_metadata(namespace_obj).get("annotations") or {}
    raw_record = annotations.get(OWNED_LABELS_ANNOTATION_NAME)
    if not raw_record:
        return {}

    try:
        content = json.loads(raw_record)
    except (ValueError, TypeError) as err:
        log.warning("Ignoring malformed ownership record [%s]: %s", raw_record, err)
        return {}
    if not isinstance(content, dict):
        log.warning("Ignoring ownership record that is not an object [%s]", raw_record)
        return {}

    owners = {}
    for owner, labels in content.items():
        if not isinstance(labels, list) or not all(
            isinstance(key, str) for key in labels
        ):
            log.warning("Ignoring malformed ownership entry for [%s]", owner)
            continue
        owners[owner] = frozenset(labels)
    return owners


def serialize_ownership(owners: Dict[str, Iterable[str]]) -> str:
    """Serialize with sorted owners and keys so identical records are
    byte-identical
    """
    return json.dumps(
        {owner: sorted(labels) for owner, labels in sorted(owners.items())},
        separators=(",", ":"),
    )


@dataclass(frozen=True)
class OwnershipRecord:
    """The set of label keys one NamespaceLabel last applied to its namespace"""

    owner: Optional[str] = None
    labels: FrozenSet[str] = field(default_factory=frozenset)

    @classmethod
    def create(cls, owner: str, labels: Iterable[str]) -> "OwnershipRecord":
        return cls(owner=owner, labels=frozenset(labels))

    @classmethod
    def parse(cls, namespace_obj: Optional[dict], owner: str) -> "OwnershipRecord":
        """Read the entry for the given owner. A missing or malformed entry
        gives an empty record.
        """
        return cls.create(owner, parse_ownership(namespace_obj).get(owner, ()))


def labels_owned_by_others(
    namespace_obj: Optional[dict], owner: str
) -> FrozenSet[str]:
    """Get the keys recorded by every NamespaceLabel other than the owner"""
    return frozenset(
        key
        for other, labels in parse_ownership(namespace_obj).items()
        if other != owner
        for key in labels
    )


## Delta #######################################################################


@dataclass(frozen=True)
class LabelDelta:
    """The changes to make to a namespace's labels"""

    # Labels to add or overwrite
    to_set: Dict[str, str] = field(default_factory=dict)
    # Label keys to delete
    to_remove: FrozenSet[str] = field(default_factory=frozenset)

    def empty(self) -> bool:
        return not self.to_set and not self.to_remove


def compute_label_delta(
    desired: Optional[Dict[str, str]],
    owned: Iterable[str],
    current: Optional[Dict[str, str]],
    claimed: Iterable[str] = (),
) -> LabelDelta:
    """Compute the label changes needed to move the namespace to the declared
    state without touching labels this NamespaceLabel does not own.

    Args:
        desired:  Optional[Dict[str, str]]
            The declared labels
        owned:  Iterable[str]
            The keys from this NamespaceLabel's ownership entry
        current:  Optional[Dict[str, str]]
            The namespace's current labels
        claimed:  Iterable[str]
            Keys recorded by other NamespaceLabels. These are never removed.

    Returns:
        delta:  LabelDelta
            Declared keys whose value is missing or different go in to_set.
            Previously owned keys that are no longer declared (and are still
            present and unclaimed) go in to_remove.
    """
    desired = desired or {}
    current = current or {}
    to_set = {
        key: value for key, value in desired.items() if current.get(key) != value
    }
    to_remove = frozenset(
        key
        for key in set(owned) - set(desired) - set(claimed)
        if key in current
    )
    log.debug3("Computed delta to_set=%s to_remove=%s", to_set, sorted(to_remove))
    return LabelDelta(to_set=to_set, to_remove=to_remove)


def apply_label_delta(
    namespace_obj: dict,
    delta: LabelDelta,
    record: OwnershipRecord,
) -> dict:
    """Produce a new namespace manifest with the delta applied and the
    record's ownership entry replaced. Entries of other NamespaceLabels are
    kept as they are. The input manifest is not modified.

    Args:
        namespace_obj:  dict
            The current namespace manifest (including resourceVersion)
        delta:  LabelDelta
            The label changes to apply
        record:  OwnershipRecord
            The new entry for record.owner. An empty record drops the entry,
            and the annotation is removed once no entries are left.

    Returns:
        updated:  dict
            The namespace manifest to write back
    """
    updated = copy.deepcopy(namespace_obj)
    metadata = updated.setdefault("metadata", {})

    labels = dict(metadata.get("labels") or {})
    for key in delta.to_remove:
        labels.pop(key, None)
    labels.update(delta.to_set)
    metadata["labels"] = labels

    owners = parse_ownership(namespace_obj)
    if record.labels:
        owners[record.owner] = record.labels
    else:
        owners.pop(record.owner, None)

    annotations = dict(metadata.get("annotations") or {})
    if owners:
        annotations[OWNED_LABELS_ANNOTATION_NAME] = serialize_ownership(owners)
    else:
        annotations.pop(OWNED_LABELS_ANNOTATION_NAME, None)
    metadata["annotations"] = annotations

    return updated


def record_changed(namespace_obj: Optional[dict], record: OwnershipRecord) -> bool:
    """Check whether writing the given record would change its owner's entry"""
    stored = parse_ownership(namespace_obj).get(record.owner, frozenset())
    return stored != record.labels


## Declarations ################################################################


def get_declared_labels(declaration: dict) -> Dict[str, str]:
    """Extract spec.labels from a NamespaceLabel, checking its shape

    Args:
        declaration:  dict
            The NamespaceLabel manifest

    Returns:
        labels:  Dict[str, str]
            The declared labels. A missing spec or labels field declares none.

    Raises:
        DecodeError: The object is not a NamespaceLabel with string labels
    """
    if not isinstance(declaration, dict):
        raise DecodeError(
            f"NamespaceLabel must be an object, got {type(declaration).__name__}"
        )
    if not get_metadata(declaration).get("name"):
        raise DecodeError("NamespaceLabel has no metadata.name")
    spec = declaration.get("spec") or {}
    if not isinstance(spec, dict):
        raise DecodeError("NamespaceLabel spec must be an object")
    labels = spec.get("labels") or {}
    if not isinstance(labels, dict):
        raise DecodeError("NamespaceLabel spec.labels must be a map of strings")
    for key, value in labels.items():
        if not isinstance(key, str) or not isinstance(value, str):
            raise DecodeError(
                "NamespaceLabel spec.labels must be a map of strings, "
                f"got [{key}: {value!r}]"
            )
    return dict(labels)
