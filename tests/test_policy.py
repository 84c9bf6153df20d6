"""
Tests for the NamespaceLabel policy rules
"""

# Third Party
import pytest

# Local
from nslabel import policy
from nslabel.exceptions import PolicyError
from nslabel.test_helpers.helpers import library_config, make_namespacelabel


@pytest.mark.parametrize(
    ["key", "protected"],
    [
        ("kubernetes.io/metadata.name", True),
        ("pod-security.kubernetes.io/enforce", True),
        ("k8s.io/foo", True),
        ("openshift.io/run-level", True),
        ("team", False),
        ("example.com/team", False),
        ("notkubernetes.io/foo", False),
        ("kubernetes.io", True),
    ],
)
def test_is_protected_label(key, protected):
    """Domains and their subdomains are protected, lookalikes are not"""
    assert policy.is_protected_label(key) == protected


def test_exact_protected_labels():
    """Configured exact keys are protected"""
    with library_config(protected_labels=["owner"]):
        assert policy.is_protected_label("owner")
        assert not policy.is_protected_label("owner2")


def test_find_protected_label_is_deterministic():
    """The first protected key in sorted order is reported"""
    labels = {
        "team": "a",
        "pod-security.kubernetes.io/enforce": "restricted",
        "k8s.io/foo": "bar",
    }
    assert policy.find_protected_label(labels) == "k8s.io/foo"
    assert policy.find_protected_label({"team": "a"}) is None
    assert policy.find_protected_label(None) is None


def test_check_protected_labels_message():
    """The error names the offending key"""
    with pytest.raises(
        PolicyError,
        match="cannot add protected or management label 'kubernetes.io/metadata.name'",
    ):
        policy.check_protected_labels({"kubernetes.io/metadata.name": "x"})
    policy.check_protected_labels({"team": "a"})


def test_active_declarations_skips_deleting_and_excluded():
    declarations = [
        make_namespacelabel(name="a"),
        make_namespacelabel(name="b", deleting=True),
        make_namespacelabel(name="c"),
    ]
    active = policy.active_declarations(declarations)
    assert [decl["metadata"]["name"] for decl in active] == ["a", "c"]
    active = policy.active_declarations(declarations, exclude_name="a")
    assert [decl["metadata"]["name"] for decl in active] == ["c"]


def test_check_single_declaration():
    """More than one active NamespaceLabel is a violation"""
    policy.check_single_declaration([])
    policy.check_single_declaration([make_namespacelabel(name="a")])
    policy.check_single_declaration(
        [make_namespacelabel(name="a"), make_namespacelabel(name="b", deleting=True)]
    )
    with pytest.raises(PolicyError, match=policy.SINGLE_DECLARATION_MESSAGE):
        policy.check_single_declaration(
            [make_namespacelabel(name="a"), make_namespacelabel(name="b")]
        )
