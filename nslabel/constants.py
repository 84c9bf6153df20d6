"""
Shared module to hold constant values for the library
"""

# The NamespaceLabel custom resource
GROUP = "dana.io"
VERSION = "v1alpha1"
KIND = "NamespaceLabel"
API_VERSION = f"{GROUP}/{VERSION}"

# The target of reconciliation
NAMESPACE_KIND = "Namespace"
NAMESPACE_API_VERSION = "v1"

# Finalizer that gates deletion of a NamespaceLabel until its labels have been
# removed from the namespace
FINALIZER_NAME = f"finalizers.{KIND.lower()}.{GROUP}"

# Annotation on the target namespace holding the ownership record of the
# NamespaceLabel that applied labels to it
OWNED_LABELS_ANNOTATION_NAME = f"{KIND.lower()}.{GROUP}/owned-labels"

# Namespace used when a manifest does not set one
DEFAULT_NAMESPACE = "default"

# Delimiter used for nested dict keys
NESTED_DICT_DELIM = "."
