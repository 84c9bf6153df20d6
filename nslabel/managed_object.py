"""
Helper object to represent a kubernetes object seen by the operator
"""
# Standard
import uuid

KUBE_LIST_IDENTIFIER = "List"


class ManagedObject:
    """Basic struct to represent a kubernetes object from a watch event"""

    def __init__(self, definition: dict):
        self.kind = definition.get("kind")
        self.metadata = definition.get("metadata", {})
        self.name = self.metadata.get("name")
        self.namespace = self.metadata.get("namespace")
        self.uid = self.metadata.get("uid", uuid.uuid4())
        self.resource_version = self.metadata.get("resourceVersion")
        self.api_version = definition.get("apiVersion")
        self.definition = definition

        assert self.kind is not None, "No kind found"
        assert self.api_version is not None, "No apiVersion found"
        if KUBE_LIST_IDENTIFIER not in self.kind:
            assert self.name is not None, "No name found"

    def get(self, *args, **kwargs):
        """Pass get calls to the objects definition"""
        return self.definition.get(*args, **kwargs)

    def __str__(self):
        return f"{self.api_version}/{self.kind}/{self.namespace}/{self.name}"

    def __repr__(self):
        return str(self)

    def __hash__(self):
        """Hash only on the cluster identity so the object can key a map"""
        return hash(self.metadata.get("uid", str(self)))

    def __eq__(self, other):
        return hash(self) == hash(other)
