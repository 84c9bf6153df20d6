"""
Shared types for the events produced by watching the cluster
"""

# Standard
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

# Local
from ..managed_object import ManagedObject


class KubeEventType(Enum):
    """The event types the API server sends on a watch stream"""

    ADDED = "ADDED"
    MODIFIED = "MODIFIED"
    DELETED = "DELETED"


@dataclass
class KubeWatchEvent:
    """A single watch event with the time it was received"""

    type: KubeEventType
    resource: ManagedObject
    timestamp: datetime = field(default_factory=datetime.now)
