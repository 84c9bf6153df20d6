"""Standard data types and constants used throughout the PythonWatchManager"""

# Standard
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable, Optional, Union

# Local
from ...deploy_manager import KubeEventType
from ...managed_object import ManagedObject

## Constants ###################################################################

# Minimum wait time between checks in the timer thread
MIN_SLEEP_TIME = 1

# Default timeout when joining threads on shutdown
JOIN_THREAD_TIMEOUT = 5


## Reconcile Types #############################################################


class ReconcileRequestType(Enum):
    """Expands the possible KubeEventTypes to include PythonWatchManager
    specific events
    """

    # Used for events that are a requeue of an object
    REQUEUED = "REQUEUED"

    # Used as a sentinel to alert threads to stop
    STOPPED = "STOPPED"


@dataclass
class ReconcileRequest:
    """One request to the ReconcileThread to reconcile a NamespaceLabel"""

    type: Union[ReconcileRequestType, KubeEventType]
    resource: Optional[ManagedObject] = None
    timestamp: datetime = field(default_factory=datetime.now)

    def identity(self) -> str:
        """The namespace/name of the NamespaceLabel. Reconciles for the same
        identity never run concurrently.
        """
        return f"{self.resource.namespace}/{self.resource.name}"


@dataclass
class ReconcileCompletion:
    """Posted back to the ReconcileThread when a worker finishes"""

    request: ReconcileRequest
    result: "ReconciliationResult"  # noqa: F821


## Timer Types #################################################################


@dataclass(order=True)
class TimerEvent:
    """An item in the timer queue. Time is the only comparable field to
    support the TimerThread's priority queue
    """

    time: datetime
    action: Callable = field(compare=False)
    args: list = field(default_factory=list, compare=False)
    kwargs: dict = field(default_factory=dict, compare=False)
    stale: bool = field(default=False, compare=False)

    def cancel(self):
        """Cancel this event. It will not be executed when read from the
        queue
        """
        self.stale = True


## Meta Classes ################################################################


class Singleton(type):
    """MetaClass to limit a class to only one global instance. When the
    first instance is created it's attached to the Class and the next
    time someone initializes the class the original instance is returned
    """

    def __call__(cls, *args, **kwargs):
        if getattr(cls, "_disable_singleton", False):
            return type.__call__(cls, *args, **kwargs)

        # The _instance is attached to the class itself without looking upwards
        # into any parent classes
        if "_instance" not in cls.__dict__:
            cls._instance = type.__call__(cls, *args, **kwargs)
        return cls._instance
