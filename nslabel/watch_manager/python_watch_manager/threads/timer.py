"""
The TimerThread is a helper class used to run scheduled events
"""

# Standard
from datetime import datetime
from heapq import heappop, heappush
from typing import Any, Callable, Dict, List, Optional
import threading

# First Party
import alog

# Local
from ..utils import MIN_SLEEP_TIME, Singleton, TimerEvent
from .base import ThreadBase

log = alog.use_channel("TMRTHRD")


class TimerThread(ThreadBase, metaclass=Singleton):
    """Runs scheduled actions on one shared thread. This is very similar to
    the threading.Timer stdlib class except that it uses one thread for all
    events instead of a thread per event.
    """

    def __init__(self, name: Optional[str] = None):
        super().__init__(name=name or "timer_thread", daemon=True)

        # A plain heap guarded by the notify condition
        self.timer_heap: List[TimerEvent] = []
        self.notify_condition = threading.Condition()

    def run(self):
        """Sleep until the next scheduled event, then execute every event that
        is due
        """
        while not self.should_stop():
            with self.notify_condition:
                time_to_sleep = self._get_time_to_sleep()
                if time_to_sleep:
                    log.debug2(
                        "Timer waiting %ss until next scheduled event", time_to_sleep
                    )
                else:
                    log.debug2("Timer waiting until event queued")
                self.notify_condition.wait(timeout=time_to_sleep)

            if self.should_stop():
                return

            for event in self._get_all_current_events():
                log.debug("Timer executing action for event: %s", event)
                try:
                    event.action(*event.args, **event.kwargs)
                except Exception as exc:  # pylint: disable=broad-except
                    log.error("Timer event %s failed: %s", event, exc, exc_info=True)

    ## Class Interface #########################################################

    def stop_thread(self):
        """Override stop_thread to wake the control loop"""
        super().stop_thread()
        with self.notify_condition:
            log.debug("Notifying TimerThread of shutdown")
            self.notify_condition.notify_all()

    ## Public Interface ########################################################

    def put_event(
        self, time: datetime, action: Callable, *args: Any, **kwargs: Dict
    ) -> Optional[TimerEvent]:
        """Push an event to the timer

        Args:
            time: datetime
                The datetime to execute the event at
            action: Callable
                The action to execute
            *args: Any
                Args to pass to the action
            **kwargs: Dict
                Kwargs to pass to the action

        Returns:
            event: Optional[TimerEvent]
                TimerEvent describing the event that can be cancelled, or None
                if the timer is stopped
        """
        if self.should_stop():
            return None

        event = TimerEvent(time=time, action=action, args=args, kwargs=kwargs)
        with self.notify_condition:
            heappush(self.timer_heap, event)
            self.notify_condition.notify_all()
        return event

    ## Implementation Details ##################################################

    def _get_time_to_sleep(self) -> Optional[float]:
        """Seconds until the next event, or None if the heap is empty"""
        with self.notify_condition:
            if not self.timer_heap:
                return None
            time_to_sleep = (self.timer_heap[0].time - datetime.now()).total_seconds()
            return max(time_to_sleep, MIN_SLEEP_TIME)

    def _get_all_current_events(self) -> List[TimerEvent]:
        """Pop every event whose time has passed, dropping cancelled ones"""
        event_list = []
        now = datetime.now()
        with self.notify_condition:
            while self.timer_heap and self.timer_heap[0].time <= now:
                event = heappop(self.timer_heap)
                if event.stale:
                    log.debug2("Skipping timer event %s", event)
                    continue
                event_list.append(event)
        return event_list
