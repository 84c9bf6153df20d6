"""
Tests for the WatchManagerBase base class
"""

# Standard
import threading
import time

# Third Party
import pytest

# Local
from nslabel.constants import API_VERSION, KIND
from nslabel.watch_manager.base import WatchManagerBase

## Helpers #####################################################################


class DummyWatchManager(WatchManagerBase):
    def __init__(self, reconciler=None, watch_success=True, stop_wait=0.0):
        super().__init__(reconciler)
        self.watching = False
        self.watch_success = watch_success
        self.stop_wait = stop_wait

    def watch(self):
        if self.watch_success:
            self.watching = True
            return True
        return False

    def wait(self):
        while self.watching:
            time.sleep(0.05)

    def stop(self):
        if self.stop_wait:
            threading.Thread(target=self._delayed_stop).start()
        else:
            self.watching = False

    def _delayed_stop(self):
        time.sleep(self.stop_wait)
        self.watching = False


## Tests #######################################################################


def test_constructor_properties():
    """The watch manager watches NamespaceLabels"""
    reconciler = object()
    wm = DummyWatchManager(reconciler)
    assert wm.reconciler is reconciler
    assert wm.kind == KIND
    assert wm.api_version == API_VERSION
    assert str(wm) == f"Watch[{API_VERSION}/{KIND}]"


def test_constructor_registration():
    wm = DummyWatchManager()
    assert WatchManagerBase._ALL_WATCHES == {str(wm): wm}


def test_only_one_watch_manager():
    DummyWatchManager()
    with pytest.raises(AssertionError):
        DummyWatchManager()


def test_clear_all():
    DummyWatchManager()
    WatchManagerBase.clear_all()
    DummyWatchManager()


@pytest.mark.timeout(5)
def test_start_stop_all():
    """start_all blocks until stop_all is called"""
    wm = DummyWatchManager(stop_wait=0.1)
    start_thread = threading.Thread(target=WatchManagerBase.start_all)
    start_thread.start()
    time.sleep(0.1)
    assert wm.watching
    WatchManagerBase.stop_all()
    start_thread.join()
    assert not wm.watching


def test_start_all_failure():
    DummyWatchManager(watch_success=False)
    assert not WatchManagerBase.start_all()
