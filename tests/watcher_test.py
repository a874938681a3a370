"""Unit test for svcmgr.watcher.
"""

import threading
import time
import unittest

import mock

from svcmgr import exc
from svcmgr import watcher as svc_watcher
from svcmgr.status import State

from tests.testutils import fakesupervise

_POLL = 0.01


class _Source:
    """Status source replaying a script, then repeating its last entry."""

    def __init__(self, *script):
        self.script = list(script)
        self.calls = 0
        self.lock = threading.Lock()

    def __call__(self):
        with self.lock:
            self.calls += 1
            if len(self.script) > 1:
                item = self.script.pop(0)
            else:
                item = self.script[0]

        if isinstance(item, Exception):
            raise item
        return item

    def wait_calls(self, count, timeout=5):
        """Wait for the source to be sampled `count` times."""
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            with self.lock:
                if self.calls >= count:
                    return True
            time.sleep(_POLL)
        return False


class StatusWatcherTest(unittest.TestCase):
    """Tests for svcmgr.watcher.StatusWatcher."""

    def test_dedup(self):
        """Test that identical snapshots are only forwarded once."""
        down = fakesupervise.make_status(State.down)
        running = fakesupervise.make_status(State.running, pid=42)
        source = _Source(down, down, down, running, running, down)
        watcher = svc_watcher.StatusWatcher(source, poll_interval=_POLL)

        sub = watcher.subscribe()
        self.assertTrue(source.wait_calls(10))

        events = []
        while True:
            event = sub.get(timeout=0.1)
            if event is None:
                break
            events.append(event)
        sub.close()

        self.assertEqual(
            [event.status for event in events],
            [down, running, down]
        )
        self.assertTrue(all(event.error is None for event in events))

    def test_errors(self):
        """Test that a persistent error is forwarded once."""
        down = fakesupervise.make_status(State.down)
        source = _Source(
            exc.BackendUnavailableError('gone'),
            exc.BackendUnavailableError('gone'),
            exc.BackendUnavailableError('gone'),
            down,
        )
        watcher = svc_watcher.StatusWatcher(source, poll_interval=_POLL)

        sub = watcher.subscribe()
        self.assertTrue(source.wait_calls(6))

        first = sub.get(timeout=1)
        second = sub.get(timeout=1)
        self.assertIsNone(sub.get(timeout=0.1))
        sub.close()

        self.assertIsNone(first.status)
        self.assertIsInstance(first.error, exc.BackendUnavailableError)
        self.assertEqual(second, svc_watcher.WatchEvent(down, None))

    def test_lifecycle(self):
        """Test that polling stops with the last subscriber."""
        source = mock.Mock(
            return_value=fakesupervise.make_status(State.down)
        )
        watcher = svc_watcher.StatusWatcher(source, poll_interval=_POLL)
        self.assertFalse(watcher.active)

        first = watcher.subscribe()
        second = watcher.subscribe()
        self.assertTrue(watcher.active)

        self.assertIsNotNone(first.get(timeout=1))
        self.assertIsNotNone(second.get(timeout=1))

        first.close()
        self.assertTrue(watcher.active)
        self.assertIsNone(first.get(timeout=0))

        second.close()
        second.close()
        self.assertFalse(watcher.active)

        calls = source.call_count
        time.sleep(_POLL * 5)
        self.assertEqual(source.call_count, calls)

    def test_late_subscriber(self):
        """Test that late subscribers get the current snapshot first."""
        down = fakesupervise.make_status(State.down)
        source = mock.Mock(return_value=down)
        watcher = svc_watcher.StatusWatcher(source, poll_interval=_POLL)

        first = watcher.subscribe()
        self.assertEqual(first.get(timeout=1).status, down)

        second = watcher.subscribe()
        self.assertEqual(second.get(timeout=1).status, down)

        first.close()
        second.close()

    def test_subscribe_no_replay(self):
        """Test that a subscriber can skip the current snapshot."""
        down = fakesupervise.make_status(State.down)
        watcher = svc_watcher.StatusWatcher(
            mock.Mock(return_value=down), poll_interval=_POLL
        )

        first = watcher.subscribe()
        self.assertEqual(first.get(timeout=1).status, down)

        second = watcher.subscribe(replay=False)
        self.assertIsNone(second.get(timeout=_POLL * 5))

        first.close()
        second.close()

    def test_deliver_after(self):
        """Test that events sampled before a subscription are dropped."""
        event = svc_watcher.WatchEvent(
            fakesupervise.make_status(State.down), None
        )
        sub = svc_watcher.Subscription(mock.Mock(), after=100.0)

        sub.deliver(event, sampled=99.0)
        self.assertIsNone(sub.get(timeout=0))

        sub.deliver(event, sampled=100.5)
        self.assertEqual(sub.get(timeout=0), event)


class WatchTest(unittest.TestCase):
    """Tests for svcmgr.watcher.Watch."""

    def setUp(self):
        self.status = fakesupervise.make_status(State.down)
        self.watcher = svc_watcher.StatusWatcher(
            mock.Mock(return_value=self.status), poll_interval=_POLL
        )

    def test_iterate(self):
        """Test iterating until the deadline."""
        stream = svc_watcher.Watch(self.watcher, timeout=0.2)

        events = list(stream)

        self.assertEqual(events, [svc_watcher.WatchEvent(self.status, None)])
        self.assertTrue(stream.stopped)
        self.assertTrue(stream.expired)
        self.assertFalse(self.watcher.active)

    def test_stop(self):
        """Test stopping the stream from another thread."""
        stream = svc_watcher.Watch(self.watcher)
        self.assertIsNotNone(stream.get())

        timer = threading.Timer(0.05, stream.stop)
        timer.start()
        self.assertIsNone(stream.get())
        timer.join()

        self.assertTrue(stream.stopped)
        self.assertFalse(stream.expired)
        stream.stop()
        self.assertFalse(self.watcher.active)

    def test_cancel(self):
        """Test cancelling the stream."""
        cancel = threading.Event()

        with svc_watcher.Watch(self.watcher, cancel=cancel) as stream:
            self.assertIsNotNone(stream.get())
            self.assertIsNone(stream.get(timeout=0.05))
            self.assertFalse(stream.stopped)

            cancel.set()
            self.assertIsNone(stream.get())
            self.assertTrue(stream.stopped)
            self.assertTrue(stream.expired)

        self.assertFalse(self.watcher.active)


if __name__ == '__main__':
    unittest.main()
