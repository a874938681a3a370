"""Service status change watcher.

Turns a pull-based status source into a stream of :class:`WatchEvent` for
any number of subscribers. A single polling thread per watcher samples the
source every ``poll_interval`` seconds and only forwards a snapshot when it
differs from the last forwarded one. The thread is started with the first
subscription and stopped when the last subscriber detaches.
"""

import collections
import logging
import queue
import threading
import time

from svcmgr import _utils

_LOGGER = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 0.25

_CLOSED = object()


WatchEvent = collections.namedtuple('WatchEvent', ['status', 'error'])


def _same_error(first, second):
    return type(first) is type(second) and str(first) == str(second)


class Subscription:
    """One listener of a :class:`StatusWatcher`.

    :param ``float`` after:
        Monotonic time; events sampled before it are not delivered.
    """
    __slots__ = (
        '_watcher',
        '_queue',
        '_closed',
        '_lock',
        '_after',
    )

    def __init__(self, watcher, after=None):
        self._watcher = watcher
        self._queue = queue.Queue()
        self._closed = False
        self._lock = threading.Lock()
        self._after = after

    @property
    def closed(self):
        """Whether the subscription was closed."""
        return self._closed

    def deliver(self, event, sampled=None):
        """Queue `event`, sampled at monotonic time `sampled`, for the
        listener.
        """
        if self._closed:
            return
        if self._after is not None and sampled is not None and \
                sampled < self._after:
            return
        self._queue.put(event)

    def get(self, timeout=None):
        """Next event, or ``None`` on timeout or once closed.
        """
        if self._closed:
            return None

        try:
            event = self._queue.get(timeout=timeout)
        except queue.Empty:
            return None

        if event is _CLOSED or self._closed:
            return None

        return event

    def close(self):
        """Detach from the watcher. Safe to call more than once."""
        with self._lock:
            if self._closed:
                return
            self._closed = True

        self._queue.put(_CLOSED)
        self._watcher.unsubscribe(self)


class StatusWatcher:
    """Polls a status source and fans changes out to subscribers.

    :param ``callable`` source:
        Returns the current ``Status``, raises on failure.
    :param ``float`` poll_interval:
        Seconds between two samples.
    """
    __slots__ = (
        '_source',
        '_poll_interval',
        '_name',
        '_lock',
        '_subscribers',
        '_last',
        '_thread',
        '_stop',
    )

    def __init__(self, source, poll_interval=DEFAULT_POLL_INTERVAL,
                 name=None):
        self._source = source
        self._poll_interval = poll_interval
        self._name = name or 'watcher'
        self._lock = threading.Lock()
        self._subscribers = []
        self._last = None
        self._thread = None
        self._stop = None

    @property
    def poll_interval(self):
        """Seconds between two samples."""
        return self._poll_interval

    @property
    def active(self):
        """Whether the polling thread is running."""
        with self._lock:
            return self._thread is not None

    def subscribe(self, replay=True):
        """Register a new listener.

        With `replay`, the listener first receives the last forwarded event,
        if any, then every change. Without it, the listener only receives
        changes sampled after the call.

        :returns ``Subscription``:
            New subscription.
        """
        with self._lock:
            if replay:
                sub = Subscription(self)
                if self._last is not None:
                    sub.deliver(self._last)
            else:
                sub = Subscription(self, after=time.monotonic())
            self._subscribers.append(sub)

            if self._thread is None:
                self._stop = threading.Event()
                self._thread = threading.Thread(
                    target=self._run,
                    args=(self._stop,),
                    name='svcmgr-watch-{}'.format(self._name),
                )
                self._thread.daemon = True
                _LOGGER.debug('Starting watcher %s', self._name)
                self._thread.start()

        return sub

    def unsubscribe(self, sub):
        """Remove a listener, stopping the polling once none remain.
        """
        thread = None
        with self._lock:
            if sub in self._subscribers:
                self._subscribers.remove(sub)

            if not self._subscribers and self._thread is not None:
                self._stop.set()
                thread = self._thread
                self._thread = None
                self._stop = None
                self._last = None

        if thread is not None and thread is not threading.current_thread():
            _LOGGER.debug('Stopping watcher %s', self._name)
            thread.join()

    def _sample(self):
        try:
            return WatchEvent(self._source(), None)
        except Exception as err:  # pylint: disable=broad-except
            _LOGGER.debug('Watcher %s read error: %s', self._name, err)
            return WatchEvent(None, err)

    def _is_change(self, event):
        if self._last is None:
            return True

        if event.error is not None:
            return (
                self._last.error is None or
                not _same_error(self._last.error, event.error)
            )

        return self._last.error is not None or \
            self._last.status != event.status

    def _run(self, stop):
        """Polling loop."""
        while not stop.is_set():
            sampled = time.monotonic()
            event = self._sample()

            with self._lock:
                if stop.is_set():
                    break
                if self._is_change(event):
                    self._last = event
                    for sub in list(self._subscribers):
                        sub.deliver(event, sampled)

            stop.wait(self._poll_interval)


class Watch:
    """Live stream of status events of one service.

    Iterating yields :class:`WatchEvent` in the order they were observed. The
    stream ends when :meth:`stop` is called, when `cancel` is set or when the
    deadline elapses.
    """
    __slots__ = (
        '_sub',
        '_deadline',
        '_cancel',
        '_tick',
    )

    def __init__(self, watcher, timeout=None, cancel=None, replay=True):
        self._sub = watcher.subscribe(replay=replay)
        self._deadline = _utils.Deadline(timeout)
        self._cancel = cancel
        self._tick = watcher.poll_interval

    def __iter__(self):
        return self

    def __next__(self):
        event = self.get()
        if event is None:
            raise StopIteration
        return event

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.stop()

    @property
    def stopped(self):
        """Whether the stream was terminated."""
        return self._sub.closed

    @property
    def expired(self):
        """Whether the stream ended because of its deadline or cancel."""
        return self._deadline.expired() or (
            self._cancel is not None and self._cancel.is_set()
        )

    def get(self, timeout=None):
        """Wait for the next event.

        :param ``float`` timeout:
            Extra bound on the wait, on top of the stream deadline.
        :returns ``WatchEvent | None``:
            Next event, ``None`` if the stream ended or `timeout` elapsed.
        """
        limit = _utils.Deadline(timeout)
        while not self._sub.closed:
            if self.expired:
                self.stop()
                break
            if limit.expired():
                break

            wait = limit.bound(self._deadline.bound(self._tick))
            event = self._sub.get(timeout=wait)
            if event is not None:
                return event

        return None

    def stop(self):
        """Terminate the stream and release the watcher.

        Idempotent and safe to call from any thread.
        """
        self._sub.close()


__all__ = [
    'DEFAULT_POLL_INTERVAL',
    'StatusWatcher',
    'Subscription',
    'Watch',
    'WatchEvent',
]
