"""Unit test for svcmgr.manager.
"""

import os
import shutil
import tempfile
import threading
import time
import unittest

# Disable W0611: Unused import
import tests.svcmgr_test_skip_windows  # pylint: disable=W0611

from svcmgr import exc
from svcmgr import manager as svc_manager
from svcmgr import profiles
from svcmgr.status import State

from tests.testutils import fakesupervise


class _FakeClient:
    """Client recording the calls made by the manager."""

    def __init__(self, factory, service_dir, profile, timeout):
        self.factory = factory
        self.service_dir = service_dir
        self.profile = profile
        self.timeout = timeout

    def _enter(self, timeout):
        with self.factory.lock:
            self.factory.active += 1
            self.factory.peak = max(self.factory.peak, self.factory.active)
        time.sleep(self.factory.delay)
        with self.factory.lock:
            self.factory.active -= 1
            self.factory.calls.append(self.service_dir)
            self.factory.timeouts.append(timeout)

        if self.factory.on_call is not None:
            self.factory.on_call()

        error = self.factory.failures.get(self.service_dir)
        if error is not None:
            raise error

    def control(self, operation, timeout=None):
        self._enter(timeout)
        with self.factory.lock:
            self.factory.operations.append((self.service_dir, operation))

    def status(self, timeout=None):
        self._enter(timeout)
        return fakesupervise.make_status(State.running, pid=1)


class _FakeClientFactory:
    """Instrumented client factory."""

    def __init__(self, failures=None, delay=0.0, on_call=None):
        self.failures = failures or {}
        self.delay = delay
        self.on_call = on_call
        self.lock = threading.Lock()
        self.active = 0
        self.peak = 0
        self.calls = []
        self.operations = []
        self.timeouts = []

    def __call__(self, service_dir, profile, timeout):
        return _FakeClient(self, service_dir, profile, timeout)


class ManagerTest(unittest.TestCase):
    """Tests for svcmgr.manager.Manager."""

    def test_defaults(self):
        """Test manager construction."""
        manager = svc_manager.Manager()

        self.assertEqual(manager.profile.kind, profiles.BackendKind.runit)
        self.assertEqual(
            manager.concurrency, svc_manager.DEFAULT_CONCURRENCY
        )
        self.assertEqual(manager.timeout, svc_manager.DEFAULT_TIMEOUT)

        self.assertEqual(svc_manager.Manager(concurrency=0).concurrency, 1)
        self.assertEqual(svc_manager.Manager(concurrency=-3).concurrency, 1)

    def test_control(self):
        """Test sending an operation to many services."""
        factory = _FakeClientFactory()
        manager = svc_manager.Manager(
            profiles.get_profile('s6'), client_factory=factory
        )

        manager.down('a', 'b', 'c')

        self.assertEqual(
            sorted(factory.operations),
            [
                ('a', profiles.Operation.down),
                ('b', profiles.Operation.down),
                ('c', profiles.Operation.down),
            ]
        )

        manager.control('kill', 'a')
        self.assertIn(('a', profiles.Operation.kill), factory.operations)

    def test_control_dedup(self):
        """Test that duplicate services are handled once."""
        factory = _FakeClientFactory()
        manager = svc_manager.Manager(client_factory=factory)

        manager.up('a', 'b', 'a', 'a')

        self.assertEqual(sorted(factory.calls), ['a', 'b'])

    def test_control_partial_failure(self):
        """Test that every failure is reported."""
        failures = {
            'b': exc.ControlChannelUnavailableError('no reader'),
            'd': exc.UnsupportedOperationError('once'),
        }
        factory = _FakeClientFactory(failures=failures)
        manager = svc_manager.Manager(client_factory=factory)

        with self.assertRaises(exc.PartialFailureError) as ctx:
            manager.once('a', 'b', 'c', 'd', 'e')

        self.assertEqual(ctx.exception.services, ['b', 'd'])
        self.assertIs(ctx.exception.errors['b'], failures['b'])
        self.assertIs(ctx.exception.errors['d'], failures['d'])
        self.assertEqual(ctx.exception.kind, profiles.BackendKind.runit)
        self.assertIn('2 service(s) failed', str(ctx.exception))
        self.assertEqual(sorted(factory.calls), ['a', 'b', 'c', 'd', 'e'])

    def test_control_unexpected_failure(self):
        """Test that non supervision errors are collected too."""
        failures = {'a': ValueError('boom')}
        manager = svc_manager.Manager(
            client_factory=_FakeClientFactory(failures=failures)
        )

        with self.assertRaises(exc.PartialFailureError) as ctx:
            manager.term('a', 'b')

        self.assertEqual(ctx.exception.services, ['a'])

    def test_concurrency(self):
        """Test that concurrency is bounded."""
        factory = _FakeClientFactory(delay=0.05)
        manager = svc_manager.Manager(concurrency=3, client_factory=factory)

        manager.kill(*['svc{}'.format(idx) for idx in range(12)])

        self.assertEqual(len(factory.calls), 12)
        self.assertLessEqual(factory.peak, 3)
        self.assertGreater(factory.peak, 1)

    def test_status(self):
        """Test reading the status of many services."""
        failures = {'b': exc.BackendUnavailableError('not supervised')}
        manager = svc_manager.Manager(
            client_factory=_FakeClientFactory(failures=failures)
        )

        results, error = manager.status('a', 'b', 'c')

        self.assertEqual(sorted(results), ['a', 'b', 'c'])
        self.assertEqual(results['a'].state, State.running)
        self.assertIsNone(results['b'])
        self.assertIsInstance(error, exc.PartialFailureError)
        self.assertEqual(error.services, ['b'])

        results, error = manager.status('a', 'c')
        self.assertEqual(len(results), 2)
        self.assertIsNone(error)

        self.assertEqual(manager.status(), ({}, None))

    def test_control_cancelled(self):
        """Test that a cancelled call touches no service."""
        factory = _FakeClientFactory()
        manager = svc_manager.Manager(client_factory=factory)
        cancel = threading.Event()
        cancel.set()

        with self.assertRaises(exc.PartialFailureError) as ctx:
            manager.down('a', 'b', cancel=cancel)

        self.assertEqual(ctx.exception.services, ['a', 'b'])
        for error in ctx.exception.errors.values():
            self.assertIsInstance(error, exc.DeadlineExceededError)
        self.assertEqual(factory.calls, [])

    def test_control_cancel_pending(self):
        """Test that services queued when cancel is set are skipped."""
        cancel = threading.Event()
        factory = _FakeClientFactory(on_call=cancel.set)
        manager = svc_manager.Manager(concurrency=1, client_factory=factory)

        with self.assertRaises(exc.PartialFailureError) as ctx:
            manager.kill('a', 'b', 'c', cancel=cancel)

        self.assertEqual(factory.calls, ['a'])
        self.assertEqual(ctx.exception.services, ['b', 'c'])
        self.assertIsInstance(
            ctx.exception.errors['c'], exc.DeadlineExceededError
        )

    def test_status_timeout(self):
        """Test that the call deadline bounds every service."""
        factory = _FakeClientFactory(delay=0.1)
        manager = svc_manager.Manager(concurrency=1, client_factory=factory)
        services = ['svc{}'.format(idx) for idx in range(5)]

        results, error = manager.status(*services, timeout=0.15)

        self.assertEqual(sorted(results), services)
        self.assertLess(len(factory.calls), 5)
        self.assertGreaterEqual(len(factory.calls), 1)
        self.assertEqual(
            sorted(error.services),
            sorted(set(services) - set(factory.calls))
        )
        for service in error.services:
            self.assertIsNone(results[service])
            self.assertIsInstance(
                error.errors[service], exc.DeadlineExceededError
            )
        for timeout in factory.timeouts:
            self.assertLessEqual(timeout, 0.15)


class ManagerSuperviseTest(unittest.TestCase):
    """Tests for svcmgr.manager.Manager against real service directories.
    """

    def setUp(self):
        self.root = tempfile.mkdtemp()
        self.profile = profiles.get_profile('daemontools')

    def tearDown(self):
        if self.root and os.path.isdir(self.root):
            shutil.rmtree(self.root)

    def test_up(self):
        """Test starting supervised and unsupervised services."""
        attached = fakesupervise.FakeSupervisor(
            self.root, 'attached', self.profile
        )
        detached = fakesupervise.FakeSupervisor(
            self.root, 'detached', self.profile
        )
        attached.attach()
        self.addCleanup(attached.detach)

        manager = svc_manager.Manager(self.profile, timeout=1)
        with self.assertRaises(exc.PartialFailureError) as ctx:
            manager.up(attached.service_dir, detached.service_dir)

        self.assertEqual(ctx.exception.services, [detached.service_dir])
        self.assertIsInstance(
            ctx.exception.errors[detached.service_dir],
            exc.ControlChannelUnavailableError
        )
        self.assertEqual(attached.commands(), b'u')

    def test_status(self):
        """Test reading real status files."""
        running = fakesupervise.FakeSupervisor(
            self.root, 'running', self.profile
        )
        running.write_status(fakesupervise.make_status(State.running, pid=5))
        missing = fakesupervise.FakeSupervisor(
            self.root, 'missing', self.profile
        )

        manager = svc_manager.Manager(self.profile, timeout=1)
        results, error = manager.status(
            running.service_dir, missing.service_dir
        )

        self.assertEqual(results[running.service_dir].pid, 5)
        self.assertIsInstance(
            error.errors[missing.service_dir], exc.BackendUnavailableError
        )


if __name__ == '__main__':
    unittest.main()
