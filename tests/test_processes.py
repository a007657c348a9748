"""
Tests for the external process registry.
"""

import threading
from unittest.mock import MagicMock

from radarloop.core.processes import ExternalProcessRegistry


def mock_proc(running=True):
    proc = MagicMock()
    proc.poll.return_value = None if running else 0
    return proc


class TestExternalProcessRegistry:
    def test_cancel_all_kills_only_running(self):
        registry = ExternalProcessRegistry()
        running, exited = mock_proc(True), mock_proc(False)
        registry.register(running)
        registry.register(exited)

        killed = registry.cancel_all()

        assert killed == 1
        running.kill.assert_called_once()
        exited.kill.assert_not_called()
        assert len(registry) == 0

    def test_kill_failure_swallowed(self):
        registry = ExternalProcessRegistry()
        stubborn = mock_proc(True)
        stubborn.kill.side_effect = ProcessLookupError()
        other = mock_proc(True)
        registry.register(stubborn)
        registry.register(other)

        registry.cancel_all()

        other.kill.assert_called_once()
        assert len(registry) == 0

    def test_register_unregister_idempotent(self):
        registry = ExternalProcessRegistry()
        proc = mock_proc()
        registry.register(proc)
        registry.register(proc)
        assert len(registry) == 1

        registry.unregister(proc)
        registry.unregister(proc)
        registry.unregister(None)
        assert len(registry) == 0

    def test_track_unregisters_on_error(self):
        registry = ExternalProcessRegistry()
        proc = mock_proc()
        try:
            with registry.track(proc):
                assert proc in registry
                raise RuntimeError("encoder blew up")
        except RuntimeError:
            pass
        assert proc not in registry

    def test_concurrent_register(self):
        registry = ExternalProcessRegistry()
        procs = [mock_proc() for _ in range(50)]
        threads = [threading.Thread(target=registry.register, args=(p,)) for p in procs]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert len(registry) == 50

    def test_cancel_all_while_lock_held_on_same_thread(self):
        # a signal handler runs on the thread that may be inside register()
        registry = ExternalProcessRegistry()
        proc = mock_proc(True)
        registry.register(proc)
        outcome = []

        def interrupted_register():
            with registry._lock:
                outcome.append(registry.cancel_all())

        t = threading.Thread(target=interrupted_register, daemon=True)
        t.start()
        t.join(timeout=2.0)

        assert not t.is_alive()
        assert outcome == [1]
        proc.kill.assert_called_once()
