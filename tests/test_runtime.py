"""
Tests for the refresh scheduler, the CLI entry point and small helpers.
"""

import threading
from unittest.mock import MagicMock, patch

import pytest

from radarloop import main as cli
from radarloop.core.scheduler import Scheduler
from radarloop.pipeline import RunResult
from radarloop.utils import extension_for, parse_iso_duration, sanitize_filename


class TestScheduler:
    def test_runs_and_survives_errors(self):
        calls = []
        done = threading.Event()

        def job():
            calls.append(1)
            if len(calls) == 1:
                raise RuntimeError("first pass fails")
            done.set()
            return "ok"

        sched = Scheduler(job, interval_sec=1)
        sched.interval = 0.01
        sched.start()
        assert done.wait(2.0)
        sched.stop()

        assert sched.runs >= 2
        assert sched.last_result == "ok"
        assert not sched.running

    def test_run_pass_records_result(self):
        sched = Scheduler(lambda: 42)
        sched.run_pass()
        assert sched.last_result == 42 and sched.runs == 1


class TestMain:
    @pytest.fixture(autouse=True)
    def quiet_logging(self):
        with patch.object(cli, "configure_logging"), patch.object(cli, "ffmpeg_available", return_value=True):
            yield

    def test_run_once(self, tmp_path):
        with patch.object(cli, "RadarPipeline") as pipeline_cls, patch.object(cli.signal, "signal"):
            pipeline = pipeline_cls.return_value
            pipeline.cancel = threading.Event()
            pipeline.run_once.return_value = RunResult()

            code = cli.main(["--out", str(tmp_path), "--log-level", "DEBUG"])

        assert code == 0
        pipeline.run_once.assert_called_once()
        pipeline.close.assert_called_once()

    def test_invalid_config_exit_code(self, tmp_path):
        with patch.object(cli.signal, "signal"):
            assert cli.main(["--out", str(tmp_path), "--frames", "0"]) == 2

    def test_missing_settings_file(self, tmp_path):
        assert cli.main(["--settings", str(tmp_path / "missing.json")]) == 2

    def test_signal_handler_cancels(self, tmp_path):
        handlers = {}
        with patch.object(cli, "RadarPipeline") as pipeline_cls, \
                patch.object(cli.signal, "signal", side_effect=lambda s, h: handlers.setdefault(s, h)):
            pipeline = pipeline_cls.return_value
            pipeline.cancel = threading.Event()
            pipeline.registry = MagicMock()

            def run_once():
                handlers[cli.signal.SIGINT](cli.signal.SIGINT, None)
                return RunResult()

            pipeline.run_once.side_effect = run_once
            code = cli.main(["--out", str(tmp_path)])

        assert code == 130
        pipeline.registry.cancel_all.assert_called_once()

    @pytest.mark.parametrize("still_running,closed", [(True, False), (False, True)])
    def test_session_left_open_while_refresh_running(self, tmp_path, still_running, closed):
        with patch.object(cli, "RadarPipeline") as pipeline_cls, \
                patch.object(cli, "Scheduler") as sched_cls, \
                patch.object(cli.signal, "signal"):
            pipeline = pipeline_cls.return_value
            pipeline.cancel = threading.Event()
            pipeline.cancel.set()
            sched_cls.return_value.running = still_running

            code = cli.main(["--out", str(tmp_path), "--interval-sec", "60"])

        assert code == 130
        sched_cls.return_value.stop.assert_called_once_with(timeout=5.0)
        assert pipeline.close.called is closed


class TestUtils:
    @pytest.mark.parametrize(
        "ct,url,ext",
        [
            ("image/gif", "https://x/a", ".gif"),
            ("video/mp4", "https://x/a", ".mp4"),
            (None, "https://x/loop.GIF?x=1", ".gif"),
            ("application/octet-stream", "https://x/a", ".png"),
        ],
    )
    def test_extension_for(self, ct, url, ext):
        assert extension_for(ct, url) == ext

    def test_sanitize_filename(self):
        assert sanitize_filename('Val-d\'Or: "QC"') == "Val-d'Or___QC_"

    @pytest.mark.parametrize("value", ["P1D", "PT", "PT1H30M", "6M", ""])
    def test_unsupported_durations(self, value):
        assert parse_iso_duration(value) is None
