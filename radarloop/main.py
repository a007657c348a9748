from __future__ import annotations
import logging
import signal
import sys
from typing import Optional

from radarloop.config import parse_args
from radarloop.core.scheduler import Scheduler
from radarloop.exceptions import ConfigError
from radarloop.output.encoder import ffmpeg_available
from radarloop.pipeline import RadarPipeline, RunResult

log = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, str(level).upper(), logging.INFO),
        format=LOG_FORMAT,
        handlers=[logging.StreamHandler(sys.stdout)],
        force=True,
    )
    # urllib3 is chatty at DEBUG
    logging.getLogger("urllib3").setLevel(logging.WARNING)


def _summarize(run: RunResult) -> None:
    anim = run.animation
    if anim and anim.success:
        log.info("Animation: %s", ", ".join(str(p) for p in (anim.gif_path, anim.video_path) if p))
    elif anim and anim.frame_paths:
        log.info("No animation; %d raw frames kept", len(anim.frame_paths))
    for still in run.stills:
        log.info("Still: %s", still)
    if run.location:
        log.info("Location frames: %d", len(run.location.frame_paths))
    if run.city_images:
        log.info("City radar: %s", ", ".join(sorted(run.city_images)))


def main(argv: Optional[list[str]] = None) -> int:
    try:
        cfg = parse_args(argv)
    except ConfigError as exc:
        configure_logging()
        log.error("%s", exc)
        return 2
    configure_logging(cfg.log_level)

    try:
        pipeline = RadarPipeline(cfg)
    except ConfigError as exc:
        log.error("Invalid configuration: %s", exc)
        return 2
    if not ffmpeg_available(cfg.ffmpeg_path):
        log.warning("ffmpeg not available; animations will be left as raw frames")

    def _on_signal(signum, _frame):
        log.warning("Signal %s received; cancelling", signum)
        pipeline.cancel.set()
        pipeline.registry.cancel_all()

    signal.signal(signal.SIGINT, _on_signal)
    signal.signal(signal.SIGTERM, _on_signal)

    close_session = True
    try:
        if cfg.interval_sec <= 0:
            _summarize(pipeline.run_once())
            return 130 if pipeline.cancel.is_set() else 0

        sched = Scheduler(lambda: _summarize(pipeline.run_once()), cfg.interval_sec)
        log.info("Refreshing radar every %ss", cfg.interval_sec)
        sched.start()
        while not pipeline.cancel.wait(1.0):
            pass
        sched.stop(timeout=5.0)
        if sched.running:
            log.warning("Refresh pass still running at exit; leaving its HTTP session open")
            close_session = False
        return 130
    finally:
        if close_session:
            pipeline.close()


if __name__ == "__main__":
    sys.exit(main())
