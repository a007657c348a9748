# radarloop/output/encoder.py
from __future__ import annotations

import logging
import shutil
import subprocess
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, List, Optional, Sequence, Tuple, Union

from PIL import Image

from radarloop.core.processes import ExternalProcessRegistry
from radarloop.exceptions import EncoderUnavailableError

log = logging.getLogger(__name__)

FRAME_PATTERN = "frame_%03d.png"
MIN_OUTPUT_BYTES = 128

FrameSource = Union[bytes, bytearray, Image.Image, None]


@dataclass
class AnimationOutput:
    frame_paths: List[Path] = field(default_factory=list)
    gif_path: Optional[Path] = None
    video_path: Optional[Path] = None
    success: bool = False
    # soft failure: frames are usable but no animation could be encoded
    degraded: bool = False
    message: str = ""

    @property
    def animated_path(self) -> Optional[Path]:
        return self.gif_path or self.video_path


def locate_ffmpeg(explicit: Optional[str] = None) -> str:
    if explicit:
        if Path(explicit).is_file():
            return str(explicit)
        found = shutil.which(explicit)
        if found:
            return found
        raise EncoderUnavailableError(f"Configured ffmpeg not found: {explicit}")
    found = shutil.which("ffmpeg")
    if not found:
        raise EncoderUnavailableError("ffmpeg executable not found in PATH")
    return found


def frame_filename(index: int) -> str:
    return FRAME_PATTERN % index


def stage_frames(frames: Iterable[FrameSource], staging_dir: Union[str, Path]) -> List[Path]:
    """Write frames as frame_000.png, frame_001.png, ... skipping empty entries.

    Numbering stays contiguous so ffmpeg's image2 sequence reader sees every frame.
    """
    staging = Path(staging_dir)
    staging.mkdir(parents=True, exist_ok=True)
    for stale in staging.glob("frame_*.png"):
        stale.unlink()

    paths: List[Path] = []
    for item in frames:
        if item is None or (isinstance(item, (bytes, bytearray)) and not item):
            continue
        path = staging / frame_filename(len(paths))
        if isinstance(item, Image.Image):
            item.save(path, format="PNG")
        else:
            path.write_bytes(bytes(item))
        paths.append(path)
    return paths


class AnimationAssembler:
    def __init__(
        self,
        registry: ExternalProcessRegistry,
        width: int,
        height: int,
        *,
        fps: int = 5,
        ffmpeg_path: Optional[str] = None,
        timeout: Optional[float] = 120.0,
        cancel: Optional[threading.Event] = None,
    ):
        self.registry = registry
        self.width = int(width)
        self.height = int(height)
        self.fps = max(1, int(fps))
        self.ffmpeg_path = ffmpeg_path
        self.timeout = timeout
        self.cancel = cancel

    # ------------------------- commands -------------------------

    def _scale_pad(self) -> str:
        w, h = self.width, self.height
        return f"scale={w}:{h}:force_original_aspect_ratio=decrease,pad={w}:{h}:(ow-iw)/2:(oh-ih)/2"

    def _input_args(self, staging_dir: Path) -> List[str]:
        return [
            "-y",
            "-hide_banner",
            "-loglevel", "error",
            "-framerate", str(self.fps),
            "-i", str(staging_dir / FRAME_PATTERN),
        ]

    def gif_command(self, ffmpeg: str, staging_dir: Path, out: Path) -> List[str]:
        return [ffmpeg, *self._input_args(staging_dir), "-vf", self._scale_pad(), "-loop", "0", str(out)]

    def video_command(self, ffmpeg: str, staging_dir: Path, out: Path) -> List[str]:
        return [
            ffmpeg,
            *self._input_args(staging_dir),
            "-vf", self._scale_pad(),
            "-c:v", "libx264",
            "-pix_fmt", "yuv420p",
            "-r", str(self.fps),
            "-movflags", "+faststart",
            str(out),
        ]

    def manual_command(self, staging_dir: Path, out: Path) -> str:
        return " ".join(
            ["ffmpeg", "-y", "-framerate", str(self.fps), "-i", f'"{staging_dir / FRAME_PATTERN}"',
             "-vf", f'"{self._scale_pad()}"', "-loop", "0", f'"{out}"']
        )

    # ------------------------- process -------------------------

    def _run(self, cmd: Sequence[str], cwd: Path) -> Tuple[int, str]:
        log.debug("ffmpeg: %s", " ".join(cmd))
        proc = subprocess.Popen(
            list(cmd),
            cwd=str(cwd),
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
        )
        with self.registry.track(proc):
            try:
                # communicate() drains both pipes while waiting
                _, err = proc.communicate(timeout=self.timeout)
            except subprocess.TimeoutExpired:
                log.warning("ffmpeg timed out after %ss; killing it", self.timeout)
                proc.kill()
                _, err = proc.communicate()
        return proc.returncode, (err or b"").decode("utf-8", "replace")

    def _encode(self, cmd: Sequence[str], out: Path, cwd: Path) -> Optional[Path]:
        if self.cancel is not None and self.cancel.is_set():
            log.warning("Encoding of %s skipped: cancelled", out.name)
            return None
        if out.exists():
            out.unlink()
        code, stderr = self._run(cmd, cwd)
        size = out.stat().st_size if out.exists() else 0
        if code == 0 and size >= MIN_OUTPUT_BYTES:
            log.info("Animation written: %s (%d bytes)", out, size)
            return out
        tail = stderr.strip()[-500:] or "<no stderr>"
        log.warning("ffmpeg produced no usable %s (exit %s, %d bytes): %s", out.name, code, size, tail)
        if out.exists():
            # partial output from a killed or failed encoder
            out.unlink()
        return None

    # ------------------------- public -------------------------

    def assemble(
        self,
        frame_paths: Sequence[Path],
        output_dir: Union[str, Path],
        prefix: str,
    ) -> AnimationOutput:
        frames = [Path(p) for p in frame_paths]
        if not frames:
            log.warning("No radar frames to animate; encoder not invoked")
            return AnimationOutput([], success=False, message="no frames")

        staging_dir = frames[0].parent
        out_dir = Path(output_dir)
        out_dir.mkdir(parents=True, exist_ok=True)
        gif_out = out_dir / f"{prefix}.gif"
        mp4_out = out_dir / f"{prefix}.mp4"

        try:
            ffmpeg = locate_ffmpeg(self.ffmpeg_path)
        except EncoderUnavailableError as exc:
            log.warning(
                "%s; %d frames left in %s. Stitch manually with: %s",
                exc, len(frames), staging_dir, self.manual_command(staging_dir, gif_out),
            )
            return AnimationOutput(frames, success=False, degraded=True, message=str(exc))

        gif_path = video_path = None
        try:
            gif_path = self._encode(self.gif_command(ffmpeg, staging_dir, gif_out), gif_out, out_dir)
            video_path = self._encode(self.video_command(ffmpeg, staging_dir, mp4_out), mp4_out, out_dir)
        except OSError as exc:
            log.warning("Failed to run ffmpeg (%s): %s; frames left in %s", ffmpeg, exc, staging_dir)
            return AnimationOutput(frames, gif_path, success=gif_path is not None, degraded=True, message=str(exc))

        if gif_path or video_path:
            return AnimationOutput(frames, gif_path, video_path, success=True)
        log.warning("ffmpeg did not produce expected outputs: %s / %s", gif_out, mp4_out)
        return AnimationOutput(frames, success=False, degraded=True, message="encoder produced no output")


def remove_staging(staging_dir: Union[str, Path]) -> None:
    path = Path(staging_dir)
    if path.is_dir():
        shutil.rmtree(path, ignore_errors=True)
        log.debug("Removed staging directory %s", path)


def ffmpeg_version(ffmpeg: str) -> Optional[str]:
    try:
        out = subprocess.run(
            [ffmpeg, "-version"],
            stdout=subprocess.PIPE,
            stderr=subprocess.DEVNULL,
            timeout=5,
            check=False,
        )
    except (OSError, subprocess.TimeoutExpired):
        return None
    first = (out.stdout or b"").decode("utf-8", "replace").splitlines()
    return first[0].strip() if first and out.returncode == 0 else None


def ffmpeg_available(explicit: Optional[str] = None) -> bool:
    try:
        return ffmpeg_version(locate_ffmpeg(explicit)) is not None
    except EncoderUnavailableError:
        return False
