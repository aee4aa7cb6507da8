import logging
import subprocess
import tempfile
import threading
from collections.abc import Callable
from pathlib import Path

import ffmpeg
import numpy as np
from PIL import Image

from ..artifact import VIDEO_CONTAINERS, MediaArtifact
from ..config.models import WatermarkConfig
from ..core import BITRATE_720P, BITRATE_1080P, BITRATE_4K, BITRATE_HIGHER
from ..core import PIXELS_720P, PIXELS_1080P, PIXELS_4K
from ..core.blend import apply_watermark
from ..core.layer import render_watermark_layer
from ..core.position import calculate_watermark_box
from ..errors import CompositeCancelled, CompositeFailure, DecodeFailure
from ..settings import CompositorSettings

logger = logging.getLogger(__name__)

# Seconds between cancellation checks while ffmpeg runs
POLL_INTERVAL = 0.1

# Container extension -> (video codec, pixel format)
VIDEO_ENCODERS: dict[str, tuple[str, str]] = {
    ".mp4": ("libx264", "yuv420p"),
    ".mov": ("libx264", "yuv420p"),
    ".mkv": ("libx264", "yuv420p"),
    ".avi": ("libx264", "yuv420p"),
    ".webm": ("libvpx-vp9", "yuv420p"),
}


def check_cancelled(cancel_event: threading.Event | None) -> None:
    """Raise CompositeCancelled if the caller abandoned the call."""
    if cancel_event is not None and cancel_event.is_set():
        raise CompositeCancelled("Video compositing was cancelled")


def _run(cmd: list[str], cancel_event: threading.Event | None = None) -> None:
    """
    Run an ffmpeg command, killing it as soon as ``cancel_event`` is set.

    Raises:
        CompositeCancelled: The caller cancelled while the command was running
        subprocess.CalledProcessError: The command exited with an error
    """
    with subprocess.Popen(
        cmd,
        stdin=subprocess.DEVNULL,
        stdout=subprocess.DEVNULL,
        stderr=subprocess.PIPE,
    ) as process:
        while True:
            try:
                _, stderr = process.communicate(timeout=POLL_INTERVAL)
                break
            except subprocess.TimeoutExpired:
                if cancel_event is not None and cancel_event.is_set():
                    process.kill()
                    process.communicate()
                    raise CompositeCancelled("Video compositing was cancelled") from None

    if process.returncode != 0:
        raise subprocess.CalledProcessError(process.returncode, cmd, stderr=stderr)


def _stderr_tail(exc: subprocess.CalledProcessError | ffmpeg.Error) -> str:
    stderr = exc.stderr or b""
    lines = stderr.decode("utf-8", errors="replace").strip().splitlines()
    return lines[-1] if lines else str(exc)


def get_video_info(input_path: Path) -> dict:
    """Get video metadata using ffprobe."""
    probe = ffmpeg.probe(str(input_path))
    video_stream = next(s for s in probe["streams"] if s["codec_type"] == "video")

    # Check for audio stream
    audio_stream = next(
        (s for s in probe["streams"] if s["codec_type"] == "audio"),
        None,
    )

    width = int(video_stream["width"])
    height = int(video_stream["height"])

    # Frame rate is kept as ffprobe reports it ("30/1", "30000/1001") so the
    # re-encoded video runs at exactly the same rate
    frame_rate = video_stream.get("r_frame_rate", "30/1")
    bitrate = video_stream.get("bit_rate") or probe["format"].get("bit_rate")

    return {
        "width": width,
        "height": height,
        "frame_rate": frame_rate,
        "bitrate": int(bitrate) if bitrate else None,
        "has_audio": audio_stream is not None,
    }


def calculate_bitrate(width: int, height: int) -> int:
    """Calculate optimal bitrate based on resolution."""
    pixels = width * height

    if pixels <= PIXELS_720P:
        return BITRATE_720P
    elif pixels <= PIXELS_1080P:
        return BITRATE_1080P
    elif pixels <= PIXELS_4K:
        return BITRATE_4K
    else:
        return BITRATE_HIGHER


def _probe(input_path: Path) -> dict:
    try:
        return get_video_info(input_path)
    except FileNotFoundError as exc:
        raise CompositeFailure("ffprobe is not available to read the video") from exc
    except ffmpeg.Error as exc:
        raise DecodeFailure(f"Could not probe video: {_stderr_tail(exc)}") from exc
    except (StopIteration, KeyError, ValueError) as exc:
        raise DecodeFailure("Video has no readable video stream") from exc


def _extract_frames(
    input_path: Path,
    frames_dir: Path,
    cancel_event: threading.Event | None = None,
) -> list[Path]:
    extract_cmd = (
        ffmpeg.input(str(input_path))
        .output(str(frames_dir / "frame_%06d.png"), format="image2")
        .overwrite_output()
        .compile()
    )
    try:
        _run(extract_cmd, cancel_event)
    except FileNotFoundError as exc:
        raise CompositeFailure("ffmpeg is not available to decode the video") from exc
    except subprocess.CalledProcessError as exc:
        raise DecodeFailure(f"Could not decode video frames: {_stderr_tail(exc)}") from exc

    frame_files = sorted(frames_dir.glob("frame_*.png"))
    if not frame_files:
        raise DecodeFailure("Video contains no frames")
    return frame_files


def _reassemble(
    frames_pattern: Path,
    input_path: Path,
    output_path: Path,
    info: dict,
    settings: CompositorSettings,
    cancel_event: threading.Event | None = None,
) -> None:
    vcodec, pix_fmt = VIDEO_ENCODERS[output_path.suffix]
    bitrate = info["bitrate"] or calculate_bitrate(info["width"], info["height"])

    video_input = ffmpeg.input(str(frames_pattern), framerate=info["frame_rate"])
    streams = [video_input]
    options = {
        "vcodec": vcodec,
        "crf": settings.video_crf,
        "maxrate": bitrate,
        "bufsize": bitrate * 2,
        "pix_fmt": pix_fmt,
    }
    if vcodec == "libx264":
        options["preset"] = settings.video_preset

    if info["has_audio"]:
        # Audio is copied from the original without re-encoding
        streams.append(ffmpeg.input(str(input_path)).audio)
        options["acodec"] = "copy"

    reassemble_cmd = (
        ffmpeg.output(*streams, str(output_path), **options)
        .overwrite_output()
        .compile()
    )
    try:
        _run(reassemble_cmd, cancel_event)
    except FileNotFoundError as exc:
        raise CompositeFailure("ffmpeg is not available to encode the video") from exc
    except subprocess.CalledProcessError as exc:
        raise CompositeFailure(f"Could not encode watermarked video: {_stderr_tail(exc)}") from exc


def composite_video(
    artifact: MediaArtifact,
    config: WatermarkConfig,
    settings: CompositorSettings,
    cancel_event: threading.Event | None = None,
    progress_callback: Callable[[int, int], None] | None = None,
) -> MediaArtifact:
    """
    Burn a watermark into every frame of a video.

    The same box as the image path is used on each frame. Frame rate, frame
    count and the audio track are carried over unchanged; the output uses the
    same container as the input.

    Args:
        artifact: Encoded source video
        config: Watermark to apply
        settings: Compositor settings (margin, font, encoder)
        cancel_event: Checked between frames and while ffmpeg runs; once set, the call raises
            CompositeCancelled and no output is produced
        progress_callback: Optional callback(current_frame, total_frames)

    Returns:
        New artifact with the same MIME type
    """
    check_cancelled(cancel_event)

    container = VIDEO_CONTAINERS.get(artifact.mime_type)
    if container is None:
        raise DecodeFailure(f"Unsupported video type: {artifact.mime_type}")

    # Everything, including partial output, lives in the temporary directory
    with tempfile.TemporaryDirectory(prefix="zwm-") as temp_dir:
        temp_path = Path(temp_dir)
        input_path = temp_path / f"source{container}"
        input_path.write_bytes(artifact.data)

        info = _probe(input_path)

        frames_dir = temp_path / "frames"
        frames_dir.mkdir()
        frame_files = _extract_frames(input_path, frames_dir, cancel_event)

        # Decoded frames may be rotated relative to the probed stream size
        with Image.open(frame_files[0]) as first_frame:
            width, height = first_frame.size

        box = calculate_watermark_box(width, height, config.scale, settings.margin_ratio)
        layer = render_watermark_layer(config, box, settings.font_path)
        logger.debug(
            "Compositing %s watermark %s into %dx%d video at %s fps, box %s",
            config.kind, config.id, width, height, info["frame_rate"], box,
        )

        processed_dir = temp_path / "processed"
        processed_dir.mkdir()

        for i, frame_file in enumerate(frame_files):
            check_cancelled(cancel_event)

            with Image.open(frame_file) as img:
                frame_array = np.array(img.convert("RGB"), dtype=np.uint8)

            try:
                result_array = apply_watermark(frame_array, layer, box)
            except ValueError as exc:
                raise CompositeFailure(f"Frame {frame_file.name}: {exc}") from exc
            Image.fromarray(result_array).save(processed_dir / frame_file.name)

            # Report progress
            if progress_callback:
                progress_callback(i + 1, len(frame_files))

        check_cancelled(cancel_event)

        output_path = temp_path / f"output{container}"
        _reassemble(
            processed_dir / "frame_%06d.png", input_path, output_path, info, settings, cancel_event
        )

        check_cancelled(cancel_event)
        data = output_path.read_bytes()

    logger.debug("Watermarked %d frames", len(frame_files))
    return MediaArtifact(data=data, mime_type=artifact.mime_type)
