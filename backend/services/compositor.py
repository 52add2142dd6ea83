"""Video export: render timed scenes with Ken Burns motion and optional audio into MP4 (or WebM) in memory."""

from __future__ import annotations

import io
import logging
import random
from dataclasses import dataclass
from fractions import Fraction
from typing import Callable, Sequence

import av
import numpy as np
from av import AudioFrame, VideoFrame
from PIL import Image

from models.scene import Scene
from services import timeline
from services.errors import CodecUnavailable, CompositionAborted, NoDataCaptured
from services.images import load_image

logger = logging.getLogger(__name__)

PIX_FMT = "yuv420p"
AUDIO_RATE = 48_000
AUDIO_LAYOUT = "stereo"

ProgressCallback = Callable[[int, str], None]


@dataclass(frozen=True)
class Resolution:
    name: str
    width: int
    height: int
    bit_rate: int


RESOLUTIONS = {
    "720p": Resolution("720p", 1280, 720, 5_000_000),
    "1080p": Resolution("1080p", 1920, 1080, 8_000_000),
}


@dataclass(frozen=True)
class CodecProfile:
    container_format: str
    extension: str
    mime_type: str
    video_codec: str
    audio_codec: str
    audio_format: str


# Preferred first.
CODEC_PROFILES = (
    CodecProfile("mp4", "mp4", "video/mp4", "libx264", "aac", "fltp"),
    CodecProfile("webm", "webm", "video/webm", "libvpx-vp9", "libopus", "flt"),
)


@dataclass(frozen=True)
class RenderedVideo:
    data: bytes
    mime_type: str
    filename: str
    duration_seconds: float
    frame_count: int


@dataclass
class DecodedAudio:
    frames: list[AudioFrame]
    duration_seconds: float


def get_resolution(name: str) -> Resolution:
    try:
        return RESOLUTIONS[name]
    except KeyError:
        raise ValueError(f"resolution must be one of {list(RESOLUTIONS)}") from None


def _encoder_available(name: str) -> bool:
    try:
        av.codec.Codec(name, "w")
    except (ValueError, av.error.FFmpegError):
        return False
    return True


def select_codec_profile(*, with_audio: bool) -> CodecProfile:
    """First profile whose encoders this FFmpeg build provides."""
    for profile in CODEC_PROFILES:
        if not _encoder_available(profile.video_codec):
            continue
        if with_audio and not _encoder_available(profile.audio_codec):
            continue
        return profile
    raise CodecUnavailable("No supported video encoder (H.264/MP4 or VP9/WebM) is available.")


def decode_audio(data: bytes) -> DecodedAudio:
    """Decode every audio frame; duration is the exact sample count over the sample rate."""
    frames: list[AudioFrame] = []
    samples = 0
    rate = 0
    try:
        with av.open(io.BytesIO(data), "r") as container:
            if not container.streams.audio:
                raise CompositionAborted("The audio file has no audio stream.")
            for frame in container.decode(container.streams.audio[0]):
                frames.append(frame)
                samples += frame.samples
                rate = frame.sample_rate
    except (av.error.FFmpegError, OSError, ValueError) as exc:
        raise CompositionAborted("Failed to process the audio file. Check that it is not corrupted.") from exc
    if samples <= 0 or rate <= 0:
        raise CompositionAborted("The audio file contains no samples.")
    return DecodedAudio(frames=frames, duration_seconds=samples / rate)


def paint_frame(img: Image.Image, rect: timeline.Rect, width: int, height: int) -> Image.Image:
    """Draw ``img`` scaled into ``rect`` on a black ``width`` x ``height`` canvas."""
    canvas = Image.new("RGB", (width, height), "black")
    left, top = max(0.0, rect.x), max(0.0, rect.y)
    right, bottom = min(float(width), rect.right), min(float(height), rect.bottom)
    dest_l, dest_t, dest_r, dest_b = round(left), round(top), round(right), round(bottom)
    if dest_r - dest_l < 1 or dest_b - dest_t < 1:
        return canvas
    sx, sy = rect.width / img.width, rect.height / img.height
    box = (
        max(0.0, (left - rect.x) / sx),
        max(0.0, (top - rect.y) / sy),
        min(float(img.width), (right - rect.x) / sx),
        min(float(img.height), (bottom - rect.y) / sy),
    )
    region = img.resize((dest_r - dest_l, dest_b - dest_t), Image.Resampling.BILINEAR, box=box)
    canvas.paste(region, (dest_l, dest_t))
    return canvas


class VideoCompositor:
    """
    Renders one export. Not reusable: create one per composition.

    The frame clock is driven by the encoder, not the wall clock: frame ``i``
    is painted for ``i / 30`` seconds, so output length is exact regardless of
    how fast this machine renders.
    """

    def __init__(self, *, rng: random.Random | None = None, fps: int = timeline.FRAME_RATE) -> None:
        self._rng = rng or random.Random()
        self._fps = fps

    def compose(
        self,
        scenes: Sequence[Scene],
        audio: bytes | None,
        resolution: str,
        on_progress: ProgressCallback | None = None,
    ) -> RenderedVideo:
        report = on_progress or (lambda _p, _m: None)
        res = get_resolution(resolution)
        if not scenes:
            raise CompositionAborted("There are no scenes to render.")

        report(0, "Starting video render...")
        profile = select_codec_profile(with_audio=audio is not None)

        scenes = list(scenes)
        total = sum(s.duration_seconds for s in scenes)
        decoded: DecodedAudio | None = None
        if audio is not None:
            report(5, "Processing and syncing audio...")
            decoded = decode_audio(audio)
            total = decoded.duration_seconds
            scenes = timeline.rescale_to_audio(scenes, total)
        if total <= 0:
            raise CompositionAborted("The video duration is zero. Cannot render a clip.")

        report(10, "Loading high resolution images...")
        images: list[Image.Image] = []
        for scene in scenes:
            try:
                images.append(load_image(scene.image_url))
            except ValueError as exc:
                raise CompositionAborted(f"Could not load the image for scene {scene.scene_number}: {exc}") from exc
        transforms = [
            timeline.compute_ken_burns(img.width, img.height, res.width, res.height, self._rng) for img in images
        ]

        logger.info(
            "[compositor] Rendering %d scenes, %.2fs at %s as %s",
            len(scenes),
            total,
            res.name,
            profile.container_format,
        )
        data, frames = self._encode(scenes, images, transforms, decoded, total, res, profile, report)
        if not data or frames == 0:
            raise NoDataCaptured("Video recording failed, no data was captured. Check the script or audio duration.")

        report(100, "Video rendered successfully!")
        return RenderedVideo(
            data=data,
            mime_type=profile.mime_type,
            filename=f"storyboard_{res.name}.{profile.extension}",
            duration_seconds=total,
            frame_count=frames,
        )

    def _encode(
        self,
        scenes: list[Scene],
        images: list[Image.Image],
        transforms: list[timeline.KenBurnsTransform],
        audio: DecodedAudio | None,
        total: float,
        res: Resolution,
        profile: CodecProfile,
        report: ProgressCallback,
    ) -> tuple[bytes, int]:
        buffer = io.BytesIO()
        frames = 0
        try:
            container = av.open(buffer, "w", format=profile.container_format)
            try:
                video = container.add_stream(profile.video_codec, rate=self._fps)
                video.width = res.width
                video.height = res.height
                video.pix_fmt = PIX_FMT
                video.codec_context.bit_rate = res.bit_rate
                audio_stream = None
                if audio is not None:
                    audio_stream = container.add_stream(profile.audio_codec, rate=AUDIO_RATE)
                    audio_stream.codec_context.layout = AUDIO_LAYOUT
                    audio_stream.codec_context.format = profile.audio_format

                frames = self._encode_video(container, video, scenes, images, transforms, total, res, report)
                for packet in video.encode():
                    container.mux(packet)
                if audio is not None and audio_stream is not None:
                    self._encode_audio(container, audio_stream, audio, profile)
            finally:
                container.close()
        except (av.error.FFmpegError, ValueError) as exc:
            raise CompositionAborted(f"An error occurred while encoding the video: {exc}") from exc
        return buffer.getvalue(), frames

    def _encode_video(
        self,
        container: av.container.OutputContainer,
        stream: av.video.stream.VideoStream,
        scenes: list[Scene],
        images: list[Image.Image],
        transforms: list[timeline.KenBurnsTransform],
        total: float,
        res: Resolution,
        report: ProgressCallback,
    ) -> int:
        durations = [s.duration_seconds for s in scenes]
        starts = timeline.scene_start_times(durations)
        cursor = timeline.ActiveSceneCursor(starts)
        time_base = Fraction(1, self._fps)
        last_reported = -1
        count = 0
        for index, elapsed in enumerate(timeline.frame_times(total, self._fps)):
            current = cursor.advance(elapsed)
            progress = timeline.scene_progress(elapsed, starts[current], durations[current])
            painted = paint_frame(images[current], transforms[current].at(progress), res.width, res.height)

            frame = VideoFrame.from_ndarray(np.asarray(painted), format="rgb24").reformat(format=PIX_FMT)
            frame.pts = index
            frame.time_base = time_base
            for packet in stream.encode(frame):
                container.mux(packet)
            count += 1

            percent = timeline.render_percent(elapsed, total)
            if percent > last_reported:
                report(percent, f"Rendering scene {current + 1}/{len(scenes)}...")
                last_reported = percent
        return count

    def _encode_audio(
        self,
        container: av.container.OutputContainer,
        stream: av.audio.stream.AudioStream,
        audio: DecodedAudio,
        profile: CodecProfile,
    ) -> None:
        resampler = av.AudioResampler(format=profile.audio_format, layout=AUDIO_LAYOUT, rate=AUDIO_RATE)
        fifo = av.AudioFifo()
        frame_size = stream.codec_context.frame_size or 1024
        time_base = Fraction(1, AUDIO_RATE)
        written = 0

        def drain(final: bool) -> None:
            nonlocal written
            while fifo.samples >= frame_size or (final and fifo.samples > 0):
                chunk = fifo.read(min(frame_size, fifo.samples))
                chunk.pts = written
                chunk.time_base = time_base
                written += chunk.samples
                for packet in stream.encode(chunk):
                    container.mux(packet)

        for source in [*audio.frames, None]:
            if source is not None:
                source.pts = None
            for resampled in resampler.resample(source):
                resampled.pts = None
                fifo.write(resampled)
            drain(final=source is None)
        for packet in stream.encode():
            container.mux(packet)


def compose(
    scenes: Sequence[Scene],
    audio: bytes | None,
    resolution: str,
    on_progress: ProgressCallback | None = None,
    *,
    rng: random.Random | None = None,
) -> RenderedVideo:
    return VideoCompositor(rng=rng).compose(scenes, audio, resolution, on_progress)
