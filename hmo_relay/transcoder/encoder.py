"""
Encoder capability.

The transcode session treats an encoder as an opaque, blocking capability:
it is called once in a worker thread with a source identifier, an output
path, an ``EncodingProfile``, a progress callback and a cancellation token.
The encoder appends to the output file as it goes, polls the token at every
checkpoint and raises ``Halted`` as soon as it is set.

``PyAVEncoder`` is the in-process implementation. It decodes the source with
PyAV, scales video to the profile resolution (keeping the width and deriving
the height from the source aspect ratio), resamples audio and muxes the
result into the profile's container format.
"""

import logging
import threading
from fractions import Fraction
from typing import Callable, Dict, Optional, Protocol, runtime_checkable

import av

from hmo_relay.schemas import EncodingProfile
from hmo_relay.utils.http_utils import redact_url

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[float], None]


class TranscodeError(Exception):
    """Base exception for the transcode pipeline."""


class EncodeFailure(TranscodeError):
    """The encoder could not produce (all of) its output."""


class Halted(TranscodeError):
    """Cancellation was observed at an encoder checkpoint."""


@runtime_checkable
class Encoder(Protocol):
    """
    Protocol for encoding a source into an intermediate file.

    Implementations must:
    - append encoded bytes to ``output_path`` while running
    - call ``on_progress`` with a 0..1 fraction per increment
    - check ``cancel`` at bounded intervals and raise ``Halted`` when set
    - raise on failure (any exception marks the session failed)
    """

    def encode(
        self,
        source_identifier: str,
        output_path: str,
        profile: EncodingProfile,
        on_progress: ProgressCallback,
        cancel: threading.Event,
    ) -> None:
        ...


def checkpoint(cancel: threading.Event, source_identifier: str) -> None:
    """Raise ``Halted`` if cancellation has been requested."""
    if cancel.is_set():
        raise Halted(f"Transcode of {source_identifier} halted")


def output_frame_rate(frame_rate: float) -> Fraction:
    """Exact encoder frame rate; NTSC-style rates such as 29.97 snap to their /1001 rational."""
    ntsc = Fraction(round(frame_rate * 1001 / 1000) * 1000, 1001)
    if ntsc and abs(float(ntsc) - frame_rate) < 0.005:
        return ntsc
    return Fraction(frame_rate).limit_denominator(1001)


def scale_dimensions(source_width: int, source_height: int, target_width: int, target_height: int) -> tuple[int, int]:
    """Keep the target width and derive an even height from the source aspect ratio."""
    if source_width <= 0 or source_height <= 0:
        return target_width, target_height
    height = round(target_width * source_height / source_width)
    height += height % 2
    return target_width, max(height, 2)


class PyAVEncoder:
    """In-process encoder backed by PyAV (libav*)."""

    def __init__(self, input_options: Optional[Dict[str, str]] = None, pixel_format: str = "yuv420p") -> None:
        self.input_options = input_options or {}
        self.pixel_format = pixel_format

    def encode(
        self,
        source_identifier: str,
        output_path: str,
        profile: EncodingProfile,
        on_progress: ProgressCallback,
        cancel: threading.Event,
    ) -> None:
        name = redact_url(source_identifier)
        checkpoint(cancel, name)
        try:
            input_container = av.open(source_identifier, options=self.input_options)
        except av.error.FFmpegError as e:
            raise EncodeFailure(f"Unable to open {name}: {redact_url(e)}") from e

        try:
            output_container = av.open(
                output_path,
                mode="w",
                format=profile.container_format,
                options=dict(profile.custom),
            )
            try:
                self._transcode(input_container, output_container, name, profile, on_progress, cancel)
            finally:
                output_container.close()
        except av.error.FFmpegError as e:
            raise EncodeFailure(f"Transcode of {name} failed: {redact_url(e)}") from e
        finally:
            input_container.close()

    def _transcode(self, input_container, output_container, name, profile, on_progress, cancel) -> None:
        in_video = input_container.streams.video[0] if input_container.streams.video else None
        in_audio = input_container.streams.audio[0] if input_container.streams.audio else None
        if in_video is None and in_audio is None:
            raise EncodeFailure(f"{name} has no audio or video streams")

        rate = output_frame_rate(profile.frame_rate)
        out_video = None
        if in_video is not None:
            out_video = output_container.add_stream(profile.video_codec, rate=rate)
            out_video.width, out_video.height = scale_dimensions(
                in_video.codec_context.width, in_video.codec_context.height, *profile.dimensions
            )
            out_video.pix_fmt = self.pixel_format
            out_video.bit_rate = profile.video_bitrate * 1000
            out_video.codec_context.time_base = 1 / rate
            out_video.codec_context.options = {
                "maxrate": f"{profile.video_max_bitrate}k",
                "bufsize": f"{profile.buffer_size}k",
            }

        out_audio = resampler = None
        if in_audio is not None:
            out_audio = output_container.add_stream(profile.audio_codec, rate=profile.audio_sample_rate)
            out_audio.bit_rate = profile.audio_bitrate * 1000
            resampler = av.AudioResampler(
                format=out_audio.codec_context.format,
                layout=out_audio.codec_context.layout,
                rate=profile.audio_sample_rate,
            )

        duration = input_container.duration / av.time_base if input_container.duration else 0.0
        logger.info(
            "[encoder] %s -> %s %dx%d @%s, %s, duration=%.1fs",
            name,
            profile.video_codec,
            out_video.width if out_video else 0,
            out_video.height if out_video else 0,
            rate,
            profile.audio_codec,
            duration,
        )

        last_pts = None
        streams = [stream for stream in (in_video, in_audio) if stream is not None]
        for packet in input_container.demux(*streams):
            checkpoint(cancel, name)
            if packet.dts is None:
                continue

            for frame in packet.decode():
                if packet.stream is in_video:
                    if frame.time is None:
                        continue
                    pts = round(frame.time * rate)
                    # Drop frames that land on an already written output timestamp.
                    if last_pts is not None and pts <= last_pts:
                        continue
                    last_pts = pts
                    scaled = frame.reformat(width=out_video.width, height=out_video.height, format=self.pixel_format)
                    scaled.pts = pts
                    scaled.time_base = out_video.codec_context.time_base
                    output_container.mux(out_video.encode(scaled))
                else:
                    for resampled in resampler.resample(frame):
                        output_container.mux(out_audio.encode(resampled))

            if duration and packet.pts is not None and packet.time_base is not None:
                on_progress(min(1.0, float(packet.pts * packet.time_base) / duration))

        checkpoint(cancel, name)
        if out_video is not None:
            output_container.mux(out_video.encode(None))
        if out_audio is not None:
            for resampled in resampler.resample(None):
                output_container.mux(out_audio.encode(resampled))
            output_container.mux(out_audio.encode(None))
        on_progress(1.0)
