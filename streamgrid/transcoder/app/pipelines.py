from __future__ import annotations

import shlex
from dataclasses import dataclass
from pathlib import Path
from typing import List
from urllib.parse import urlsplit

from .config import TranscoderSettings

PLAYLIST_NAME = "playlist.m3u8"
SEGMENT_PATTERN = "segment_%03d.ts"

_RTSP_SCHEMES = {"rtsp", "rtsps", "rtspt"}


@dataclass(frozen=True)
class PipelineSpec:
    argv: List[str]
    pretty: str


def is_rtsp_url(url: str) -> bool:
    """True for sources the browser cannot play directly and need repackaging."""
    try:
        return urlsplit(url.strip()).scheme.lower() in _RTSP_SCHEMES
    except ValueError:
        return False


def build_hls_pipeline(source_url: str, output_dir: Path, settings: TranscoderSettings) -> PipelineSpec:
    # video passes through untouched, audio always goes to AAC
    argv = [
        settings.ffmpeg_path,
        "-rtsp_transport", settings.default_transport,
        "-i", source_url,
        "-c:v", "copy",
        "-c:a", "aac",
        "-f", "hls",
        "-hls_time", str(settings.segment_duration),
        "-hls_list_size", str(settings.hls_list_size),
        "-hls_flags", "delete_segments+append_list",
        "-hls_segment_filename", str(output_dir / SEGMENT_PATTERN),
        str(output_dir / PLAYLIST_NAME),
    ]
    return PipelineSpec(argv=argv, pretty=shlex.join(argv))
