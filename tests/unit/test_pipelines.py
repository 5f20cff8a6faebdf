"""Tests for the HLS pipeline builder, RTSP detection and session reconciliation."""

from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from streamgrid.store.models import StreamRecord
from streamgrid.store.store import StreamStore
from streamgrid.transcoder.app.config import TranscoderSettings
from streamgrid.transcoder.app.pipelines import build_hls_pipeline, is_rtsp_url
from streamgrid.transcoder.app.reconcile import TranscodeReconciler, plan_reconcile, wanted_sessions


# ── build_hls_pipeline ───────────────────────────────────────────────────

def test_hls_pipeline_argv():
    out = Path("/tmp/sg/s1")
    spec = build_hls_pipeline("rtsp://cam/1", out, TranscoderSettings(work_dir=Path("/tmp/sg")))
    assert spec.argv == [
        "ffmpeg",
        "-rtsp_transport", "tcp",
        "-i", "rtsp://cam/1",
        "-c:v", "copy",
        "-c:a", "aac",
        "-f", "hls",
        "-hls_time", "2",
        "-hls_list_size", "5",
        "-hls_flags", "delete_segments+append_list",
        "-hls_segment_filename", str(out / "segment_%03d.ts"),
        str(out / "playlist.m3u8"),
    ]
    assert spec.pretty.startswith("ffmpeg -rtsp_transport tcp -i rtsp://cam/1")


def test_hls_pipeline_honours_settings():
    settings = TranscoderSettings(ffmpeg_path="/opt/ffmpeg", default_transport="udp", segment_duration=4)
    argv = build_hls_pipeline("rtsp://cam/1", Path("/x"), settings).argv
    assert argv[0] == "/opt/ffmpeg"
    assert argv[argv.index("-rtsp_transport") + 1] == "udp"
    assert argv[argv.index("-hls_time") + 1] == "4"


def test_segment_duration_bounds():
    with pytest.raises(ValueError):
        TranscoderSettings(segment_duration=11)


# ── is_rtsp_url ──────────────────────────────────────────────────────────

@pytest.mark.parametrize("url,expected", [
    ("rtsp://cam/1", True),
    ("RTSP://cam/1", True),
    ("rtsps://cam/1", True),
    ("rtspt://cam/1", True),
    ("  rtsp://cam/1 ", True),
    ("https://x/y.m3u8", False),
    ("http://cam/rtsp", False),
    ("", False),
])
def test_is_rtsp_url(url, expected):
    assert is_rtsp_url(url) is expected


# ── plan_reconcile ───────────────────────────────────────────────────────

def test_plan_reconcile():
    plan = plan_reconcile({"a": "rtsp://a", "b": "rtsp://b"}, {"b", "c"})
    assert plan.start == {"a": "rtsp://a"}
    assert plan.stop == ["c"]
    assert not plan.empty


def test_plan_reconcile_noop():
    assert plan_reconcile({"a": "rtsp://a"}, {"a"}).empty


def test_plan_reconcile_restarts_changed_url():
    plan = plan_reconcile({"a": "rtsp://a2", "b": "rtsp://b"}, {"a": "rtsp://a1", "b": "rtsp://b"})
    assert plan.start == {"a": "rtsp://a2"}
    assert plan.stop == ["a"]


def test_wanted_sessions_only_rtsp():
    store = StreamStore()
    store.add_streams([
        StreamRecord(id="cam", name="Cam", stream_url="rtsp://cam/1"),
        StreamRecord(id="hls", name="HLS", stream_url="https://x/y.m3u8"),
    ])
    assert wanted_sessions(store) == {"cam": "rtsp://cam/1"}


# ── TranscodeReconciler ──────────────────────────────────────────────────

def test_reconciler_follows_store(make_supervisor, fake_spawner):
    spawner = fake_spawner()
    sup = make_supervisor(spawner)
    reconciler = TranscodeReconciler(sup)
    store = StreamStore()
    store.subscribe(reconciler.on_change)

    async def scenario():
        store.add_stream(StreamRecord(id="cam", name="Cam", stream_url="rtsp://cam/1"))
        store.add_stream(StreamRecord(id="hls", name="HLS", stream_url="https://x/y.m3u8"))
        await reconciler.drain()
        started = [s.id for s in sup.sessions()]
        url = reconciler.playback_url("cam")

        store.remove_stream("cam")
        await reconciler.drain()
        return started, url

    started, url = asyncio.run(scenario())
    assert started == ["cam"]
    assert url == "http://localhost:18100/rtsp/cam/playlist.m3u8"
    assert len(spawner.specs) == 1
    assert sup.sessions() == []
    assert reconciler.playback_url("cam") is None


def test_reconciler_without_loop_is_a_noop(make_supervisor, fake_spawner):
    spawner = fake_spawner()
    reconciler = TranscodeReconciler(make_supervisor(spawner))
    store = StreamStore()
    store.subscribe(reconciler.on_change)
    store.add_stream(StreamRecord(id="cam", name="Cam", stream_url="rtsp://cam/1"))
    assert spawner.specs == []


def test_reconciler_restarts_on_url_change(make_supervisor, fake_spawner):
    spawner = fake_spawner()
    sup = make_supervisor(spawner)
    reconciler = TranscodeReconciler(sup)
    store = StreamStore()
    store.subscribe(reconciler.on_change)

    async def scenario():
        store.add_stream(StreamRecord(id="cam", name="Cam", stream_url="rtsp://cam/1"))
        await reconciler.drain()
        store.update_stream("cam", {"streamUrl": "rtsp://cam/2"})
        await reconciler.drain()
        return sup.get("cam").source_url

    assert asyncio.run(scenario()) == "rtsp://cam/2"
    assert [s.argv[s.argv.index("-i") + 1] for s in spawner.specs] == ["rtsp://cam/1", "rtsp://cam/2"]
    assert spawner.procs[0].signals == ["TERM"]


def test_reconciler_stops_stream_removed_while_starting(make_supervisor, fake_spawner, until):
    spawner = fake_spawner(playlist=False)
    sup = make_supervisor(spawner, playlist_poll_attempts=50, playlist_poll_interval_s=0.02)
    reconciler = TranscodeReconciler(sup)
    store = StreamStore()
    store.subscribe(reconciler.on_change)

    async def scenario():
        store.add_stream(StreamRecord(id="cam", name="Cam", stream_url="rtsp://cam/1"))
        await until(lambda: len(spawner.procs) == 1, timeout_s=0.5)
        store.remove_stream("cam")
        # well inside the one second the start spends polling for its playlist
        await until(lambda: spawner.procs[0].signals == ["TERM"], timeout_s=0.3)
        await reconciler.drain()
        await sup.shutdown()

    asyncio.run(scenario())
    assert sup.get("cam") is None
    assert reconciler.playback_url("cam") is None
    assert len(spawner.specs) == 1
