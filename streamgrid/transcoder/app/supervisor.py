# SPDX-License-Identifier: Apache-2.0
"""RTSP -> HLS transcoder supervision.

One ``TranscodeSession`` per stream id. A session owns an output directory
``<work_dir>/<stream_id>`` and one transcoder process at a time; a watcher
task drains the process' stderr and respawns it with linear backoff when it
dies with a non-zero exit code. ``start``/``stop`` never raise: failures come
back as ``StartResult``/``StopResult`` with ``success=False``.
"""
from __future__ import annotations

import asyncio
import logging
import os
import secrets
import shutil
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional

from .config import TranscoderSettings
from .models import (
    STREAM_NOT_FOUND,
    TOOL_UNAVAILABLE,
    SessionHealth,
    SessionInfo,
    SessionState,
    StartResult,
    StopResult,
    ToolCheckResult,
)
from .pipelines import PLAYLIST_NAME, PipelineSpec, build_hls_pipeline
from .probe import check_ffmpeg
from .process import start_process, terminate_process

LOG = logging.getLogger("sg.rtsp")

Spawner = Callable[[PipelineSpec], Awaitable[Any]]
ToolCheck = Callable[[], Awaitable[ToolCheckResult]]


@dataclass
class TranscodeSession:
    stream_id: str
    source_url: str
    output_dir: Path
    port: int
    state: SessionState = "starting"
    started_at: float = field(default_factory=time.monotonic)
    error_count: int = 0
    retry_count: int = 0
    handle: Any = None
    last_output: str = ""

    @property
    def playlist(self) -> Path:
        return self.output_dir / PLAYLIST_NAME


def _valid_stream_id(stream_id: str) -> bool:
    return bool(stream_id) and stream_id not in (".", "..") and "/" not in stream_id and "\\" not in stream_id


class TranscodeSupervisor:
    def __init__(self, settings: Optional[TranscoderSettings] = None, *,
                 spawner: Spawner = start_process, tool_check: Optional[ToolCheck] = None):
        self.settings = settings or TranscoderSettings()
        self.work_dir = Path(self.settings.work_dir)
        self._spawn = spawner
        self._tool_check = tool_check
        self._sessions: dict[str, TranscodeSession] = {}
        self._pending: dict[str, asyncio.Future] = {}
        self._ports: set[int] = set()
        self._watchers: dict[asyncio.Task, Any] = {}
        self._reapers: dict[asyncio.Task, Any] = {}

    # ── Queries ───────────────────────────────────────────────────────────

    def playback_url(self, stream_id: str) -> str:
        s = self.settings
        return f"http://{s.host}:{s.base_port}/rtsp/{stream_id}/{PLAYLIST_NAME}"

    def get(self, stream_id: str) -> Optional[TranscodeSession]:
        return self._sessions.get(stream_id)

    def sessions(self) -> list[SessionInfo]:
        return [
            SessionInfo(id=s.stream_id, status=s.state, output_dir=str(s.output_dir), port=s.port)
            for s in self._sessions.values()
        ]

    def health(self, stream_id: str) -> Optional[SessionHealth]:
        s = self._sessions.get(stream_id)
        if s is None:
            return None
        uptime = int((time.monotonic() - s.started_at) * 1000)
        return SessionHealth(status=s.state, uptime=uptime, error_count=s.error_count)

    async def check_tool_availability(self) -> ToolCheckResult:
        try:
            if self._tool_check is not None:
                return await self._tool_check()
            return await check_ffmpeg(self.settings.ffmpeg_path)
        except Exception as e:
            LOG.warning("Tool check failed: %s", e)
            return ToolCheckResult(available=False)

    # ── Lifecycle ─────────────────────────────────────────────────────────

    async def prepare(self) -> None:
        """Create the work dir and clear per-stream dirs left by a previous run."""
        removed = await asyncio.to_thread(self._clean_work_dir)
        if removed:
            LOG.info("Removed %d leftover stream directories from %s", removed, self.work_dir)

    def _clean_work_dir(self) -> int:
        self.work_dir.mkdir(parents=True, exist_ok=True)
        removed = 0
        for entry in self.work_dir.iterdir():
            if entry.is_dir():
                shutil.rmtree(entry, ignore_errors=True)
                removed += 1
        return removed

    async def start(self, stream_id: str, source_url: str) -> StartResult:
        existing = self._sessions.get(stream_id)
        if existing is not None:
            return StartResult(success=True, url=self.playback_url(stream_id), port=existing.port)

        # Concurrent starts for one id share a single attempt.
        pending = self._pending.get(stream_id)
        if pending is None:
            pending = asyncio.ensure_future(self._start(stream_id, source_url))
            self._pending[stream_id] = pending
            pending.add_done_callback(lambda _f: self._pending.pop(stream_id, None))
        return await asyncio.shield(pending)

    async def _start(self, stream_id: str, source_url: str) -> StartResult:
        if not _valid_stream_id(stream_id):
            return StartResult(success=False, error=f"Invalid stream id: {stream_id!r}")

        tool = await self.check_tool_availability()
        if not tool.available:
            LOG.error("Cannot start %s: %s", stream_id, TOOL_UNAVAILABLE)
            return StartResult(success=False, error=TOOL_UNAVAILABLE)

        try:
            port = self._reserve_port()
        except RuntimeError as e:
            LOG.error("Cannot start %s: %s", stream_id, e)
            return StartResult(success=False, error=str(e))

        session = TranscodeSession(
            stream_id=stream_id,
            source_url=source_url,
            output_dir=self.work_dir / stream_id,
            port=port,
        )
        self._sessions[stream_id] = session
        try:
            await asyncio.to_thread(self._fresh_dir, session.output_dir)
            if self._sessions.get(stream_id) is not session:
                await self._remove_dir(session.output_dir)
                return StartResult(success=False, error="Stream stopped during startup")
            handle = await self._spawn_into(session)
        except Exception as e:
            LOG.error("Failed to start stream %s: %s", stream_id, e)
            if self._sessions.get(stream_id) is session:
                del self._sessions[stream_id]
            self._release_port(port)
            await self._remove_dir(session.output_dir)
            return StartResult(success=False, error=str(e) or type(e).__name__)

        if self._sessions.get(stream_id) is not session:
            # stopped while the process was being spawned
            self._retire(stream_id, handle)
            return StartResult(success=False, error="Stream stopped during startup")

        if await self._await_playlist(session, handle):
            LOG.info("Stream %s is live on %s", stream_id, self.playback_url(stream_id))
        elif self._owns(session, handle) and session.state == "starting":
            session.state = "error"
            LOG.warning("Timeout waiting for playlist of %s", stream_id)
        return StartResult(success=True, url=self.playback_url(stream_id), port=port)

    async def stop(self, stream_id: str) -> StopResult:
        session = self._sessions.pop(stream_id, None)
        if session is None:
            return StopResult(success=False, error=STREAM_NOT_FOUND)
        session.state = "stopped"

        if session.handle is not None:
            self._retire(stream_id, session.handle)

        self._release_port(session.port)
        await self._remove_dir(session.output_dir)
        LOG.info("Stopped stream %s", stream_id)
        return StopResult(success=True)

    async def stop_all(self) -> None:
        ids = list(self._sessions)
        if ids:
            LOG.info("Stopping %d transcoder sessions", len(ids))
        await asyncio.gather(*(self.stop(sid) for sid in ids))

    async def shutdown(self) -> None:
        for fut in list(self._pending.values()):
            fut.cancel()
        await self.stop_all()
        reaped = set(map(id, self._reapers.values()))
        for task, handle in list(self._watchers.items()):
            task.cancel()
            # a handle nobody is reaping belongs to no session any more
            if id(handle) not in reaped and handle.returncode is None:
                LOG.warning("Killing orphaned transcoder pid %s", handle.pid)
                handle.kill()

        reapers = list(self._reapers)
        if reapers:
            _, late = await asyncio.wait(reapers, timeout=self.settings.shutdown_grace_s)
            for task in late:
                handle = self._reapers.get(task)
                task.cancel()
                if handle is not None:
                    handle.kill()

        await asyncio.to_thread(shutil.rmtree, self.work_dir, ignore_errors=True)
        LOG.info("Transcoder work dir %s removed", self.work_dir)

    # ── Internals ─────────────────────────────────────────────────────────

    def _owns(self, session: TranscodeSession, handle: Any) -> bool:
        return self._sessions.get(session.stream_id) is session and session.handle is handle

    def _reserve_port(self) -> int:
        base = self.settings.base_port
        for offset in range(1, self.settings.port_attempts + 1):
            port = base + offset
            if port not in self._ports:
                self._ports.add(port)
                return port
        raise RuntimeError(f"No available ports starting from {base + 1}")

    def _release_port(self, port: int) -> None:
        self._ports.discard(port)

    def _retire(self, stream_id: str, handle: Any) -> None:
        """SIGTERM ``handle`` and leave a reaper to SIGKILL it after ``stop_timeout_s``."""
        if handle.returncode is not None:
            return
        try:
            terminate_process(handle)
        except OSError as e:
            LOG.warning("Failed to signal transcoder for %s: %s", stream_id, e)
        reaper = asyncio.ensure_future(self._reap(stream_id, handle))
        self._reapers[reaper] = handle
        reaper.add_done_callback(lambda t: self._reapers.pop(t, None))

    @staticmethod
    def _fresh_dir(path: Path) -> None:
        if path.exists():
            shutil.rmtree(path)
        path.mkdir(parents=True)

    async def _remove_dir(self, path: Path) -> None:
        # moved aside first, a new session for the same id may recreate it at once
        trash = path.with_name(f".trash-{path.name}-{secrets.token_hex(4)}")
        try:
            os.replace(path, trash)
        except FileNotFoundError:
            return
        except OSError as e:
            LOG.warning("Failed to move %s aside: %s", path, e)
            trash = path
        try:
            await asyncio.to_thread(shutil.rmtree, trash)
        except OSError as e:
            LOG.error("Failed to remove %s: %s", trash, e)

    async def _spawn_into(self, session: TranscodeSession) -> Any:
        spec = build_hls_pipeline(session.source_url, session.output_dir, self.settings)
        LOG.info("Starting transcoder for %s: %s", session.stream_id, spec.pretty)
        handle = await self._spawn(spec)
        session.handle = handle
        watcher = asyncio.ensure_future(self._watch(session, handle))
        self._watchers[watcher] = handle
        watcher.add_done_callback(lambda t: self._watchers.pop(t, None))
        return handle

    async def _await_playlist(self, session: TranscodeSession, handle: Any) -> bool:
        """Poll for the playlist; promote the session to running when it shows up."""
        s = self.settings
        for _ in range(s.playlist_poll_attempts):
            if not self._owns(session, handle) or handle.returncode is not None:
                return False
            if await asyncio.to_thread(session.playlist.exists):
                if self._owns(session, handle) and handle.returncode is None:
                    session.state = "running"
                    return True
                return False
            await asyncio.sleep(s.playlist_poll_interval_s)
        return False

    async def _drain(self, session: TranscodeSession, stream: asyncio.StreamReader) -> None:
        while True:
            line = await stream.readline()
            if not line:
                return
            text = line.decode("utf-8", errors="replace").strip()
            if not text:
                continue
            session.last_output = text
            if "error" in text.lower():
                LOG.error("[%s] %s", session.stream_id, text)
            else:
                LOG.debug("[%s] %s", session.stream_id, text)

    async def _watch(self, session: TranscodeSession, handle: Any) -> None:
        if handle.stderr is not None:
            try:
                await self._drain(session, handle.stderr)
            except (OSError, ValueError) as e:
                LOG.debug("stderr drain for %s ended: %s", session.stream_id, e)
        code = await handle.wait()

        if not self._owns(session, handle):
            return
        LOG.info("Transcoder for %s exited with code %s", session.stream_id, code)
        if code is None or code <= 0:
            session.state = "stopped"
            return

        session.error_count += 1
        session.state = "error"
        if session.retry_count >= self.settings.max_retries:
            LOG.error("Stream %s failed %d times, giving up", session.stream_id, session.error_count)
            return

        session.retry_count += 1
        delay = self.settings.retry_backoff_s * session.retry_count
        LOG.info("Retrying %s in %.1fs (attempt %d/%d)",
                 session.stream_id, delay, session.retry_count, self.settings.max_retries)
        await asyncio.sleep(delay)
        if not self._owns(session, handle):
            return

        try:
            new_handle = await self._spawn_into(session)
        except Exception as e:
            LOG.error("Respawn of %s failed: %s", session.stream_id, e)
            session.state = "error"
            return
        if not self._owns(session, new_handle):
            # stopped while the respawn was in flight
            self._retire(session.stream_id, new_handle)
            return
        session.state = "starting"
        await self._await_playlist(session, new_handle)

    async def _reap(self, stream_id: str, handle: Any) -> None:
        try:
            await asyncio.wait_for(handle.wait(), self.settings.stop_timeout_s)
        except asyncio.TimeoutError:
            LOG.warning("Transcoder for %s ignored SIGTERM, killing", stream_id)
            handle.kill()
            await handle.wait()
