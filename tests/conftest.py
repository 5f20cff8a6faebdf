from __future__ import annotations

import asyncio
import itertools
from pathlib import Path
from typing import Iterable, Optional

import pytest

from streamgrid.transcoder.app.config import TranscoderSettings
from streamgrid.transcoder.app.models import ToolCheckResult
from streamgrid.transcoder.app.supervisor import TranscodeSupervisor

_pids = itertools.count(4000)


class FakeProcess:
    """Stands in for a transcoder child: exits on demand or on SIGTERM."""

    def __init__(self, exit_code: Optional[int] = None, exit_on_term: bool = True):
        self.pid = next(_pids)
        self.returncode: Optional[int] = None
        self.stderr = None
        self.signals: list[str] = []
        self.exit_on_term = exit_on_term
        self._exited = asyncio.Event()
        if exit_code is not None:
            asyncio.get_running_loop().call_soon(self.exit, exit_code)

    def exit(self, code: int) -> None:
        if self.returncode is None:
            self.returncode = code
            self._exited.set()

    async def wait(self) -> int:
        await self._exited.wait()
        return self.returncode

    def terminate(self) -> None:
        self.signals.append("TERM")
        if self.exit_on_term:
            self.exit(-15)

    def kill(self) -> None:
        self.signals.append("KILL")
        self.exit(-9)


class FakeSpawner:
    def __init__(self, exit_codes: Iterable[Optional[int]] = (), *, playlist: bool = True,
                 exit_on_term: bool = True, fail: Optional[Exception] = None,
                 respawn_delay_s: float = 0.0):
        self.exit_codes = list(exit_codes)
        self.playlist = playlist
        self.exit_on_term = exit_on_term
        self.fail = fail
        self.respawn_delay_s = respawn_delay_s
        self.specs = []
        self.procs: list[FakeProcess] = []

    async def __call__(self, spec):
        if self.fail is not None:
            raise self.fail
        if self.specs and self.respawn_delay_s:
            await asyncio.sleep(self.respawn_delay_s)
        self.specs.append(spec)
        playlist = Path(spec.argv[-1])
        if self.playlist and playlist.parent.is_dir():
            playlist.write_text("#EXTM3U\n")
        code = self.exit_codes.pop(0) if self.exit_codes else None
        proc = FakeProcess(code, exit_on_term=self.exit_on_term)
        self.procs.append(proc)
        return proc


def tool_check(available: bool = True):
    async def _check() -> ToolCheckResult:
        if available:
            return ToolCheckResult(available=True, version="6.1", path="/usr/bin/ffmpeg")
        return ToolCheckResult(available=False)
    return _check


@pytest.fixture
def rtsp_settings(tmp_path) -> TranscoderSettings:
    return TranscoderSettings(
        work_dir=tmp_path / "work",
        base_port=18100,
        playlist_poll_attempts=5,
        playlist_poll_interval_s=0.01,
        retry_backoff_s=0.01,
        stop_timeout_s=0.2,
        shutdown_grace_s=0.1,
    )


@pytest.fixture
def make_supervisor(rtsp_settings):
    def _make(spawner: FakeSpawner, *, available: bool = True, **overrides) -> TranscodeSupervisor:
        settings = rtsp_settings.model_copy(update=overrides) if overrides else rtsp_settings
        return TranscodeSupervisor(settings, spawner=spawner, tool_check=tool_check(available))
    return _make


async def wait_for(predicate, timeout_s: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout_s
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.005)


@pytest.fixture
def fake_spawner():
    return FakeSpawner


@pytest.fixture
def until():
    return wait_for
