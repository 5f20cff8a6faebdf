"""Keeps transcoder sessions in line with the streams in the store.

Every RTSP-class stream in the store gets a session; sessions whose stream
left the store are stopped. The reconciler hooks into ``StreamStore`` as a
listener and runs each pass as a task on the running loop. Planning and stops
are serialised by a lock; starts run as tasks of their own, so a start that is
still polling for its playlist never holds up a later pass.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Mapping, Optional, Union

from streamgrid.store.store import StreamStore

from .pipelines import is_rtsp_url
from .supervisor import TranscodeSupervisor

logger = logging.getLogger("sg.rtsp.reconcile")


@dataclass(frozen=True)
class ReconcilePlan:
    start: dict[str, str] = field(default_factory=dict)
    stop: list[str] = field(default_factory=list)

    @property
    def empty(self) -> bool:
        return not self.start and not self.stop


def plan_reconcile(wanted: dict[str, str], current: Union[Mapping[str, str], set[str]]) -> ReconcilePlan:
    """``wanted`` maps stream id -> source url.

    ``current`` is either the live sessions as id -> source url, in which case a
    session whose url changed is restarted, or just the set of live ids.
    """
    live = current if isinstance(current, Mapping) else {}
    changed = {sid for sid, url in wanted.items() if sid in live and live[sid] != url}
    return ReconcilePlan(
        start={sid: url for sid, url in wanted.items() if sid not in current or sid in changed},
        stop=sorted((set(current) - set(wanted)) | changed),
    )


def wanted_sessions(store: StreamStore) -> dict[str, str]:
    return {s.id: s.stream_url for s in store.streams if is_rtsp_url(s.stream_url)}


class TranscodeReconciler:
    def __init__(self, supervisor: TranscodeSupervisor):
        self.supervisor = supervisor
        self._lock = asyncio.Lock()
        self._urls: dict[str, str] = {}
        self._wanted: dict[str, str] = {}
        self._tasks: set[asyncio.Task] = set()

    def playback_url(self, stream_id: str) -> Optional[str]:
        """URL to hand to the player for an RTSP stream, once its session started."""
        return self._urls.get(stream_id)

    def on_change(self, store: StreamStore, action: str) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running loop, skipping reconcile after %s", action)
            return
        self._track(loop.create_task(self.reconcile(wanted_sessions(store))))

    def _track(self, task: asyncio.Task) -> None:
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def reconcile(self, wanted: dict[str, str]) -> ReconcilePlan:
        async with self._lock:
            self._wanted = dict(wanted)
            current = {}
            for info in self.supervisor.sessions():
                session = self.supervisor.get(info.id)
                if session is not None:
                    current[info.id] = session.source_url
            plan = plan_reconcile(wanted, current)
            if plan.empty:
                return plan
            logger.info("Reconcile: start=%s stop=%s", sorted(plan.start), plan.stop)

            for sid in plan.stop:
                self._urls.pop(sid, None)
                await self.supervisor.stop(sid)

            for sid, url in plan.start.items():
                self._track(asyncio.ensure_future(self._start_one(sid, url)))
            return plan

    async def _start_one(self, stream_id: str, source_url: str) -> None:
        result = await self.supervisor.start(stream_id, source_url)
        if self._wanted.get(stream_id) != source_url:
            # removed or re-pointed while this start was running
            await self.reconcile(dict(self._wanted))
            return
        if result.success and result.url:
            self._urls[stream_id] = result.url
        else:
            logger.warning("Could not start transcoder for %s: %s", stream_id, result.error)

    async def drain(self) -> None:
        """Wait for every pass and start, including ones queued while waiting."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def close(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        await self.drain()
