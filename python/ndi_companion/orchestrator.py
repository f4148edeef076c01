"""
  ==============================================================================

   This file is part of the YUP library.
   Copyright (c) 2025 - kunitoki@gmail.com

   YUP is an open source library subject to open-source licensing.

   The code included in this file is provided under the terms of the ISC license
   http://www.isc.org/downloads/software-support-policy/isc-license. Permission
   to use, copy, modify, and/or distribute this software for any purpose with or
   without fee is hereby granted provided that the above copyright notice and
   this permission notice appear in all copies.

   YUP IS PROVIDED "AS IS" WITHOUT ANY WARRANTY, AND ALL WARRANTIES, WHETHER
   EXPRESSED OR IMPLIED, INCLUDING MERCHANTABILITY AND FITNESS FOR PURPOSE, ARE
   DISCLAIMED.

  ==============================================================================

Keeps the set of running output pipelines in line with the settings document.

The registry of pipelines is owned by :class:`Orchestrator` and only mutated
inside :meth:`Orchestrator.sync_outputs` and :meth:`Orchestrator.shutdown_all`,
which never overlap. Settings-change callbacks must go through
:meth:`Orchestrator.request_sync`, which coalesces bursts of notifications so
only the newest snapshot is applied once the in-flight reconciliation ends.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import logging
import threading
from typing import Callable, Dict, Iterable, List, Optional, Protocol

from .config import OutputConfig
from .errors import PipelineCreationError
from .pipeline import OutputPipeline, PipelineStats
from .renderer import Renderer
from .sender import SenderFactory, cyndilib_sender_factory

__all__ = ["Orchestrator", "SyncReport", "AggregatedStats"]

_logger = logging.getLogger(__name__)


class ManagedPipeline(Protocol):
    """Subset of :class:`OutputPipeline` the orchestrator relies on."""

    @property
    def config (self) -> OutputConfig: ...

    def update_frame_rate (self, frame_rate: int) -> None: ...

    def update_label (self, label: str) -> None: ...

    def destroy (self) -> None: ...

    def stats (self) -> PipelineStats: ...


PipelineFactory = Callable[[OutputConfig], ManagedPipeline]


@dataclass(slots=True)
class SyncReport:
    """Lifecycle operations performed by one reconciliation."""

    created: List[str] = field(default_factory=list)
    updated: List[str] = field(default_factory=list)
    recreated: List[str] = field(default_factory=list)
    destroyed: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)

    @property
    def operations (self) -> int:
        return len(self.created) + len(self.updated) + len(self.recreated) + len(self.destroyed)


@dataclass(slots=True)
class AggregatedStats:
    output_count: int
    total_frames_captured: int
    total_frames_sent: int


class Orchestrator:
    """Coordinates output pipelines against configuration snapshots."""

    def __init__ (
        self,
        renderer: Optional[Renderer] = None,
        sender_factory: Optional[SenderFactory] = None,
        pipeline_factory: Optional[PipelineFactory] = None,
    ) -> None:
        if pipeline_factory is None:
            if renderer is None:
                raise ValueError("Either a renderer or a pipeline_factory must be provided")
            pipeline_factory = self._build_default_factory(renderer, sender_factory or cyndilib_sender_factory)

        self._pipeline_factory = pipeline_factory
        self._pipelines: Dict[str, ManagedPipeline] = {}
        self._sync_lock = threading.Lock()
        self._pending_lock = threading.Lock()
        self._pending: Optional[List[OutputConfig]] = None
        self._has_pending = False
        self._drain_thread: Optional[threading.Thread] = None
        self._shut_down = False

    @staticmethod
    def _build_default_factory (renderer: Renderer, sender_factory: SenderFactory) -> PipelineFactory:
        def factory (config: OutputConfig) -> ManagedPipeline:
            return OutputPipeline.create(config, renderer, sender_factory)

        return factory

    def __enter__ (self) -> "Orchestrator":
        return self

    def __exit__ (self, exc_type, exc, tb) -> None:
        self.shutdown_all()

    def list_outputs (self) -> List[str]:
        return sorted(self._pipelines.keys())

    def get_pipeline (self, identity: str) -> ManagedPipeline:
        return self._pipelines[identity]

    def sync_outputs (self, snapshot: Optional[Iterable[OutputConfig]]) -> SyncReport:
        """Apply the minimal set of create/update/destroy operations for ``snapshot``.

        ``None`` is treated as a snapshot without enabled outputs. Creation
        failures are logged and reported; the output stays inactive until the
        next reconciliation.
        """

        with self._sync_lock:
            if self._shut_down:
                _logger.debug("Ignoring output sync after shutdown")
                return SyncReport()
            return self._reconcile(self._desired_outputs(snapshot))

    def request_sync (self, snapshot: Optional[Iterable[OutputConfig]]) -> None:
        """Queue ``snapshot`` for reconciliation on a background thread.

        Notifications that arrive while a reconciliation is running are
        coalesced; only the latest snapshot is applied afterwards.
        """

        pending = list(snapshot) if snapshot is not None else None
        with self._pending_lock:
            self._pending = pending
            self._has_pending = True
            if self._drain_thread is not None:
                return
            self._drain_thread = threading.Thread(target=self._drain_requests, name="ndi-sync", daemon=True)
            thread = self._drain_thread
        thread.start()

    def wait_for_pending (self, timeout: Optional[float] = None) -> None:
        with self._pending_lock:
            thread = self._drain_thread
        if thread is not None:
            thread.join(timeout)

    def shutdown_all (self) -> None:
        """Destroy every pipeline in identity order. Later calls are no-ops."""

        with self._sync_lock:
            if self._shut_down:
                return
            self._shut_down = True

            for identity in sorted(self._pipelines.keys()):
                self._destroy(identity)

        _logger.info("All outputs shut down")

    def get_stats (self, identity: str) -> PipelineStats:
        return self._pipelines[identity].stats()

    def get_all_stats (self) -> Dict[str, PipelineStats]:
        return {identity: pipeline.stats() for identity, pipeline in sorted(dict(self._pipelines).items())}

    def aggregated_stats (self) -> AggregatedStats:
        stats = list(self.get_all_stats().values())
        return AggregatedStats(
            output_count=len(stats),
            total_frames_captured=sum(item.frames_captured for item in stats),
            total_frames_sent=sum(item.frames_sent for item in stats),
        )

    def _drain_requests (self) -> None:
        while True:
            with self._pending_lock:
                if not self._has_pending:
                    self._drain_thread = None
                    return
                snapshot = self._pending
                self._pending = None
                self._has_pending = False

            try:
                self.sync_outputs(snapshot)
            except Exception:  # pragma: no cover - reconciliation guards its own steps
                _logger.exception("Output sync failed")

    @staticmethod
    def _desired_outputs (snapshot: Optional[Iterable[OutputConfig]]) -> Dict[str, OutputConfig]:
        desired: Dict[str, OutputConfig] = {}
        if snapshot is None:
            _logger.warning("No output configuration available; treating as no enabled outputs")
            return desired

        for config in snapshot:
            if not config.enabled:
                continue
            if config.identity in desired:
                _logger.warning("Output %s listed more than once; using the last entry", config.identity)
            desired[config.identity] = config
        return desired

    def _reconcile (self, desired: Dict[str, OutputConfig]) -> SyncReport:
        report = SyncReport()

        for identity in sorted(self._pipelines.keys()):
            if identity not in desired:
                self._destroy(identity)
                report.destroyed.append(identity)

        for identity, config in desired.items():
            pipeline = self._pipelines.get(identity)

            if pipeline is None:
                if self._create(config):
                    report.created.append(identity)
                else:
                    report.failed.append(identity)
                continue

            current = pipeline.config
            if current.requires_new_surface(config):
                _logger.info(
                    "Geometry changed for %s (%dx%d -> %dx%d), recreating...",
                    identity,
                    current.width,
                    current.height,
                    config.width,
                    config.height,
                )
                self._destroy(identity)
                if self._create(config):
                    report.recreated.append(identity)
                else:
                    report.failed.append(identity)
                continue

            self._update(pipeline, current, config, report)

        if report.operations or report.failed:
            _logger.info(
                "Outputs synced: created=%s updated=%s recreated=%s destroyed=%s failed=%s",
                report.created,
                report.updated,
                report.recreated,
                report.destroyed,
                report.failed,
            )
        return report

    def _create (self, config: OutputConfig) -> bool:
        try:
            pipeline = self._pipeline_factory(config)
        except PipelineCreationError as exc:
            _logger.error("%s", exc)
            return False
        except Exception:
            _logger.exception("Unexpected failure creating output %s", config.identity)
            return False

        self._pipelines[config.identity] = pipeline
        return True

    def _update (self, pipeline: ManagedPipeline, current: OutputConfig, config: OutputConfig, report: SyncReport) -> None:
        changed = False

        if current.frame_rate != config.frame_rate:
            try:
                pipeline.update_frame_rate(config.frame_rate)
            except Exception:
                _logger.exception("Keeping previous frame rate for %s", config.identity)
                report.failed.append(config.identity)
            else:
                changed = True

        if current.source_label != config.source_label:
            try:
                pipeline.update_label(config.source_label)
            except PipelineCreationError as exc:
                _logger.error("Keeping previous source name for %s: %s", config.identity, exc)
                if config.identity not in report.failed:
                    report.failed.append(config.identity)
            except Exception:
                _logger.exception("Keeping previous source name for %s", config.identity)
                if config.identity not in report.failed:
                    report.failed.append(config.identity)
            else:
                changed = True

        if changed:
            report.updated.append(config.identity)

    def _destroy (self, identity: str) -> None:
        pipeline = self._pipelines.pop(identity)
        try:
            pipeline.destroy()
        except Exception:
            _logger.exception("Failed to destroy output %s cleanly", identity)
