"""Headless renderer to NDI bridge for LyricDisplay outputs.

Each enabled output gets its own headless Chromium page (via Playwright),
rendered at the output resolution. The modules here focus on:

* Capturing each page continuously, decoding the PNG screenshots to RGBA and
  keeping only the most recent frame per output.
* Publishing that frame over NDI® through `cyndilib` at the output's own frame
  rate, independently of how long rendering and capture take.
* Reconciling the running outputs with ``ndi-settings.json`` whenever the file
  changes, touching only the outputs whose settings actually changed.

Runtime expectations:

* ``playwright`` with a Chromium build (``playwright install chromium``).
* ``cyndilib`` (>=0.0.8) to publish NDI video.
* ``Pillow`` for PNG decoding.

The top-level API re-exports :class:`~ndi_companion.orchestrator.Orchestrator`,
:class:`~ndi_companion.config.OutputConfig` and
:class:`~ndi_companion.pipeline.OutputPipeline` for convenience.
"""

from .config import CaptureMode, OutputConfig
from .errors import DecodeError, NDICompanionError, PipelineCreationError, RendererError
from .frame_buffer import Frame, FrameBuffer
from .orchestrator import AggregatedStats, Orchestrator, SyncReport
from .pipeline import OutputPipeline, PipelineState, PipelineStats

__all__ = [
    "AggregatedStats",
    "CaptureMode",
    "DecodeError",
    "Frame",
    "FrameBuffer",
    "NDICompanionError",
    "Orchestrator",
    "OutputConfig",
    "OutputPipeline",
    "PipelineCreationError",
    "PipelineState",
    "PipelineStats",
    "RendererError",
    "SyncReport",
]
