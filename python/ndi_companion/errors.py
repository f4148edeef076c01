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
"""

from __future__ import annotations

from typing import Optional

__all__ = ["NDICompanionError", "DecodeError", "RendererError", "PipelineCreationError"]


class NDICompanionError(Exception):
    """Base class for errors raised by :mod:`ndi_companion`."""


class DecodeError(NDICompanionError):
    """A captured still image could not be turned into an RGBA frame."""


class RendererError(NDICompanionError):
    """The offscreen renderer rejected a request."""


class PipelineCreationError(NDICompanionError):
    """Allocating one of the external resources of an output failed.

    ``stage`` is ``"sender"`` or ``"surface"`` and identifies which allocation
    failed; anything allocated before it has already been rolled back.
    """

    def __init__ (self, identity: str, stage: str, cause: Optional[BaseException] = None) -> None:
        detail = f": {cause}" if cause is not None else ""
        super().__init__(f"Failed to create output '{identity}' at stage '{stage}'{detail}")
        self.identity = identity
        self.stage = stage
        self.cause = cause
