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

import logging
import threading
from typing import Any

__all__ = ["ThrottledLog"]


class ThrottledLog:
    """Counts repeated failures and only logs the first and every ``every``-th one."""

    def __init__ (self, logger: logging.Logger, every: int, level: int = logging.WARNING) -> None:
        if every < 1:
            raise ValueError("every must be at least 1")

        self._logger = logger
        self._every = every
        self._level = level
        self._count = 0
        self._lock = threading.Lock()

    @property
    def count (self) -> int:
        return self._count

    def record (self, message: str, *args: Any) -> bool:
        with self._lock:
            self._count += 1
            count = self._count

        if count != 1 and count % self._every != 0:
            return False

        self._logger.log(self._level, message + " (failure #%d)", *args, count)
        return True
