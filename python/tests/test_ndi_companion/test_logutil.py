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

import pytest

from ndi_companion.errors import NDICompanionError, PipelineCreationError
from ndi_companion.logutil import ThrottledLog


def test_throttled_log_reports_first_and_every_nth (caplog: pytest.LogCaptureFixture) -> None:
    logger = logging.getLogger("ndi_companion.tests.throttle")
    throttle = ThrottledLog(logger, 3)

    with caplog.at_level(logging.WARNING, logger=logger.name):
        logged = [throttle.record("failure on %s", "output1") for _ in range(7)]

    assert logged == [True, False, True, False, False, True, False]
    assert throttle.count == 7
    assert [record.getMessage() for record in caplog.records] == [
        "failure on output1 (failure #1)",
        "failure on output1 (failure #3)",
        "failure on output1 (failure #6)",
    ]


def test_throttled_log_rejects_invalid_interval () -> None:
    with pytest.raises(ValueError):
        ThrottledLog(logging.getLogger(__name__), 0)


def test_pipeline_creation_error_names_stage () -> None:
    cause = RuntimeError("port in use")
    error = PipelineCreationError("stage", "sender", cause)

    assert isinstance(error, NDICompanionError)
    assert error.identity == "stage"
    assert error.stage == "sender"
    assert error.cause is cause
    assert "stage" in str(error) and "sender" in str(error)
