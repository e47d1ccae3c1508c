"""Tests for per-timestep flags."""

import numpy as np
import pytest

from lakeda.core.exceptions import ValidationError
from lakeda.data_assimilation.flags import StepFlag, TimestepFlagRecorder, classify_step


@pytest.mark.parametrize("step,corrected,expected", [
    (2, True, StepFlag.ASSIMILATED),
    (2, False, StepFlag.PASSTHROUGH),
    (4, False, StepFlag.PASSTHROUGH),
    (5, False, StepFlag.FORECAST),
    (5, True, StepFlag.ASSIMILATED),
])
def test_classify_step(step, corrected, expected):
    assert classify_step(step, forecast_start_step=4, corrected=corrected) is expected


class TestTimestepFlagRecorder:

    def test_vectors_mutually_exclusive(self):
        recorder = TimestepFlagRecorder(3)
        recorder.record(0, StepFlag.PASSTHROUGH)
        recorder.record(1, StepFlag.ASSIMILATED)
        recorder.record(2, StepFlag.FORECAST)

        np.testing.assert_array_equal(recorder.data_assimilation_flag, [0, 1, 0])
        np.testing.assert_array_equal(recorder.forecast_flag, [0, 0, 1])
        np.testing.assert_array_equal(recorder.da_qc_flag, [1, 0, 0])
        total = recorder.data_assimilation_flag + recorder.forecast_flag + recorder.da_qc_flag
        np.testing.assert_array_equal(total, [1, 1, 1])

    def test_write_once(self):
        recorder = TimestepFlagRecorder(2)
        recorder.record(0, StepFlag.PASSTHROUGH)
        with pytest.raises(ValidationError, match="already flagged"):
            recorder.record(0, StepFlag.ASSIMILATED)

    def test_incomplete(self):
        recorder = TimestepFlagRecorder(2)
        recorder.record(0, StepFlag.PASSTHROUGH)
        assert np.isnan(recorder.forecast_flag[1])
        with pytest.raises(ValidationError, match=r"\[1\]"):
            recorder.ensure_complete()

    def test_steps_with(self):
        recorder = TimestepFlagRecorder(3)
        recorder.record(0, StepFlag.PASSTHROUGH)
        recorder.record(1, StepFlag.ASSIMILATED)
        recorder.record(2, StepFlag.ASSIMILATED)
        assert recorder.steps_with(StepFlag.ASSIMILATED) == [1, 2]
