"""Tests for the binaural tone generator."""

import numpy as np
import pytest
from unittest.mock import patch

from ..engine.tone import ToneGenerator, ToneParameters, clamp
from ..errors import PlatformPolicyError
from .fakes import FakeStreamFactory


def _generator(**kwargs):
    factory = FakeStreamFactory()
    return ToneGenerator(stream_factory=factory, **kwargs), factory


class TestToneParameters:

    def test_defaults(self):
        p = ToneParameters()
        assert p.base_frequency_hz == 200.0
        assert p.beat_frequency_hz == 10.0
        assert p.volume == 0.5

    @pytest.mark.parametrize("value,expected", [(50, 100.0), (100, 100.0), (320, 320.0), (900, 500.0)])
    def test_base_clamped(self, value, expected):
        p = ToneParameters()
        p.base_frequency_hz = value
        assert p.base_frequency_hz == expected

    @pytest.mark.parametrize("value,expected", [(0.2, 1.0), (7, 7.0), (45, 30.0)])
    def test_beat_clamped(self, value, expected):
        assert ToneParameters(beat_frequency_hz=value).beat_frequency_hz == expected

    def test_volume_clamped(self):
        assert ToneParameters(volume=-0.3).volume == 0.0
        assert ToneParameters(volume=1.7).volume == 1.0

    def test_right_channel_is_base_plus_beat(self):
        p = ToneParameters(base_frequency_hz=220, beat_frequency_hz=6)
        assert p.left_frequency_hz == 220
        assert p.right_frequency_hz == 226


def test_clamp_basic():
    assert clamp(0.5, 0, 1) == 0.5
    assert clamp(-1, 0, 1) == 0
    assert clamp(2, 0, 1) == 1


class TestToneGeneratorLifecycle:

    def test_start_creates_and_resumes_stream(self):
        gen, factory = _generator()
        assert gen.start() is True
        assert gen.is_playing
        assert len(factory.created) == 1
        stream = factory.created[0]
        assert stream.active
        assert stream.kwargs["channels"] == 2
        assert stream.kwargs["dtype"] == "float32"

    def test_start_is_idempotent(self):
        gen, factory = _generator()
        gen.start()
        gen.start()
        assert len(factory.created) == 1
        assert factory.created[0].start_calls == 1

    def test_prepared_stream_is_resumed_on_start(self):
        gen, factory = _generator()
        assert gen.prepare()
        stream = factory.created[0]
        assert not stream.active
        gen.start()
        assert stream.active
        assert len(factory.created) == 1

    def test_stop_closes_stream(self):
        gen, factory = _generator()
        gen.start()
        gen.stop()
        assert not gen.is_playing
        assert not gen.has_context
        assert factory.created[0].closed

    def test_stop_when_idle_is_safe(self):
        gen, _factory = _generator()
        gen.stop()
        gen.dispose()
        assert not gen.is_playing

    def test_repeated_cycles_do_not_leak(self):
        gen, factory = _generator()
        for _ in range(5):
            gen.start()
            gen.stop()
        assert gen.streams_opened == 5
        assert gen.streams_closed == 5
        assert all(s.closed for s in factory.created)

    def test_unavailable_output_returns_false(self):
        gen = ToneGenerator(stream_factory=FakeStreamFactory(fail=True))
        assert gen.start() is False
        assert not gen.is_playing
        assert not gen.has_context
        assert isinstance(gen.last_error, PlatformPolicyError)
        assert isinstance(gen.last_error.cause, RuntimeError)

    def test_missing_sounddevice_returns_false(self):
        with patch("trancebeat.engine.tone.sd", None):
            gen = ToneGenerator()
            assert gen.start() is False
        assert not gen.is_playing
        assert isinstance(gen.last_error, PlatformPolicyError)

    def test_toggle(self):
        gen, _factory = _generator()
        assert gen.toggle() is True
        assert gen.toggle() is False


class TestLiveParameterChanges:

    def test_setters_clamp_while_stopped(self):
        gen, _factory = _generator()
        gen.set_base_freq(20)
        gen.set_beat_freq(99)
        gen.set_volume(3)
        assert gen.base_freq == 100
        assert gen.beat_freq == 30
        assert gen.volume == 1.0

    def test_changes_while_playing_keep_same_stream(self):
        gen, factory = _generator()
        gen.start()
        stream = factory.created[0]
        gen.set_base_freq(300)
        gen.set_beat_freq(4)
        gen.set_volume(0.2)
        gen.configure(250, 12, 0.4)
        assert len(factory.created) == 1
        assert factory.created[0] is stream
        assert stream.start_calls == 1
        assert gen.right_frequency_hz == pytest.approx(262)


class TestRender:

    def test_render_shape_and_dtype(self):
        gen, _factory = _generator()
        block = gen.render(512)
        assert block.shape == (512, 2)
        assert block.dtype == np.float32

    def test_render_zero_frames(self):
        gen, _factory = _generator()
        assert gen.render(0).shape == (0, 2)

    def test_amplitude_bounded_by_volume(self):
        gen, _factory = _generator()
        gen.configure(200, 10, 0.25)
        gen.render(512)  # ramp from the previous volume
        block = gen.render(4096)
        assert np.max(np.abs(block)) <= 0.25 + 1e-6

    def test_channels_differ_by_beat(self):
        gen = ToneGenerator(ToneParameters(200, 10, 1.0), sample_rate=8000, stream_factory=FakeStreamFactory())
        block = gen.render(8000)  # one second
        left_crossings = np.count_nonzero(np.diff(np.signbit(block[:, 0])))
        right_crossings = np.count_nonzero(np.diff(np.signbit(block[:, 1])))
        # Two zero crossings per cycle
        assert left_crossings == pytest.approx(400, abs=2)
        assert right_crossings == pytest.approx(420, abs=2)

    def test_phase_continuous_across_blocks(self):
        params = ToneParameters(200, 10, 1.0)
        whole = ToneGenerator(params, stream_factory=FakeStreamFactory()).render(1024)
        split_gen = ToneGenerator(ToneParameters(200, 10, 1.0), stream_factory=FakeStreamFactory())
        split = np.concatenate([split_gen.render(512), split_gen.render(512)])
        assert np.allclose(whole, split, atol=1e-4)

    def test_frequency_change_is_ramped(self):
        gen, _factory = _generator()
        gen.configure(200, 10, 1.0)
        gen.render(256)
        gen.set_volume(0.0)
        block = gen.render(256)
        # Gain ramps down across the block instead of jumping to silence
        assert np.max(np.abs(block[:32])) > 0.5
        assert np.max(np.abs(block[-4:])) < 0.05
