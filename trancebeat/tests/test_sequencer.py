"""Tests for affirmation playlist sequencing."""

import asyncio
import random

import pytest

from ..engine.clip_cache import ClipCache
from ..engine.clip_player import ClipPlayer
from ..session.events import SessionEventEmitter, SessionEventType
from ..session.models import AffirmationItem
from ..session.sequencer import AffirmationSequencer, fisher_yates
from ..session.settings import PlaybackSettings, SessionTiming
from .fakes import FakeClipBackend, ManualScheduler


def _item(name, audio=True, duration_ms=3000):
    return AffirmationItem(
        id=name,
        text=f"I am {name}",
        audio_handle=f"{name}.ogg" if audio else None,
        estimated_duration_ms=duration_ms,
    )


class Rig:
    """Sequencer wired to fakes on a manual clock."""

    def __init__(self, durations=None, *, failing=None, gap=2.0, seed=7):
        self.sched = ManualScheduler()
        self.backend = FakeClipBackend(
            durations if durations is not None else {"a.ogg": 1.0, "b.ogg": 1.0, "c.ogg": 1.0},
            failing=failing,
            clock=self.sched.time,
        )
        self.cache = ClipCache(self.backend)
        self.player = ClipPlayer(self.backend, self.cache, self.sched, progress_interval_s=0.1)
        self.settings = PlaybackSettings(gap_between_sec=gap)
        self.events = SessionEventEmitter()
        self.seq = AffirmationSequencer(
            self.player,
            self.cache,
            self.sched,
            self.settings,
            timing=SessionTiming(),
            rng=random.Random(seed),
            events=self.events,
        )

    def start(self):
        return asyncio.ensure_future(self.seq.run())

    def start_times(self):
        return {name: when for name, when, *_rest in self.backend.starts}


class TestShuffle:

    def test_fisher_yates_is_permutation(self):
        items = [_item(str(i)) for i in range(20)]
        shuffled = fisher_yates(items, random.Random(3))
        assert sorted(i.id for i in shuffled) == sorted(i.id for i in items)
        assert [i.id for i in shuffled] != [i.id for i in items]
        assert [i.id for i in items] == [str(i) for i in range(20)]

    def test_fisher_yates_deterministic_with_seed(self):
        items = [_item(str(i)) for i in range(10)]
        assert fisher_yates(items, random.Random(11)) == fisher_yates(items, random.Random(11))

    def test_shuffle_on_then_off_restores_order(self):
        rig = Rig()
        items = [_item(n) for n in "abcdefgh"]
        rig.seq.prepare(items, shuffle=False, preload=False)
        assert rig.seq.ids() == list("abcdefgh")

        rig.seq.set_shuffle(True)
        assert sorted(rig.seq.ids()) == list("abcdefgh")
        assert rig.seq.ids() != list("abcdefgh")
        assert rig.seq.current_index == 0

        rig.seq.set_shuffle(False)
        assert rig.seq.ids() == list("abcdefgh")
        assert rig.seq.original_items == tuple(items)

    def test_toggle_resets_index(self):
        rig = Rig()
        rig.seq.prepare([_item(n) for n in "abc"], preload=False)
        rig.seq.advance()
        assert rig.seq.current_index == 1
        assert rig.seq.toggle_shuffle() is True
        assert rig.seq.current_index == 0

    def test_prepare_with_shuffle(self):
        rig = Rig()
        rig.seq.prepare([_item(n) for n in "abcdefgh"], shuffle=True, preload=False)
        assert rig.seq.shuffle_enabled
        assert sorted(rig.seq.ids()) == list("abcdefgh")


class TestAdvance:

    def test_advance_without_loop(self):
        rig = Rig()
        rig.seq.prepare([_item("a"), _item("b")], preload=False)
        assert rig.seq.advance() is True
        assert rig.seq.advance() is False
        assert rig.seq.current_index == 1

    def test_advance_with_loop_wraps(self):
        rig = Rig()
        rig.seq.prepare([_item("a"), _item("b")], preload=False)
        assert rig.seq.toggle_loop() is True
        rig.seq.advance()
        assert rig.seq.advance() is True
        assert rig.seq.current_index == 0

    def test_prepare_preloads_audio(self):
        rig = Rig()
        rig.seq.prepare([_item("a"), _item("b", audio=False), _item("c")])
        assert rig.backend.loads == ["a.ogg", "c.ogg"]

    def test_empty_playlist(self):
        rig = Rig()
        rig.seq.prepare([], preload=False)
        assert rig.seq.is_empty
        assert rig.seq.current_item is None
        assert rig.seq.progress == 0.0
        assert rig.seq.advance() is False


class TestPlayback:

    @pytest.mark.asyncio
    async def test_gap_between_items(self):
        rig = Rig(gap=2.0)
        rig.seq.prepare([_item("a"), _item("b"), _item("c")])
        task = rig.start()

        await rig.sched.advance(8.9)
        starts = rig.start_times()
        assert starts["a.ogg"] == 0.0
        # Each next item starts one gap after the previous clip ends
        assert starts["b.ogg"] == pytest.approx(3.0, abs=1e-6)
        assert starts["c.ogg"] == pytest.approx(6.0, abs=1e-6)
        assert not task.done()

        # Last item's gap ends the sequence
        await rig.sched.advance(0.2)
        assert task.done()
        assert rig.backend.started_names() == ["a.ogg", "b.ogg", "c.ogg"]
        assert not rig.seq.running
        assert rig.sched.pending_count() == 0

    @pytest.mark.asyncio
    async def test_gap_read_at_use_time(self):
        rig = Rig(gap=2.0)
        rig.seq.prepare([_item("a"), _item("b")])
        task = rig.start()
        await rig.sched.advance(0.5)
        rig.settings.gap_between_sec = 5.0
        await rig.sched.advance(6.0)
        assert rig.start_times()["b.ogg"] == pytest.approx(6.0, abs=1e-6)
        rig.seq.cancel()
        await task

    @pytest.mark.asyncio
    async def test_item_without_audio_holds_text(self):
        rig = Rig(gap=2.0)
        rig.seq.prepare([_item("a", audio=False), _item("b")])
        task = rig.start()
        await rig.sched.advance(4.9)
        assert rig.backend.starts == []
        await rig.sched.advance(0.2)
        # text hold (3s) + gap (2s)
        assert rig.start_times()["b.ogg"] == pytest.approx(5.0, abs=1e-6)
        rig.seq.cancel()
        await task

    @pytest.mark.asyncio
    async def test_failed_clip_falls_back_to_estimate(self):
        rig = Rig({"b.ogg": 1.0}, failing={"a.ogg"}, gap=2.0)
        errors = []
        rig.events.subscribe(SessionEventType.CLIP_ERROR, errors.append)
        rig.seq.prepare([_item("a", duration_ms=1500), _item("b")])
        task = rig.start()

        await rig.sched.advance(4.0)
        # estimated 1.5s + gap 2s, no extra gap after the fallback
        assert rig.start_times()["b.ogg"] == pytest.approx(3.5, abs=1e-6)
        assert len(errors) == 1
        assert errors[0].get("id") == "a"
        assert errors[0].get("reason") == "decode failed"
        rig.seq.cancel()
        await task

    @pytest.mark.asyncio
    async def test_affirmation_start_events(self):
        rig = Rig()
        seen = []
        rig.events.subscribe(SessionEventType.AFFIRMATION_START, lambda evt: seen.append(evt.get("id")))
        rig.seq.prepare([_item("a"), _item("b", audio=False)])
        task = rig.start()
        await rig.sched.advance(10.0)
        await task
        assert seen == ["a", "b"]

    @pytest.mark.asyncio
    async def test_empty_run_returns_immediately(self):
        rig = Rig()
        rig.seq.prepare([], preload=False)
        await rig.seq.run()
        assert rig.sched.pending_count() == 0

    @pytest.mark.asyncio
    async def test_loop_wraps_to_first_item(self):
        rig = Rig({"a.ogg": 1.0, "b.ogg": 1.0})
        rig.seq.prepare([_item("a"), _item("b")])
        rig.seq.set_loop(True)
        task = rig.start()
        await rig.sched.advance(6.5)
        assert rig.backend.started_names() == ["a.ogg", "b.ogg", "a.ogg"]
        assert rig.seq.current_index == 0
        assert not task.done()
        rig.seq.cancel()
        await task
        assert rig.sched.pending_count() == 0

    @pytest.mark.asyncio
    async def test_progress(self):
        rig = Rig()
        rig.seq.prepare([_item("a"), _item("b"), _item("c")])
        task = rig.start()
        await rig.sched.advance(0.55)
        assert rig.seq.progress == pytest.approx(0.5 / 3, abs=0.05)
        await rig.sched.advance(1.0)
        # In the gap after the first item
        assert rig.seq.progress == pytest.approx(1 / 3)
        samples = []
        for _ in range(60):
            await rig.sched.advance(0.1)
            samples.append(rig.seq.progress)
        assert samples == sorted(samples)
        rig.seq.cancel()
        await task

    @pytest.mark.asyncio
    async def test_toggle_shuffle_while_running_restarts_at_first(self):
        rig = Rig({n + ".ogg": 1.0 for n in "abcdef"})
        rig.seq.prepare([_item(n) for n in "abcdef"])
        task = rig.start()
        await rig.sched.advance(0.5)

        rig.seq.set_shuffle(True)
        await rig.sched.settle()

        first = rig.seq.working_playlist[0]
        name, when, *_rest = rig.backend.starts[-1]
        assert len(rig.backend.starts) == 2
        assert name == first.audio_handle
        assert when == pytest.approx(0.5)
        assert rig.seq.current_index == 0
        assert rig.backend.voices[0].stopped
        assert rig.player.active_handles == 1
        rig.seq.cancel()
        await task

    @pytest.mark.asyncio
    async def test_cancel_releases_everything(self):
        rig = Rig()
        rig.seq.prepare([_item("a"), _item("b")])
        task = rig.start()
        await rig.sched.advance(0.3)
        rig.seq.cancel()
        await task
        assert rig.player.active_handles == 0
        assert rig.sched.pending_count() == 0
