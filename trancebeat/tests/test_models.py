"""Tests for the session data model."""

import json

import pytest

from ..errors import ConfigError
from ..session.models import (
    PHASE_INFO,
    AffirmationItem,
    Phase,
    Script,
    ScriptRole,
    SessionConfig,
)


def _items(*ids):
    return tuple(AffirmationItem(id=i, text=f"I am {i}", audio_handle=f"{i}.ogg") for i in ids)


class TestPhase:

    def test_parse_value_and_name(self):
        assert Phase.parse("awakening") is Phase.AWAKENING
        assert Phase.parse("AWAKENING") is Phase.AWAKENING
        assert Phase.parse(Phase.DEEPENING) is Phase.DEEPENING

    def test_parse_unknown(self):
        with pytest.raises(ValueError):
            Phase.parse("trance")

    def test_script_role_phase(self):
        assert ScriptRole.INDUCTION.phase is Phase.INDUCTION
        assert ScriptRole.AWAKENING.phase is Phase.AWAKENING


class TestPhaseInfo:

    def test_every_phase_has_info(self):
        assert set(PHASE_INFO) == set(Phase)

    def test_bands_are_contiguous(self):
        ordered = [Phase.INDUCTION, Phase.DEEPENING, Phase.AFFIRMATIONS, Phase.AWAKENING]
        assert PHASE_INFO[ordered[0]].band_start == 0
        for prev, nxt in zip(ordered, ordered[1:]):
            assert PHASE_INFO[prev].band_end == PHASE_INFO[nxt].band_start
        assert PHASE_INFO[Phase.AWAKENING].band_end == 100

    def test_total_progress_clamps_intra(self):
        info = PHASE_INFO[Phase.AFFIRMATIONS]
        assert info.total_progress(0.5) == 65.0
        assert info.total_progress(-1) == 40.0
        assert info.total_progress(2) == 90.0

    def test_titles(self):
        assert PHASE_INFO[Phase.COMPLETE].title == "Session Complete"
        assert PHASE_INFO[Phase.DEEPENING].icon == "spa"


class TestAffirmationItem:

    def test_from_dict_aliases(self):
        item = AffirmationItem.from_dict({"id": "a1", "text": "Calm", "audioUrl": "a1.mp3", "audioDurationMs": 4200})
        assert item.audio_handle == "a1.mp3"
        assert item.estimated_duration_ms == 4200
        assert item.has_audio

    def test_defaults(self):
        item = AffirmationItem.from_dict({"id": 7, "text": "Still"})
        assert item.id == "7"
        assert item.audio_handle is None
        assert item.estimated_duration_ms == 3000
        assert not item.has_audio

    def test_missing_id(self):
        with pytest.raises(ConfigError):
            AffirmationItem.from_dict({"text": "no id"})

    def test_bad_duration(self):
        with pytest.raises(ConfigError):
            AffirmationItem.from_dict({"id": "x", "duration_ms": "long"})


class TestScript:

    def test_duration_or(self):
        assert Script("t").duration_or(60) == 60.0
        assert Script("t", estimated_duration_sec=42).duration_or(60) == 42.0
        assert Script("t", estimated_duration_sec=0).duration_or(45) == 45.0

    def test_from_dict(self):
        script = Script.from_dict({"text": "Relax", "audio_url": "ind.mp3", "duration_estimate_sec": 90, "premium": True})
        assert script.audio_handle == "ind.mp3"
        assert script.estimated_duration_sec == 90.0
        assert script.premium


class TestSessionConfig:

    def test_items_coerced_to_tuple(self):
        config = SessionConfig(items=list(_items("a", "b")))
        assert isinstance(config.items, tuple)

    def test_validate_empty(self):
        ok, msg = SessionConfig().validate()
        assert not ok
        assert "at least one" in msg

    def test_validate_duplicates(self):
        ok, msg = SessionConfig(items=_items("a", "b", "a")).validate()
        assert not ok
        assert "'a'" in msg

    def test_validate_ok(self):
        assert SessionConfig(items=_items("a")).validate() == (True, "")

    def test_script_lookup(self):
        config = SessionConfig(items=_items("a"), deepening=Script("down"))
        assert config.has_script(ScriptRole.DEEPENING)
        assert not config.has_script(ScriptRole.INDUCTION)
        assert config.script_for(ScriptRole.DEEPENING).text == "down"

    def test_audio_handles_in_play_order(self):
        config = SessionConfig(
            items=_items("a", "b") + (AffirmationItem("c", "no audio"),),
            induction=Script("i", audio_handle="ind.ogg"),
            awakening=Script("w", audio_handle="a.ogg"),
        )
        assert config.audio_handles() == ["ind.ogg", "a.ogg", "b.ogg"]

    def test_estimated_duration(self):
        items = (AffirmationItem("a", "x", estimated_duration_ms=1000), AffirmationItem("b", "y", estimated_duration_ms=2500))
        assert SessionConfig(items=items).estimated_duration_ms(2.0) == 7500
        assert SessionConfig(items=items).estimated_duration_ms(-3) == 3500

    def test_from_dict_playlist_alias(self):
        config = SessionConfig.from_dict({"playlist": [{"id": "a"}], "induction": {"text": "hi"}})
        assert [i.id for i in config.items] == ["a"]
        assert config.induction.text == "hi"
        assert config.awakening is None

    def test_from_dict_rejects_non_object(self):
        with pytest.raises(ConfigError):
            SessionConfig.from_dict([1, 2])

    def test_save_and_load(self, tmp_path):
        config = SessionConfig(
            items=_items("a", "b"),
            induction=Script("in", audio_handle="ind.ogg", estimated_duration_sec=30),
            name="Evening",
            metadata={"author": "me"},
        )
        path = tmp_path / "nested" / "session.json"
        config.save(path)
        loaded = SessionConfig.load(path)
        assert loaded == config
        assert loaded.metadata == {"author": "me"}

    def test_save_invalid_raises(self, tmp_path):
        with pytest.raises(ConfigError):
            SessionConfig().save(tmp_path / "s.json")

    def test_load_missing(self, tmp_path):
        with pytest.raises(ConfigError, match="not found"):
            SessionConfig.load(tmp_path / "nope.json")

    def test_load_bad_json(self, tmp_path):
        path = tmp_path / "bad.json"
        path.write_text("{not json", encoding="utf-8")
        with pytest.raises(ConfigError, match="Invalid JSON"):
            SessionConfig.load(path)

    def test_load_without_validation(self, tmp_path):
        path = tmp_path / "empty.json"
        path.write_text(json.dumps({"items": []}), encoding="utf-8")
        with pytest.raises(ConfigError):
            SessionConfig.load(path)
        assert SessionConfig.load(path, validate=False).items == ()
