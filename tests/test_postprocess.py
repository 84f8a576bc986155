import pytest

from aurion.core.config import get_settings
from aurion.orchestrator import postprocess
from aurion.orchestrator.postprocess import ensure_complete, length_constraint, seems_cut, tidy
from aurion.orchestrator.state import new_session_id
from aurion.services import ollama


class TestLengthConstraint:
    def test_short(self):
        lc = length_constraint("short")
        assert lc.multiplier == 0.6
        assert "1–3 phrases" in lc.instruction

    def test_long_case_insensitive(self):
        assert length_constraint("LONG").multiplier == 1.4

    @pytest.mark.parametrize("value", ["medium", "", None, "whatever"])
    def test_default(self, value):
        lc = length_constraint(value)
        assert lc.multiplier == 1.0
        assert lc.instruction == ""


class TestGenerationOptions:
    def test_scales_num_predict(self):
        options = ollama.generation_options("aurion-gemma", 0.6)
        base = ollama.generation_options("aurion-gemma")
        assert options["num_predict"] == round(base["num_predict"] * 0.6)

    def test_multiplier_is_clamped(self):
        base = ollama.generation_options("aurion-gemma")["num_predict"]
        assert ollama.generation_options("aurion-gemma", 10)["num_predict"] == base * 2

    def test_phi_runs_cooler(self):
        assert ollama.generation_options("aurion-phi")["temperature"] <= 0.35

    def test_choose_model(self):
        models = get_settings().models
        assert ollama.choose_model("phi") == models["phi"]
        assert ollama.choose_model("unknown") == models["primary"]
        assert ollama.choose_model() == models["primary"]


class TestTidy:
    def test_strips_trailing_spaces_and_blank_runs(self):
        assert tidy("Bonjour.   \n\n\n\nSalut.  ") == "Bonjour.\n\nSalut."

    def test_none(self):
        assert tidy(None) == ""

    @pytest.mark.parametrize("text, cut", [
        ("C'est fini.", False),
        ("Vraiment ?", False),
        ("Et donc…", False),
        ("", False),
        ("Et ensuite il", True),
    ])
    def test_seems_cut(self, text, cut):
        assert seems_cut(text) is cut


class TestEnsureComplete:
    async def test_complete_reply_untouched(self, monkeypatch):
        async def fail(*args, **kwargs):
            raise AssertionError("should not be called")

        monkeypatch.setattr(ollama, "generate", fail)
        assert await ensure_complete("Tout va bien.", "", "aurion-gemma") == "Tout va bien."

    async def test_cut_reply_gets_one_continuation(self, monkeypatch):
        calls = []

        async def fake_generate(prompt, system="", model=None, options=None):
            calls.append((prompt, options))
            return "la fin."

        monkeypatch.setattr(ollama, "generate", fake_generate)

        reply = await ensure_complete("Voici le début et", "sys", "aurion-gemma")

        assert reply == "Voici le début et la fin."
        assert len(calls) == 1
        assert calls[0][0] == postprocess.CONTINUE_PROMPT
        assert calls[0][1]["num_predict"] == 200


class TestSessionIds:
    def test_format(self):
        sid = new_session_id()
        prefix, stamp, suffix = sid.split("_")
        assert prefix == "s"
        assert int(stamp, 36) > 0
        assert len(suffix) == 6

    def test_unique(self):
        assert len({new_session_id() for _ in range(50)}) == 50
