import json

import pytest

from comicgen.core.exceptions import ComicGenerationError
from comicgen.graphs.pipeline import stream_comic_pipeline
from comicgen.graphs.stages.image_prompts import compute_image_prompts
from comicgen.graphs.stages.narrator import audio_summary, narration_text
from comicgen.graphs.stages.script_writer import compute_comic_script
from comicgen.schemas.comic import ComicScript, Requirements
from comicgen.services.tools import build_audio_tool, build_image_tool
from tests.fakes import FakeGemini, FakeSpeech


def _requirements(panel_count=4, language="en-IN"):
    return Requirements(lesson="sharing", child_age=6, language=language, panel_count=panel_count)


class ScriptGemini(FakeGemini):
    def __init__(self, script, **kwargs):
        super().__init__(**kwargs)
        self._script = script

    def script(self):
        return self._script


def test_script_panels_are_sorted_renumbered_and_truncated():
    script = FakeGemini(panel_count=5).script()
    script["panels"] = list(reversed(script["panels"]))
    script["panels"][0]["panelId"] = "7"

    result = compute_comic_script(_requirements(panel_count=3), ScriptGemini(script))

    assert [p.panel_id for p in result.panels] == [1, 2, 3]
    assert [p.scene for p in result.panels] == ["Scene 1 in Avengers tower", "Scene 2 in Avengers tower", "Scene 3 in Avengers tower"]


def test_too_few_panels_fails_the_stage():
    script = FakeGemini(panel_count=2).script()
    with pytest.raises(ComicGenerationError, match="expected 4 panels, got 2"):
        compute_comic_script(_requirements(panel_count=4), ScriptGemini(script))


def test_script_without_title_fails():
    script = FakeGemini(panel_count=4).script()
    script["title"] = ""
    with pytest.raises(ComicGenerationError, match="invalid script"):
        compute_comic_script(_requirements(), ScriptGemini(script))


def test_panels_without_any_spoken_text_fail_the_stage():
    script = FakeGemini(panel_count=4).script()
    for panel in script["panels"]:
        panel["narration"] = ""
        panel["dialogue"] = "  "

    with pytest.raises(ComicGenerationError, match=r"panels without narration or dialogue: \[1, 2, 3, 4\]"):
        compute_comic_script(_requirements(), ScriptGemini(script))


def test_panel_with_only_dialogue_is_accepted():
    script = FakeGemini(panel_count=4).script()
    script["panels"][2].pop("narration")

    result = compute_comic_script(_requirements(), ScriptGemini(script))

    assert result.panels[2].narration == ""
    assert result.panels[2].dialogue == "Thor: Line 3"


def test_script_prompt_names_language():
    gemini = FakeGemini()
    compute_comic_script(_requirements(language="kn-IN"), gemini)
    assert "Kannada (kn-IN)" in gemini.text_prompts[0]


def test_missing_image_prompts_are_filled_from_scene():
    class SparseGemini(FakeGemini):
        def generate_text(self, prompt, model=None, use_fallback=True, json_mode=False):
            if "ROLE: Image prompt writer" in prompt:
                return json.dumps({"artStyle": "", "prompts": [{"panelId": 2, "prompt": "custom two"}]})
            return super().generate_text(prompt, model, use_fallback, json_mode)

    script = ComicScript.model_validate(FakeGemini(panel_count=3).script())
    prompts = compute_image_prompts(script, SparseGemini())

    assert [p.panel_id for p in prompts.prompts] == [1, 2, 3]
    assert prompts.prompts[1].prompt == "custom two"
    assert prompts.prompts[0].prompt.startswith("Scene 1 in Avengers tower. Characters: Thor, Hulk.")
    assert "children's comic" in prompts.art_style


def test_narration_text_and_summary():
    assert narration_text("Thor: hi", "He smiled.") == "Thor: hi\nHe smiled."
    assert narration_text("", " He smiled. ") == "He smiled."
    summary = audio_summary(
        [
            {"success": True, "panelId": 1, "filename": "panel_1.wav"},
            {"success": True, "panelId": 2},
            {"success": False, "panelId": 3},
        ]
    )
    assert summary.splitlines() == [
        "Audio narration ready for 2 of 3 panels.",
        "- Panel 1: panel_1.wav",
        "- Panel 2: no audio",
        "- Panel 3: failed",
    ]


def _run_pipeline(tmp_path, gemini, speech, panel_count=4):
    return list(
        stream_comic_pipeline(
            _requirements(panel_count=panel_count),
            gemini,
            image_tool=build_image_tool(gemini, str(tmp_path), "http://localhost:8000"),
            audio_tool=build_audio_tool(speech, str(tmp_path)),
            invocation_id="e-test",
        )
    )


def test_pipeline_event_order(tmp_path):
    events = _run_pipeline(tmp_path, FakeGemini(panel_count=2), FakeSpeech(), panel_count=2)

    authors = [e.author for e in events]
    assert authors == [
        "script_generator",
        "image_prompt_generator",
        "image_generator",
        "image_generator",
        "image_generator",
        "image_generator",
        "image_generator",
        "tts_generator",
        "tts_generator",
        "tts_generator",
        "tts_generator",
        "tts_generator",
    ]
    assert all(e.invocation_id == "e-test" for e in events)
    assert set(events[0].actions.state_delta) == {"comic_script"}
    assert events[6].first_text() == "Images ready!"
    assert len(events[6].actions.state_delta["generated_images"]) == 2
    assert events[-1].first_text().startswith("Audio narration ready for 2 of 2 panels.")

    call = events[2].content.parts[0].function_call
    response = events[3].content.parts[0].function_response
    assert call.name == "generate_comic_image"
    assert response.id == call.id
    assert response.response["success"] is True


def test_failed_image_does_not_stop_the_pipeline(tmp_path):
    class FlakyGemini(FakeGemini):
        def generate_image(self, prompt, model=None, aspect_ratio="4:3", image_size="2K"):
            if prompt.startswith("Panel 1"):
                raise RuntimeError("image model overloaded")
            return super().generate_image(prompt, model, aspect_ratio, image_size)

    events = _run_pipeline(tmp_path, FlakyGemini(panel_count=2), FakeSpeech(), panel_count=2)

    images = next(e for e in events if "generated_images" in e.actions.state_delta).actions.state_delta[
        "generated_images"
    ]
    assert [r["success"] for r in images] == [False, True]
    assert events[-1].author == "tts_generator"


def test_script_failure_stops_the_pipeline(tmp_path):
    gemini = ScriptGemini({"title": "x", "panels": []})
    speech = FakeSpeech()

    with pytest.raises(ComicGenerationError):
        _run_pipeline(tmp_path, gemini, speech)

    assert gemini.image_prompts == []
    assert speech.calls == []
