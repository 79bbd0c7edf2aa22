from pathlib import Path

import pytest

from comicgen.prompts import loader


def test_list_prompts_domain():
    names = loader.list_prompts(domain="comic")
    assert "prompt_script_writer" in names
    assert "prompt_image_prompts" in names


def test_get_prompt_metadata_variables():
    meta = loader.get_prompt_metadata("prompt_script_writer")
    vars_ = set(meta["variables"])
    assert {"lesson", "child_age", "panel_count", "language_name"} <= vars_
    assert meta["domain"] == "comic"


def test_loop_targets_are_not_variables():
    meta = loader.get_prompt_metadata("prompt_requirements_agent")
    assert "languages" in meta["variables"]
    assert "code" not in meta["variables"]


def test_render_prompt_includes_shared():
    rendered = loader.render_prompt(
        "prompt_script_writer",
        lesson="sharing",
        child_age=6,
        language_name="Hindi",
        language_code="hi-IN",
        panel_count=4,
    )
    assert "Constraints:" in rendered
    assert "JSON-only generator" in rendered
    assert "Exactly 4 panels" in rendered
    assert "Hindi (hi-IN)" in rendered


def test_render_prompt_missing_variables_raises():
    with pytest.raises(ValueError, match="child_age"):
        loader.render_prompt("prompt_script_writer", lesson="sharing")


def test_unknown_prompt_raises_key_error():
    with pytest.raises(KeyError):
        loader.get_prompt("prompt_does_not_exist")


def test_default_art_style_is_data():
    style = loader.get_prompt_data("art_style_default")
    assert "children" in style.lower()


def test_all_shipped_prompts_are_valid():
    errors = {name: errs for name, errs in loader.validate_all_prompts().items() if errs}
    assert errors == {}


def test_invalid_template_raises_and_is_not_silently_ignored():
    prompts_dir = Path(loader.__file__).resolve().parent
    bad_file = prompts_dir / "v1" / "utility" / "bad_template_for_test.yaml"
    bad_file.write_text("bad_prompt: '{% if foo %} missing endif'\n")

    try:
        loader.clear_cache()
        with pytest.raises(ValueError):
            loader._load_versioned_prompts()
    finally:
        bad_file.unlink()
        loader.clear_cache()
