import pytest

from comicgen.core.exceptions import ComicGenerationError
from comicgen.graphs.requirements import (
    merge_draft,
    missing_fields,
    normalize_language,
    run_requirements_agent,
    transcript_from_events,
)
from comicgen.schemas.events import Event
from tests.fakes import FakeGemini


@pytest.mark.parametrize(
    "value, expected",
    [("hi-IN", "hi-IN"), ("HI-in", "hi-IN"), ("Hindi", "hi-IN"), (" odia ", "od-IN"), ("Klingon", "Klingon"), (3, 3)],
)
def test_normalize_language(value, expected):
    assert normalize_language(value) == expected


def test_merge_draft_keeps_known_values_and_ignores_blanks():
    draft = {"lesson": "sharing", "childAge": 6, "stray": "x"}
    merged = merge_draft(draft, {"lesson": "  ", "language": "Tamil", "panelCount": None})
    assert merged == {"lesson": "sharing", "childAge": 6, "language": "ta-IN"}
    assert merge_draft(draft, "not a mapping") == {"lesson": "sharing", "childAge": 6}


def test_missing_fields_in_asking_order():
    assert missing_fields({}) == ["lesson", "childAge", "panelCount"]
    assert missing_fields({"lesson": "honesty", "childAge": 0, "language": "xx", "panelCount": 4}) == [
        "childAge",
        "language",
    ]
    assert missing_fields({"lesson": "honesty", "childAge": 7, "panelCount": 5}) == []
    assert missing_fields({"lesson": "honesty", "childAge": 18, "panelCount": 5}) == []


def test_transcript_only_includes_conversation():
    events = [
        Event.text("user", "I want a comic"),
        Event.text("comic_requirements_agent", "What lesson?"),
        Event.text("script_generator", '{"title": "x"}'),
    ]
    assert transcript_from_events(events) == "Parent: I want a comic\nAssistant: What lesson?"
    assert transcript_from_events([]) == "(no messages yet)"


def test_not_ready_turn_only_updates_draft():
    gemini = FakeGemini(
        agent_replies=[{"reply": "How old is your child?", "requirements": {"lesson": "kindness"}, "ready": False}]
    )
    turn = run_requirements_agent(gemini, history=[], draft={}, message="Teach kindness please")

    assert turn.reply == "How old is your child?"
    assert turn.draft == {"lesson": "kindness"}
    assert turn.requirements is None
    assert "Teach kindness please" in gemini.text_prompts[0]


def test_ready_but_incomplete_asks_for_missing():
    gemini = FakeGemini(agent_replies=[{"reply": "Let's go!", "requirements": {"lesson": "kindness"}, "ready": True}])
    turn = run_requirements_agent(gemini, history=[], draft={"childAge": 5}, message="yes")

    assert turn.requirements is None
    assert "the number of panels" in turn.reply
    assert "your child's age" not in turn.reply


def test_ready_and_complete_confirms_requirements():
    gemini = FakeGemini(
        agent_replies=[
            {
                "reply": "Making it now!",
                "requirements": {"lesson": "honesty", "childAge": "7", "language": "Marathi", "panelCount": 5},
                "ready": True,
            }
        ]
    )
    turn = run_requirements_agent(gemini, history=[], draft={}, message="yes, go")

    assert turn.requirements is not None
    assert turn.requirements.language == "mr-IN"
    assert turn.requirements.child_age == 7
    assert turn.requirements.panel_count == 5
    assert turn.requirements.theme == "avengers"


def test_non_object_reply_fails():
    class ListGemini(FakeGemini):
        def generate_text(self, prompt, model=None, use_fallback=True, json_mode=False):
            return "[1, 2]"

    with pytest.raises(ComicGenerationError):
        run_requirements_agent(ListGemini(), history=[], draft={}, message="hi")


@pytest.mark.anyio
async def test_conversation_turn_persists_draft(client, fake_gemini, fake_speech):
    fake_gemini.agent_replies = [
        {"reply": "Which language?", "requirements": {"lesson": "sharing", "childAge": 6}, "ready": False},
    ]
    await client.post("/apps/agent/users/u1/sessions/s1")

    resp = await client.post(
        "/run",
        json={
            "appName": "agent",
            "userId": "u1",
            "sessionId": "s1",
            "newMessage": {"role": "user", "parts": [{"text": "sharing for my 6 year old"}]},
        },
    )

    assert resp.status_code == 200
    events = resp.json()
    assert [e["author"] for e in events] == ["user", "comic_requirements_agent"]
    assert events[1]["content"]["parts"][0]["text"] == "Which language?"
    assert events[0]["invocationId"] == events[1]["invocationId"]

    session = (await client.get("/apps/agent/users/u1/sessions/s1")).json()
    assert session["state"]["requirements_draft"] == {"lesson": "sharing", "childAge": 6}
    assert "requirements" not in session["state"]
    assert len(session["events"]) == 2
    assert fake_speech.calls == []
