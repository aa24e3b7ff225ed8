import json

import pytest

from conftest import FakeLLM
from coursegen.core.errors import NotFoundError, ValidationError
from coursegen.schemas.drafts import DraftConstraints, EditChange
from coursegen.services.llm import prompts
from coursegen.services.roadmap_drafts import RoadmapDraftEngine, validate_roadmap_data

PYTHON_PLAN = {"Basics": ["Variables", "Loops"], "Functions": ["Defining Functions"]}


def _engine(llm, store, cfg):
    return RoadmapDraftEngine(llm, store, cfg=cfg)


def test_generate_stores_flat_draft_with_ttl(store, cfg):
    llm = FakeLLM([json.dumps(PYTHON_PLAN)])
    view = _engine(llm, store, cfg).generate("Intro to Python", DraftConstraints(level="beginner"))

    assert view.id.startswith("temp_")
    assert view.version == 1
    assert view.data == PYTHON_PLAN
    assert list(view.data) == ["Basics", "Functions"]

    key = f"roadmap:{view.id}"
    assert store.ttls[key] == 172800
    stored = store.values[key]
    assert stored["data"] == PYTHON_PLAN
    assert stored["user_query"] == "Intro to Python"
    assert stored["version"] == 1

    assert len(llm.calls) == 1
    assert llm.calls[0]["format"] == "json"
    assert llm.calls[0]["temperature"] == 0.3
    assert "beginner" in llm.calls[0]["user"]


def test_generate_returns_hierarchical_view_with_synthetic_ids(store, cfg):
    view = _engine(FakeLLM([json.dumps(PYTHON_PLAN)]), store, cfg).generate("Intro to Python")

    topics = view.roadmap.main_topics
    assert view.roadmap.id == "course"
    assert [t.title for t in topics] == ["Basics", "Functions"]
    assert all(t.id.startswith("main_") for t in topics)
    assert [s.title for s in topics[0].subtopics] == ["Variables", "Loops"]
    assert all(s.id.startswith("sub_") for t in topics for s in t.subtopics)


def test_generate_issues_exactly_one_repair_call(store, cfg):
    llm = FakeLLM(["Here is your plan: {'Basics': [Variables", json.dumps(PYTHON_PLAN)])
    view = _engine(llm, store, cfg).generate("Intro to Python")

    assert view.data == PYTHON_PLAN
    assert len(llm.calls) == 2
    repair = llm.calls[1]
    assert repair["system"] == prompts.REPAIR_SYSTEM
    assert repair["temperature"] == 0.0
    assert "Here is your plan" in repair["user"]


def test_generate_fails_when_repair_is_still_not_json(store, cfg):
    llm = FakeLLM(["not json", "still not json"])
    with pytest.raises(ValidationError):
        _engine(llm, store, cfg).generate("Intro to Python")
    assert len(llm.calls) == 2
    assert store.values == {}


@pytest.mark.parametrize(
    "payload",
    [
        {},
        [],
        {"Basics": []},
        {"Basics": ["Variables", "   "]},
        {"Basics": "Variables"},
        {"   ": ["Variables"]},
    ],
)
def test_generate_rejects_invalid_plans_without_retry(store, cfg, payload):
    llm = FakeLLM([json.dumps(payload)])
    with pytest.raises(ValidationError):
        _engine(llm, store, cfg).generate("Intro to Python")
    assert len(llm.calls) == 1


def test_validate_trims_and_keeps_order():
    data = validate_roadmap_data({" B ": ["  x ", "y"], "A": ["z"]})
    assert data == {"B": ["x", "y"], "A": ["z"]}
    assert list(data) == ["B", "A"]


def test_edit_removes_topic_and_bumps_version(store, cfg):
    engine = _engine(FakeLLM([json.dumps(PYTHON_PLAN)]), store, cfg)
    draft = engine.generate("Intro to Python")

    edited_result = {
        "id": "course",
        "main_topics": [
            {"id": "main_1", "title": "Basics", "subtopics": [{"id": "s1", "title": "Variables"}, {"id": "s2", "title": "Loops"}]}
        ],
    }
    engine.llm = FakeLLM([json.dumps(edited_result)])
    view = engine.edit(draft.id, [EditChange(op="rm-main", id="Functions")])

    assert view.id == draft.id
    assert view.version == 2
    assert view.data == {"Basics": ["Variables", "Loops"]}

    call = engine.llm.calls[0]
    assert call["system"] == prompts.ROADMAP_EDIT_SYSTEM
    assert call["temperature"] == 0.2
    assert '"Functions"' in call["user"]
    assert "op=rm-main id=Functions" in call["user"]

    stored = store.values[f"roadmap:{draft.id}"]
    assert stored["version"] == 2
    assert "Functions" not in stored["data"]


def test_edit_accepts_flat_result_and_long_op_names(store, cfg):
    engine = _engine(FakeLLM([json.dumps(PYTHON_PLAN)]), store, cfg)
    draft = engine.generate("Intro to Python")

    engine.llm = FakeLLM([json.dumps({"Basics": ["Variables", "Loops", "Conditionals"], "Functions": ["Defining Functions"]})])
    view = engine.edit(draft.id, [EditChange(op="add-subtopic", id="Basics", query="add conditionals")])
    assert view.version == 2
    assert view.data["Basics"][-1] == "Conditionals"

    engine.llm = FakeLLM([json.dumps(PYTHON_PLAN)])
    assert engine.edit(draft.id, [EditChange(op="rm-sub", id="Conditionals")]).version == 3


def test_edit_with_invalid_result_keeps_previous_version(store, cfg):
    engine = _engine(FakeLLM([json.dumps(PYTHON_PLAN)]), store, cfg)
    draft = engine.generate("Intro to Python")

    engine.llm = FakeLLM([json.dumps({"main_topics": [{"id": "m", "title": "Basics", "subtopics": []}]})])
    with pytest.raises(ValidationError):
        engine.edit(draft.id, [EditChange(op="rm-sub", id="Variables")])
    assert store.values[f"roadmap:{draft.id}"]["version"] == 1


def test_edit_missing_draft_is_not_found(store, cfg):
    engine = _engine(FakeLLM(), store, cfg)
    with pytest.raises(NotFoundError):
        engine.edit("temp_missing", [EditChange(op="rm-main", id="x")])


def test_missing_draft_wins_over_empty_changes(store, cfg):
    engine = _engine(FakeLLM(), store, cfg)
    with pytest.raises(NotFoundError):
        engine.edit("temp_missing", [])


def test_edit_requires_changes(store, cfg):
    engine = _engine(FakeLLM([json.dumps(PYTHON_PLAN)]), store, cfg)
    draft = engine.generate("Intro to Python")
    with pytest.raises(ValidationError):
        engine.edit(draft.id, [])
