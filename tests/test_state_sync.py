"""Tests for best-effort state persistence."""

import logging

import pytest
import yaml

from markwise.tools.exam_grading.errors import PersistenceWarning
from markwise.tools.exam_grading.models import (
    AppSnapshot, Disputed, GradedQuestion, GradedResult, Resolved, Rubric, Submission
)
from markwise.tools.exam_grading.state import build_state
from markwise.tools.exam_grading.storage import MemoryStore, StateStore, StateSync, YamlFileStore


class FailingStore(StateStore):
    def read(self):
        raise OSError("disk unavailable")

    def write(self, data):
        raise OSError("disk full")


@pytest.fixture
def snapshot():
    result = GradedResult(total_marks_awarded=15, total_max_marks=20, questions=[
        GradedQuestion(question_number="1", marks_awarded=9, max_marks=10,
                       dispute=Resolved(comment="partial credit for method")),
        GradedQuestion(question_number="2", marks_awarded=6, max_marks=10, dispute=Disputed(),
                       keywords_found=["limit"]),
    ])
    return AppSnapshot(
        rubric=Rubric(exam_name="Calculus Midterm", total_marks=20, questions=[
            {"question_number": "1", "max_marks": 10},
            {"question_number": "2", "max_marks": 10},
        ]),
        submissions=[
            Submission(id="sub-1", student_name="Alice Johnson", answer_sheet_ref="alice.png",
                       graded_result=result),
            Submission(id="sub-2", student_name="Bob Williams"),
        ],
    )


def test_yaml_file_store_roundtrip(tmp_path, snapshot):
    path = tmp_path / "nested" / "state.yaml"
    sync = StateSync(YamlFileStore(path))

    assert sync.load() is None
    assert sync.save(snapshot)
    assert path.exists()
    # No temp files are left beside the state file
    assert [p.name for p in path.parent.iterdir()] == ["state.yaml"]

    loaded = sync.load()
    assert loaded == snapshot
    assert loaded.submissions[0].graded_result.questions[0].resolution_comment == "partial credit for method"
    assert sync.last_warning is None


def test_saved_file_is_plain_yaml(tmp_path, snapshot):
    path = tmp_path / "state.yaml"
    StateSync(YamlFileStore(path)).save(snapshot)

    with open(path) as f:
        data = yaml.safe_load(f)
    assert data['rubric']['exam_name'] == "Calculus Midterm"
    assert data['submissions'][1]['graded_result'] is None
    assert data['submissions'][0]['graded_result']['questions'][1]['dispute'] == {'status': 'disputed'}


def test_failing_store_is_swallowed(snapshot, caplog):
    sync = StateSync(FailingStore())

    with caplog.at_level(logging.WARNING):
        assert sync.save(snapshot) is False
        assert sync.load() is None

    assert isinstance(sync.last_warning, PersistenceWarning)
    assert "disk unavailable" in str(sync.last_warning)
    assert "Could not save state" in caplog.text


def test_corrupt_state_loads_as_none():
    sync = StateSync(MemoryStore({'rubric': {'exam_name': 'x'}, 'submissions': 'garbage'}))
    assert sync.load() is None
    assert "Could not load state" in str(sync.last_warning)


def test_corrupt_yaml_file(tmp_path):
    path = tmp_path / "state.yaml"
    path.write_text("rubric: [unclosed")
    sync = StateSync(YamlFileStore(path))
    assert sync.load() is None
    assert sync.last_warning is not None


def test_memory_store_counts_writes(snapshot):
    store = MemoryStore()
    sync = StateSync(store)
    sync.save(snapshot)
    sync.save(snapshot)
    assert store.writes == 2
    assert sync.load() == snapshot


def test_duplicate_submission_ids_load_as_none(snapshot):
    """A stored state with a repeated submission id is rejected at load time."""
    data = snapshot.to_yaml_dict()
    data['submissions'].append(dict(data['submissions'][0]))
    sync = StateSync(MemoryStore(data))

    assert sync.load() is None
    assert isinstance(sync.last_warning, PersistenceWarning)
    assert "Duplicate submission id" in str(sync.last_warning)


def test_build_state_survives_duplicate_ids(snapshot):
    data = snapshot.to_yaml_dict()
    data['submissions'].append(dict(data['submissions'][0]))
    sync = StateSync(MemoryStore(data))

    state = build_state({}, sync=sync)

    assert state.rubric is None
    assert len(state.registry) == 0
    assert sync.last_warning is not None
