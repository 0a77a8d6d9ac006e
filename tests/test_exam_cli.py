"""Tests for the markwise command-line interface."""

import textwrap

import pytest
from click.testing import CliRunner
from unittest.mock import AsyncMock, Mock, patch

from markwise.tools.exam_grading.cli import main
from markwise.tools.exam_grading.errors import ProviderError
from markwise.tools.exam_grading.models import GradedQuestion, GradedResult
from markwise.tools.exam_grading.storage import StateSync, YamlFileStore


def graded(*marks):
    return GradedResult(total_marks_awarded=sum(marks), total_max_marks=10 * len(marks), questions=[
        GradedQuestion(question_number=str(i + 1), marks_awarded=m, max_marks=10, feedback="ok")
        for i, m in enumerate(marks)
    ])


@pytest.fixture
def config_dir(tmp_path, monkeypatch):
    directory = tmp_path / "config"
    directory.mkdir()
    (directory / "default.yaml").write_text(textwrap.dedent("""
        openai:
          api_key: test-key
          model: gpt-4.1
        grading:
          marks_policy: reject
          max_concurrent: 2
    """))
    monkeypatch.setenv("MARKWISE_CONFIG_DIR", str(directory))
    return directory


@pytest.fixture
def state_path(tmp_path):
    return tmp_path / "state.yaml"


@pytest.fixture
def rubric_file(tmp_path):
    path = tmp_path / "rubric.yaml"
    path.write_text(textwrap.dedent("""
        examName: Calculus Midterm
        totalMarks: 20
        questions:
          - questionNumber: 1
            maxMarks: 10
          - questionNumber: 2
            maxMarks: 10
    """))
    return path


@pytest.fixture
def sheet(tmp_path):
    path = tmp_path / "alice.png"
    path.write_bytes(b"\x89PNG")
    return path


@pytest.fixture
def fake_grader():
    grader = Mock()
    grader.grade_async = AsyncMock(return_value=graded(8, 8))
    with patch('markwise.tools.exam_grading.state.ExamGrader', return_value=grader):
        yield grader


@pytest.fixture
def run(config_dir, state_path):
    runner = CliRunner()

    def invoke(*args, **kwargs):
        return runner.invoke(main, ['--state', str(state_path), *args], **kwargs)
    return invoke


def saved_submissions(state_path):
    return StateSync(YamlFileStore(state_path)).load().submissions


def test_set_rubric(run, rubric_file, state_path):
    result = run('set-rubric', '-r', str(rubric_file))
    assert result.exit_code == 0, result.output
    assert "Calculus Midterm" in result.output
    assert StateSync(YamlFileStore(state_path)).load().rubric.exam_name == "Calculus Midterm"


def test_submit_and_dispute_flow(run, rubric_file, sheet, state_path, fake_grader):
    run('set-rubric', '-r', str(rubric_file))

    result = run('submit', '--student', 'Alice Johnson', '--sheet', str(sheet))
    assert result.exit_code == 0, result.output
    assert "16/20" in result.output
    assert "(80%)" in result.output
    sub_id = saved_submissions(state_path)[0].id

    result = run('dispute', '--id', sub_id, '-q', '0')
    assert result.exit_code == 0, result.output
    assert "disputed" in result.output

    result = run('resolve', '--id', sub_id, '-q', '0', '-m', '9', '-c', 'partial credit for method')
    assert result.exit_code == 0, result.output
    assert "total 17" in result.output

    result = run('set-marks', '--id', sub_id, '-q', '1', '-m', '10')
    assert result.exit_code == 0, result.output
    assert "total 19" in result.output

    question = saved_submissions(state_path)[0].graded_result.questions[0]
    assert question.resolution_comment == "partial credit for method"


def test_submit_without_rubric(run, sheet, state_path, fake_grader):
    result = run('submit', '--student', 'Alice Johnson', '--sheet', str(sheet))
    assert result.exit_code == 1
    assert "rubric" in result.output
    fake_grader.grade_async.assert_not_called()
    assert not state_path.exists()


def test_add_then_grade_pending(run, rubric_file, sheet, tmp_path, state_path, fake_grader):
    bob_sheet = tmp_path / "bob.jpg"
    bob_sheet.write_bytes(b"\xff\xd8")
    run('set-rubric', '-r', str(rubric_file))
    assert run('add', '--student', 'Alice Johnson', '--sheet', str(sheet)).exit_code == 0
    assert run('add', '--student', 'Bob Williams', '--sheet', str(bob_sheet)).exit_code == 0

    result = run('grade', '--pending')
    assert result.exit_code == 0, result.output
    assert "Graded 2 of 2" in result.output

    submissions = saved_submissions(state_path)
    assert all(s.is_graded for s in submissions)
    assert submissions[1].mime_type == "image/jpeg"


def test_grade_pending_reports_failures(run, rubric_file, sheet, fake_grader):
    run('set-rubric', '-r', str(rubric_file))
    run('add', '--student', 'Alice Johnson', '--sheet', str(sheet))
    fake_grader.grade_async.side_effect = ProviderError("model unavailable")

    result = run('grade', '--pending')
    assert result.exit_code == 1
    assert "Graded 0 of 1" in result.output
    assert "model unavailable" in result.output


def test_grade_requires_one_target(run):
    result = run('grade')
    assert result.exit_code == 1
    assert "exactly one" in result.output


def test_unknown_submission(run, rubric_file):
    run('set-rubric', '-r', str(rubric_file))
    result = run('dispute', '--id', 'missing', '-q', '0')
    assert result.exit_code == 1
    assert "Submission not found" in result.output


def test_show_and_review(run, rubric_file, sheet, fake_grader):
    run('set-rubric', '-r', str(rubric_file))
    run('submit', '--student', 'Alice Johnson', '--sheet', str(sheet))
    run('add', '--student', 'Bob Williams', '--sheet', str(sheet))

    result = run('show')
    assert result.exit_code == 0, result.output
    assert "Alice" in result.output
    assert "ungraded" in result.output
    assert "1/2 graded" in result.output

    result = run('review')
    assert result.exit_code == 0, result.output
    assert "Question 1" in result.output


def test_reset(run, rubric_file, state_path):
    run('set-rubric', '-r', str(rubric_file))
    result = run('reset', '--yes')
    assert result.exit_code == 0, result.output
    assert StateSync(YamlFileStore(state_path)).load().rubric is None


def test_grade_rejects_zero_concurrency_option(run, fake_grader):
    result = run('grade', '--pending', '-t', '0')
    assert result.exit_code == 2
    fake_grader.grade_async.assert_not_called()


def test_bad_max_concurrent_config(run, config_dir, rubric_file, fake_grader):
    (config_dir / "local.yaml").write_text("grading:\n  max_concurrent: 0\n")
    result = run('grade', '--pending')
    assert result.exit_code == 1
    assert "max_concurrent" in result.output
    fake_grader.grade_async.assert_not_called()
