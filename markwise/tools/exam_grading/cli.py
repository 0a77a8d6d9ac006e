#!/usr/bin/env python3
"""Command-line interface for exam grading and dispute handling."""

import asyncio
import logging
import sys
from pathlib import Path

import click
from rich.console import Console
from rich.table import Table

from markwise.libs.config_loader import get_config, load_all_configs
from .errors import ExamGradingError
from .grader import read_answer_sheet
from .review import question_centric_review, score_band, summary_stats
from .rubric_catalog import load_rubric_file
from .state import GradingState, build_state

LOG = logging.getLogger(__name__)

console = Console()

BAND_STYLES = {"high": "green", "medium": "yellow", "low": "red"}


class Context:
    """Lazily built configuration and state shared by subcommands."""

    def __init__(self, state_path=None):
        self.state_path = state_path
        self._configs = None
        self._state = None

    @property
    def configs(self):
        if self._configs is None:
            self._configs = load_all_configs()
            if self.state_path is not None:
                self._configs.setdefault('storage', {})['state_path'] = str(self.state_path)
        return self._configs

    @property
    def state(self) -> GradingState:
        if self._state is None:
            try:
                self._state = build_state(self.configs)
            except ExamGradingError as e:
                _fail(e)
        return self._state


pass_context = click.make_pass_decorator(Context)


def _fail(error: Exception):
    console.print(f"[bold red]Error:[/bold red] {error}")
    sys.exit(1)


@click.group()
@click.option('--state', 'state_path', type=click.Path(path_type=Path), default=None,
              help='State file to use (overrides storage.state_path)')
@click.option('--verbose', '-v', is_flag=True, help='Enable verbose logging')
@click.pass_context
def main(ctx, state_path, verbose):
    """Grade exam answer sheets with AI and manage grade disputes.

    Example:
        markwise set-rubric -r midterm.yaml
        markwise submit --student "Alice Johnson" --sheet alice.png
    """
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    ctx.obj = Context(state_path)


@main.command('set-rubric')
@click.option('--rubric', '-r', type=click.Path(exists=True, path_type=Path), required=True,
              help='Path to the rubric YAML file')
@pass_context
def set_rubric(ctx, rubric):
    """Replace the active rubric."""
    try:
        parsed = load_rubric_file(rubric)
        ctx.state.set_rubric(parsed)
    except ExamGradingError as e:
        _fail(e)
    console.print(f"Rubric set: [bold]{parsed.exam_name}[/bold] "
                  f"({len(parsed.questions)} questions, {parsed.total_marks} marks)")
    gap = ctx.state.catalog.mark_allocation_gap()
    if gap:
        console.print(f"[yellow]Note:[/yellow] question marks differ from total marks by {gap}")


@main.command('add')
@click.option('--student', '-s', required=True, help='Student name')
@click.option('--sheet', type=click.Path(exists=True, path_type=Path), required=True,
              help='Answer sheet image')
@pass_context
def add(ctx, student, sheet):
    """Register a submission without grading it."""
    try:
        _, mime_type = read_answer_sheet(sheet)
        submission = ctx.state.register_submission(student, str(sheet.resolve()), mime_type)
    except ExamGradingError as e:
        _fail(e)
    console.print(f"Registered [bold]{submission.id}[/bold] for {student}")


@main.command('submit')
@click.option('--student', '-s', required=True, help='Student name')
@click.option('--sheet', type=click.Path(exists=True, path_type=Path), required=True,
              help='Answer sheet image')
@pass_context
def submit(ctx, student, sheet):
    """Upload an answer sheet and grade it immediately."""
    try:
        image, mime_type = read_answer_sheet(sheet)
        submission = asyncio.run(ctx.state.submit_and_grade(
            student, image, mime_type, answer_sheet_ref=str(sheet.resolve())
        ))
    except ExamGradingError as e:
        _fail(e)
    _print_submission(submission)


@main.command('grade')
@click.option('--id', 'submission_id', default=None, help='Submission to grade')
@click.option('--pending', is_flag=True, help='Grade every ungraded submission')
@click.option('--max-concurrent', '-t', type=click.IntRange(min=1), default=None,
              help='Maximum concurrent grading calls (overrides grading.max_concurrent)')
@pass_context
def grade(ctx, submission_id, pending, max_concurrent):
    """Grade one submission, or all pending ones."""
    if bool(submission_id) == pending:
        _fail(click.UsageError("Pass exactly one of --id or --pending"))
    state = ctx.state
    try:
        if submission_id:
            _print_submission(asyncio.run(state.grade_submission(submission_id)))
            return
        outcomes = asyncio.run(state.grade_pending(max_concurrent=max_concurrent))
    except ExamGradingError as e:
        _fail(e)

    failed = [o for o in outcomes if not o.success]
    console.print(f"Graded {len(outcomes) - len(failed)} of {len(outcomes)} pending submissions")
    for outcome in failed:
        console.print(f"  [red]{outcome.submission_id}[/red]: {outcome.error_message}")
    if failed:
        sys.exit(1)


@main.command('dispute')
@click.option('--id', 'submission_id', required=True)
@click.option('--question', '-q', 'question_index', type=int, required=True,
              help='0-based question index within the result')
@pass_context
def dispute(ctx, submission_id, question_index):
    """Raise or withdraw a dispute on a question."""
    try:
        question = ctx.state.toggle_dispute(submission_id, question_index)
    except ExamGradingError as e:
        _fail(e)
    console.print(f"Question {question.question_number}: {question.dispute_status.value}")


@main.command('resolve')
@click.option('--id', 'submission_id', required=True)
@click.option('--question', '-q', 'question_index', type=int, required=True)
@click.option('--marks', '-m', type=float, required=True, help='Marks after resolution')
@click.option('--comment', '-c', required=True, help='Resolution comment shown to the student')
@pass_context
def resolve(ctx, submission_id, question_index, marks, comment):
    """Resolve a dispute with new marks and a comment."""
    try:
        question = ctx.state.resolve_dispute(submission_id, question_index, marks, comment)
    except ExamGradingError as e:
        _fail(e)
    total = ctx.state.registry.get(submission_id).graded_result.total_marks_awarded
    console.print(f"Question {question.question_number} resolved at {question.marks_awarded}; total {total}")


@main.command('set-marks')
@click.option('--id', 'submission_id', required=True)
@click.option('--question', '-q', 'question_index', type=int, required=True)
@click.option('--marks', '-m', type=float, required=True)
@pass_context
def set_marks(ctx, submission_id, question_index, marks):
    """Correct a question's marks outside the dispute flow."""
    try:
        question = ctx.state.set_marks(submission_id, question_index, marks)
    except ExamGradingError as e:
        _fail(e)
    total = ctx.state.registry.get(submission_id).graded_result.total_marks_awarded
    console.print(f"Question {question.question_number} set to {question.marks_awarded}; total {total}")


@main.command('show')
@click.option('--student', '-s', default=None, help='Only show this student, newest first')
@click.option('--id', 'submission_id', default=None, help='Show one submission in detail')
@pass_context
def show(ctx, student, submission_id):
    """List submissions and their scores."""
    state = ctx.state
    if submission_id:
        try:
            _print_submission(state.registry.get(submission_id))
        except ExamGradingError as e:
            _fail(e)
        return

    submissions = state.registry.filter_by_student(student, newest_first=True) if student else list(state.registry)
    table = Table(title="Submissions")
    table.add_column("ID")
    table.add_column("Student")
    table.add_column("Submitted")
    table.add_column("Score", justify="right")
    table.add_column("Disputes", justify="right")
    for sub in submissions:
        result = sub.graded_result
        if result is None:
            score = "[dim]ungraded[/dim]"
            disputes = ""
        else:
            style = BAND_STYLES[score_band(result.total_marks_awarded, result.total_max_marks)]
            score = f"[{style}]{result.total_marks_awarded:g}/{result.total_max_marks:g}[/{style}]"
            disputes = str(sum(1 for q in result.questions if q.is_disputed))
        table.add_row(sub.id, sub.student_name, sub.submission_date.strftime("%Y-%m-%d %H:%M"),
                      score, disputes)
    console.print(table)

    stats = summary_stats(state.registry)
    console.print(f"{stats['graded']}/{stats['total']} graded, average {stats['average']:.1f}, "
                  f"{stats['disputed']} open disputes")


@main.command('review')
@pass_context
def review(ctx):
    """Question-by-question review across all students."""
    state = ctx.state
    if state.rubric is None:
        _fail("No grading rubric has been set up yet")
    for entry in question_centric_review(state.rubric, state.registry):
        rq = entry.rubric_question
        table = Table(title=f"Question {rq.question_number} (max {rq.max_marks:g}) "
                            f"expected: {rq.expected_answer or '-'}")
        table.add_column("Student")
        table.add_column("Submission")
        table.add_column("Marks", justify="right")
        table.add_column("Status")
        table.add_column("Comment")
        for answer in entry.answers:
            q = answer.question
            table.add_row(answer.student_name, answer.submission_id, f"{q.marks_awarded:g}",
                          q.dispute_status.value, q.resolution_comment or "")
        if not entry.answers:
            table.caption = "No graded answers for this question yet."
        console.print(table)


@main.command('reset')
@click.confirmation_option(prompt='Delete the rubric and all submissions?')
@pass_context
def reset(ctx):
    """Delete the rubric and every submission."""
    ctx.state.reset()
    console.print("State reset")


@main.command('serve')
@click.option('--host', default=None, help='Host to bind to (default: server.host)')
@click.option('--port', type=int, default=None, help='Port to bind to (default: server.port)')
@click.option('--debug', is_flag=True, help='Run in debug mode')
@pass_context
def serve(ctx, host, port, debug):
    """Run the JSON API server."""
    from .app import create_app, run_server

    sheets_dir = Path(get_config("storage.sheets_dir", ctx.configs, default=".markwise/answer_sheets"))
    app = create_app(ctx.state, sheets_dir=sheets_dir)
    run_server(
        app,
        host=host or get_config("server.host", ctx.configs, default="127.0.0.1"),
        port=port or get_config("server.port", ctx.configs, default=5000),
        debug=debug,
    )


def _print_submission(submission):
    console.print(f"\n[bold cyan]{submission.id}[/bold cyan] {submission.student_name} "
                  f"({submission.submission_date:%Y-%m-%d %H:%M})")
    result = submission.graded_result
    if result is None:
        console.print("[dim]Not graded yet[/dim]")
        return
    table = Table()
    table.add_column("#", justify="right")
    table.add_column("Question")
    table.add_column("Marks", justify="right")
    table.add_column("Status")
    table.add_column("Feedback")
    for index, q in enumerate(result.questions):
        status = q.dispute_status.value
        if q.resolution_comment:
            status = f"{status}: {q.resolution_comment}"
        table.add_row(str(index), q.question_number, f"{q.marks_awarded:g}/{q.max_marks:g}", status, q.feedback)
    console.print(table)
    console.print(f"Total: [bold]{result.total_marks_awarded:g}/{result.total_max_marks:g}[/bold] "
                  f"({result.percentage:.0f}%)")


if __name__ == "__main__":
    main()
