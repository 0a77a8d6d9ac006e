"""Flask JSON API for grading, disputes and review."""

import asyncio
import logging
import mimetypes
from pathlib import Path
from typing import Optional

from flask import Blueprint, Flask, current_app, jsonify, request
from flask_cors import CORS

from .errors import ExamGradingError, ProviderError, SubmissionNotFoundError, ValidationError
from .grader import decode_answer_sheet
from .review import disputed_answers, question_centric_review, summary_stats
from .rubric_catalog import parse_rubric
from .state import GradingState, new_submission_id

LOG = logging.getLogger(__name__)

api = Blueprint('api', __name__, url_prefix='/api')


def _state() -> GradingState:
    return current_app.config['GRADING_STATE']


def _json_body() -> dict:
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def _number(data: dict, key: str) -> float:
    value = data.get(key)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValidationError(f"'{key}' must be a number")
    return value


@api.route('/rubric', methods=['GET'])
def get_rubric():
    rubric = _state().rubric
    return jsonify({
        'success': True,
        'rubric': rubric.model_dump(mode="json") if rubric else None
    })


@api.route('/rubric', methods=['PUT'])
def put_rubric():
    rubric = parse_rubric(_json_body())
    _state().set_rubric(rubric)
    return jsonify({'success': True, 'rubric': rubric.model_dump(mode="json")})


@api.route('/submissions', methods=['GET'])
def list_submissions():
    """All submissions, or one student's newest first with ?student=NAME."""
    state = _state()
    student = request.args.get('student')
    if student:
        submissions = state.registry.filter_by_student(student, newest_first=True)
    else:
        submissions = list(state.registry)
    return jsonify({
        'success': True,
        'submissions': [s.model_dump(mode="json") for s in submissions]
    })


@api.route('/submissions', methods=['POST'])
def register_submission():
    data = _json_body()
    submission = _state().register_submission(
        student_name=data.get('student_name', ''),
        answer_sheet_ref=data.get('answer_sheet_ref', ''),
        mime_type=data.get('mime_type', 'image/png'),
    )
    return jsonify({'success': True, 'submission': submission.model_dump(mode="json")}), 201


@api.route('/submissions/upload', methods=['POST'])
def upload_submission():
    """Upload an answer sheet and grade it; the submission exists only if grading succeeds.

    Accepts either a multipart form (``answer_sheet`` file, ``student_name``) or a
    JSON body with ``student_name``, ``mime_type`` and ``image_base64``.
    """
    if request.is_json:
        data = _json_body()
        if not data.get('image_base64'):
            raise ValidationError("Missing 'image_base64'")
        student_name = data.get('student_name', '')
        mime_type = data.get('mime_type', '')
        image = decode_answer_sheet(data['image_base64'])
    else:
        upload = request.files.get('answer_sheet')
        if upload is None:
            raise ValidationError("Missing 'answer_sheet' file")
        student_name = request.form.get('student_name', '')
        mime_type = upload.mimetype or mimetypes.guess_type(upload.filename or '')[0] or ''
        image = upload.read()

    submission_id = new_submission_id()
    sheet_path: Optional[Path] = None
    sheets_dir = current_app.config.get('SHEETS_DIR')
    if sheets_dir:
        suffix = mimetypes.guess_extension(mime_type) or ''
        sheet_path = Path(sheets_dir) / f"{submission_id}{suffix}"
        sheet_path.parent.mkdir(parents=True, exist_ok=True)
        sheet_path.write_bytes(image)

    try:
        submission = asyncio.run(_state().submit_and_grade(
            student_name=student_name,
            image=image,
            mime_type=mime_type,
            answer_sheet_ref=str(sheet_path) if sheet_path else '',
            submission_id=submission_id,
        ))
    except ExamGradingError:
        if sheet_path is not None and sheet_path.exists():
            sheet_path.unlink()
        raise
    return jsonify({'success': True, 'submission': submission.model_dump(mode="json")}), 201


@api.route('/submissions/<submission_id>', methods=['GET'])
def get_submission(submission_id: str):
    submission = _state().registry.get(submission_id)
    return jsonify({'success': True, 'submission': submission.model_dump(mode="json")})


@api.route('/submissions/<submission_id>/grade', methods=['POST'])
def grade_submission(submission_id: str):
    submission = asyncio.run(_state().grade_submission(submission_id))
    return jsonify({'success': True, 'submission': submission.model_dump(mode="json")})


@api.route('/submissions/<submission_id>/questions/<int:question_index>/dispute', methods=['POST'])
def toggle_dispute(submission_id: str, question_index: int):
    question = _state().toggle_dispute(submission_id, question_index)
    return _question_response(submission_id, question)


@api.route('/submissions/<submission_id>/questions/<int:question_index>/resolve', methods=['POST'])
def resolve_dispute(submission_id: str, question_index: int):
    data = _json_body()
    question = _state().resolve_dispute(
        submission_id, question_index, _number(data, 'marks'), data.get('comment', '')
    )
    return _question_response(submission_id, question)


@api.route('/submissions/<submission_id>/questions/<int:question_index>/marks', methods=['PUT'])
def set_marks(submission_id: str, question_index: int):
    data = _json_body()
    question = _state().set_marks(submission_id, question_index, _number(data, 'marks'))
    return _question_response(submission_id, question)


def _question_response(submission_id: str, question):
    result = _state().registry.get(submission_id).graded_result
    return jsonify({
        'success': True,
        'question': question.model_dump(mode="json"),
        'total_marks_awarded': result.total_marks_awarded,
        'total_max_marks': result.total_max_marks,
    })


@api.route('/review/questions', methods=['GET'])
def review_questions():
    state = _state()
    reviews = question_centric_review(state.rubric, state.registry)
    return jsonify({'success': True, 'questions': [r.to_dict() for r in reviews]})


@api.route('/review/disputes', methods=['GET'])
def review_disputes():
    answers = disputed_answers(_state().registry)
    return jsonify({'success': True, 'disputes': [a.to_dict() for a in answers]})


@api.route('/summary', methods=['GET'])
def summary():
    return jsonify({'success': True, 'summary': summary_stats(_state().registry)})


def _error_response(error: ExamGradingError):
    if isinstance(error, SubmissionNotFoundError):
        status = 404
    elif isinstance(error, ValidationError):
        status = 400
    elif isinstance(error, ProviderError):
        status = 502
    else:
        status = 500
    LOG.warning("Request failed (%s): %s", status, error)
    return jsonify({'success': False, 'error': str(error)}), status


def create_app(state: GradingState, sheets_dir: Optional[Path] = None) -> Flask:
    """
    Create and configure the Flask app.

    Args:
        state: GradingState shared by every request
        sheets_dir: Where uploaded answer sheets are written (optional)
    """
    app = Flask(__name__)
    app.config['GRADING_STATE'] = state
    app.config['SHEETS_DIR'] = sheets_dir
    CORS(app)
    app.register_blueprint(api)
    app.register_error_handler(ExamGradingError, _error_response)

    LOG.info("Flask app created and configured")
    return app


def run_server(app: Flask, host: str = '127.0.0.1', port: int = 5000, debug: bool = False):
    """Run the development server on a single thread; mutations assume one writer."""
    LOG.info(f"Starting server on http://{host}:{port}")
    app.run(host=host, port=port, debug=debug, threaded=False)
