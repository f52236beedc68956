"""
Flask JSON surface for the clinical forms core

Thin collaborator over DocumentStateManager and the window calculator:
routes translate HTTP to core calls and core errors to JSON responses.
Forms are held in memory on the app instance.
"""

import logging
from datetime import datetime
from typing import Any, Dict, Optional

from flask import Flask, current_app, jsonify, request

from caseforms.contracts import FormVariant
from caseforms.core.document_state import DocumentStateManager
from caseforms.core.section_navigator import SectionNavigator
from caseforms.core.window_calculator import compute_windows_for_document
from caseforms.errors import (
    DocumentSubmittedError,
    FormStateError,
    InvalidTimeInput,
    PatchRejected,
    RecordNotFound,
    SubmissionBlocked,
    UnknownSectionPath,
)
from caseforms.utils.display_helpers import format_field_name, format_status, format_windows_for_display

logger = logging.getLogger(__name__)

DEFAULT_CONFIG = {
    'FORMS_DATA_DIR': None,
    'JSON_SORT_KEYS': False,
}

# Core error -> HTTP status
ERROR_STATUS = (
    (PatchRejected, 400),
    (InvalidTimeInput, 400),
    (SubmissionBlocked, 400),
    (UnknownSectionPath, 404),
    (RecordNotFound, 404),
    (DocumentSubmittedError, 409),
)


class FormNotFound(FormStateError, LookupError):
    """No form with this id in the registry"""

    def __init__(self, form_id: str):
        self.form_id = form_id
        super().__init__(f"Form {form_id} does not exist")


def _registry() -> Dict[str, DocumentStateManager]:
    return current_app.extensions['caseforms']


def _get_manager(form_id: str) -> DocumentStateManager:
    manager = _registry().get(form_id)
    if manager is None:
        raise FormNotFound(form_id)
    return manager


def _form_payload(manager: DocumentStateManager) -> Dict[str, Any]:
    status = manager.completion_status()
    return {
        'success': True,
        'form': manager.get_document(),
        'completion_status': status.value,
        'completion_label': format_status(status),
        'highest_status_reached': manager.highest_status_reached.value,
    }


def _error_response(e: Exception):
    """Map a core error to a JSON error response"""
    if isinstance(e, FormNotFound):
        return jsonify({'success': False, 'error': str(e)}), 404

    for error_type, status_code in ERROR_STATUS:
        if isinstance(e, error_type):
            body = {'success': False, 'error': str(e)}
            if isinstance(e, PatchRejected):
                body['errors'] = e.errors
            if isinstance(e, SubmissionBlocked):
                body['missing_fields'] = e.missing_fields
            return jsonify(body), status_code

    logger.error(f"Unhandled form error: {e}")
    return jsonify({'success': False, 'error': str(e)}), 500


def _json_body(default: Optional[dict] = None) -> Any:
    data = request.get_json(silent=True)
    return default if data is None else data


def _parse_now(value: Optional[str]) -> datetime:
    if not value:
        return datetime.now().astimezone()
    try:
        return datetime.fromisoformat(value.replace('Z', '+00:00'))
    except ValueError as e:
        raise InvalidTimeInput(value, str(e)) from e


def register_routes(app: Flask) -> None:

    @app.route('/api/forms', methods=['POST'])
    def create_form():
        """Create a new empty form"""
        try:
            data = _json_body({})
            try:
                variant = FormVariant(data.get('variant'))
            except ValueError:
                choices = ', '.join(v.value for v in FormVariant)
                return jsonify({
                    'success': False,
                    'error': f"Unknown variant {data.get('variant')!r} (expected one of {choices})"
                }), 400

            manager = DocumentStateManager(
                variant,
                case_id=data.get('case_id', ''),
                incident_id=data.get('incident_id', ''),
                data_dir=current_app.config.get('FORMS_DATA_DIR'),
            )
            _registry()[manager.form_id] = manager
            return jsonify(_form_payload(manager)), 201

        except FormStateError as e:
            return _error_response(e)
        except Exception as e:
            logger.error(f"Error creating form: {e}")
            return jsonify({'success': False, 'error': str(e)}), 500

    @app.route('/api/forms/<form_id>', methods=['GET'])
    def get_form(form_id):
        """Current document and status"""
        try:
            return jsonify(_form_payload(_get_manager(form_id)))
        except FormStateError as e:
            return _error_response(e)

    @app.route('/api/forms/<form_id>/sections/<section_path>', methods=['PATCH'])
    def patch_section(form_id, section_path):
        """Merge a partial update into one section"""
        try:
            manager = _get_manager(form_id)
            manager.patch(section_path, _json_body({}))
            return jsonify(_form_payload(manager))
        except FormStateError as e:
            return _error_response(e)
        except Exception as e:
            logger.error(f"Error patching {section_path}: {e}")
            return jsonify({'success': False, 'error': str(e)}), 500

    @app.route('/api/forms/<form_id>/records/<list_path>', methods=['POST'])
    def append_record(form_id, list_path):
        """Append a record (empty body = template defaults)"""
        try:
            manager = _get_manager(form_id)
            index = manager.append_record(list_path, _json_body({}))
            payload = _form_payload(manager)
            payload['index'] = index
            payload['record'] = manager.get_section(list_path)[index]
            return jsonify(payload), 201
        except FormStateError as e:
            return _error_response(e)
        except Exception as e:
            logger.error(f"Error appending to {list_path}: {e}")
            return jsonify({'success': False, 'error': str(e)}), 500

    @app.route('/api/forms/<form_id>/records/<list_path>/<int:index>', methods=['PATCH'])
    def update_record(form_id, list_path, index):
        """Merge a partial update into one record"""
        try:
            manager = _get_manager(form_id)
            record = manager.update_record(list_path, index, _json_body({}))
            payload = _form_payload(manager)
            payload['record'] = record
            return jsonify(payload)
        except FormStateError as e:
            return _error_response(e)
        except Exception as e:
            logger.error(f"Error updating {list_path}[{index}]: {e}")
            return jsonify({'success': False, 'error': str(e)}), 500

    @app.route('/api/forms/<form_id>/records/<list_path>/<int:index>', methods=['DELETE'])
    def remove_record(form_id, list_path, index):
        """Remove one record (?renumber=1 renumbers serial numbers)"""
        try:
            manager = _get_manager(form_id)
            renumber = request.args.get('renumber', '').lower() in ('1', 'true', 'yes')
            removed = manager.remove_record(list_path, index, renumber=renumber)
            payload = _form_payload(manager)
            payload['removed'] = removed
            return jsonify(payload)
        except FormStateError as e:
            return _error_response(e)
        except Exception as e:
            logger.error(f"Error removing {list_path}[{index}]: {e}")
            return jsonify({'success': False, 'error': str(e)}), 500

    @app.route('/api/forms/<form_id>/validation', methods=['GET'])
    def validation(form_id):
        """Missing required fields per section and the submission checklist"""
        try:
            manager = _get_manager(form_id)
            navigator = SectionNavigator(manager.rules)
            document = manager.get_document()
            errors_by_section = manager.validation_errors_by_section()
            return jsonify({
                'success': True,
                'errors_by_section': errors_by_section,
                'labels_by_section': {
                    section_id: [format_field_name(path) for path in paths]
                    for section_id, paths in errors_by_section.items()
                },
                'missing_for_submission': manager.validate_for_submission(),
                'sections': navigator.section_progress(document),
            })
        except FormStateError as e:
            return _error_response(e)

    @app.route('/api/forms/<form_id>/submit', methods=['POST'])
    def submit(form_id):
        """Run the submission checklist and submit"""
        try:
            manager = _get_manager(form_id)
            navigator = SectionNavigator(manager.rules)
            check = navigator.gate_submission(manager.get_document())
            if not check.ok:
                return jsonify({
                    'success': False,
                    'error': str(SubmissionBlocked(check.missing_fields)),
                    'missing_fields': list(check.missing_fields),
                    'first_failing_section': check.first_failing_section,
                }), 400

            manager.submit()
            return jsonify(_form_payload(manager))
        except FormStateError as e:
            return _error_response(e)
        except Exception as e:
            logger.error(f"Error submitting form {form_id}: {e}")
            return jsonify({'success': False, 'error': str(e)}), 500

    @app.route('/api/forms/<form_id>/windows', methods=['GET'])
    def windows(form_id):
        """PEP / EC windows for the form's incident time (?now= overrides the clock)"""
        try:
            manager = _get_manager(form_id)
            now = _parse_now(request.args.get('now'))
            result = compute_windows_for_document(manager.variant, manager.get_document(), now)
            if result is None:
                return jsonify({'success': True, 'windows': None, 'display': None})
            return jsonify({
                'success': True,
                'windows': result.to_dict(),
                'display': format_windows_for_display(result),
            })
        except FormStateError as e:
            return _error_response(e)


def create_app(config: Optional[Dict[str, Any]] = None) -> Flask:
    """
    Build the Flask app.

    Args:
        config: Overrides for DEFAULT_CONFIG (FORMS_DATA_DIR,
            JSON_SORT_KEYS, TESTING, ...)

    Returns:
        Flask: App with an empty in-memory form registry
    """
    app = Flask(__name__)
    app.config.update(DEFAULT_CONFIG)
    if config:
        app.config.update(config)

    app.json.sort_keys = app.config['JSON_SORT_KEYS']
    app.extensions['caseforms'] = {}

    register_routes(app)
    logger.info("Caseforms app created")
    return app


if __name__ == '__main__':
    # Configure logging
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    app = create_app()

    print("\n" + "="*60)
    print("CLINICAL FORMS CORE - JSON API")
    print("="*60)
    print("\nServer starting on http://localhost:5000")
    print("\nPress Ctrl+C to stop the server")
    print("="*60 + "\n")

    app.run(debug=True, host='0.0.0.0', port=5000)
