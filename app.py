"""
Flask Web Application for the Guided Flow Engine

JSON API consumed by the rendering layer. Each browser session owns its
own flow runs; progress is persisted in the session cookie so a reload
(or a server restart) resumes where the user left off.
"""

from collections import OrderedDict
from flask import Flask, jsonify, request, session
import logging
import os

from guided_flow.commands import (
    Advance,
    JumpTo,
    ResetFlow,
    Retreat,
    StartFlow,
    ToggleTag,
    UpdateAnswer,
)
from guided_flow.core.answer_store import AnswerStore
from guided_flow.core.flow_controller import FlowController
from guided_flow.core.flow_loader import available_flows, load_flow
from guided_flow.core.flow_submitter import FlowSubmitter
from guided_flow.persistence import LocalRecordStore, ProgressPersistence
from guided_flow.results import (
    AdvisoryRequired,
    ExternalCallFailed,
    FlowCompleted,
    FlowStarted,
    RedirectRequired,
    SubmissionAccepted,
    SubmissionFailed,
    TransitionResult,
)
from guided_flow.utils.display_helpers import build_progress_view, group_stages
from guided_flow.utils.helpers import generate_run_id

logger = logging.getLogger(__name__)


class SessionKeyValueStore:
    """Durable client-side store backed by the Flask session cookie."""

    PREFIX = 'progress:'

    def read(self, key):
        value = session.get(self.PREFIX + key)
        if value is None:
            return None
        if isinstance(value, bytes):
            return value
        return str(value).encode('utf-8')

    def write(self, key, value):
        session[self.PREFIX + key] = value.decode('utf-8')

    def delete(self, key):
        session.pop(self.PREFIX + key, None)


class SessionIdentity:
    """Identity lookup: the user id placed in the session by sign-in."""

    def get_current_user(self):
        return session.get('user_id')


def create_app(config=None):
    """
    Build the Flask app.

    Config keys:
        SECRET_KEY: session signing key (env GUIDED_FLOW_SECRET_KEY)
        RECORDS_DIR: LocalRecordStore directory (env GUIDED_FLOW_RECORDS_DIR)
        FLOWS_DIR: override directory for flow definitions
        RECORD_STORE: record store object (overrides RECORDS_DIR)
        MAX_ACTIVE_RUNS: in-memory runs kept before the least recently
            used is dropped (env GUIDED_FLOW_MAX_ACTIVE_RUNS)
    """
    app = Flask(__name__)
    app.config['SECRET_KEY'] = os.environ.get('GUIDED_FLOW_SECRET_KEY', 'guided-flow-dev-secret-key')
    app.config['RECORDS_DIR'] = os.environ.get('GUIDED_FLOW_RECORDS_DIR', 'outputs/records')
    app.config['FLOWS_DIR'] = None
    app.config['RECORD_STORE'] = None
    app.config['MAX_ACTIVE_RUNS'] = int(os.environ.get('GUIDED_FLOW_MAX_ACTIVE_RUNS', 1000))
    if config:
        app.config.update(config)

    flows = {
        flow_id: load_flow(flow_id, app.config['FLOWS_DIR'])
        for flow_id in available_flows(app.config['FLOWS_DIR'])
    }
    record_store = app.config['RECORD_STORE'] or LocalRecordStore(app.config['RECORDS_DIR'])
    store = SessionKeyValueStore()
    identity = SessionIdentity()

    # Active runs keyed by (browser session id, flow id), least recently used first.
    # Evicted runs resume from the session cookie on the next /start.
    active_runs = OrderedDict()
    app.extensions['guided_flow_runs'] = active_runs

    def run_key(flow_id):
        if 'sid' not in session:
            session['sid'] = generate_run_id(length=None)
        return (session['sid'], flow_id)

    def state_payload(controller):
        state = controller.state
        answers, _ = AnswerStore.to_json(state.answers)
        return {
            'flow_id': state.flow_id,
            'current_stage': state.current_stage,
            'high_water_mark': state.high_water_mark,
            'answers': answers,
            'can_advance': controller.can_advance(),
            'is_terminal': controller.is_terminal(),
            'progress': build_progress_view(controller.gating, state),
        }

    def result_payload(controller, result):
        if isinstance(result, TransitionResult):
            return jsonify({
                'success': True,
                'changed': result.changed,
                'reason': result.reason,
                'state': state_payload(controller),
            })
        if isinstance(result, AdvisoryRequired):
            return jsonify({
                'success': True,
                'changed': False,
                'advisory': {'code': result.code, 'message': result.message},
                'state': state_payload(controller),
            })
        if isinstance(result, FlowCompleted):
            return jsonify({
                'success': True,
                'changed': False,
                'completed': True,
                'state': state_payload(controller),
            })
        raise TypeError(f"Unexpected result type: {type(result).__name__}")

    def remember(flow_id, controller):
        key = run_key(flow_id)
        active_runs[key] = controller
        active_runs.move_to_end(key)
        while len(active_runs) > app.config['MAX_ACTIVE_RUNS']:
            evicted, _ = active_runs.popitem(last=False)
            logger.info(f"Evicted idle run for flow '{evicted[1]}'")

    def forget(flow_id):
        active_runs.pop(run_key(flow_id), None)

    def get_controller(flow_id):
        key = run_key(flow_id)
        controller = active_runs.get(key)
        if controller is not None:
            active_runs.move_to_end(key)
        return controller

    def unknown_flow(flow_id):
        return jsonify({'success': False, 'error': f"Unknown flow: {flow_id}"}), 404

    def dispatch(flow_id, command):
        if flow_id not in flows:
            return unknown_flow(flow_id)

        controller = get_controller(flow_id)
        if controller is None:
            return jsonify({'success': False, 'error': 'No active flow run'}), 400

        try:
            result = controller.handle(command)
            return result_payload(controller, result)
        except Exception as e:
            logger.error(f"Error handling {type(command).__name__} for '{flow_id}': {e}")
            return jsonify({'success': False, 'error': str(e)}), 500

    @app.route('/api/flows')
    def list_flows():
        """Available flows"""
        return jsonify({
            'success': True,
            'flows': [
                {'flow_id': flow.flow_id, 'title': flow.title, 'stages': len(flow.stages)}
                for flow in flows.values()
            ]
        })

    @app.route('/api/flows/<flow_id>/start', methods=['POST'])
    def start_flow(flow_id):
        """Enter a flow: resume persisted progress or start fresh"""
        if flow_id not in flows:
            return unknown_flow(flow_id)

        flow = flows[flow_id]
        controller = FlowController(
            flow,
            persistence=ProgressPersistence(store, flow),
            identity=identity,
        )
        result = controller.handle(StartFlow())

        if isinstance(result, RedirectRequired):
            return jsonify({'success': False, 'redirect': result.destination}), 401

        if isinstance(result, ExternalCallFailed):
            return jsonify({'success': False, 'error': result.reason, 'operation': result.operation}), 502

        remember(flow_id, controller)
        logger.info(f"Flow '{flow_id}' entered (resumed={result.resumed})")

        return jsonify({
            'success': True,
            'resumed': result.resumed if isinstance(result, FlowStarted) else False,
            'state': state_payload(controller),
        })

    @app.route('/api/flows/<flow_id>/state')
    def get_state(flow_id):
        """Current run state and progress view"""
        if flow_id not in flows:
            return unknown_flow(flow_id)

        controller = get_controller(flow_id)
        if controller is None:
            return jsonify({'success': False, 'error': 'No active flow run'}), 400

        payload = state_payload(controller)
        payload['chapters'] = group_stages(payload['progress'])
        return jsonify({'success': True, 'state': payload})

    @app.route('/api/flows/<flow_id>/answer', methods=['POST'])
    def update_answer(flow_id):
        """Set one answer field"""
        data = request.get_json(silent=True) or {}
        if not data.get('key'):
            return jsonify({'success': False, 'error': "Missing 'key'"}), 400
        return dispatch(flow_id, UpdateAnswer(key=data['key'], value=data.get('value')))

    @app.route('/api/flows/<flow_id>/toggle', methods=['POST'])
    def toggle_tag(flow_id):
        """Toggle one tag of a multi-select field"""
        data = request.get_json(silent=True) or {}
        if not data.get('key') or data.get('tag') is None:
            return jsonify({'success': False, 'error': "Missing 'key' or 'tag'"}), 400
        return dispatch(flow_id, ToggleTag(key=data['key'], tag=str(data['tag'])))

    @app.route('/api/flows/<flow_id>/advance', methods=['POST'])
    def advance(flow_id):
        """Move forward (gated)"""
        data = request.get_json(silent=True) or {}
        return dispatch(flow_id, Advance(acknowledge_advisory=bool(data.get('acknowledge_advisory'))))

    @app.route('/api/flows/<flow_id>/retreat', methods=['POST'])
    def retreat(flow_id):
        """Move back"""
        return dispatch(flow_id, Retreat())

    @app.route('/api/flows/<flow_id>/jump', methods=['POST'])
    def jump(flow_id):
        """Jump by stage id or display position"""
        data = request.get_json(silent=True) or {}
        if data.get('stage_id') is None and data.get('position') is None:
            return jsonify({'success': False, 'error': "Missing 'stage_id' or 'position'"}), 400
        return dispatch(flow_id, JumpTo(stage_id=data.get('stage_id'), position=data.get('position')))

    @app.route('/api/flows/<flow_id>/reset', methods=['POST'])
    def reset(flow_id):
        """Abandon the run; the client re-enters with /start"""
        response = dispatch(flow_id, ResetFlow())
        forget(flow_id)
        return response

    @app.route('/api/flows/<flow_id>/submit', methods=['POST'])
    def submit(flow_id):
        """Hand the completed run over to the record store"""
        if flow_id not in flows:
            return unknown_flow(flow_id)

        controller = get_controller(flow_id)
        if controller is None:
            return jsonify({'success': False, 'error': 'No active flow run'}), 400

        submitter = FlowSubmitter(flows[flow_id], record_store, persistence=controller.persistence)
        result = submitter.submit(controller.state, user_id=controller.user_id)

        if isinstance(result, SubmissionFailed):
            status = 502 if result.operation in ('insert', 'update') else 400
            return jsonify({'success': False, 'error': result.reason, 'operation': result.operation}), status

        if isinstance(result, SubmissionAccepted):
            forget(flow_id)
            return jsonify({
                'success': True,
                'record_id': result.record_id,
                'redirect': result.destination,
            })

        raise TypeError(f"Unexpected result type: {type(result).__name__}")

    return app


if __name__ == '__main__':
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    app = create_app()

    print("\n" + "="*60)
    print("GUIDED FLOW ENGINE - WEB API")
    print("="*60)
    print("\nServer starting...")
    print("Flows: http://localhost:5000/api/flows")
    print("\nPress Ctrl+C to stop the server")
    print("="*60 + "\n")

    app.run(debug=False, port=5000)
