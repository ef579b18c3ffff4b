"""
Limit Behavior Engine — Dashboard Backend
===========================================
Flask REST API for evaluation, runs and storage housekeeping, plus
Flask-SocketIO events driving the live simulation session.

Uses a shared threading lock so the session is not ticked by the
broadcast loop and modified by a socket event simultaneously.
"""

import threading
import time

from flask import Flask, jsonify, request
from flask_socketio import SocketIO, emit

from limit_engine.config import (
    SECRET_KEY, STATE_CATALOG, PARAM_RANGES, TICK_INTERVAL,
    DEFAULT_RUN_CONFIGURATION, SystemState,
)
from limit_engine.engine import evaluate, config_to_dict
from limit_engine.schemas import (
    ValidationError, parse_evaluate_request, parse_create_run,
    parse_update_run, parse_add_steps,
)
from limit_engine.simulator import SimulationHalted, NoActiveRun

app = Flask(__name__)
app.config['SECRET_KEY'] = SECRET_KEY
socketio = SocketIO(app, cors_allowed_origins="*", async_mode='threading')

# Global references (set by main.py)
storage = None
storage_manager = None
memory_limit = None
session = None
session_lock = None   # threading.Lock from main.py


def init_dashboard(db_storage, manager, mem_limit, sim_session, lock=None):
    global storage, storage_manager, memory_limit, session, session_lock
    storage = db_storage
    storage_manager = manager
    memory_limit = mem_limit
    session = sim_session
    session_lock = lock or threading.Lock()


def _not_found():
    return jsonify({'message': 'Run not found'}), 404


@app.errorhandler(ValidationError)
def handle_validation_error(err):
    return jsonify(err.to_dict()), 400


# ── Engine Routes ───────────────────────────────────────────

@app.route('/')
def index():
    return jsonify({
        'service': 'limit-behavior-engine',
        'endpoints': sorted(str(r) for r in app.url_map.iter_rules()
                            if str(r).startswith('/api/')),
    })


@app.route('/api/states')
def api_states():
    return jsonify(STATE_CATALOG)


@app.route('/api/engine/evaluate', methods=['POST'])
def api_evaluate():
    data = parse_evaluate_request(request.get_json(silent=True))
    config = session.config if session else None
    try:
        result = evaluate(data['energy'], data['trend'], data['noise'],
                          previous_state=data['previousState'], config=config)
        step = {
            'energy': data['energy'],
            'trend': data['trend'],
            'noise': data['noise'],
            'effectiveEnergy': result.effective_energy,
            'calculatedState': result.state,
        }

        if data['command'] == 'start_new':
            configuration = {
                key: data[key] if data[key] is not None else default
                for key, default in DEFAULT_RUN_CONFIGURATION.items()
            }
            run = storage.create_run(
                name=data['name'] or f"Run {int(time.time() * 1000)}",
                description=data['description'] or "New simulation run",
                configuration=configuration,
            )
            storage.add_steps(run['id'], [{**step, 'stepIndex': 0, 'timestamp': time.time()}])
            return jsonify({**result.to_dict(), 'runId': run['id'], 'action': 'started_new'})

        if data['runId'] is not None:
            if storage.get_run(data['runId']) is None:
                return _not_found()
            storage.add_steps(data['runId'], [{
                **step,
                'stepIndex': data['stepIndex'] or 0,
                'timestamp': data['timestamp'] if data['timestamp'] is not None else time.time(),
            }])

        return jsonify(result.to_dict())
    except Exception as e:
        print(f"[API] Evaluate error: {e}")
        return jsonify({'error': str(e) or 'Evaluation failed', 'details': repr(e)}), 500


# ── Simulation Run Routes ───────────────────────────────────

@app.route('/api/runs', methods=['GET'])
def api_list_runs():
    return jsonify(storage.get_runs())


@app.route('/api/runs', methods=['POST'])
def api_create_run():
    data = parse_create_run(request.get_json(silent=True))
    run = storage.create_run(**data)
    # Enforce storage limits after creating a new run
    storage_manager.enforce_limits()
    return jsonify(run), 201


@app.route('/api/runs/<int:run_id>', methods=['GET'])
def api_get_run(run_id):
    run = storage.get_run(run_id)
    if run is None:
        return _not_found()
    return jsonify({'run': run, 'steps': storage.get_run_steps(run_id)})


@app.route('/api/runs/<int:run_id>', methods=['PATCH'])
def api_update_run(run_id):
    if storage.get_run(run_id) is None:
        return _not_found()
    data = parse_update_run(request.get_json(silent=True))
    run = storage.update_run(run_id, **data)
    if run is None:
        return _not_found()
    return jsonify(run)


@app.route('/api/runs/<int:run_id>/steps', methods=['POST'])
def api_add_steps(run_id):
    if storage.get_run(run_id) is None:
        return _not_found()
    steps = parse_add_steps(request.get_json(silent=True))
    count = storage.add_steps(run_id, steps)
    return jsonify({'count': count}), 201


# ── Debug & Memory Routes ───────────────────────────────────

@app.route('/api/debug/runs')
def api_debug_runs():
    return jsonify({
        'runsCount': storage.count_runs(),
        'stepsCount': storage.count_steps(),
        'runs': storage.get_runs(),
        'steps': storage.get_steps(limit=5),
        'dbPath': storage.url,
        'engine': config_to_dict(session.config) if session else None,
    })


def _mb(num_bytes):
    return f"{num_bytes / 1024 / 1024:.2f}"


@app.route('/api/memory/stats')
def api_memory_stats():
    stats = memory_limit.get_detailed_stats()
    return jsonify({
        **stats,
        'currentSizeMB': _mb(stats['currentSize']),
        'maxSizeMB': _mb(stats['maxSize']),
    })


@app.route('/api/memory/cleanup', methods=['POST'])
def api_memory_cleanup():
    deleted = memory_limit.enforce_memory_limit()
    stats = memory_limit.get_detailed_stats()
    return jsonify({
        'message': 'Memory cleanup completed',
        'deletedRuns': deleted,
        'stats': {
            'currentSizeMB': _mb(stats['currentSize']),
            'maxSizeMB': _mb(stats['maxSize']),
            'usagePercent': f"{stats['usagePercent']:.2f}",
            'runCount': stats['runCount'],
            'stepCount': stats['stepCount'],
        },
    })


# ── WebSocket Events ─────────────────────────────────────────

@socketio.on('connect')
def on_connect():
    if session:
        with session_lock:
            emit('sim_state', session.snapshot())
    emit('state_catalog', STATE_CATALOG)
    emit('sim_config', {
        'param_ranges': PARAM_RANGES,
        'tick_interval': TICK_INTERVAL,
    })


@socketio.on('set_parameters')
def on_set_parameters(data):
    if not session:
        return
    data = data or {}
    with session_lock:
        params = session.set_parameters(
            energy=data.get('energy'),
            trend=data.get('trend'),
            noise=data.get('noise'),
        )
    emit('parameters_set', params)


@socketio.on('start_simulation')
def on_start_simulation(data=None):
    if not session:
        return
    name = (data or {}).get('name')
    try:
        with session_lock:
            session.start(name=name)
            snapshot = session.snapshot()
    except SimulationHalted as e:
        emit('error', {'message': str(e)})
        return
    socketio.emit('sim_state', snapshot)


@socketio.on('pause_simulation')
def on_pause_simulation(data=None):
    if not session:
        return
    with session_lock:
        session.pause()
        snapshot = session.snapshot()
    socketio.emit('sim_state', snapshot)


@socketio.on('reset_simulation')
def on_reset_simulation(data=None):
    if not session:
        return
    with session_lock:
        session.reset()
        snapshot = session.snapshot()
    socketio.emit('sim_state', snapshot)


@socketio.on('save_run')
def on_save_run(data=None):
    if not session:
        return
    try:
        with session_lock:
            saved = session.save((data or {}).get('name'))
            snapshot = session.snapshot()
    except NoActiveRun as e:
        emit('save_failed', {'message': str(e)})
        return
    emit('run_saved', saved)
    socketio.emit('sim_state', snapshot)


# ── Background Simulation Loop ──────────────────────────────

def run_simulation_tick():
    """Advance the session one tick if it is running and broadcast the result."""
    if not session:
        return None
    with session_lock:
        if not session.is_running:
            return None
        try:
            out = session.tick()
        except Exception as e:
            print(f"[Sim] Simulation error: {e}")
            session.pause()
            socketio.emit('error', {'message': str(e)})
            return None

    socketio.emit('tick', out)
    if out['state'] == SystemState.SYSTEM_SHOULD_HALT:
        print(f"[Sim] Halt at step {out['step']['stepIndex']} (run {out['runId']})")
        socketio.emit('system_halt', {
            'runId': out['runId'],
            'stepIndex': out['step']['stepIndex'],
            'details': out['details'],
        })
    return out


def start_broadcast_thread():
    def simulation_loop():
        while True:
            run_simulation_tick()
            socketio.sleep(TICK_INTERVAL)

    socketio.start_background_task(simulation_loop)


def run_dashboard(host='0.0.0.0', port=5001):
    start_broadcast_thread()
    socketio.run(app, host=host, port=port, debug=False, allow_unsafe_werkzeug=True)
