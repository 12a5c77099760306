"""
api_server.py
~~~~~~~~~~~~~

Flask-based REST API server with WebSocket support for CMYK -> RGB
network training.

This module provides endpoints for:
- Creating and managing CMYK -> RGB networks
- Training networks on pixel patterns with real-time loss updates via WebSockets
- Converting CMYK pixels with a trained network
- Persisting networks to/from the SQLite store

The server uses:
- Flask for REST API endpoints
- Flask-SocketIO for WebSocket communication
- Gevent for async background training tasks
- Matplotlib for loss curve plots
"""

import sys
import uuid
import base64
import logging
from io import BytesIO
from typing import Dict, Any, List, Optional

import gevent
from flask import Flask, request, jsonify
from flask_cors import CORS
from flask_socketio import SocketIO

# Use non-GUI backend for matplotlib (required for server environments)
import matplotlib
matplotlib.use('Agg')
import matplotlib.pyplot as plt

from libcmyk.config import TrainingDefaults, configure_logging, load_settings
from libcmyk.converter import Converter
from libcmyk.errors import NetworkError
from libcmyk.network import FeedForward
from libcmyk.patterns import CHANNEL_MAX, CMYK_CHANNELS, RGB_CHANNELS
from libcmyk.model_persistence import (
    save_network,
    load_network,
    list_saved_networks,
    delete_network,
    delete_old_networks
)

# ============================================================================
# LOGGING SETUP
# ============================================================================

settings = load_settings()
configure_logging(settings)
logger = logging.getLogger(__name__)

# ============================================================================
# FLASK APP SETUP
# ============================================================================

app = Flask(__name__)
CORS(app, resources={r"/*": {"origins": "*"}})

# SocketIO enables real-time communication (WebSockets) for training updates
socketio = SocketIO(
    app,
    cors_allowed_origins="*",
    async_mode='gevent',
    logger=not settings.is_production,
    engineio_logger=not settings.is_production,
    ping_timeout=60,
    ping_interval=25
)

# ============================================================================
# GLOBAL STATE
# ============================================================================

# Directory holding the SQLite store
MODEL_DIR = settings.model_dir

# Networks currently loaded in memory: {network_id: network_info}
active_networks: Dict[str, Dict[str, Any]] = {}

# Training jobs being tracked: {job_id: job_info}
training_jobs: Dict[str, Dict[str, Any]] = {}

# Upper bound on passes per training request
MAX_ITERATIONS = 100000

# Upper bounds on the size of a created network
MAX_HIDDEN_SIZE = 1024
MAX_CONTEXT_WINDOW = 256

# Job statuses that still hold a network's weights
RUNNING_STATUSES = ('pending', 'training')


def _network_info(net: FeedForward, trained: bool = False, loss=None) -> Dict[str, Any]:
    return {
        'network': net,
        'architecture': net.sizes,
        'context_window': net.context_window,
        'trained': trained,
        'loss': loss,
        'loss_history': []
    }


def reload_saved_networks() -> None:
    """
    Reload all saved networks from the store into memory.

    Called at startup so networks saved before a restart are available
    again.
    """
    saved_networks = list_saved_networks(MODEL_DIR)

    if not saved_networks:
        logger.info("No saved networks to reload")
        return

    loaded_count = 0
    for net_info in saved_networks:
        network_id = net_info['network_id']
        try:
            net = load_network(network_id, MODEL_DIR)
        except NetworkError as e:
            logger.error(f"Skipping unreadable network {network_id}: {e}")
            continue

        if net is None:
            logger.warning(f"Failed to load network {network_id}")
            continue

        active_networks[network_id] = _network_info(
            net, net_info['trained'], net_info['loss']
        )
        loaded_count += 1

    logger.info(f"Reloaded {loaded_count} network(s) from database")


# ============================================================================
# BACKGROUND TASKS
# ============================================================================

# Flag to ensure cleanup task only starts once
_cleanup_task_started = False

CLEANUP_INTERVAL = 86400  # 24 hours
CLEANUP_RETRY_INTERVAL = 3600
CLEANUP_MAX_AGE_DAYS = 2


def cleanup_old_networks_task() -> None:
    """
    Periodically delete stale networks from the store and memory.

    Runs immediately, then every CLEANUP_INTERVAL seconds.
    """
    while True:
        deleted_count = delete_old_networks(CLEANUP_MAX_AGE_DAYS, MODEL_DIR)

        if deleted_count < 0:
            logger.error("Network cleanup failed, retrying in an hour")
            gevent.sleep(CLEANUP_RETRY_INTERVAL)
            continue

        if deleted_count > 0:
            saved_ids = {net['network_id'] for net in list_saved_networks(MODEL_DIR)}
            stale = [
                nid for nid, info in active_networks.items()
                if nid not in saved_ids and info['trained']
            ]
            for nid in stale:
                del active_networks[nid]
            logger.info(
                f"Cleanup completed: deleted {deleted_count} network(s), "
                f"dropped {len(stale)} from memory"
            )

        cleanup_finished_training_jobs()
        gevent.sleep(CLEANUP_INTERVAL)


def cleanup_finished_training_jobs() -> None:
    """Remove completed or failed training jobs from memory."""
    finished_statuses = {'completed', 'failed'}
    jobs_to_remove = [
        job_id for job_id, job_info in training_jobs.items()
        if job_info.get('status') in finished_statuses
    ]

    for job_id in jobs_to_remove:
        del training_jobs[job_id]

    if jobs_to_remove:
        logger.info(f"Cleaned up {len(jobs_to_remove)} finished training job(s)")


def start_cleanup_task() -> None:
    """Start the background cleanup greenlet. Idempotent."""
    global _cleanup_task_started

    if _cleanup_task_started:
        logger.debug("Cleanup task already started, skipping")
        return

    _cleanup_task_started = True
    logger.info("Starting cleanup task (runs immediately, then every 24 hours)")
    gevent.spawn(cleanup_old_networks_task)


# ============================================================================
# HELPER FUNCTIONS
# ============================================================================

def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _is_positive_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value >= 1


def _running_job(network_id: str) -> Optional[str]:
    """Return the id of an unfinished training job on ``network_id``, if any."""
    for job_id, job in training_jobs.items():
        if job['network_id'] == network_id and job['status'] in RUNNING_STATUSES:
            return job_id
    return None


def parse_patterns(raw: Any, net: FeedForward) -> List[List[List[float]]]:
    """
    Validate a JSON list of [input, target] pairs against a network's shape.

    Raises:
        ValueError: With a message suitable for a 400 response
    """
    if not isinstance(raw, list) or not raw:
        raise ValueError('patterns must be a non-empty list of [input, target] pairs')

    n_features = net.sizes[0]
    patterns = []
    for index, pattern in enumerate(raw):
        if not isinstance(pattern, list) or len(pattern) != 2:
            raise ValueError(f'pattern {index} must be an [input, target] pair')

        inputs, targets = pattern
        if (not isinstance(inputs, list) or len(inputs) != n_features
                or not all(_is_number(v) for v in inputs)):
            raise ValueError(f'pattern {index}: input must be {n_features} numbers')
        if (not isinstance(targets, list) or len(targets) != net.n_outputs
                or not all(_is_number(v) for v in targets)):
            raise ValueError(f'pattern {index}: target must be {net.n_outputs} numbers')

        patterns.append([inputs, targets])
    return patterns


def create_loss_plot(losses: List[float], title: str) -> str:
    """
    Render a loss history as a base64-encoded PNG.

    Args:
        losses: Per-pass loss values
        title: Plot title

    Returns:
        Base64-encoded PNG image string
    """
    fig, ax = plt.subplots(figsize=(5, 3))
    ax.plot(range(1, len(losses) + 1), losses)
    ax.set_xlabel('Iteration')
    ax.set_ylabel('Loss')
    ax.set_title(title)

    # Save image to a bytes buffer instead of a file
    buffer = BytesIO()
    fig.savefig(buffer, format='png', bbox_inches='tight')
    plt.close(fig)

    return base64.b64encode(buffer.getvalue()).decode('utf-8')


@app.errorhandler(NetworkError)
def handle_network_error(e: NetworkError):
    logger.warning(f"Request failed: {e}")
    return jsonify({'error': str(e)}), 400


# ============================================================================
# API ENDPOINTS
# ============================================================================

@app.route('/api/status', methods=['GET'])
def get_status():
    """Return server status with counts of networks and active training jobs."""
    active_statuses = ('pending', 'training')
    active_training = sum(
        1 for job in training_jobs.values()
        if job.get('status') in active_statuses
    )

    return jsonify({
        'status': 'online',
        'active_networks': len(active_networks),
        'training_jobs': active_training
    }), 200


@app.route('/api/networks', methods=['POST'])
def create_network():
    """
    Create a new CMYK -> RGB network.

    Request body (all optional):
        {
            'hidden_size': 12,
            'output_size': 3,      # 3 for RGB, 4 for RGB + alpha
            'context_window': 0,
            'seed': null
        }

    Returns:
        JSON with network_id, architecture, and status
    """
    data = request.get_json(silent=True) or {}
    hidden_size = data.get('hidden_size', TrainingDefaults.n_hiddens)
    output_size = data.get('output_size', TrainingDefaults.n_outputs)
    context_window = data.get('context_window', TrainingDefaults.context_window)
    seed = data.get('seed')

    if not _is_positive_int(hidden_size) or hidden_size > MAX_HIDDEN_SIZE:
        return jsonify({
            'error': f'hidden_size must be an integer between 1 and {MAX_HIDDEN_SIZE}'
        }), 400
    if not _is_positive_int(output_size) or output_size not in (RGB_CHANNELS, RGB_CHANNELS + 1):
        return jsonify({'error': 'output_size must be 3 or 4'}), 400
    if not isinstance(context_window, int) or isinstance(context_window, bool) \
            or not 0 <= context_window <= MAX_CONTEXT_WINDOW:
        return jsonify({
            'error': f'context_window must be an integer between 0 and {MAX_CONTEXT_WINDOW}'
        }), 400
    if seed is not None and (not isinstance(seed, int) or isinstance(seed, bool) or seed < 0):
        return jsonify({'error': 'seed must be a non-negative integer'}), 400

    network_id = str(uuid.uuid4())
    net = FeedForward(
        CMYK_CHANNELS, hidden_size, output_size,
        weight_range=TrainingDefaults.weight_range,
        seed=seed
    )
    if context_window:
        net.set_contexts(context_window)

    active_networks[network_id] = _network_info(net)
    logger.info(
        f"Created network {network_id} with architecture {net.sizes}, "
        f"context window {context_window}"
    )

    return jsonify({
        'network_id': network_id,
        'architecture': net.sizes,
        'context_window': context_window,
        'status': 'created'
    }), 201


@app.route('/api/networks/<network_id>/train', methods=['POST'])
def train_network(network_id: str):
    """
    Start training a network in the background.

    Request body:
        {
            'patterns': [[[c, m, y, k], [r, g, b]], ...],   # values in [0, 1]
            'iterations': 2,
            'learning_rate': 0.6,
            'momentum': 0.4
        }

    Returns:
        JSON with job_id, network_id, and status; 409 while the network
        already has an unfinished job
    """
    if network_id not in active_networks:
        logger.warning(f"Training requested for non-existent network: {network_id}")
        return jsonify({'error': 'Network not found'}), 404

    running = _running_job(network_id)
    if running is not None:
        logger.warning(f"Network {network_id} is already training in job {running}")
        return jsonify({
            'error': 'Network is already training',
            'job_id': running
        }), 409

    net = active_networks[network_id]['network']
    data = request.get_json(silent=True) or {}
    iterations = data.get('iterations', TrainingDefaults.iterations)
    learning_rate = data.get('learning_rate', TrainingDefaults.learning_rate)
    momentum = data.get('momentum', TrainingDefaults.momentum)

    if not _is_positive_int(iterations) or iterations > MAX_ITERATIONS:
        return jsonify({
            'error': f'iterations must be an integer between 1 and {MAX_ITERATIONS}'
        }), 400
    if not _is_number(learning_rate) or learning_rate <= 0:
        return jsonify({'error': 'learning_rate must be a positive number'}), 400
    if not _is_number(momentum) or momentum < 0:
        return jsonify({'error': 'momentum must be a non-negative number'}), 400

    try:
        patterns = parse_patterns(data.get('patterns'), net)
    except ValueError as e:
        return jsonify({'error': str(e)}), 400

    job_id = str(uuid.uuid4())
    training_jobs[job_id] = {
        'network_id': network_id,
        'status': 'pending',
        'progress': 0,
        'iterations': iterations
    }

    logger.info(
        f"Created training job {job_id} for network {network_id}: "
        f"{len(patterns)} pattern(s), iterations={iterations}, "
        f"lr={learning_rate}, momentum={momentum}"
    )

    # Run training in background so we can return immediately
    socketio.start_background_task(
        train_network_task,
        network_id, job_id, patterns, iterations, learning_rate, momentum
    )

    return jsonify({
        'job_id': job_id,
        'network_id': network_id,
        'status': 'training_started'
    }), 202


def train_network_task(
    network_id: str,
    job_id: str,
    patterns: List[List[List[float]]],
    iterations: int,
    learning_rate: float,
    momentum: float
) -> None:
    """
    Background task that trains a network and saves it.

    Sends per-iteration loss updates via WebSocket.
    """
    info = active_networks[network_id]
    net = info['network']
    job = training_jobs[job_id]

    def on_iteration_complete(data: Dict[str, Any]) -> None:
        progress = data['iteration'] / data['total_iterations'] * 100
        job['status'] = 'training'
        job['progress'] = progress

        socketio.emit('training_update', {
            'job_id': job_id,
            'network_id': network_id,
            'iteration': data['iteration'],
            'total_iterations': data['total_iterations'],
            'loss': data['loss'],
            'elapsed_time': data['elapsed_time'],
            'progress': progress
        })

        # Let other greenlets (HTTP requests) run between passes
        gevent.sleep(0)

    try:
        logger.info(f"Starting training for job {job_id}")

        losses = net.train(
            patterns, iterations, learning_rate, momentum,
            callback=on_iteration_complete
        )
        final_loss = losses[-1]

        info['trained'] = True
        info['loss'] = final_loss
        info['loss_history'] = losses

        job['status'] = 'completed'
        job['loss'] = final_loss
        job['progress'] = 100

        if active_networks.get(network_id) is info:
            save_network(net, network_id, model_dir=MODEL_DIR, trained=True, loss=final_loss)
        else:
            # Deleted (or replaced) while training
            logger.warning(f"Network {network_id} was removed during job {job_id}, not saving")
        logger.info(f"Training completed for job {job_id}: final loss {final_loss:.6f}")

        socketio.emit('training_complete', {
            'job_id': job_id,
            'network_id': network_id,
            'status': 'completed',
            'loss': final_loss,
            'progress': 100
        })

    except Exception as e:
        logger.exception(f"Training failed for job {job_id}: {e}")

        job['status'] = 'failed'
        job['error'] = str(e)

        socketio.emit('training_error', {
            'job_id': job_id,
            'network_id': network_id,
            'status': 'failed',
            'error': str(e)
        })

    gevent.sleep(0)


@app.route('/api/training/<job_id>', methods=['GET'])
def get_training_status(job_id: str):
    """Get the current status of a training job."""
    if job_id in training_jobs:
        return jsonify(training_jobs[job_id]), 200

    logger.warning(f"Status requested for non-existent job: {job_id}")
    return jsonify({'error': 'Training job not found'}), 404


@app.route('/api/networks/<network_id>/convert', methods=['POST'])
def convert_pixels(network_id: str):
    """
    Convert 8-bit CMYK pixels to RGBA.

    Request body:
        {'pixels': [[c, m, y, k], ...]}   # each value 0..255

    Returns:
        JSON with a list of [r, g, b, a] values
    """
    if network_id not in active_networks:
        logger.warning(f"Conversion requested for non-existent network: {network_id}")
        return jsonify({'error': 'Network not found'}), 404

    data = request.get_json(silent=True) or {}
    pixels = data.get('pixels')
    if not isinstance(pixels, list) or not pixels:
        return jsonify({'error': 'pixels must be a non-empty list'}), 400

    for index, pixel in enumerate(pixels):
        if (not isinstance(pixel, list) or len(pixel) != CMYK_CHANNELS
                or not all(isinstance(v, int) and not isinstance(v, bool)
                           and 0 <= v <= CHANNEL_MAX for v in pixel)):
            return jsonify({
                'error': f'pixel {index} must be {CMYK_CHANNELS} integers in 0..{CHANNEL_MAX}'
            }), 400

    converter = Converter(active_networks[network_id]['network'])
    rgba = [list(converter.cmyk_to_rgba(*pixel)) for pixel in pixels]

    return jsonify({'network_id': network_id, 'rgba': rgba}), 200


@app.route('/api/networks/<network_id>/loss_plot', methods=['GET'])
def get_loss_plot(network_id: str):
    """Return the last training run's loss curve as a base64 PNG."""
    if network_id not in active_networks:
        return jsonify({'error': 'Network not found'}), 404

    losses = active_networks[network_id]['loss_history']
    if not losses:
        return jsonify({'error': 'Network has no training history'}), 404

    return jsonify({
        'network_id': network_id,
        'iterations': len(losses),
        'final_loss': losses[-1],
        'image_data': create_loss_plot(losses, f'Training loss ({network_id[:8]})')
    }), 200


@app.route('/api/networks', methods=['GET'])
def list_networks():
    """List all available networks (both in-memory and saved to the store)."""
    in_memory = [
        {
            'network_id': nid,
            'architecture': info['architecture'],
            'context_window': info['context_window'],
            'trained': info['trained'],
            'loss': info['loss'],
            'status': 'in_memory'
        }
        for nid, info in active_networks.items()
    ]

    saved_only = []
    for net in list_saved_networks(MODEL_DIR):
        if net['network_id'] not in active_networks:
            net['status'] = 'saved'
            saved_only.append(net)

    return jsonify({'networks': in_memory + saved_only}), 200


@app.route('/api/networks/<network_id>', methods=['DELETE'])
def delete_network_endpoint(network_id: str):
    """Delete a network from both memory and the store."""
    deleted_from_memory = active_networks.pop(network_id, None) is not None
    deleted_from_disk = delete_network(network_id, MODEL_DIR)

    if not deleted_from_memory and not deleted_from_disk:
        logger.warning(f"Delete attempted for non-existent network: {network_id}")
        return jsonify({'error': 'Network not found'}), 404

    logger.info(
        f"Deleted network {network_id}: memory={deleted_from_memory}, "
        f"disk={deleted_from_disk}"
    )
    return jsonify({
        'network_id': network_id,
        'deleted_from_memory': deleted_from_memory,
        'deleted_from_disk': deleted_from_disk
    }), 200


@app.route('/api/networks', methods=['DELETE'])
def delete_all_networks():
    """Delete all networks from both memory and the store."""
    saved_ids = [net['network_id'] for net in list_saved_networks(MODEL_DIR)]
    all_network_ids = set(active_networks) | set(saved_ids)

    deleted_from_memory_count = len(active_networks)
    active_networks.clear()

    deleted_from_disk_count = sum(
        1 for network_id in saved_ids if delete_network(network_id, MODEL_DIR)
    )

    logger.info(
        f"Deleted all networks: {len(all_network_ids)} total, "
        f"{deleted_from_memory_count} from memory, {deleted_from_disk_count} from disk"
    )
    return jsonify({
        'deleted_count': len(all_network_ids),
        'deleted_from_memory': deleted_from_memory_count,
        'deleted_from_disk': deleted_from_disk_count
    }), 200


@app.route('/api/networks/cleanup', methods=['POST'])
def cleanup_old_networks_endpoint():
    """
    Manually trigger cleanup of networks older than the given age.

    Request body (optional):
        {'days': 2}
    """
    data = request.get_json(silent=True) or {}
    days = data.get('days', CLEANUP_MAX_AGE_DAYS)

    if not _is_number(days) or days < 0:
        return jsonify({'error': 'days must be a non-negative number'}), 400

    deleted_count = delete_old_networks(int(days), MODEL_DIR)
    if deleted_count == -1:
        return jsonify({'error': 'Error occurred during cleanup'}), 500

    logger.info(f"Manual cleanup: deleted {deleted_count} network(s) older than {days} day(s)")
    return jsonify({'deleted_count': deleted_count, 'days': days}), 200


# ============================================================================
# SERVER STARTUP
# ============================================================================

def main() -> None:
    reload_saved_networks()
    start_cleanup_task()

    port = settings.port
    logger.info(f"Starting server at http://localhost:{port}/")

    try:
        socketio.run(
            app,
            host='0.0.0.0',
            port=port,
            debug=not settings.is_production,
            use_reloader=False,
            allow_unsafe_werkzeug=True
        )
    except OSError as e:
        if "Address already in use" in str(e):
            logger.error(f"Port {port} is already in use.")
            sys.exit(1)
        raise


if __name__ == '__main__':
    main()
