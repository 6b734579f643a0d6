#!/usr/bin/env python3
"""
Flask Web Interface for ArcGIS Solution Deployer
================================================
Simple web interface to collect credentials, run a deployment and stream its progress.
"""

import os
import threading
import queue
import json
import logging
from flask import Flask, request, jsonify, Response

from solution_deployer.config.deploy_config import DeployOptions
from solution_deployer.deployer import SolutionDeployer
from solution_deployer.utils.exceptions import DeploymentError
from solution_deployer.utils.progress import CancellationToken


logger = logging.getLogger(__name__)


def connect_client(data):
    """Sign in to the requested portal and wrap it in a portal client."""
    from solution_deployer.utils.arcgis_client import ArcGISPortalClient
    from solution_deployer.utils.auth import connect_to_gis

    gis = connect_to_gis(data.get('portal_url') or 'https://www.arcgis.com', data['username'], data['password'])
    return ArcGISPortalClient(gis)


app = Flask(__name__)
app.config['SECRET_KEY'] = os.urandom(24)
app.config['CLIENT_FACTORY'] = connect_client

# Add CORS headers to all responses
@app.after_request
def after_request(response):
    response.headers.add('Access-Control-Allow-Origin', '*')
    response.headers.add('Access-Control-Allow-Headers', 'Content-Type,Authorization')
    response.headers.add('Access-Control-Allow-Methods', 'GET,POST,OPTIONS')
    return response

# Global variables for deployment management
current_thread = None
current_deployer = None
cancel_token = None
progress_queue = queue.Queue()
deployment_status = {"running": False, "progress": 0, "error": None, "result": None}

REQUIRED_FIELDS = ['solution_id', 'username', 'password']


def reset_state():
    """Clear the results of the previous deployment."""
    deployment_status.update({"running": False, "progress": 0, "error": None, "result": None})
    while not progress_queue.empty():
        progress_queue.get_nowait()


def on_progress(percent):
    deployment_status["progress"] = percent
    progress_queue.put(percent)


def run_deployment(data):
    """Run a deployment in a separate thread."""
    global current_deployer

    try:
        client = app.config['CLIENT_FACTORY'](data)
        options = DeployOptions(
            progress_callback=on_progress,
            title=data.get('title') or None,
            max_concurrency=int(data.get('max_concurrency') or 1),
            cancellation_token=cancel_token
        )
        current_deployer = SolutionDeployer(client, options)
        deployment_status["result"] = current_deployer.deploy(data['solution_id'])
    except DeploymentError as e:
        deployment_status["error"] = e.to_dict()
    except Exception as e:
        # Sign-in and option errors happen before any stage starts
        logger.error(f"Deployment could not start: {str(e)}")
        deployment_status["error"] = {"success": False, "stage": None, "itemId": None, "error": str(e)}
    finally:
        deployment_status["running"] = False


@app.route('/deploy', methods=['POST'])
def start_deploy():
    """Start a deployment with the provided credentials."""
    global current_thread, cancel_token, current_deployer

    if deployment_status["running"]:
        return jsonify({"error": "A deployment is already running"}), 400

    data = request.get_json(silent=True) or {}
    for field in REQUIRED_FIELDS:
        if not data.get(field):
            return jsonify({"error": f"Missing required field: {field}"}), 400

    reset_state()
    deployment_status["running"] = True
    cancel_token = CancellationToken()
    current_deployer = None

    # Start deployment in background thread
    current_thread = threading.Thread(target=run_deployment, args=(data,))
    current_thread.daemon = True
    current_thread.start()

    return jsonify({"success": True, "message": "Deployment started"})


@app.route('/status')
def get_status():
    """Get the current status of the deployment."""
    stage = current_deployer.stage.value if current_deployer and current_deployer.stage else None
    return jsonify({
        "running": deployment_status["running"],
        "stage": stage,
        "progress": deployment_status["progress"],
        "error": deployment_status["error"]
    })


@app.route('/progress')
def stream_progress():
    """Stream progress of the deployment."""
    def generate():
        while True:
            try:
                percent = progress_queue.get(timeout=1)
                yield f"data: {json.dumps({'progress': percent})}\n\n"
            except queue.Empty:
                # Send heartbeat to keep connection alive
                if deployment_status["running"]:
                    yield f"data: {json.dumps({'heartbeat': True})}\n\n"
                else:
                    yield f"data: {json.dumps({'finished': True, 'error': deployment_status['error']})}\n\n"
                    break

    return Response(generate(), mimetype='text/event-stream')


@app.route('/result')
def get_result():
    """Get the deployed Solution, or the failure envelope."""
    if deployment_status["running"]:
        return jsonify({"error": "Deployment still running"}), 409
    if deployment_status["error"]:
        return jsonify(deployment_status["error"]), 500
    if deployment_status["result"] is None:
        return jsonify({"error": "No deployment has run"}), 404
    return jsonify({"success": True, **deployment_status["result"]})


@app.route('/stop', methods=['POST'])
def stop_deploy():
    """Cancel the current deployment at its next step."""
    if cancel_token and deployment_status["running"]:
        cancel_token.cancel()
        return jsonify({"success": True, "message": "Cancellation requested"})
    else:
        return jsonify({"error": "No deployment is running"}), 400


@app.route('/health')
def health_check():
    """Health check endpoint for Cloud Run."""
    return jsonify({"status": "healthy", "service": "arcgis-solution-deployer"}), 200


if __name__ == '__main__':
    logging.basicConfig(level=logging.INFO)
    port = int(os.environ.get('PORT', 5000))
    debug_mode = os.environ.get('FLASK_ENV', 'development') == 'development'
    app.run(host='0.0.0.0', port=port, debug=debug_mode, threaded=True)
