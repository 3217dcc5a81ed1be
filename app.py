# Flask web application for the Image Geolocation Engine

import logging

from flask import Flask, jsonify, request

import settings
from ai_analysis import analyze_image
from errors import (
    GeolocationError, ConfigurationError, TransientProviderOverload, InvalidImageError,
)
from geolocation_engine import load_analysis_request, process_image_geolocation

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - GEOLOC_ENGINE - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# --- Application Configuration ---
app = Flask(__name__)
app.config['MAX_CONTENT_LENGTH'] = settings.get_settings().max_upload_bytes


def error_status(error):
    """HTTP status for an engine error."""
    if isinstance(error, TransientProviderOverload):
        return 503
    if isinstance(error, InvalidImageError):
        return 400
    return 500


@app.errorhandler(GeolocationError)
def handle_geolocation_error(error):
    status = error_status(error)
    if isinstance(error, ConfigurationError):
        logger.error(f"Configuration error: {error.message}")
    else:
        logger.error(f"Request failed ({status}): {error.message}")
    return jsonify({'error': error.message}), status


@app.errorhandler(405)
def handle_method_not_allowed(error):
    return jsonify({'error': 'Method not allowed'}), 405


@app.errorhandler(413)
def handle_payload_too_large(error):
    return jsonify({'error': 'Image is too large'}), 413


def read_json_body():
    """The JSON body when it is an object, otherwise an empty dict."""
    body = request.get_json(silent=True)
    return body if isinstance(body, dict) else {}


def read_image_data():
    """Pulls the image field out of the JSON body, or returns None."""
    return read_json_body().get('imageData')


@app.route('/health')
def health():
    return jsonify({'status': 'ok'})


@app.route('/api/ai-analyze', methods=['POST'])
def ai_analyze():
    """Returns the vision model's raw answer for the submitted image."""
    image_data = read_image_data()
    if not image_data:
        return jsonify({'error': 'Image data is required'}), 400

    analysis_request = load_analysis_request(image_data)
    result = analyze_image(analysis_request)
    return jsonify({'result': result.raw_text})


@app.route('/api/geolocate', methods=['POST'])
def geolocate():
    """Full pipeline: analysis, candidate parsing and geocoding of the primary candidate."""
    image_data = read_image_data()
    if not image_data:
        return jsonify({'error': 'Image data is required'}), 400

    body = read_json_body()
    analysis_request = load_analysis_request(image_data)
    results, _ = process_image_geolocation(
        analysis_request, all_candidates=bool(body.get('allCandidates')),
    )
    return jsonify(results)


if __name__ == '__main__':
    # debug=True is for development only (enables debugger and auto-reloader)
    app.run(debug=True)
