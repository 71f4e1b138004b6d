from flask import Blueprint, current_app, jsonify

main = Blueprint('main', __name__)

@main.route('/')
def index():
    return jsonify({'message': 'Welcome to the Phase Sort game server!'})

@main.route('/health')
def health():
    """Liveness probe: process status and live room count."""
    store = current_app.extensions['phasesort.rooms'].store
    return jsonify({'status': 'ok', 'rooms': len(store)})
