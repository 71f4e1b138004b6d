from flask import current_app, request
from flask_socketio import emit
from phasesort import socketio
from phasesort.services.rooms.protocol import Dispatcher


NAMESPACE = '/ws'
# Clients and server both exchange {type, payload} envelopes on this event
ENVELOPE_EVENT = 'envelope'


def _get_sid() -> str:
    # type: ignore: request.sid exists in Socket.IO context
    return request.sid  # type: ignore


def _dispatcher() -> Dispatcher:
    return current_app.extensions['phasesort.rooms']


def make_sender(namespace: str = NAMESPACE):
    """Build the ``send(sid, envelope)`` callable the dispatcher writes through."""
    def send(sid: str, envelope: dict) -> None:
        # socketio.emit works from handlers and from background tasks alike
        socketio.emit(ENVELOPE_EVENT, envelope, to=sid, namespace=namespace)
    return send


def handle_connect():
    _dispatcher().connect(_get_sid())
    emit('connected', {'message': f'Connected to {NAMESPACE}'})


def handle_disconnect(*args):
    _dispatcher().disconnect(_get_sid())


def handle_envelope(data):
    dispatcher = _dispatcher()
    session = dispatcher.directory.get(_get_sid()) or dispatcher.connect(_get_sid())
    dispatcher.dispatch(session, data)


def register_socketio_handlers() -> None:
    """Register Socket.IO event handlers on namespace '/ws'."""
    socketio.on_event('connect', handle_connect, namespace=NAMESPACE)
    socketio.on_event('disconnect', handle_disconnect, namespace=NAMESPACE)
    socketio.on_event(ENVELOPE_EVENT, handle_envelope, namespace=NAMESPACE)
