from phasesort import socketio


def _envelopes(sio_client, kind=None):
    received = sio_client.get_received('/ws')
    envelopes = [pkt['args'][0] for pkt in received if pkt['name'] == 'envelope']
    if kind is None:
        return envelopes
    return [e for e in envelopes if e['type'] == kind]


def test_socket_connect_and_ping(sio_client):
    # Ensure we are connected to /ws
    if not sio_client.is_connected('/ws'):
        sio_client.connect(namespace='/ws')
    assert sio_client.is_connected('/ws')

    received = sio_client.get_received('/ws')
    assert any(pkt['name'] == 'connected' for pkt in received)

    sio_client.emit('envelope', {'type': 'ping'}, namespace='/ws')
    assert [e['type'] for e in _envelopes(sio_client)] == ['pong']


def test_malformed_envelope_over_socket(sio_client):
    sio_client.get_received('/ws')
    sio_client.emit('envelope', 'not-an-envelope', namespace='/ws')
    errors = _envelopes(sio_client, 'error')
    assert errors == [{'type': 'error', 'message': 'Invalid message envelope.'}]


def test_host_and_player_over_socket(flask_app, sio_client):
    sio_client.get_received('/ws')
    sio_client.emit('envelope', {'type': 'host:create', 'payload': {'name': 'Ada', 'config': {}}},
                    namespace='/ws')
    created = _envelopes(sio_client, 'host:created')[0]['payload']

    player = socketio.test_client(flask_app, namespace='/ws')
    player.get_received('/ws')
    player.emit('envelope', {'type': 'player:join', 'payload': {
        'code': created['code'], 'identity': 'device-1', 'name': 'Bea', 'pin': created['pin'],
    }}, namespace='/ws')
    player_update = _envelopes(player, 'room:update')[-1]['payload']['room']
    assert [p['name'] for p in player_update['players']] == ['Bea']
    assert 'gmToken' not in player_update

    host_update = _envelopes(sio_client, 'room:update')[-1]['payload']['room']
    assert host_update['gmToken'] == created['gmToken']

    sio_client.emit('envelope', {'type': 'host:start', 'payload': {
        'code': created['code'], 'gmToken': created['gmToken'],
    }}, namespace='/ws')
    started = _envelopes(player, 'game:started')
    assert started and started[0]['payload']['room']['status'] == 'active'

    player.disconnect(namespace='/ws')
    room = flask_app.extensions['phasesort.rooms'].store.get(created['code'])
    assert len(room.connections) == 1
