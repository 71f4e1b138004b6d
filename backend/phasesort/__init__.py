from flask import Flask
from flask_sqlalchemy import SQLAlchemy
from flask_bcrypt import Bcrypt
from flask_cors import CORS
from flask_socketio import SocketIO
import click
from config import Config

db = SQLAlchemy()
bcrypt = Bcrypt()
socketio = SocketIO(async_mode=None)

def create_app(config_class=Config):
    flask_app = Flask(__name__)
    flask_app.config.from_object(config_class)
    allowed_origins = flask_app.config.get('CORS_ORIGINS') or []

    db.init_app(flask_app)
    bcrypt.init_app(flask_app)
    CORS(flask_app, supports_credentials=True, origins=allowed_origins)

    # Initialize Socket.IO after app is created
    socketio.init_app(flask_app, cors_allowed_origins=allowed_origins)

    # Import and register blueprints here
    from phasesort.main import main
    flask_app.register_blueprint(main)

    # Room services: one dispatcher per app, shared by socket handlers and the sweeper
    from phasesort.services.rooms.protocol import Dispatcher
    from phasesort.socketio_events import make_sender, register_socketio_handlers
    dispatcher = Dispatcher.from_config(flask_app.config, make_sender())
    flask_app.extensions['phasesort.rooms'] = dispatcher
    register_socketio_handlers()

    with flask_app.app_context():
        import phasesort.models  # noqa: F401
        db.create_all()
        dispatcher.store.reload()

    from phasesort.services.rooms.sweeper import start_deadline_sweeper
    start_deadline_sweeper(flask_app, dispatcher)

    @click.command('rooms-reset')
    def rooms_reset_command():
        """Drops and recreates the room snapshot table."""
        from phasesort.models import RoomRecord
        with flask_app.app_context():
            RoomRecord.__table__.drop(db.engine, checkfirst=True)
            RoomRecord.__table__.create(db.engine)
            print('Room snapshot has been reset!')

    flask_app.cli.add_command(rooms_reset_command)

    return flask_app
