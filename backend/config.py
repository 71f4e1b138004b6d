import os

basedir = os.path.abspath(os.path.dirname(__file__))

class Config:
    SECRET_KEY = os.environ.get('SECRET_KEY') or 'you-will-never-guess'
    # Room registry snapshot lives in a single SQLite file by default
    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL') or 'sqlite:///' + os.path.join(basedir, 'rooms.db')
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    # Comma-separated list of origins allowed to open a socket
    CORS_ORIGINS = [o for o in os.environ.get(
        'CORS_ORIGINS',
        'http://localhost:5173,http://127.0.0.1:5173,http://localhost:5174,http://127.0.0.1:5174',
    ).split(',') if o]
    # Deadline sweeper period (seconds)
    SWEEP_INTERVAL_SEC = float(os.environ.get('SWEEP_INTERVAL_SEC', '1'))
    # Credential lockout: failures before lock, lock length (seconds)
    MAX_FAILED_ATTEMPTS = int(os.environ.get('MAX_FAILED_ATTEMPTS', '5'))
    LOCKOUT_SEC = int(os.environ.get('LOCKOUT_SEC', '60'))
    LEADERBOARD_SIZE = int(os.environ.get('LEADERBOARD_SIZE', '20'))
    # Extra time granted by the add-time boost (ms)
    BOOST_TIME_MS = int(os.environ.get('BOOST_TIME_MS', '10000'))
    BCRYPT_LOG_ROUNDS = int(os.environ.get('BCRYPT_LOG_ROUNDS', '12'))
