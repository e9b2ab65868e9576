"""
Central configuration for the slot machine service.

Values come from the environment (a .env file is loaded if present).
"""
import logging
import os
import threading
from datetime import timedelta

from dotenv import load_dotenv

load_dotenv()


class Config:
    PORT = int(os.getenv('PORT', '5000'))

    # Admin / auth
    JWT_SECRET = os.getenv('JWT_SECRET', 'defaultsecret')
    JWT_EXPIRES = timedelta(hours=int(os.getenv('JWT_EXPIRES_HOURS', '3')))
    ADMIN_USERNAME = os.getenv('ADMIN_USERNAME', 'admin')
    ADMIN_PASSWORD = os.getenv('ADMIN_PASSWORD', '')

    # Game
    WIN_PERCENT = float(os.getenv('WIN_PERCENT', '30'))
    WIN_PERCENT_FREE = float(os.getenv('WIN_PERCENT_FREE', '30'))
    FREE_STARTING_CREDITS = float(os.getenv('FREE_STARTING_CREDITS', '1000'))
    MAX_SIMULATION_SPINS = 1000000

    # Contact relay
    TELEGRAM_BOT_TOKEN = os.getenv('TELEGRAM_BOT_TOKEN', '')
    TELEGRAM_CHAT_ID = os.getenv('TELEGRAM_CHAT_ID', '')

    # Logging
    LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')
    LOG_FILE = os.getenv('LOG_FILE', 'logs/transactions.log')


def setup_logging(level='INFO', log_file=None):
    handlers = [logging.StreamHandler()]
    if log_file:
        os.makedirs(os.path.dirname(log_file) or '.', exist_ok=True)
        handlers.append(logging.FileHandler(log_file))
    logging.basicConfig(
        level=level,
        format='[%(asctime)s] %(levelname)s [%(name)s]: %(message)s',
        handlers=handlers,
    )


class WinPercentages:
    """Win-probability knobs for paid and free play, in percent."""

    MODES = ('paid', 'free')

    def __init__(self, paid=30, free=30):
        self._lock = threading.Lock()
        self._values = {}
        self.set('paid', paid)
        self.set('free', free)

    @staticmethod
    def validate(value):
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ValueError(f"Win percentage must be a number, got {value!r}")
        if not 0 <= value <= 100:
            raise ValueError(f"Win percentage must be between 0 and 100, got {value}")
        return value

    def get(self, mode):
        if mode not in self.MODES:
            raise ValueError(f"Unknown mode: {mode}")
        with self._lock:
            return self._values[mode]

    def set(self, mode, value):
        if mode not in self.MODES:
            raise ValueError(f"Unknown mode: {mode}")
        value = self.validate(value)
        with self._lock:
            self._values[mode] = value

    def to_dict(self):
        with self._lock:
            return dict(self._values)
