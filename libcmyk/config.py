"""
config.py
~~~~~~~~~

Environment-driven settings, training defaults, and logging setup shared
by the command-line tools and the API server.
"""

import os
import logging
from typing import NamedTuple, Optional


class TrainingDefaults:
    """Hyperparameters used when a caller does not supply its own."""

    # Network shape (bias units excluded)
    n_inputs = 4           # C, M, Y, K
    n_hiddens = 12
    n_outputs = 3          # R, G, B

    # Training
    iterations = 2         # passes per image pair
    stream_iterations = 10 # passes per pixel when training from a packed stream
    learning_rate = 0.6
    momentum = 0.4

    # Initialization
    weight_range = 1.0
    context_window = 0     # 0 disables recurrence


class Settings(NamedTuple):
    model_dir: str
    network_file: str
    log_level: str
    is_production: bool
    port: int


def load_settings() -> Settings:
    """Read settings from the environment."""
    return Settings(
        model_dir=os.getenv('LIBCMYK_MODEL_DIR', 'models'),
        network_file=os.getenv('LIBCMYK_NETWORK_FILE', 'network.json'),
        log_level=os.getenv('LOG_LEVEL', 'INFO').upper(),
        is_production=os.getenv('FLASK_ENV') == 'production',
        port=int(os.getenv('PORT', '8000'))
    )


def configure_logging(settings: Optional[Settings] = None) -> None:
    """
    Set up logging based on environment.

    - In production: quiet the socket and HTTP server loggers but keep
      libcmyk's own logs at INFO
    - In development: show everything at the configured level
    """
    if settings is None:
        settings = load_settings()

    log_level = getattr(logging, settings.log_level, logging.INFO)
    logging.basicConfig(
        level=log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    if settings.is_production:
        for logger_name in ['socketio', 'engineio', 'engineio.server',
                            'socketio.server', 'werkzeug']:
            logging.getLogger(logger_name).setLevel(logging.WARNING)
        logging.getLogger('libcmyk').setLevel(logging.INFO)
    else:
        logging.getLogger('socketio').setLevel(logging.INFO)
        logging.getLogger('engineio').setLevel(logging.INFO)
