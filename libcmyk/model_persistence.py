"""
model_persistence.py
~~~~~~~~~~~~~~~~~~~~

Persistence for FeedForward networks.

A network is serialized to a field-named JSON record (NInputs, NHiddens,
NOutputs, Regression, the activation vectors, weight and change matrices,
and Contexts). JSON floats round-trip exactly, so a dumped network loads
back bit-for-bit.

Two backends share that record:
- plain files via dump()/load(), used by the command-line tools
- a SQLite store with queryable metadata, used by the API server
"""

import os
import json
import sqlite3
import logging
from typing import Optional, List, Dict, Any, Generator, Union
from contextlib import contextmanager

import numpy as np

from libcmyk.errors import NotFound, CorruptState
from libcmyk.network import FeedForward, BIAS

# Configure module logger
logger = logging.getLogger(__name__)

SIZE_FIELDS = ('NInputs', 'NHiddens', 'NOutputs')


class NetworkEncoder(json.JSONEncoder):
    """JSON encoder that understands numpy arrays and scalars."""

    def default(self, obj: Any) -> Any:
        if isinstance(obj, np.ndarray):
            return obj.tolist()
        if isinstance(obj, np.floating):
            return float(obj)
        if isinstance(obj, np.integer):
            return int(obj)
        if isinstance(obj, np.bool_):
            return bool(obj)
        return super().default(obj)


# ============================================================================
# RECORD CODEC
# ============================================================================

def to_record(network: FeedForward) -> Dict[str, Any]:
    """
    Describe a network as a field-named record.

    Arrays are returned as-is; encode with NetworkEncoder.
    """
    return {
        'NInputs': network.n_inputs,
        'NHiddens': network.n_hiddens,
        'NOutputs': network.n_outputs,
        'Regression': network.regression,
        'InputActivations': network.input_activations,
        'HiddenActivations': network.hidden_activations,
        'OutputActivations': network.output_activations,
        'Contexts': list(network.contexts),
        'InputWeights': network.input_weights,
        'OutputWeights': network.output_weights,
        'InputChanges': network.input_changes,
        'OutputChanges': network.output_changes,
    }


def _field(record: Dict[str, Any], key: str) -> Any:
    try:
        return record[key]
    except KeyError:
        raise CorruptState(f"missing field '{key}'") from None


def _float_array(record: Dict[str, Any], key: str, shape: tuple) -> np.ndarray:
    value = _field(record, key)
    try:
        array = np.array(value, dtype=np.float64)
    except (TypeError, ValueError) as e:
        raise CorruptState(f"field '{key}' is not a numeric array: {e}") from e

    if array.shape != shape:
        raise CorruptState(
            f"field '{key}' has shape {array.shape}, expected {shape}"
        )
    return array


def from_record(record: Dict[str, Any]) -> FeedForward:
    """
    Rebuild a network from a record produced by to_record().

    Raises:
        CorruptState: If a field is missing, mistyped, or disagrees with
            the declared sizes
    """
    if not isinstance(record, dict):
        raise CorruptState(f"expected a JSON object, got {type(record).__name__}")

    sizes = {}
    for key in SIZE_FIELDS:
        value = _field(record, key)
        if isinstance(value, bool) or not isinstance(value, int) or value < 1:
            raise CorruptState(f"field '{key}' must be a positive integer, got {value!r}")
        sizes[key] = value

    n_inputs = sizes['NInputs']
    n_hiddens = sizes['NHiddens']
    n_outputs = sizes['NOutputs']
    if n_inputs <= BIAS or n_hiddens <= BIAS:
        raise CorruptState(
            f"NInputs and NHiddens must include a bias unit plus at least "
            f"one feature, got {n_inputs} and {n_hiddens}"
        )

    regression = record.get('Regression', False)
    if not isinstance(regression, bool):
        raise CorruptState(f"field 'Regression' must be a boolean, got {regression!r}")

    raw_contexts = record.get('Contexts')
    if raw_contexts is None:
        raw_contexts = []
    if not isinstance(raw_contexts, list):
        raise CorruptState("field 'Contexts' must be a list of vectors")
    contexts = [
        _float_array({'Contexts': c}, 'Contexts', (n_hiddens,))
        for c in raw_contexts
    ]

    return FeedForward.restore(
        n_inputs=n_inputs,
        n_hiddens=n_hiddens,
        n_outputs=n_outputs,
        regression=regression,
        input_activations=_float_array(record, 'InputActivations', (n_inputs,)),
        hidden_activations=_float_array(record, 'HiddenActivations', (n_hiddens,)),
        output_activations=_float_array(record, 'OutputActivations', (n_outputs,)),
        input_weights=_float_array(record, 'InputWeights', (n_inputs, n_hiddens)),
        output_weights=_float_array(record, 'OutputWeights', (n_hiddens, n_outputs)),
        input_changes=_float_array(record, 'InputChanges', (n_inputs, n_hiddens)),
        output_changes=_float_array(record, 'OutputChanges', (n_hiddens, n_outputs)),
        contexts=contexts
    )


def dumps(network: FeedForward) -> str:
    """Serialize a network to a JSON string."""
    return json.dumps(to_record(network), cls=NetworkEncoder)


def loads(text: Union[str, bytes]) -> FeedForward:
    """Deserialize a network from a JSON string or its encoded bytes."""
    try:
        record = json.loads(text)
    except (ValueError, RecursionError) as e:
        # JSONDecodeError and UnicodeDecodeError are both ValueErrors
        raise CorruptState(f"network record is not valid JSON: {e}") from e
    return from_record(record)


# ============================================================================
# FILE BACKEND
# ============================================================================

def dump(network: FeedForward, path: str) -> None:
    """
    Write a network record to ``path``, creating parent directories.

    Args:
        network: Network to save
        path: Destination file
    """
    directory = os.path.dirname(path)
    if directory and not os.path.exists(directory):
        os.makedirs(directory)

    with open(path, 'w') as f:
        json.dump(to_record(network), f, cls=NetworkEncoder)

    logger.debug(f"Dumped network {network.sizes} to {path}")


def load(path: str) -> FeedForward:
    """
    Read a network record from ``path``.

    Raises:
        NotFound: If ``path`` does not exist
        CorruptState: If the file is not a valid network record
    """
    if not os.path.exists(path):
        raise NotFound(f"no network file at {path}")

    with open(path, 'rb') as f:
        data = f.read()

    network = loads(data)
    logger.debug(f"Loaded network {network.sizes} from {path}")
    return network


def load_or_init(
    path: Optional[str],
    n_inputs: int,
    n_hiddens: int,
    n_outputs: int,
    weight_range: float = 1.0,
    seed: Optional[int] = None,
    context_window: int = 0
) -> FeedForward:
    """
    Load the network at ``path``, or initialize a new one if there is none.

    A missing file is the normal first-run case. A corrupt file is not:
    CorruptState propagates.

    Args:
        path: Network file, or None/empty to always start fresh
        n_inputs, n_hiddens, n_outputs: Shape of a fresh network
        weight_range: Initial weight range of a fresh network
        seed: Initializer seed of a fresh network
        context_window: Context window of a fresh network

    Returns:
        FeedForward
    """
    if path:
        try:
            network = load(path)
        except NotFound:
            logger.info(f"No network at {path}, initializing a new one")
        else:
            logger.info(f"Updating network {network.sizes} loaded from {path}")
            requested = [n_inputs, n_hiddens, n_outputs]
            if network.sizes != requested:
                logger.warning(
                    f"Loaded network has sizes {network.sizes}, "
                    f"not the requested {requested}"
                )
            return network

    network = FeedForward(
        n_inputs, n_hiddens, n_outputs,
        weight_range=weight_range,
        seed=seed
    )
    if context_window:
        network.set_contexts(context_window)
    return network


# ============================================================================
# SQLITE BACKEND
# ============================================================================

class ModelDatabase:
    """
    SQLite store for named networks.

    The database stores:
    - Network metadata (architecture, context window, training status, loss)
    - The JSON network record as text
    """

    def __init__(self, db_path: str = 'models/networks.db'):
        """
        Initialize the database connection.

        Args:
            db_path: Path to the SQLite database file
        """
        self.db_path = db_path
        self._ensure_directory()
        self._initialize_schema()

    def _ensure_directory(self) -> None:
        db_dir = os.path.dirname(self.db_path)
        if db_dir and not os.path.exists(db_dir):
            os.makedirs(db_dir)

    @contextmanager
    def _get_connection(self) -> Generator[sqlite3.Connection, None, None]:
        """
        Context manager for database connections.

        Commits on success, rolls back on any exception.
        """
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _initialize_schema(self) -> None:
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute('''
                CREATE TABLE IF NOT EXISTS networks (
                    network_id TEXT PRIMARY KEY,
                    architecture TEXT NOT NULL,
                    context_window INTEGER NOT NULL DEFAULT 0,
                    network_data TEXT NOT NULL,
                    trained INTEGER NOT NULL DEFAULT 0,
                    loss REAL,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            ''')
            cursor.execute('''
                CREATE INDEX IF NOT EXISTS idx_created_at
                ON networks(created_at DESC)
            ''')

    @staticmethod
    def _row_to_metadata(row: sqlite3.Row) -> Dict[str, Any]:
        inputs, hiddens, outputs = json.loads(row['architecture'])
        return {
            'network_id': row['network_id'],
            'architecture': [inputs, hiddens, outputs],
            'weights_shape': [
                [inputs + BIAS, hiddens + BIAS],
                [hiddens + BIAS, outputs]
            ],
            'context_window': row['context_window'],
            'trained': bool(row['trained']),
            'loss': row['loss'],
            'created_at': row['created_at'],
            'updated_at': row['updated_at']
        }

    def save_network_to_db(
        self,
        network: FeedForward,
        network_id: str,
        trained: bool = True,
        loss: Optional[float] = None
    ) -> bool:
        """
        Insert a network, replacing any previous one with the same id.

        Args:
            network: Network to save
            network_id: Unique identifier for the network
            trained: Whether the network has been trained
            loss: Loss of the last training pass, if any

        Returns:
            bool: True once the row is written

        Raises:
            ValueError: If loss is negative
        """
        if loss is not None and loss < 0:
            raise ValueError(f"Loss must be non-negative, got {loss}")

        with self._get_connection() as conn:
            # Keep the original created_at when replacing
            conn.execute('''
                INSERT INTO networks
                (network_id, architecture, context_window, network_data,
                 trained, loss)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT(network_id) DO UPDATE SET
                    architecture = excluded.architecture,
                    context_window = excluded.context_window,
                    network_data = excluded.network_data,
                    trained = excluded.trained,
                    loss = excluded.loss,
                    updated_at = CURRENT_TIMESTAMP
            ''', (
                network_id,
                json.dumps(network.sizes),
                network.context_window,
                dumps(network),
                1 if trained else 0,
                loss
            ))

        logger.info(
            f"Saved network '{network_id}' with architecture "
            f"{network.sizes}, trained={trained}, loss={loss}"
        )
        return True

    def load_network_from_db(self, network_id: str) -> FeedForward:
        """
        Load a network by id.

        Raises:
            NotFound: If no network has this id
            CorruptState: If the stored record is invalid
        """
        with self._get_connection() as conn:
            row = conn.execute(
                'SELECT network_data FROM networks WHERE network_id = ?',
                (network_id,)
            ).fetchone()

        if row is None:
            raise NotFound(f"network '{network_id}' not found")

        network = loads(row['network_data'])
        logger.info(f"Loaded network '{network_id}'")
        return network

    def list_networks_from_db(self) -> List[Dict[str, Any]]:
        """List metadata for every stored network, newest first."""
        with self._get_connection() as conn:
            rows = conn.execute('''
                SELECT network_id, architecture, context_window, trained,
                       loss, created_at, updated_at
                FROM networks
                ORDER BY created_at DESC, network_id
            ''').fetchall()

        networks = [self._row_to_metadata(row) for row in rows]
        logger.debug(f"Listed {len(networks)} networks")
        return networks

    def get_network_metadata_from_db(
        self,
        network_id: str
    ) -> Optional[Dict[str, Any]]:
        """Metadata for one network, or None if it does not exist."""
        with self._get_connection() as conn:
            row = conn.execute('''
                SELECT network_id, architecture, context_window, trained,
                       loss, created_at, updated_at
                FROM networks
                WHERE network_id = ?
            ''', (network_id,)).fetchone()

        if row is None:
            return None
        return self._row_to_metadata(row)

    def delete_network_from_db(self, network_id: str) -> bool:
        """Delete a network. Returns False if it did not exist."""
        with self._get_connection() as conn:
            cursor = conn.execute(
                'DELETE FROM networks WHERE network_id = ?',
                (network_id,)
            )
            deleted = cursor.rowcount > 0

        if deleted:
            logger.info(f"Deleted network '{network_id}'")
        else:
            logger.warning(f"Could not delete network '{network_id}': not found")
        return deleted

    def delete_old_networks_from_db(self, days: int) -> int:
        """
        Delete networks not updated within the last ``days`` days.

        Returns:
            int: Number of deleted networks

        Raises:
            ValueError: If days is negative
        """
        if days < 0:
            raise ValueError(f"days must be non-negative, got {days}")

        with self._get_connection() as conn:
            cursor = conn.execute(
                "DELETE FROM networks WHERE updated_at < datetime('now', ?)",
                (f'-{int(days)} days',)
            )
            deleted = cursor.rowcount

        logger.info(f"Deleted {deleted} network(s) older than {days} day(s)")
        return deleted


def _open_db(model_dir: str) -> ModelDatabase:
    return ModelDatabase(db_path=os.path.join(model_dir, 'networks.db'))


def save_network(
    network: FeedForward,
    network_id: str,
    model_dir: str = 'models',
    trained: bool = True,
    loss: Optional[float] = None
) -> bool:
    """
    Save a network to the SQLite store in ``model_dir``.

    Args:
        network: The network to save
        network_id: A unique identifier for the network
        model_dir: Directory holding networks.db
        trained: Whether the network has been trained
        loss: Loss of the last training pass

    Returns:
        bool: True if the save was successful, False otherwise

    Example:
        >>> net = FeedForward(4, 12, 3)
        >>> save_network(net, "cmyk", trained=False)
        True
    """
    if not network_id or not isinstance(network_id, str):
        logger.error("Invalid network_id: must be a non-empty string")
        return False

    try:
        return _open_db(model_dir).save_network_to_db(
            network, network_id, trained, loss
        )
    except ValueError as e:
        logger.error(f"Validation error saving network '{network_id}': {e}")
        return False
    except sqlite3.Error as e:
        logger.error(f"Database error saving network '{network_id}': {e}")
        return False


def load_network(
    network_id: str,
    model_dir: str = 'models'
) -> Optional[FeedForward]:
    """
    Load a network from the SQLite store.

    Returns:
        The network, or None if it does not exist or the store is
        unreadable. A corrupt record raises CorruptState.
    """
    if not network_id or not isinstance(network_id, str):
        logger.error("Invalid network_id: must be a non-empty string")
        return None

    try:
        return _open_db(model_dir).load_network_from_db(network_id)
    except NotFound:
        logger.warning(f"Network '{network_id}' not found")
        return None
    except sqlite3.Error as e:
        logger.error(f"Database error loading network '{network_id}': {e}")
        return None


def list_saved_networks(model_dir: str = 'models') -> List[Dict[str, Any]]:
    """
    List all saved networks with their metadata.

    Example:
        >>> for net in list_saved_networks():
        ...     print(f"{net['network_id']}: {net['architecture']}")
    """
    try:
        return _open_db(model_dir).list_networks_from_db()
    except sqlite3.Error as e:
        logger.error(f"Database error listing networks: {e}")
        return []


def delete_network(network_id: str, model_dir: str = 'models') -> bool:
    """Delete a saved network. Returns True if something was deleted."""
    if not network_id or not isinstance(network_id, str):
        logger.error("Invalid network_id: must be a non-empty string")
        return False

    try:
        return _open_db(model_dir).delete_network_from_db(network_id)
    except sqlite3.Error as e:
        logger.error(f"Database error deleting network '{network_id}': {e}")
        return False


def get_network_metadata(
    network_id: str,
    model_dir: str = 'models'
) -> Optional[Dict[str, Any]]:
    """Metadata for a saved network without decoding its weights."""
    if not network_id or not isinstance(network_id, str):
        logger.error("Invalid network_id: must be a non-empty string")
        return None

    try:
        metadata = _open_db(model_dir).get_network_metadata_from_db(network_id)
    except sqlite3.Error as e:
        logger.error(f"Database error getting metadata for '{network_id}': {e}")
        return None

    if metadata is None:
        logger.warning(f"Metadata for network '{network_id}' not found")
    return metadata


def delete_old_networks(days: int = 2, model_dir: str = 'models') -> int:
    """
    Delete networks older than ``days`` days.

    Returns:
        int: Number deleted, or -1 if the store could not be cleaned

    Raises:
        ValueError: If days is negative
    """
    try:
        return _open_db(model_dir).delete_old_networks_from_db(days)
    except sqlite3.Error as e:
        logger.error(f"Database error deleting old networks: {e}")
        return -1
