"""
Export Module

JSON serialization of Metrics snapshots and a ready-made file sink.
All outputs carry the schema version for consistency.
"""

import dataclasses
import json
import threading
from pathlib import Path
from typing import Any, Dict, Optional, Union

import numpy as np

from stereoscope import config
from stereoscope.metrics import Metrics


class NumpyEncoder(json.JSONEncoder):
    """JSON encoder that handles numpy types."""
    def default(self, obj):
        if isinstance(obj, np.integer):
            return int(obj)
        elif isinstance(obj, np.floating):
            return float(obj)
        elif isinstance(obj, np.ndarray):
            return obj.tolist()
        elif isinstance(obj, np.bool_):
            return bool(obj)
        return super().default(obj)


def metrics_to_dict(metrics: Metrics, include_matrices: bool = True) -> Dict[str, Any]:
    """
    Convert a snapshot to plain containers.

    Parameters:
        metrics: Snapshot to convert
        include_matrices: Keep the n x n relationship and phase matrices
            (they dominate the payload size)

    Returns:
        Dict ready for json.dumps(..., cls=NumpyEncoder)
    """
    data = dataclasses.asdict(metrics)
    if not include_matrices:
        data.pop('relationship_matrix', None)
        data.pop('phase_coherence', None)
        data.pop('phase_trend', None)
    data['schema_version'] = config.SCHEMA_VERSION
    return data


def metrics_to_json(metrics: Metrics, include_matrices: bool = True, indent: Optional[int] = None) -> str:
    return json.dumps(metrics_to_dict(metrics, include_matrices), cls=NumpyEncoder, indent=indent)


class JsonLinesSink:
    """
    Metrics sink appending one JSON object per snapshot to a file.

    Register it with AnalysisWorker.add_sink(); close() when done.
    """

    def __init__(self, path: Union[str, Path], include_matrices: bool = False) -> None:
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.include_matrices = include_matrices
        self._file = open(self.path, 'a', encoding='utf-8')
        self._lock = threading.Lock()
        self.written = 0

    def __call__(self, metrics: Metrics) -> None:
        line = metrics_to_json(metrics, self.include_matrices)
        with self._lock:
            self._file.write(line + '\n')
            self._file.flush()
            self.written += 1

    def close(self) -> None:
        with self._lock:
            if not self._file.closed:
                self._file.close()

    def __enter__(self) -> 'JsonLinesSink':
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
