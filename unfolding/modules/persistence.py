"""
Snapshot persistence for unfolding engines.

An engine is pickled together with its configuration and whatever result
caches it has filled (reconstructed vector, variances, covariance, toy
covariance), so an expensive toy covariance can be reused later. Each
snapshot has a JSON sidecar with metadata for auditing. Both files are
written atomically (temp file, then rename).
"""

from __future__ import annotations

import json
import logging
import pickle
import shutil
from dataclasses import asdict, dataclass
from datetime import datetime
from pathlib import Path

from .engine import UnfoldingEngine
from .exceptions import PersistenceError

logger = logging.getLogger("Unfolding.Persistence")

SNAPSHOT_VERSION: str = "1.0.0"


@dataclass
class SnapshotMetadata:
    """
    Metadata stored next to each engine snapshot.

    Attributes:
        name: Engine name
        algorithm: Algorithm kind name
        n_toys: Number of toys configured
        caches: Result caches populated at save time
        created_at: ISO timestamp of snapshot creation
        version: Snapshot format version
        size_bytes: Size of the pickle in bytes
        description: Human-readable description
    """

    name: str
    algorithm: str
    n_toys: int
    caches: list[str]
    created_at: str
    version: str
    size_bytes: int
    description: str


def metadata_path(path: str | Path) -> Path:
    return Path(path).with_suffix(".json")


def _populated_caches(engine: UnfoldingEngine) -> list[str]:
    caches = []
    if engine.unfolded:
        caches.append("rec")
    if engine.have_errors:
        caches.append("variances")
    if engine.have_cov:
        caches.append("cov")
    if engine.have_err_mat:
        caches.append("err_mat")
    return caches


def save_engine(engine: UnfoldingEngine, path: str | Path, description: str = "") -> SnapshotMetadata:
    """
    Save an engine snapshot.

    Args:
        engine: Engine to save
        path: Pickle file to write
        description: Human-readable description

    Returns:
        Metadata written to the JSON sidecar

    Raises:
        PersistenceError: If the snapshot cannot be written
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    temp_path = path.with_suffix(".tmp")
    try:
        with open(temp_path, "wb") as f:
            pickle.dump(
                {"version": SNAPSHOT_VERSION, "engine": engine}, f, protocol=pickle.HIGHEST_PROTOCOL
            )
        size_bytes = temp_path.stat().st_size
        shutil.move(str(temp_path), str(path))
    except (OSError, pickle.PicklingError, TypeError, AttributeError) as e:
        if temp_path.exists():
            temp_path.unlink()
        raise PersistenceError(f"Failed to save engine '{engine.name}' to {path}: {e}")

    metadata = SnapshotMetadata(
        name=engine.name,
        algorithm=engine.algorithm.name,
        n_toys=engine.n_toys,
        caches=_populated_caches(engine),
        created_at=datetime.now().isoformat(),
        version=SNAPSHOT_VERSION,
        size_bytes=size_bytes,
        description=description or engine.title,
    )

    meta_path = metadata_path(path)
    temp_meta_path = meta_path.with_suffix(".json.tmp")
    try:
        with open(temp_meta_path, "w") as f:
            json.dump(asdict(metadata), f, indent=2)
        shutil.move(str(temp_meta_path), str(meta_path))
    except OSError as e:
        if temp_meta_path.exists():
            temp_meta_path.unlink()
        logger.warning(f"Failed to save snapshot metadata for '{engine.name}': {e}")

    logger.info(f"Saved engine '{engine.name}' to {path} ({size_bytes / 1024:.1f} kB)")
    return metadata


def load_metadata(path: str | Path) -> SnapshotMetadata:
    """
    Read the JSON sidecar of a snapshot.

    Raises:
        PersistenceError: If the sidecar is missing or corrupted
    """
    meta_path = metadata_path(path)
    try:
        with open(meta_path) as f:
            return SnapshotMetadata(**json.load(f))
    except (OSError, json.JSONDecodeError, TypeError) as e:
        raise PersistenceError(f"Cannot read snapshot metadata {meta_path}: {e}")


def load_engine(path: str | Path) -> UnfoldingEngine:
    """
    Load an engine snapshot.

    Args:
        path: Pickle file written by save_engine()

    Returns:
        Engine with configuration and populated caches restored

    Raises:
        PersistenceError: If the file is unreadable or has a different format version
    """
    path = Path(path)
    if not path.exists():
        raise PersistenceError(f"Snapshot not found: {path}")

    try:
        with open(path, "rb") as f:
            payload = pickle.load(f)
    except (OSError, pickle.UnpicklingError, EOFError, AttributeError, ImportError) as e:
        raise PersistenceError(f"Failed to load snapshot {path}: {e}")

    if not isinstance(payload, dict) or not isinstance(payload.get("engine"), UnfoldingEngine):
        raise PersistenceError(f"{path} does not contain an unfolding engine snapshot")
    if payload.get("version") != SNAPSHOT_VERSION:
        raise PersistenceError(
            f"Snapshot version mismatch: {payload.get('version')} != {SNAPSHOT_VERSION}"
        )

    engine = payload["engine"]
    logger.info(f"Loaded engine '{engine.name}' from {path}")
    return engine
