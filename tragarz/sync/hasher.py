"""Content fingerprints for sync comparison."""

import hashlib
from pathlib import Path

from ..exceptions import TragarzIOError
from ..utils import HASH_CHUNK_SIZE


def compute_file_hash(path: Path, chunk_size: int = HASH_CHUNK_SIZE) -> str:
    """Compute the SHA-256 hex digest of a file.

    The file is read in ``chunk_size`` pieces, so memory use does not grow
    with file size.

    Args:
        path: File to hash
        chunk_size: Bytes read per iteration

    Returns:
        64 character lowercase hex digest

    Raises:
        TragarzIOError: If the file cannot be read
    """
    sha = hashlib.sha256()
    try:
        with open(path, "rb") as f:
            for chunk in iter(lambda: f.read(chunk_size), b""):
                sha.update(chunk)
    except OSError as e:
        raise TragarzIOError(f"Cannot read {path}: {e}") from e
    return sha.hexdigest()
