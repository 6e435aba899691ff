"""
Local file helpers shared by the offline queue and the progress store.
"""

import os
import tempfile
from pathlib import Path
from typing import Optional


def atomic_write(path: Path, payload: bytes):
    """Replace ``path`` with ``payload`` so readers never see a partial file."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, 'wb') as f:
            f.write(payload)
        os.replace(tmp_name, path)
    except OSError:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise


def read_key(key_file: Optional[str]) -> Optional[bytes]:
    """Load a Fernet key written by ``queue_admin.py keygen``; None when unset."""
    if not key_file:
        return None
    return Path(key_file).read_bytes().strip()
