from __future__ import annotations

import errno
import logging
from pathlib import Path

logger = logging.getLogger(__name__)


def atomic_write_text(path: Path, text: str) -> None:
    """Write ``text`` through a sibling temp file, then swap it into place.

    Bind-mounted single files (common for container config and vault mounts)
    reject ``rename`` with EBUSY; those are rewritten in place instead.
    """
    tmp_path = path.with_suffix(path.suffix + ".tmp")
    tmp_path.write_text(text, encoding="utf-8")
    try:
        tmp_path.replace(path)
    except OSError as exc:
        if exc.errno != errno.EBUSY:
            tmp_path.unlink(missing_ok=True)
            raise
        logger.debug("Rename onto %s is busy, writing in place", path)
        path.write_text(text, encoding="utf-8")
        tmp_path.unlink(missing_ok=True)
