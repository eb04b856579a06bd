from __future__ import annotations

import hashlib
import logging
import os
import tempfile
from pathlib import Path

from modstore.schemas import BlobRef

logger = logging.getLogger(__name__)


class BlobCache:
    """Content-addressed file store.

    Every blob lives at ``<directory>/<sha256 hex>``. Writes go through a hidden
    temp file in the same directory and are renamed into place, so a reader can
    never observe partial content. Nothing is ever evicted.
    """

    def __init__(self, directory: str | Path) -> None:
        self.directory = Path(directory)

    def write(self, data: bytes) -> BlobRef:
        digest = hashlib.sha256(data).hexdigest()
        ref = BlobRef(digest)
        target = self.directory / digest
        if target.exists():
            logger.debug("blob_cache write digest=%s reason=exists", digest)
            return ref

        self.directory.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=self.directory, prefix=f".{digest}.")
        try:
            with os.fdopen(fd, "wb") as fp:
                fp.write(data)
            os.replace(tmp, target)
        except BaseException:
            try:
                os.unlink(tmp)
            except OSError:
                logger.warning("blob_cache failed to remove temp file path=%s", tmp)
            raise

        logger.info("blob_cache write digest=%s size=%d", digest, len(data))
        return ref

    def get_path(self, ref: BlobRef) -> Path | None:
        path = self.directory / ref.digest
        if not path.is_file():
            return None
        return path
