"""Lightweight integrity probe for backup artifacts"""

import logging
import os
import zlib
from pathlib import Path

PROBE_BYTES = 1024
GZIP_WBITS = 16 + zlib.MAX_WBITS


class IntegrityVerifier:
    """Smoke test for artifact readability.

    For compressed artifacts only the first kilobyte is decompressed: a
    truncated or corrupted gzip header is caught, damage further into the
    file is not. This is a readability check, not a structural validation.
    """

    def __init__(self, probe_bytes: int = PROBE_BYTES):
        self.probe_bytes = probe_bytes
        self.logger = logging.getLogger("IntegrityVerifier")

    def verify(self, path: Path | str) -> bool:
        path = Path(path)
        if path.name.endswith(".gz"):
            return self._probe_compressed(path)
        return path.is_file() and os.access(path, os.R_OK)

    def _probe_compressed(self, path: Path) -> bool:
        try:
            with open(path, "rb") as f:
                head = f.read(self.probe_bytes)
            produced = zlib.decompressobj(GZIP_WBITS).decompress(head)
        except (OSError, zlib.error) as e:
            self.logger.warning(f"Integrity probe failed for {path.name}: {e}")
            return False

        if not produced:
            self.logger.warning(f"Integrity probe produced no data for {path.name}")
            return False
        return True
