"""Local-disk storage for uploaded files."""
import re
import secrets
import time
from pathlib import Path
from typing import BinaryIO, Dict, Optional

from logging_config import get_logger

logger = get_logger("storage")

FILES_URL_PREFIX = "/api/files/"
CHUNK_SIZE = 1024 * 1024

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


def _safe_name(original: str) -> str:
    name = Path(original or "").name
    name = _UNSAFE_CHARS.sub("_", name).strip("._")
    return name[:100] or "file"


class LocalFileStorage:
    def __init__(self, root: str):
        self.root = Path(root).resolve()
        self.root.mkdir(parents=True, exist_ok=True)

    def save(self, stream: BinaryIO, original_name: str) -> Dict[str, str]:
        """Write the upload under a fresh unique name and return its {name, url} reference."""
        while True:
            stored = f"{int(time.time() * 1000)}-{secrets.token_hex(4)}-{_safe_name(original_name)}"
            try:
                # "xb" fails instead of overwriting if the name is already taken
                with open(self.root / stored, "xb") as out:
                    while True:
                        chunk = stream.read(CHUNK_SIZE)
                        if not chunk:
                            break
                        out.write(chunk)
                break
            except FileExistsError:
                continue
        logger.info("Stored upload %s", stored)
        return {"name": original_name or stored, "url": FILES_URL_PREFIX + stored}

    def resolve(self, filename: str) -> Optional[Path]:
        """Path of a stored file, or None if the name is not a plain stored file."""
        if not filename or filename != Path(filename).name or filename.startswith("."):
            return None
        path = self.root / filename
        if not path.is_file():
            return None
        return path
