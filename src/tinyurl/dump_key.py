"""Admin dump key generation."""

import os
import secrets
from pathlib import Path


# Letters and digits that cannot be confused with each other (no I, O, l, 0, 1)
DUMP_KEY_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnopqrstuvwxyz23456789"
DUMP_KEY_LENGTH = 64
DUMP_KEY_FILENAME = "dump.key"


def generate_dump_key(length: int = DUMP_KEY_LENGTH) -> str:
    return "".join(secrets.choice(DUMP_KEY_ALPHABET) for _ in range(length))


def write_dump_key(directory: Path, key: str) -> Path:
    """
    Write key to <directory>/dump.key readable and writable by the owner only.

    Returns:
        Path of the written file
    """
    path = Path(directory) / DUMP_KEY_FILENAME
    path.parent.mkdir(parents=True, exist_ok=True)
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "w", encoding="ascii") as f:
        f.write(key)
    os.chmod(path, 0o600)
    return path
