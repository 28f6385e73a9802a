"""Persistence for the single OAuth refresh token.

The token is kept in a one-line file. Writes go to a temporary file in the
same directory which is then renamed over the target, so a crash mid-write
leaves either the old file or the new one, never a truncated token.

The token is stored in plain text; file permissions are the only protection.
"""

import logging
import os
import re
import tempfile
from collections.abc import Mapping
from pathlib import Path

from .settings import TOKEN_FILE

logger = logging.getLogger(__name__)

ENV_TOKEN_VAR = "GOOGLE_REFRESH_TOKEN"


def atomic_write_text(path: Path, content: str) -> None:
    """Replace ``path`` with ``content`` via write-to-temp then rename."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as tmp:
            tmp.write(content)
            tmp.flush()
            os.fsync(tmp.fileno())
        os.chmod(tmp_name, 0o600)
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


def set_env_value(path: Path, key: str, value: str) -> None:
    """Set ``key`` in a dotenv-style file, replacing an existing entry or appending one.

    Every other line is preserved as-is.
    """
    path = Path(path)
    line = f"{key}='{value}'"
    pattern = re.compile(rf"^\s*(export\s+)?{re.escape(key)}\s*=")

    lines = path.read_text(encoding="utf-8").splitlines() if path.exists() else []
    replaced = False
    for i, existing in enumerate(lines):
        if pattern.match(existing):
            lines[i] = line
            replaced = True
            break
    if not replaced:
        lines.append(line)

    atomic_write_text(path, "\n".join(lines) + "\n")


class TokenStore:
    """Loads and saves the refresh token.

    On load, a token from the environment wins over the file and is written
    back to the file so it survives restarts without the variable.
    """

    def __init__(
        self,
        path: Path | str = TOKEN_FILE,
        environ: Mapping[str, str] | None = None,
    ):
        self.path = Path(path)
        self._environ = environ

    @property
    def environ(self) -> Mapping[str, str]:
        return os.environ if self._environ is None else self._environ

    def load(self) -> str | None:
        """Return the refresh token, or None if neither source has one."""
        env_token = self.environ.get(ENV_TOKEN_VAR, "").strip()
        if env_token:
            logger.info("Using refresh token from environment variables")
            self.save(env_token)
            return env_token

        if self.path.exists():
            token = self.path.read_text(encoding="utf-8").strip()
            if token:
                logger.info("Loaded refresh token from %s", self.path)
                return token

        logger.info("No refresh token found")
        return None

    def save(self, token: str) -> None:
        token = token.strip()
        if not token:
            raise ValueError("Refusing to save an empty refresh token")
        atomic_write_text(self.path, token + "\n")
        logger.info("Saved refresh token to %s", self.path)
