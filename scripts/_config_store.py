"""Local config store backed by a flat ``KEY=VALUE`` file.

The store is the single source of truth for secrets and derived URLs between
pipeline runs. It doubles as a template scaffold shipped with placeholder
values, so a present key whose value carries a placeholder marker is treated
as unset by every stage.

Examples
--------
>>> store = MemoryConfigStore("K1=A\\nK2=B\\nK3=C\\n")
>>> store.set_value("K2", "updated")
>>> store.read()
'K1=A\\nK2=updated\\nK3=C\\n'
"""

from __future__ import annotations

import logging
import os
import re
import secrets
import shutil
from collections.abc import Iterator
from contextlib import contextmanager, suppress
from pathlib import Path

from scripts._provisioning_errors import ConfigStoreError, ConfigStoreLockedError

logger = logging.getLogger(__name__)

SECRET_BYTES = 32
_PLACEHOLDER_SUBSTRINGS = ("your_", "your-")
_ANGLE_PLACEHOLDER = re.compile(r"<[^<>]*>")


def contains_placeholder_marker(value: str) -> bool:
    """Return ``True`` when ``value`` is an unfilled template default.

    Examples
    --------
    >>> contains_placeholder_marker("your_convex_deployment")
    True
    >>> contains_placeholder_marker("<generate-a-secret>")
    True
    >>> contains_placeholder_marker("dev:happy-otter-123")
    False
    """
    if any(marker in value for marker in _PLACEHOLDER_SUBSTRINGS):
        return True
    return bool(_ANGLE_PLACEHOLDER.search(value))


def is_configured(value: str | None) -> bool:
    """Return ``True`` for a present, non-blank, non-placeholder value."""
    return value is not None and bool(value.strip()) and not contains_placeholder_marker(value)


def generate_secret() -> str:
    """Return 32 random bytes as URL-safe base64 text without padding."""
    return secrets.token_urlsafe(SECRET_BYTES)


def _line_pattern(key: str) -> re.Pattern[str]:
    return re.compile(rf"^{re.escape(key)}=(.*?)\r?$", re.MULTILINE)


def _key_of(line: str) -> str | None:
    head, sep, _ = line.partition("=")
    return head if sep else None


class ConfigStore:
    """Line-preserving ``KEY=VALUE`` store.

    Subclasses provide raw text persistence through :meth:`read` and
    :meth:`_write`; everything else is shared.
    """

    def read(self) -> str:
        """Return the raw text, or an empty string when nothing is stored."""
        raise NotImplementedError

    def _write(self, content: str) -> None:
        raise NotImplementedError

    def ensure_exists(self) -> bool:
        """Create the store when absent; return ``True`` when it was created."""
        raise NotImplementedError

    @contextmanager
    def locked(self) -> Iterator[None]:
        """Hold exclusive ownership of the store for one stage."""
        yield

    def get_value(self, key: str) -> str | None:
        """Return the value for ``key``, or ``None`` when the key is absent.

        When a key appears more than once the last line wins.
        """
        matches = _line_pattern(key).findall(self.read())
        return matches[-1] if matches else None

    def get_configured(self, key: str) -> str | None:
        """Return the value unless it is absent, blank or a placeholder."""
        value = self.get_value(key)
        return value if is_configured(value) else None

    def set_value(self, key: str, value: str) -> None:
        """Write ``key``, replacing its line in place or appending a new one.

        All other lines keep their content and order. Later duplicate lines
        for the same key are dropped so the key stays unique.
        """
        if "\n" in value or "\r" in value:
            msg = f"Value for {key} must be a single line"
            raise ConfigStoreError(msg)
        content = self.read()
        new_line = f"{key}={value}"
        output: list[str] = []
        replaced = False
        for line in content.splitlines(keepends=True):
            if _key_of(line.rstrip("\r\n")) != key:
                output.append(line)
                continue
            if replaced:
                continue
            ending = line[len(line.rstrip("\r\n")):]
            output.append(f"{new_line}{ending}")
            replaced = True
        if not replaced:
            if output and not output[-1].endswith("\n"):
                output.append("\n")
            output.append(f"{new_line}\n")
        self._write("".join(output))

    def ensure_secret(self, key: str) -> tuple[str, bool]:
        """Reuse a configured secret or generate and persist a fresh one.

        Returns
        -------
        tuple[str, bool]
            The secret and whether an existing value was reused.
        """
        existing = self.get_configured(key)
        if existing is not None:
            return existing, True
        secret = generate_secret()
        self.set_value(key, secret)
        logger.info("Generated new %s", key)
        return secret, False


class MemoryConfigStore(ConfigStore):
    """In-memory store used by tests and dry runs."""

    def __init__(self, text: str | None = None) -> None:
        self._text = text

    def read(self) -> str:
        return self._text or ""

    def _write(self, content: str) -> None:
        self._text = content

    def ensure_exists(self) -> bool:
        if self._text is not None:
            return False
        self._text = ""
        return True


class EnvFileStore(ConfigStore):
    """Store persisted to a dotenv-style file.

    Parameters
    ----------
    path
        Location of the store file.
    template
        Optional template copied into place by :meth:`ensure_exists`.
    """

    def __init__(self, path: Path, template: Path | None = None) -> None:
        self.path = path
        self.template = template

    @property
    def lock_path(self) -> Path:
        return self.path.with_name(f"{self.path.name}.lock")

    def read(self) -> str:
        try:
            with self.path.open(encoding="utf-8", newline="") as handle:
                return handle.read()
        except FileNotFoundError:
            return ""
        except OSError as exc:
            msg = f"Failed to read {self.path}: {exc}"
            raise ConfigStoreError(msg) from exc

    def ensure_exists(self) -> bool:
        if self.path.exists():
            return False
        self.path.parent.mkdir(parents=True, exist_ok=True)
        if self.template is not None and self.template.exists():
            shutil.copyfile(self.template, self.path)
            logger.info("Created %s from %s", self.path.name, self.template.name)
        else:
            self._write("")
            logger.info("Created empty %s", self.path.name)
        return True

    def _write(self, content: str) -> None:
        """Write ``content`` atomically, keeping the file private."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_name(f"{self.path.name}.tmp")
        fd = os.open(tmp_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        try:
            with os.fdopen(fd, "w", encoding="utf-8", newline="") as handle:
                handle.write(content)
                handle.flush()
                os.fsync(handle.fileno())
        except Exception:
            with suppress(FileNotFoundError):
                os.unlink(tmp_path)
            raise
        tmp_path.replace(self.path)
        os.chmod(self.path, 0o600)

    @contextmanager
    def locked(self) -> Iterator[None]:
        """Hold ``<file>.lock`` for the duration of a stage.

        Raises
        ------
        ConfigStoreLockedError
            When the lock file already exists.
        """
        self.lock_path.parent.mkdir(parents=True, exist_ok=True)
        try:
            fd = os.open(self.lock_path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
        except FileExistsError as exc:
            raise ConfigStoreLockedError(self.lock_path) from exc
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(f"{os.getpid()}\n")
        try:
            yield
        finally:
            self.lock_path.unlink(missing_ok=True)


__all__ = [
    "ConfigStore",
    "EnvFileStore",
    "MemoryConfigStore",
    "contains_placeholder_marker",
    "generate_secret",
    "is_configured",
]
