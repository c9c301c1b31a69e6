"""
In-memory view of the OAuth client registry file.

The YAML file is the durable record. It is read once at startup and again
whenever its modification time changes; the in-process map is never edited.
"""
import logging
import os
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Iterator, List, Optional

import yaml
from pydantic import ValidationError

from omnidrop.models.oauth_client import OAuthClient, RegistryDocument
from omnidrop.security import burn_verification_time, verify_client_secret

logger = logging.getLogger(__name__)

EMPTY_REGISTRY = "clients: []\n"


class RegistryError(Exception):
    """The registry file could not be read or parsed."""


class ClientAuthenticationError(Exception):
    """Base class for client-credential rejections."""

    def __init__(self, client_id: str, message: str):
        super().__init__(message)
        self.client_id = client_id


class ClientNotFoundError(ClientAuthenticationError):
    def __init__(self, client_id: str):
        super().__init__(client_id, f"client {client_id!r} not found")


class ClientDisabledError(ClientAuthenticationError):
    def __init__(self, client_id: str):
        super().__init__(client_id, f"client {client_id!r} is disabled")


class InvalidCredentialsError(ClientAuthenticationError):
    def __init__(self, client_id: str):
        super().__init__(client_id, f"invalid credentials for client {client_id!r}")


class ReadWriteLock:
    """Many readers or one writer; writers wait for readers to drain."""

    def __init__(self):
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writing = False

    @contextmanager
    def read(self) -> Iterator[None]:
        with self._cond:
            while self._writing:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @contextmanager
    def write(self) -> Iterator[None]:
        with self._cond:
            while self._writing or self._readers:
                self._cond.wait()
            self._writing = True
        try:
            yield
        finally:
            with self._cond:
                self._writing = False
                self._cond.notify_all()


def parse_registry(text: str) -> Dict[str, OAuthClient]:
    try:
        data = yaml.safe_load(text) or {}
        document = RegistryDocument.model_validate(data)
    except (yaml.YAMLError, ValidationError) as e:
        raise RegistryError(f"failed to parse client registry: {e}") from e

    clients: Dict[str, OAuthClient] = {}
    for client in document.clients:
        if client.client_id in clients:
            raise RegistryError(f"duplicate client_id {client.client_id!r} in registry")
        clients[client.client_id] = client
    return clients


def ensure_registry_file(path: Path) -> None:
    """Create an empty registry (mode 0600) if none exists yet."""
    if path.exists():
        return
    path.parent.mkdir(mode=0o755, parents=True, exist_ok=True)
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
    with os.fdopen(fd, "w", encoding="utf-8") as f:
        f.write(EMPTY_REGISTRY)
    logger.info(f"Created empty OAuth client registry at {path}")


class ClientRegistry:
    def __init__(self, path: Path):
        self.path = Path(path)
        self._lock = ReadWriteLock()
        self._clients: Dict[str, OAuthClient] = {}
        self._mtime_ns: Optional[int] = None

    @classmethod
    def load(cls, path: Path) -> "ClientRegistry":
        """Initial load; a missing file is created, an unreadable one is fatal."""
        registry = cls(path)
        ensure_registry_file(registry.path)
        registry.reload(force=True)
        logger.info(
            f"Loaded {len(registry)} OAuth client(s) from {registry.path}"
        )
        return registry

    def __len__(self) -> int:
        with self._lock.read():
            return len(self._clients)

    def reload(self, force: bool = False) -> bool:
        """
        Re-read the file if its mtime changed. Returns True when the map was
        replaced. A bad file on first load raises RegistryError; a bad file on
        a later reload is logged and the previous map stays in service.
        """
        try:
            mtime_ns = self.path.stat().st_mtime_ns
        except OSError as e:
            if self._mtime_ns is None:
                raise RegistryError(f"cannot stat client registry {self.path}: {e}") from e
            logger.error(f"Cannot stat client registry {self.path}, keeping cached clients: {e}")
            return False

        if not force and mtime_ns == self._mtime_ns:
            return False

        try:
            clients = parse_registry(self.path.read_text(encoding="utf-8"))
        except (OSError, RegistryError) as e:
            if self._mtime_ns is None:
                if isinstance(e, RegistryError):
                    raise
                raise RegistryError(f"cannot read client registry {self.path}: {e}") from e
            logger.error(f"Client registry reload failed, keeping cached clients: {e}")
            return False

        with self._lock.write():
            self._clients = clients
            self._mtime_ns = mtime_ns
        logger.info(f"Client registry reloaded: {len(clients)} client(s)")
        return True

    def get(self, client_id: str) -> Optional[OAuthClient]:
        with self._lock.read():
            return self._clients.get(client_id)

    def list_clients(self) -> List[OAuthClient]:
        with self._lock.read():
            return [c for c in self._clients.values() if not c.disabled]

    def authenticate(self, client_id: str, client_secret: str) -> OAuthClient:
        """
        Returns the client when `client_secret` matches its stored hash.

        Raises ClientNotFoundError, ClientDisabledError or
        InvalidCredentialsError. Unknown and disabled clients still pay for
        a hash verification.
        """
        client = self.get(client_id)
        if client is None:
            burn_verification_time()
            raise ClientNotFoundError(client_id)
        if client.disabled:
            burn_verification_time()
            raise ClientDisabledError(client_id)

        try:
            verified = verify_client_secret(client_secret, client.client_secret_hash)
        except ValueError as e:
            logger.error(f"Stored secret hash for client {client_id!r} is unusable: {e}")
            verified = False
        if not verified:
            raise InvalidCredentialsError(client_id)
        return client
