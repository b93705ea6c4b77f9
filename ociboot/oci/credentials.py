"""Registry credentials from docker config files

Only static `auths` entries are supported, credential helpers are not.

ref: https://github.com/docker/cli/blob/master/man/docker-config-json.5.md
"""
import base64
import binascii
import logging
import os
from pathlib import Path
from typing import Iterable

from pydantic import BaseModel, ValidationError

from ociboot.errors import DecodeError, StorageError

logger = logging.getLogger(__name__)

DOCKER_HUB_HOSTS = frozenset({"docker.io", "index.docker.io", "registry-1.docker.io"})


class AuthConfig(BaseModel):
    auth: str | None = None
    username: str | None = None
    password: str | None = None

    def credentials(self) -> tuple[str, str] | None:
        if self.username and self.password:
            return self.username, self.password
        if not self.auth:
            return None
        try:
            decoded = base64.b64decode(self.auth, validate=True).decode("utf-8")
        except (binascii.Error, UnicodeDecodeError) as e:
            raise DecodeError("Invalid auth entry in docker config") from e
        username, sep, password = decoded.partition(":")
        if not sep:
            raise DecodeError("Invalid auth entry in docker config")
        return username, password


class DockerConfig(BaseModel):
    auths: dict[str, AuthConfig] = {}


def default_config_path() -> Path:
    config_dir = os.environ.get("DOCKER_CONFIG")
    if config_dir:
        return Path(config_dir) / "config.json"
    return Path.home() / ".docker" / "config.json"


def _host(key: str) -> str:
    """Registry host of an `auths` key, keys may be plain hosts or URLs"""
    if "://" in key:
        key = key.split("://", 1)[1]
    return key.split("/", 1)[0]


def _same_registry(key: str, domain: str) -> bool:
    host = _host(key)
    if host in DOCKER_HUB_HOSTS and domain in DOCKER_HUB_HOSTS:
        return True
    return host == domain


class DockerCredentials:
    """Looks up credentials for a registry domain in docker config files

    Files are searched in order, missing files are skipped. Without paths the
    default docker config location is used.
    """

    def __init__(self, paths: Iterable[Path] = ()):
        self.paths = [Path(p).expanduser() for p in paths] or [default_config_path()]

    def __repr__(self):
        return f"DockerCredentials({[str(p) for p in self.paths]!r})"

    def _configs(self) -> list[DockerConfig]:
        configs = []
        for path in self.paths:
            if not path.is_file():
                logger.debug("No docker config at %s", path)
                continue
            try:
                data = path.read_bytes()
            except OSError as e:
                raise StorageError(f"Error reading docker config {path}: {e}") from e
            try:
                configs.append(DockerConfig.model_validate_json(data))
            except ValidationError as e:
                raise DecodeError(f"Could not decode docker config {path}") from e
        return configs

    def lookup(self, domain: str) -> tuple[str, str] | None:
        for config in self._configs():
            for key, entry in config.auths.items():
                if not _same_registry(key, domain):
                    continue
                credentials = entry.credentials()
                if credentials is not None:
                    logger.debug("Using docker config credentials for %s", domain)
                    return credentials
        return None
