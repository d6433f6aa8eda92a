"""Shared domain models for neonlocal."""

import os
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Union

from neonlocal import constants
from neonlocal.errors import ConfigError


@dataclass(frozen=True)
class ProxySettings:
    """Tunables for the proxy container and its polling loops."""

    data_dir: str = os.path.join("~", ".neonlocal")
    image: str = constants.PROXY_IMAGE
    container_name: str = constants.CONTAINER_NAME
    client_tag: str = constants.CLIENT_TAG
    readiness_timeout: float = 30.0
    handoff_timeout: float = 30.0
    poll_interval: float = 1.0
    status_interval: float = 5.0
    stop_timeout: int = constants.STOP_TIMEOUT_SECONDS
    start_lock_timeout: float = 900.0
    cleanup_on_branch_limit: bool = False
    oauth_host: str = constants.OAUTH_HOST
    oauth_client_id: str = constants.OAUTH_CLIENT_ID
    command_timeout: Optional[float] = 120.0

    @property
    def resolved_data_dir(self) -> str:
        return os.path.abspath(os.path.expanduser(self.data_dir))

    @property
    def handoff_dir(self) -> str:
        return os.path.join(self.resolved_data_dir, constants.HANDOFF_DIR_NAME)

    @property
    def state_file(self) -> str:
        return os.path.join(self.resolved_data_dir, "state.json")

    @property
    def secrets_file(self) -> str:
        return os.path.join(self.resolved_data_dir, "secrets.json")


@dataclass(frozen=True)
class PersistentToken:
    """Long-lived API key; allowed to create ephemeral branches."""

    token: str


@dataclass(frozen=True)
class SessionToken:
    """OAuth session credential; cannot create ephemeral branches."""

    access_token: str
    refresh_token: Optional[str] = None
    expires_at: Optional[float] = None


Credential = Union[PersistentToken, SessionToken]


def credential_token(credential: Credential) -> str:
    if isinstance(credential, PersistentToken):
        return credential.token
    return credential.access_token


@dataclass(frozen=True)
class RegistryCredential:
    username: str
    secret: str

    def __repr__(self) -> str:
        return f"RegistryCredential(username={self.username!r}, secret='***')"


class ContainerState(str, Enum):
    ABSENT = "absent"
    CREATED = "created"
    RUNNING = "running"
    STOPPED = "stopped"


class ReadinessStatus(str, Enum):
    NOT_RUNNING = "not_running"
    STARTING = "starting"
    READY = "ready"
    FAILED = "failed"


class FailureReason(str, Enum):
    BRANCH_LIMIT = "branch_limit"
    GENERIC = "generic"


@dataclass(frozen=True)
class ReadinessResult:
    status: ReadinessStatus
    reason: Optional[FailureReason] = None
    detail: str = ""


@dataclass(frozen=True)
class ContainerInfo:
    """Proxy parameters recovered from a running container's environment."""

    branch_id: str
    project_id: str
    driver: str
    is_parent_branch: bool


@dataclass(frozen=True)
class ImageUpdateResult:
    pulled: bool = False
    updated: bool = False
    local_digest: Optional[str] = None
    new_digest: Optional[str] = None


@dataclass(frozen=True)
class StartResult:
    branch_id: str
    connection_string: str
    image_updated: bool = False


@dataclass(frozen=True)
class ProxyStatus:
    state: ContainerState
    ready: bool = False
    info: Optional[ContainerInfo] = None


def normalize_driver(driver: Optional[str]) -> str:
    return "serverless" if driver == "serverless" else constants.DEFAULT_DRIVER


def connection_string(port: int, database: str = constants.DATABASE_PLACEHOLDER) -> str:
    return (
        f"postgres://{constants.PROXY_USER}:{constants.PROXY_PASSWORD}"
        f"@localhost:{port}/{database}"
    )


@dataclass(frozen=True)
class ContainerSpec:
    """Everything needed to create the singleton proxy container."""

    image: str
    name: str
    env: Dict[str, str]
    host_port: int
    handoff_dir: str
    container_port: int = constants.PROXY_PORT
    stop_timeout: int = constants.STOP_TIMEOUT_SECONDS
    container_handoff_dir: str = constants.CONTAINER_HANDOFF_DIR

    SECRET_ENV_KEYS = ("NEON_API_KEY",)

    @classmethod
    def build(
        cls,
        settings: ProxySettings,
        token: str,
        branch_id: str,
        project_id: str,
        driver: str,
        is_existing_branch: bool,
        port: int,
    ) -> "ContainerSpec":
        if not branch_id:
            raise ConfigError("A branch id is required to start the proxy.")
        if not project_id:
            raise ConfigError("A project id is required to start the proxy.")
        if not 0 < int(port) < 65536:
            raise ConfigError(f"Invalid host port: {port}")

        branch_key = "BRANCH_ID" if is_existing_branch else "PARENT_BRANCH_ID"
        env = {
            "DRIVER": normalize_driver(driver),
            "NEON_API_KEY": token,
            "NEON_PROJECT_ID": project_id,
            "CLIENT": settings.client_tag,
            branch_key: branch_id,
        }
        return cls(
            image=settings.image,
            name=settings.container_name,
            env=env,
            host_port=int(port),
            handoff_dir=settings.handoff_dir,
            stop_timeout=settings.stop_timeout,
        )

    def to_create_args(self) -> List[str]:
        args = [
            "--name",
            self.name,
            "--stop-timeout",
            str(self.stop_timeout),
            "-p",
            f"{self.host_port}:{self.container_port}/tcp",
            "-v",
            f"{self.handoff_dir}:{self.container_handoff_dir}",
        ]
        for key, value in self.env.items():
            # Secrets are forwarded from the docker client environment, never argv.
            if key in self.SECRET_ENV_KEYS:
                args.extend(["-e", key])
            else:
                args.extend(["-e", f"{key}={value}"])
        args.append(self.image)
        return args

    def secret_env(self) -> Dict[str, str]:
        return {key: self.env[key] for key in self.SECRET_ENV_KEYS if key in self.env}

    def redacted_env(self) -> Dict[str, str]:
        return {
            key: ("***" if key in self.SECRET_ENV_KEYS else value)
            for key, value in self.env.items()
        }
