"""Docker runtime services for neonlocal."""

import base64
import json
import os
import shutil
import tempfile
from typing import Any, Dict, List, Optional

from rich.progress import Progress, SpinnerColumn, TextColumn, TimeElapsedColumn

from neonlocal.errors import ContainerNotFound, ProxyError, PullError
from neonlocal.models import ContainerSpec, ContainerState, RegistryCredential

DOCKER_HUB_AUTH_KEY = "https://index.docker.io/v1/"


class DockerRuntimeService:
    """Wraps the docker CLI calls used to manage the proxy container."""

    NOT_FOUND_MARKERS = ("no such container", "no such object", "no such image")
    _STATUS_MAP = {
        "created": ContainerState.CREATED,
        "running": ContainerState.RUNNING,
        "restarting": ContainerState.RUNNING,
    }

    def __init__(self, logger, console, command_runner, docker_cmd: str = "docker"):
        self.logger = logger
        self.console = console
        self.command_runner = command_runner
        self.docker_cmd = docker_cmd

    def validate_environment(self):
        self.console.print("[blue]Validating Docker environment...[/blue]")
        self._run(["version", "--format", "{{.Server.Version}}"])
        self.console.print("[green]Docker is available.[/green]")

    def inspect_container(self, name: str) -> Optional[Dict[str, Any]]:
        # Inspect output carries the API key in Config.Env.
        result = self._run(["container", "inspect", name], check=False, log_output=False)
        if result.returncode != 0:
            if self._is_not_found(result.stderr):
                return None
            raise ProxyError(
                f"Could not inspect container {name}: {(result.stderr or '').strip()}"
            )
        return self._first_json_object(result.stdout, f"container {name}")

    def container_state(self, name: str) -> ContainerState:
        details = self.inspect_container(name)
        if details is None:
            return ContainerState.ABSENT
        state = details.get("State") or {}
        if state.get("Running"):
            return ContainerState.RUNNING
        return self._STATUS_MAP.get(str(state.get("Status", "")).lower(), ContainerState.STOPPED)

    def is_running(self, name: str) -> bool:
        return self.container_state(name) == ContainerState.RUNNING

    def container_env(self, name: str) -> Dict[str, str]:
        details = self.inspect_container(name)
        if details is None:
            raise ContainerNotFound(f"Container {name} does not exist.")

        env: Dict[str, str] = {}
        for entry in (details.get("Config") or {}).get("Env") or []:
            key, separator, value = str(entry).partition("=")
            if separator:
                env[key] = value
        return env

    def logs(self, name: str, tail: int = 50) -> str:
        result = self._run(["logs", "--tail", str(tail), name], check=False)
        if result.returncode != 0:
            if self._is_not_found(result.stderr):
                raise ContainerNotFound(f"Container {name} does not exist.")
            raise ProxyError(f"Could not read logs of {name}: {(result.stderr or '').strip()}")
        # The proxy writes to both streams; readiness rules look at both.
        return "\n".join(part for part in (result.stdout, result.stderr) if part)

    def find_container_id(self, name: str) -> Optional[str]:
        result = self._run(
            ["ps", "-a", "--filter", f"name=^/{name}$", "--format", "{{.ID}}"],
        )
        ids = [line.strip() for line in (result.stdout or "").splitlines() if line.strip()]
        return ids[0] if ids else None

    def create_container(self, spec: ContainerSpec) -> str:
        result = self._run(["create"] + spec.to_create_args(), extra_env=spec.secret_env())
        container_id = (result.stdout or "").strip().splitlines()
        self.logger.debug("Created container %s with env %s", spec.name, spec.redacted_env())
        return container_id[-1] if container_id else spec.name

    def start_container(self, name: str):
        self._run(["start", name])

    def stop_container(self, name: str, timeout: int):
        self._run_or_not_found(["stop", "-t", str(timeout), name], name)

    def remove_container(self, name: str, force: bool = False):
        cmd = ["rm", "-f", name] if force else ["rm", name]
        self._run_or_not_found(cmd, name)

    def image_digest(self, image: str) -> Optional[str]:
        """Returns the first repo digest, or None when the image is not present locally."""
        result = self._run(["image", "inspect", image], check=False)
        if result.returncode != 0:
            if self._is_not_found(result.stderr):
                return None
            raise ProxyError(f"Could not inspect image {image}: {(result.stderr or '').strip()}")

        details = self._first_json_object(result.stdout, f"image {image}")
        digests = details.get("RepoDigests") or []
        # Locally built images have no repo digest but still exist.
        return digests[0] if digests else ""

    def pull_image(self, image: str, credential: Optional[RegistryCredential] = None) -> str:
        config_dir = self._write_auth_config(credential) if credential else None
        cmd = [self.docker_cmd]
        if config_dir:
            cmd += ["--config", config_dir]
        cmd += ["pull", image]

        layers_done = 0
        status_line = ""
        try:
            with Progress(
                SpinnerColumn(),
                TextColumn("[progress.description]{task.description}"),
                TimeElapsedColumn(),
                console=self.console,
                transient=True,
            ) as progress:
                task = progress.add_task(f"[bold magenta]Pulling {image}...", total=None)
                for line in self.command_runner.stream(cmd):
                    self.logger.debug(line)
                    if line.endswith("Pull complete") or line.endswith("Already exists"):
                        layers_done += 1
                        progress.update(
                            task,
                            description=f"[bold magenta]Pulling {image} ({layers_done} layers)...",
                        )
                    if line.startswith("Status:"):
                        status_line = line
        except ProxyError as exc:
            raise PullError(f"Failed to pull image {image}: {exc}") from exc
        finally:
            if config_dir:
                shutil.rmtree(config_dir, ignore_errors=True)

        self.logger.info("Pulled %s. %s", image, status_line or "")
        return status_line

    def _write_auth_config(self, credential: RegistryCredential) -> str:
        config_dir = tempfile.mkdtemp(prefix="neonlocal-docker-")
        encoded = base64.b64encode(f"{credential.username}:{credential.secret}".encode()).decode()
        config_path = os.path.join(config_dir, "config.json")
        with open(config_path, "w", encoding="utf-8") as file_obj:
            json.dump({"auths": {DOCKER_HUB_AUTH_KEY: {"auth": encoded}}}, file_obj)
        os.chmod(config_path, 0o600)
        return config_dir

    def _run_or_not_found(self, args: List[str], name: str):
        result = self._run(args, check=False)
        if result.returncode == 0:
            return
        stderr = (result.stderr or "").strip()
        if self._is_not_found(stderr):
            raise ContainerNotFound(f"Container {name} does not exist.")
        raise ProxyError(f"Command failed ({result.returncode}): docker {' '.join(args)}\n{stderr}")

    def _run(
        self,
        args: List[str],
        check: bool = True,
        extra_env: Optional[Dict[str, str]] = None,
        log_output: bool = True,
    ):
        return self.command_runner.run(
            [self.docker_cmd] + args,
            check=check,
            capture_output=True,
            extra_env=extra_env,
            log_output=log_output,
        )

    def _is_not_found(self, stderr: Optional[str]) -> bool:
        text = (stderr or "").lower()
        return any(marker in text for marker in self.NOT_FOUND_MARKERS)

    @staticmethod
    def _first_json_object(payload: str, label: str) -> Dict[str, Any]:
        try:
            parsed = json.loads(payload or "[]")
        except json.JSONDecodeError as exc:
            raise ProxyError(f"Invalid inspect output for {label}: {exc}") from exc
        if isinstance(parsed, list):
            parsed = parsed[0] if parsed else {}
        if not isinstance(parsed, dict):
            raise ProxyError(f"Unexpected inspect output for {label}.")
        return parsed
