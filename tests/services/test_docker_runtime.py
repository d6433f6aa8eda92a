import json
import os
import subprocess

import pytest

from neonlocal.errors import ContainerNotFound, ProxyError, PullError
from neonlocal.models import ContainerSpec, ContainerState, ProxySettings, RegistryCredential
from neonlocal.services.docker_runtime import DockerRuntimeService


class DummyLogger:
    def debug(self, *_args, **_kwargs):
        return None

    def info(self, *_args, **_kwargs):
        return None


class DummyConsole:
    def print(self, *_args, **_kwargs):
        return None


class FakeRunner:
    def __init__(self, responses=None, stream_lines=None, stream_error=None):
        self.responses = list(responses or [])
        self.calls = []
        self.stream_calls = []
        self.stream_lines = stream_lines or []
        self.stream_error = stream_error

    def run(self, cmd, **kwargs):
        self.calls.append((cmd, kwargs))
        returncode, stdout, stderr = self.responses.pop(0) if self.responses else (0, "", "")
        if returncode != 0 and kwargs.get("check", True):
            raise ProxyError(f"Command failed ({returncode}): {' '.join(cmd)}\n{stderr}")
        return subprocess.CompletedProcess(cmd, returncode, stdout=stdout, stderr=stderr)

    def stream(self, cmd, extra_env=None):
        self.stream_calls.append(cmd)
        if "--config" in cmd:
            config_dir = cmd[cmd.index("--config") + 1]
            with open(os.path.join(config_dir, "config.json"), encoding="utf-8") as file_obj:
                self.seen_config = json.load(file_obj)
        for line in self.stream_lines:
            yield line
        if self.stream_error:
            raise self.stream_error


def _service(runner):
    return DockerRuntimeService(logger=DummyLogger(), console=DummyConsole(), command_runner=runner)


def _inspect(status="running", running=True, env=None):
    return json.dumps(
        [{"State": {"Status": status, "Running": running}, "Config": {"Env": env or []}}]
    )


def test_container_state_reports_absent_when_inspect_says_no_such_container():
    runner = FakeRunner([(1, "", "Error: No such container: neon_local_vscode")])

    assert _service(runner).container_state("neon_local_vscode") == ContainerState.ABSENT


def test_container_state_maps_docker_status():
    runner = FakeRunner(
        [
            (0, _inspect("running", True), ""),
            (0, _inspect("exited", False), ""),
            (0, _inspect("created", False), ""),
        ]
    )
    service = _service(runner)

    assert service.container_state("c") == ContainerState.RUNNING
    assert service.container_state("c") == ContainerState.STOPPED
    assert service.container_state("c") == ContainerState.CREATED


def test_inspect_output_is_never_logged():
    runner = FakeRunner([(0, _inspect(), "")])

    _service(runner).inspect_container("c")

    assert runner.calls[0][1]["log_output"] is False


def test_container_env_parses_key_value_pairs():
    env = ["BRANCH_ID=br-1", "NEON_PROJECT_ID=proj", "EMPTY=", "NOVALUE"]
    runner = FakeRunner([(0, _inspect(env=env), "")])

    parsed = _service(runner).container_env("c")

    assert parsed == {"BRANCH_ID": "br-1", "NEON_PROJECT_ID": "proj", "EMPTY": ""}


def test_container_env_raises_when_container_missing():
    runner = FakeRunner([(1, "", "Error: No such object: c")])

    with pytest.raises(ContainerNotFound):
        _service(runner).container_env("c")


def test_logs_combines_stdout_and_stderr():
    runner = FakeRunner([(0, "starting\n", "Neon Local is ready\n")])

    logs = _service(runner).logs("c", tail=50)

    assert "starting" in logs
    assert "Neon Local is ready" in logs
    assert runner.calls[0][0] == ["docker", "logs", "--tail", "50", "c"]


def test_find_container_id_filters_by_exact_name():
    runner = FakeRunner([(0, "abc123\n", "")])

    assert _service(runner).find_container_id("neon_local_vscode") == "abc123"
    assert "name=^/neon_local_vscode$" in runner.calls[0][0]


def test_find_container_id_returns_none_when_nothing_matches():
    runner = FakeRunner([(0, "", "")])

    assert _service(runner).find_container_id("neon_local_vscode") is None


def test_create_container_keeps_api_key_out_of_argv(tmp_path):
    settings = ProxySettings(data_dir=str(tmp_path))
    spec = ContainerSpec.build(
        settings=settings,
        token="napi_secret",
        branch_id="br-1",
        project_id="proj-1",
        driver="postgres",
        is_existing_branch=True,
        port=5432,
    )
    runner = FakeRunner([(0, "container-id\n", "")])

    container_id = _service(runner).create_container(spec)

    cmd, kwargs = runner.calls[0]
    assert container_id == "container-id"
    assert cmd[:2] == ["docker", "create"]
    assert "napi_secret" not in " ".join(cmd)
    assert kwargs["extra_env"] == {"NEON_API_KEY": "napi_secret"}


def test_stop_container_passes_timeout():
    runner = FakeRunner([(0, "", "")])

    _service(runner).stop_container("c", 20)

    assert runner.calls[0][0] == ["docker", "stop", "-t", "20", "c"]


def test_stop_container_raises_not_found():
    runner = FakeRunner([(1, "", "Error response from daemon: No such container: c")])

    with pytest.raises(ContainerNotFound):
        _service(runner).stop_container("c", 20)


def test_remove_container_propagates_other_failures():
    runner = FakeRunner([(1, "", "permission denied")])

    with pytest.raises(ProxyError, match="permission denied") as exc_info:
        _service(runner).remove_container("c", force=True)

    assert not isinstance(exc_info.value, ContainerNotFound)
    assert runner.calls[0][0] == ["docker", "rm", "-f", "c"]


def test_image_digest_distinguishes_absent_and_undigested_images():
    runner = FakeRunner(
        [
            (1, "", "Error: No such image: neondatabase/neon_local:v1"),
            (0, json.dumps([{"RepoDigests": []}]), ""),
            (0, json.dumps([{"RepoDigests": ["neondatabase/neon_local@sha256:abc"]}]), ""),
        ]
    )
    service = _service(runner)

    assert service.image_digest("neondatabase/neon_local:v1") is None
    assert service.image_digest("neondatabase/neon_local:v1") == ""
    assert service.image_digest("neondatabase/neon_local:v1") == "neondatabase/neon_local@sha256:abc"


def test_pull_image_returns_status_line():
    runner = FakeRunner(
        stream_lines=["abc: Pull complete", "def: Already exists", "Status: Image is up to date"]
    )

    status = _service(runner).pull_image("neondatabase/neon_local:v1")

    assert status == "Status: Image is up to date"
    assert runner.stream_calls[0] == ["docker", "pull", "neondatabase/neon_local:v1"]


def test_pull_image_uses_temporary_auth_config_and_removes_it():
    runner = FakeRunner(stream_lines=["Status: Downloaded newer image"])
    credential = RegistryCredential(username="user", secret="hunter2")

    _service(runner).pull_image("neondatabase/neon_local:v1", credential)

    cmd = runner.stream_calls[0]
    config_dir = cmd[cmd.index("--config") + 1]
    assert "https://index.docker.io/v1/" in runner.seen_config["auths"]
    assert "hunter2" not in " ".join(cmd)
    assert not os.path.exists(config_dir)


def test_pull_image_wraps_failures_in_pull_error():
    runner = FakeRunner(stream_error=ProxyError("network unreachable"))

    with pytest.raises(PullError, match="network unreachable"):
        _service(runner).pull_image("neondatabase/neon_local:v1")
