import pytest

from neonlocal.errors import ConfigError, ProxyError
from neonlocal.services.config_loader import ConfigLoader


def test_config_loader_loads_yaml_mapping(tmp_path):
    config_file = tmp_path / ".neonlocal.yml"
    config_file.write_text(
        "driver: serverless\nport: 6543\ncleanup_on_branch_limit: true\n",
        encoding="utf-8",
    )

    loader = ConfigLoader()
    loaded = loader.load(str(config_file))

    assert loaded["driver"] == "serverless"
    assert loaded["port"] == 6543
    assert loaded["cleanup_on_branch_limit"] is True


def test_config_loader_returns_empty_mapping_without_path():
    assert ConfigLoader().load(None) == {}


def test_config_loader_returns_empty_mapping_for_empty_file(tmp_path):
    config_file = tmp_path / ".neonlocal.yml"
    config_file.write_text("", encoding="utf-8")

    assert ConfigLoader().load(str(config_file)) == {}


def test_config_loader_rejects_unknown_keys(tmp_path):
    config_file = tmp_path / ".neonlocal.yml"
    config_file.write_text("unknown_key: true\n", encoding="utf-8")

    loader = ConfigLoader()

    with pytest.raises(ProxyError, match="Unknown configuration keys"):
        loader.load(str(config_file))


def test_config_loader_rejects_missing_file(tmp_path):
    with pytest.raises(ConfigError, match="not found"):
        ConfigLoader().load(str(tmp_path / "missing.yml"))


def test_config_loader_rejects_non_mapping_root(tmp_path):
    config_file = tmp_path / ".neonlocal.yml"
    config_file.write_text("- port\n- driver\n", encoding="utf-8")

    with pytest.raises(ConfigError, match="YAML mapping"):
        ConfigLoader().load(str(config_file))
