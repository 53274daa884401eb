import pytest
import yaml

from collabhub.schemas import ActivationPolicy
from collabhub.utils import config_manager
from collabhub.utils.config_manager import (
    ConfigurationFileError,
    ConfigurationLoader,
    ConfigurationValidationError,
    EnvironmentVariableMapper,
    SystemConfiguration,
    create_default_config_file,
    validate_configuration,
)


def _write(path, data):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(yaml.safe_dump(data))
    return path


def test_defaults():
    cfg = SystemConfiguration()
    assert cfg.knowledge.related_depth == 2
    assert cfg.knowledge.retention_days == 30
    assert cfg.hub.history_retention_seconds == 24 * 60 * 60
    assert cfg.collaboration.activation_policy == ActivationPolicy.EXPLICIT
    assert cfg.collaboration.session_timeout_seconds is None
    assert cfg.collaboration.coordinator_agent == "orchestrator"
    assert cfg.collaboration.consensus_threshold == pytest.approx(0.8)
    assert [a.name for a in cfg.registry.default_agents] == [
        "infrastructure", "quality", "ux", "security", "marketing", "financial", "orchestrator",
    ]
    assert cfg.hub.routing_table["security_threat"] == ["security", "infrastructure", "orchestrator"]


def test_load_yaml_file(tmp_path):
    assert ConfigurationLoader.load_yaml_file(tmp_path / "missing.yaml") == {}

    good = _write(tmp_path / "good.yaml", {"hub": {"history_limit": 5}})
    assert ConfigurationLoader.load_yaml_file(good) == {"hub": {"history_limit": 5}}

    broken = tmp_path / "broken.yaml"
    broken.write_text("hub: [unclosed\n")
    with pytest.raises(ConfigurationFileError):
        ConfigurationLoader.load_yaml_file(broken)

    listing = tmp_path / "list.yaml"
    listing.write_text("- a\n- b\n")
    with pytest.raises(ConfigurationFileError):
        ConfigurationLoader.load_yaml_file(listing)


def test_merge_is_deep():
    merged = ConfigurationLoader.merge_configurations(
        {"hub": {"history_limit": 5, "inbox_limit": 7}, "environment": "dev"},
        {"hub": {"history_limit": 9}},
        {"environment": "prod"},
    )
    assert merged == {"hub": {"history_limit": 9, "inbox_limit": 7}, "environment": "prod"}


def test_environment_mapping(monkeypatch):
    monkeypatch.setenv("COLLABHUB_ACTIVATION_POLICY", "auto_accept")
    monkeypatch.setenv("COLLABHUB_BOOTSTRAP_AGENTS", "no")
    monkeypatch.setenv("COLLABHUB_HISTORY_LIMIT", "10")

    env_config = EnvironmentVariableMapper.load_from_environment()
    assert env_config["registry"] == {"bootstrap_default_agents": False}

    cfg = validate_configuration(env_config)
    assert cfg.collaboration.activation_policy == ActivationPolicy.AUTO_ACCEPT
    assert cfg.hub.history_limit == 10


def test_validation_errors():
    with pytest.raises(ConfigurationValidationError):
        validate_configuration({"collaboration": {"activation_policy": "sometimes"}})
    with pytest.raises(ConfigurationValidationError):
        validate_configuration({"knowledge": {"related_depth": 0}})
    with pytest.raises(ConfigurationValidationError):
        validate_configuration({"unknown_section": {}})


def test_precedence_env_over_project_over_global(fresh_config_manager, tmp_path, monkeypatch):
    _write(tmp_path / "home" / ".collabhub" / "config.yaml", {"hub": {"history_limit": 50, "inbox_limit": 40}})
    project = tmp_path / "project"
    _write(project / ".collabhub" / "config.yaml", {"hub": {"history_limit": 20}})

    assert fresh_config_manager.get_config().hub.history_limit == 50

    fresh_config_manager.set_project_root(project)
    cfg = fresh_config_manager.get_config()
    assert cfg.hub.history_limit == 20
    assert cfg.hub.inbox_limit == 40

    monkeypatch.setenv("COLLABHUB_HISTORY_LIMIT", "10")
    assert fresh_config_manager.get_config().hub.history_limit == 20  # cached
    assert config_manager.reload_config().hub.history_limit == 10


def test_invalid_file_is_not_silently_ignored(fresh_config_manager, tmp_path):
    _write(tmp_path / "home" / ".collabhub" / "config.yaml", {"hub": {"history_limit": -1}})
    with pytest.raises(ConfigurationValidationError):
        fresh_config_manager.get_config(force_reload=True)


def test_update_configuration(fresh_config_manager):
    cfg = fresh_config_manager.update_configuration({"collaboration": {"session_timeout_seconds": 600}})
    assert cfg.collaboration.session_timeout_seconds == 600
    assert config_manager.get_config().collaboration.session_timeout_seconds == 600

    with pytest.raises(ConfigurationValidationError):
        fresh_config_manager.update_configuration({"hub": {"history_limit": "many"}})


def test_create_default_config_file(tmp_path):
    path = tmp_path / "nested" / "config.yaml"
    create_default_config_file(path)

    loaded = ConfigurationLoader.load_yaml_file(path)
    assert validate_configuration(loaded) == SystemConfiguration()
