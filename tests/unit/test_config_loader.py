import logging

import pytest
import yaml

from pmp.utils.config_loader import load_yaml_with_env
from pmp.utils.logging import logger


def test_load_yaml_with_env_success(monkeypatch, tmp_path):
    content = """
    key: ${TEST_VAR}
    other: ${env:OTHER_VAR}
    mixed: prefix_${TEST_VAR}_suffix
    number: ${NUMBER_VAR}
    """

    monkeypatch.setenv("TEST_VAR", "value1")
    monkeypatch.setenv("OTHER_VAR", "value2")
    monkeypatch.setenv("NUMBER_VAR", "123")

    path = tmp_path / "env.yaml"
    path.write_text(content)

    config = load_yaml_with_env(str(path))
    assert config["key"] == "value1"
    assert config["other"] == "value2"
    assert config["mixed"] == "prefix_value1_suffix"
    assert config["number"] == 123


def test_load_yaml_with_env_missing_var(monkeypatch, tmp_path):
    path = tmp_path / "env.yaml"
    path.write_text("key: ${MISSING_VAR}")

    monkeypatch.delenv("MISSING_VAR", raising=False)
    with pytest.raises(ValueError, match="Missing environment variable: MISSING_VAR"):
        load_yaml_with_env(str(path))


def test_load_yaml_with_env_file_not_found():
    with pytest.raises(FileNotFoundError):
        load_yaml_with_env("non_existent_file.yaml")


def test_empty_file_is_empty_mapping(tmp_path):
    path = tmp_path / "empty.yaml"
    path.write_text("")

    assert load_yaml_with_env(str(path)) == {}


def test_top_level_must_be_mapping(tmp_path):
    path = tmp_path / "list.yaml"
    path.write_text("- a\n- b\n")

    with pytest.raises(ValueError, match="Expected a mapping"):
        load_yaml_with_env(str(path))


def test_invalid_yaml_propagates(tmp_path):
    path = tmp_path / "broken.yaml"
    path.write_text("key: [unclosed\n")

    with pytest.raises(yaml.YAMLError):
        load_yaml_with_env(str(path))


def test_secret_variables_are_redacted(monkeypatch, tmp_path, caplog):
    monkeypatch.setenv("STATE_BUCKET_TOKEN", "tok-12345")
    path = tmp_path / "env.yaml"
    path.write_text("token: ${STATE_BUCKET_TOKEN}\n")

    config = load_yaml_with_env(str(path))
    assert config["token"] == "tok-12345"

    with caplog.at_level(logging.INFO, logger="pmp"):
        logger.info("Using token tok-12345")

    assert "tok-12345" not in caplog.text
    assert "[REDACTED]" in caplog.text
