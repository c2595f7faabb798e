"""Unit tests for settings loading and input resolution."""

from __future__ import annotations

from pathlib import Path

import pytest

from conftest import TOKEN
from vm_stack._input_resolution import InputResolution, parse_bool, resolve_input
from vm_stack._settings import DEFAULT_SYSTEM_TAG, Settings, load_settings
from vm_stack._vm_stack_errors import ConfigurationError


def test_load_settings_from_mapping(tmp_path: Path) -> None:
    settings = load_settings(
        {
            "LINODE_TOKEN": TOKEN,
            "VM_SYSTEM_TAG": "ops-bot",
            "PULUMI_WORK_DIR": str(tmp_path),
            "PULUMI_BACKEND_URL": "file:///tmp/state",
            "PULUMI_CONFIG_PASSPHRASE": "",
        }
    )
    assert settings.linode_token == TOKEN
    assert settings.system_tag == "ops-bot"
    assert settings.work_dir == tmp_path
    assert settings.backend_url == "file:///tmp/state"
    assert settings.config_passphrase is None


def test_load_settings_defaults() -> None:
    settings = load_settings({})
    assert settings.linode_token is None
    assert settings.system_tag == DEFAULT_SYSTEM_TAG
    assert settings.work_dir is None
    assert settings.workspace_env() == {}


def test_missing_token_logs_warning(caplog: pytest.LogCaptureFixture) -> None:
    with caplog.at_level("WARNING"):
        load_settings({"LINODE_TOKEN": "   "})
    assert "LINODE_TOKEN is not set" in caplog.text


def test_load_settings_reads_dotenv_file(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    dotenv = tmp_path / ".env"
    dotenv.write_text("LINODE_TOKEN=from-dotenv\nVM_SYSTEM_TAG=dotenv-tag\n")

    # Registered with monkeypatch so the values load_dotenv writes are removed.
    monkeypatch.setenv("LINODE_TOKEN", "")
    monkeypatch.delenv("LINODE_TOKEN")
    monkeypatch.setenv("VM_SYSTEM_TAG", "")
    monkeypatch.delenv("VM_SYSTEM_TAG")

    settings = load_settings(dotenv_path=dotenv)
    assert settings.linode_token == "from-dotenv"
    assert settings.system_tag == "dotenv-tag"


def test_dotenv_does_not_override_environment(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setenv("LINODE_TOKEN", TOKEN)
    dotenv = tmp_path / ".env"
    dotenv.write_text("LINODE_TOKEN=from-dotenv\n")

    assert load_settings(dotenv_path=dotenv).linode_token == TOKEN


def test_settings_repr_hides_credentials() -> None:
    settings = Settings(linode_token=TOKEN, config_passphrase="hunter2")
    assert TOKEN not in repr(settings)
    assert "hunter2" not in repr(settings)


def test_workspace_env_forwards_backend_and_passphrase() -> None:
    settings = Settings(backend_url="s3://state-bucket", config_passphrase="")
    assert settings.workspace_env() == {
        "PULUMI_BACKEND_URL": "s3://state-bucket",
        "PULUMI_CONFIG_PASSPHRASE": "",
    }


def test_resolve_input_prefers_parameter() -> None:
    resolution = InputResolution(env_key="VM_REGION", default="us-east")
    assert resolve_input("eu-west", resolution, env={"VM_REGION": "ap-south"}) == "eu-west"


def test_resolve_input_blank_environment_uses_default() -> None:
    resolution = InputResolution(env_key="VM_REGION", default="us-east")
    assert resolve_input(None, resolution, env={"VM_REGION": "  "}) == "us-east"


def test_resolve_input_as_path() -> None:
    resolution = InputResolution(env_key="PULUMI_WORK_DIR", as_path=True)
    assert resolve_input(None, resolution, env={"PULUMI_WORK_DIR": "/srv/pulumi"}) == Path(
        "/srv/pulumi"
    )


def test_resolve_input_required_missing() -> None:
    with pytest.raises(ConfigurationError, match="VM_REGION is required"):
        resolve_input(None, InputResolution(env_key="VM_REGION", required=True), env={})


@pytest.mark.parametrize(
    ("value", "expected"),
    [("true", True), ("1", True), (" Yes ", True), ("off", False), ("", False), (None, False)],
)
def test_parse_bool(value: str | None, expected: bool) -> None:
    assert parse_bool(value) is expected
