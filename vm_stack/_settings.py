"""Process-wide settings for the VM stack orchestrator.

Settings are loaded once at process start from the environment (optionally
seeded from a ``.env`` file) and passed explicitly to the orchestrator.
Nothing below this module reads ``os.environ`` directly.

Examples
--------
>>> settings = load_settings({"LINODE_TOKEN": "tok"})
>>> settings.system_tag
'slack-bot'
"""

from __future__ import annotations

import logging
from collections import abc as cabc
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

from vm_stack._input_resolution import InputResolution, resolve_input

logger = logging.getLogger(__name__)

TOKEN_ENV_KEY = "LINODE_TOKEN"
DEFAULT_SYSTEM_TAG = "slack-bot"


@dataclass(frozen=True, slots=True)
class Settings:
    """Read-only configuration shared by every lifecycle run.

    Attributes
    ----------
    linode_token
        Linode API token injected as the ``linode:token`` secret. ``None``
        when the environment does not provide one.
    system_tag
        Fixed tag applied to every instance next to the requester tag.
    work_dir
        Optional Pulumi workspace directory shared across runs.
    backend_url
        Optional Pulumi state backend URL (``PULUMI_BACKEND_URL``).
    config_passphrase
        Optional passphrase for the passphrase secrets provider.
    """

    linode_token: str | None = field(default=None, repr=False)
    system_tag: str = DEFAULT_SYSTEM_TAG
    work_dir: Path | None = None
    backend_url: str | None = None
    config_passphrase: str | None = field(default=None, repr=False)

    def workspace_env(self) -> dict[str, str]:
        """Return the environment variables forwarded to Pulumi workspaces.

        Examples
        --------
        >>> Settings(backend_url="file:///tmp/state").workspace_env()
        {'PULUMI_BACKEND_URL': 'file:///tmp/state'}
        """
        env: dict[str, str] = {}
        if self.backend_url:
            env["PULUMI_BACKEND_URL"] = self.backend_url
        if self.config_passphrase is not None:
            env["PULUMI_CONFIG_PASSPHRASE"] = self.config_passphrase
        return env


def load_settings(
    env: cabc.Mapping[str, str] | None = None,
    *,
    dotenv_path: Path | None = None,
) -> Settings:
    """Load settings from ``env`` or from the process environment.

    When ``env`` is ``None`` a ``.env`` file is loaded first without
    overriding variables that are already set.

    Parameters
    ----------
    env
        Explicit environment mapping, mainly for tests.
    dotenv_path
        Optional ``.env`` location; the default search is used otherwise.

    Returns
    -------
    Settings
        Resolved, immutable settings.
    """
    if env is None:
        if load_dotenv(dotenv_path=dotenv_path, override=False):
            logger.debug("Loaded environment from .env file")

    token = resolve_input(None, InputResolution(env_key=TOKEN_ENV_KEY), env=env)
    system_tag = resolve_input(
        None,
        InputResolution(env_key="VM_SYSTEM_TAG", default=DEFAULT_SYSTEM_TAG),
        env=env,
    )
    work_dir = resolve_input(
        None, InputResolution(env_key="PULUMI_WORK_DIR", as_path=True), env=env
    )
    backend_url = resolve_input(
        None, InputResolution(env_key="PULUMI_BACKEND_URL"), env=env
    )
    passphrase = resolve_input(
        None, InputResolution(env_key="PULUMI_CONFIG_PASSPHRASE"), env=env
    )

    if token is None:
        logger.warning("%s is not set; lifecycle runs will fail to configure", TOKEN_ENV_KEY)

    return Settings(
        linode_token=str(token) if token else None,
        system_tag=str(system_tag),
        work_dir=work_dir if isinstance(work_dir, Path) else None,
        backend_url=str(backend_url) if backend_url else None,
        config_passphrase=str(passphrase) if passphrase is not None else None,
    )
