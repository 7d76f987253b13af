"""Parameter store access and workspace .env refresh.

Parameters live under ``/app/<env>/<suffix>`` in AWS SSM and are read with
the aws CLI (``ssm get-parameters --with-decryption``), so credentials and
SSO profiles resolve exactly as they do for the user's own shell.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable, Mapping

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .config import Settings
from .process import require_tool, run
from .utils.errors import ParameterStoreError
from .workspace.config import Workspace
from .workspace.env import write_global_env

logger = logging.getLogger(__name__)

# GetParameters accepts at most 10 names per call
MAX_PARAMS_PER_REQUEST = 10


class SsmParameter(BaseModel):
    """One entry of a GetParameters response."""

    model_config = ConfigDict(populate_by_name=True)

    name: str = Field(alias="Name")
    value: str = Field(default="", alias="Value")


class SsmResponse(BaseModel):
    """GetParameters response body."""

    model_config = ConfigDict(populate_by_name=True)

    parameters: list[SsmParameter] = Field(default_factory=list, alias="Parameters")
    invalid_parameters: list[str] = Field(default_factory=list, alias="InvalidParameters")


def param_prefix(env_name: str) -> str:
    return f"/app/{env_name}/"


class ParameterStore:
    """SSM parameters for one AWS profile and region."""

    def __init__(self, profile: str = "", region: str = "us-east-1") -> None:
        self.profile = profile
        self.region = region

    def _aws(self, args: list[str]) -> list[str]:
        cmd = ["aws", *args, "--region", self.region]
        if self.profile:
            cmd += ["--profile", self.profile]
        return cmd

    def _get_parameters(self, names: list[str]) -> SsmResponse:
        result = run(
            self._aws(["ssm", "get-parameters", "--names", *names, "--with-decryption", "--output", "json"]),
            capture=True,
        )
        if not result.ok:
            raise ParameterStoreError(result.stderr.strip() or f"aws exited with {result.returncode}")
        try:
            return SsmResponse.model_validate(json.loads(result.stdout))
        except (json.JSONDecodeError, ValidationError) as e:
            raise ParameterStoreError(f"unexpected get-parameters response: {e}") from e

    def fetch_one(self, path: str) -> str:
        """Value of the parameter at ``path``.

        Raises:
            ParameterStoreError: the call failed or the parameter does not exist.
        """
        response = self._get_parameters([path])
        for param in response.parameters:
            if param.name == path:
                return param.value.strip()
        raise ParameterStoreError(f"parameter not found: {path}")

    def fetch_many(self, prefix: str, suffixes: list[str]) -> dict[str, str]:
        """Fetch ``prefix + suffix`` for every suffix, in batches.

        Returns:
            suffix -> value for every parameter that exists. Missing names are
            logged and left out.
        """
        values: dict[str, str] = {}
        for i in range(0, len(suffixes), MAX_PARAMS_PER_REQUEST):
            batch = suffixes[i : i + MAX_PARAMS_PER_REQUEST]
            response = self._get_parameters([prefix + s for s in batch])
            for param in response.parameters:
                values[param.name.removeprefix(prefix)] = param.value.strip()
            if response.invalid_parameters:
                logger.warning(f"Parameters not found: {', '.join(response.invalid_parameters)}")
        return values

    # -- credentials -----------------------------------------------------------

    def caller_identity(self) -> bool:
        """True when the profile has a valid session."""
        cmd = ["aws", "sts", "get-caller-identity"]
        if self.profile:
            cmd += ["--profile", self.profile]
        return run(cmd, capture=True).ok

    def sso_login(self) -> None:
        """Interactive ``aws sso login``; output goes to the terminal."""
        cmd = ["aws", "sso", "login"]
        if self.profile:
            cmd += ["--profile", self.profile]
        result = run(cmd)
        if not result.ok:
            raise ParameterStoreError(f"AWS login failed (exit {result.returncode})")


def check_aws_cli() -> str:
    return require_tool("aws")


def map_params_to_env(
    values: Mapping[str, str],
    params: Mapping[str, str],
    aliases: Mapping[str, list[str]],
    region: str,
    env_name: str,
) -> dict[str, str]:
    """Turn fetched parameters into .env variables.

    Suffixes are renamed through ``params`` (unmapped suffixes keep their
    name), then AWS_REGION and APP_ENV are added, then each alias takes the
    value of its first non-empty source.
    """
    env: dict[str, str] = {}
    for suffix, value in values.items():
        env[params.get(suffix) or suffix] = value

    env["AWS_REGION"] = region
    env["APP_ENV"] = env_name

    for key, sources in aliases.items():
        for source in sources:
            if env.get(source):
                env[key] = env[source]
                break
    return env


def refresh_environment(
    workspace: Workspace,
    env_name: str = "",
    settings: Settings | None = None,
    store: ParameterStore | None = None,
    on_progress: Callable[[str], None] | None = None,
) -> dict[str, str]:
    """Fetch parameters for ``env_name`` and rewrite the workspace .env.

    Returns:
        The variables written.

    Raises:
        ToolMissingError: aws CLI not installed.
        ParameterStoreError: login or fetch failed.
    """
    settings = settings or Settings()

    def progress(msg: str) -> None:
        logger.debug(msg)
        if on_progress:
            on_progress(msg)

    env_name = env_name or workspace.param_env or settings.aws.param_env
    region = workspace.region or settings.aws.region
    if store is None:
        check_aws_cli()
        store = ParameterStore(profile=workspace.profile, region=region)

    progress(f"Checking AWS credentials (profile: {workspace.profile or 'default'})...")
    if not store.caller_identity():
        progress("AWS session expired, logging in...")
        store.sso_login()

    suffixes = sorted(workspace.params)
    prefix = param_prefix(env_name)
    progress(f"Fetching environment from {prefix}... ({len(suffixes)} parameters)")
    values = store.fetch_many(prefix, suffixes)

    env = map_params_to_env(values, workspace.params, workspace.env_aliases, region, env_name)
    env.update(workspace.env)
    path = write_global_env(workspace.root, env)
    progress(f"Updated {path} ({len(env)} variables)")
    return env
