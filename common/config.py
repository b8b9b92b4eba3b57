"""Deployment configuration resolved from the process environment.

Values come from environment variables, optionally seeded from a local
``.env`` file. Every field has a fallback, so resolution never fails.
"""
import os
from pathlib import Path
from typing import Mapping, Optional, Union

from attrs import define, field
from attrs.validators import instance_of
from aws_cdk import Environment
from aws_lambda_powertools import Logger
from dotenv import load_dotenv

import common.constants as constants

logger = Logger(service="trinity-bootstrap")


@define(slots=True, frozen=True)
class ResolvedConfig:
    account_id: str = field(validator=instance_of(str))
    region: str = field(validator=instance_of(str))

    def to_environment(self) -> Environment:
        return Environment(account=self.account_id, region=self.region)


@define(slots=True, frozen=True)
class TmdbSettings:
    api_key: str = field(default="", validator=instance_of(str))
    read_token: str = field(default="", validator=instance_of(str))
    base_url: str = field(
        default=constants.DEFAULT_TMDB_BASE_URL, validator=instance_of(str)
    )

    def to_lambda_environment(self) -> dict[str, str]:
        return {
            constants.TMDB_API_KEY_ENV_VAR: self.api_key,
            constants.TMDB_READ_TOKEN_ENV_VAR: self.read_token,
            constants.TMDB_BASE_URL_ENV_VAR: self.base_url,
        }


def load_env(dotenv_path: Optional[Union[str, Path]] = None) -> bool:
    """Load a ``.env`` file into ``os.environ``.

    A missing file is not an error. Variables that are already set win over
    the file's values.
    """
    loaded = load_dotenv(dotenv_path=dotenv_path, override=False)
    logger.debug("Environment file processed", loaded=loaded, path=str(dotenv_path or ".env"))
    return loaded


def _env_or_default(environ: Mapping[str, str], name: str, default: str) -> str:
    # unset and empty are treated the same
    return environ.get(name) or default


def resolve_config(environ: Optional[Mapping[str, str]] = None) -> ResolvedConfig:
    environ = os.environ if environ is None else environ
    return ResolvedConfig(
        account_id=_env_or_default(
            environ, constants.ACCOUNT_ID_ENV_VAR, constants.DEFAULT_ACCOUNT_ID
        ),
        region=_env_or_default(environ, constants.REGION_ENV_VAR, constants.DEFAULT_REGION),
    )


def resolve_tmdb_settings(environ: Optional[Mapping[str, str]] = None) -> TmdbSettings:
    environ = os.environ if environ is None else environ
    return TmdbSettings(
        api_key=environ.get(constants.TMDB_API_KEY_ENV_VAR, ""),
        read_token=environ.get(constants.TMDB_READ_TOKEN_ENV_VAR, ""),
        base_url=_env_or_default(
            environ, constants.TMDB_BASE_URL_ENV_VAR, constants.DEFAULT_TMDB_BASE_URL
        ),
    )
