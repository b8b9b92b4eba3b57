#!/usr/bin/env python3
"""AWS CDK entrypoint for provisioning the Trinity backend.

Loads a local ``.env`` file (if any), resolves the target account and region
from ``AWS_ACCOUNT_ID`` / ``AWS_REGION`` with fixed fallbacks, and registers
the single ``TrinityStack`` on a fresh CDK app.
"""
from pathlib import Path
from typing import Optional, Union

import aws_cdk as cdk
from aws_lambda_powertools import Logger

import common.constants as constants
from common.config import load_env, resolve_config, resolve_tmdb_settings
from trinity.trinity_stack import TrinityStack

logger = Logger(service="trinity-bootstrap")


def run(dotenv_path: Optional[Union[str, Path]] = None) -> cdk.App:
    load_env(dotenv_path)
    config = resolve_config()

    app = cdk.App()
    TrinityStack(
        app,
        constants.STACK_NAME,
        env=config.to_environment(),
        description=constants.STACK_DESCRIPTION,
        tmdb_settings=resolve_tmdb_settings(),
    )
    logger.info(
        "Trinity stack registered",
        stack=constants.STACK_NAME,
        account=config.account_id,
        region=config.region,
    )
    return app


if __name__ == "__main__":
    run().synth()
