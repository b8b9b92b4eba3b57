"""Cognito pre sign-up trigger that auto-confirms users and their email."""
from typing import Any

from aws_lambda_powertools.utilities.typing import LambdaContext

from trinity_common import build_logger

logger = build_logger("trinity-pre-sign-up")


@logger.inject_lambda_context
def handler(event: dict[str, Any], context: LambdaContext) -> dict[str, Any]:
    return auto_confirm(event)


def auto_confirm(event: dict[str, Any]) -> dict[str, Any]:
    attributes = event.get("request", {}).get("userAttributes", {})
    response = event.setdefault("response", {})

    response["autoConfirmUser"] = True
    if attributes.get("email"):
        response["autoVerifyEmail"] = True

    logger.info(
        "User auto-confirmed",
        user_pool_id=event.get("userPoolId"),
        user_name=event.get("userName"),
        auto_verify_email=response.get("autoVerifyEmail", False),
    )
    return event
