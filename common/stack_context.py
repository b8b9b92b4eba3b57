from attrs import define, field
from aws_cdk import RemovalPolicy, Stack, aws_logs as logs
from typing import Optional

import common.constants as constants


@define(slots=True, frozen=True)
class StackContext:
    scope: Stack
    service: str = field(default=constants.SERVICE_NAME, init=False)

    @property
    def aws_account_id(self) -> str:
        return Stack.of(self.scope).account

    @property
    def aws_region(self) -> str:
        return Stack.of(self.scope).region

    # ---------- layers ----------
    def build_power_tools_layer_arn(self) -> str:
        region = self.aws_region
        if not region:
            raise ValueError(
                "AWS region is not set, unable to resolve Power Tools Layer ARN"
            )
        return constants.POWER_TOOLS_LAYER.format(
            region=region,
            runtime=constants.POWER_TOOLS_PYTHON_RUNTIME,
            version=constants.POWER_TOOLS_VERSION,
            lambda_layer_account=constants.POWER_TOOLS_LAMBDA_LAYER_ACCOUNT,
            power_tools_type=constants.POWER_TOOLS_LAMBDA_LAYER_NAME,
            architecture=constants.POWER_TOOLS_ARCHITECTURE,
        )

    # ---------- naming ----------
    def build_resource_name(
        self, resource_type: str, action: Optional[str] = None
    ) -> str:
        """Build resource name with optional action.

        Examples:
            - Without action: trinity-user-pool
            - With action: trinity-room-handler
        """
        if action:
            return f"{self.service}-{action}-{resource_type}".lower()
        return f"{self.service}-{resource_type}".lower()

    def build_resource_id(self, resource_type: str, action: Optional[str] = None) -> str:
        """Build resource ID with optional action.

        Examples:
            - Without action: TrinityRooms
            - With action: TrinityRoomLogGroup
        """
        if action:
            return (
                f"{self.service.capitalize()}"
                f"{_pascal(action)}"
                f"{_pascal(resource_type)}"
            )
        return f"{self.service.capitalize()}{_pascal(resource_type)}"

    def build_log_group(self, function_name: str) -> logs.LogGroup:
        return logs.LogGroup(
            self.scope,
            f"{_pascal(function_name)}LogGroup",
            log_group_name=f"/aws/lambda/{function_name}",
            removal_policy=RemovalPolicy.DESTROY,
            retention=logs.RetentionDays.ONE_YEAR,
        )


def _pascal(value: str) -> str:
    # "pre-sign-up" -> "PreSignUp", "UserPool" stays "UserPool"
    return "".join(part[:1].upper() + part[1:] for part in value.split("-"))
