from pathlib import Path
from typing import Optional

from aws_cdk import (
    CfnOutput,
    Duration,
    RemovalPolicy,
    Stack,
    aws_appsync as appsync,
    aws_cognito as cognito,
    aws_dynamodb as dynamodb,
    aws_lambda as _lambda,
)
from aws_lambda_powertools import Logger
from constructs import Construct

import common.constants as constants
from common.config import TmdbSettings
from common.stack_context import StackContext
from trinity.resolvers import (
    DATA_SOURCE_MATCH,
    DATA_SOURCE_ROOM,
    DATA_SOURCE_VOTE,
    RESOLVERS,
)

logger = Logger(service="trinity-infra")

PROJECT_ROOT = Path(__file__).resolve().parent.parent


class TrinityStack(Stack):

    def __init__(
        self,
        scope: Construct,
        construct_id: str,
        tmdb_settings: Optional[TmdbSettings] = None,
        **kwargs,
    ) -> None:
        super().__init__(scope, construct_id, **kwargs)
        self.context = StackContext(scope=self)
        self.tmdb_settings = tmdb_settings or TmdbSettings()

        # Configure Lambda code and layers
        self.code = _lambda.Code.from_asset(str(PROJECT_ROOT / constants.LAMBDA_SRC))
        self.layers = [
            _lambda.LayerVersion.from_layer_version_arn(
                self,
                self.context.build_resource_id("LambdaPowerToolsLayer"),
                layer_version_arn=self.context.build_power_tools_layer_arn(),
            ),
        ]

        # DynamoDB tables
        self.rooms_table = self._build_rooms_table()
        self.votes_table = self._build_votes_table()
        self.matches_table = self._build_matches_table()
        self.users_table = self._build_users_table()
        self.tables = [
            self.rooms_table,
            self.votes_table,
            self.matches_table,
            self.users_table,
        ]

        # Cognito user pool with auto-confirming sign up
        self.pre_sign_up_lambda = self._build_pre_sign_up_lambda()
        self.user_pool = self._build_user_pool(self.pre_sign_up_lambda)
        self.user_pool_client = self._build_user_pool_client(self.user_pool)

        # AppSync GraphQL API
        self.api = self._build_graphql_api(self.user_pool)

        # Lambda functions backing the API
        self.tmdb_lambda = self._build_api_lambda(
            constants.ACTION_TMDB,
            handler="tmdb_handler.handler",
            description="TMDB API integration with Latin script filtering",
        )
        self.room_lambda = self._build_api_lambda(
            constants.ACTION_ROOM,
            handler="room_handler.handler",
            description="Room creation and joining logic",
        )
        self.vote_lambda = self._build_api_lambda(
            constants.ACTION_VOTE,
            handler="vote_handler.handler",
            description="Vote processing and match detection",
        )
        self.match_lambda = self._build_api_lambda(
            constants.ACTION_MATCH,
            handler="match_handler.handler",
            description="Match creation and history management",
        )

        # Cross references between functions
        self.room_lambda.add_environment("TMDB_LAMBDA_ARN", self.tmdb_lambda.function_arn)
        self.vote_lambda.add_environment("MATCH_LAMBDA_ARN", self.match_lambda.function_arn)
        self.vote_lambda.add_environment("GRAPHQL_ENDPOINT", self.api.graphql_url)

        # Permissions
        self._grant_table_access(
            [self.tmdb_lambda, self.room_lambda, self.vote_lambda, self.match_lambda]
        )
        self.tmdb_lambda.grant_invoke(self.room_lambda)
        self.match_lambda.grant_invoke(self.vote_lambda)

        # Resolvers
        self._build_resolvers()

        # Values needed by the mobile app configuration
        self._build_outputs()

    # Resource creation

    def _build_table(
        self,
        name: str,
        partition_key: dynamodb.Attribute,
        sort_key: Optional[dynamodb.Attribute] = None,
        time_to_live_attribute: Optional[str] = None,
    ) -> dynamodb.Table:
        return dynamodb.Table(
            self,
            self.context.build_resource_id(name),
            table_name=self.context.build_resource_id(name),
            partition_key=partition_key,
            sort_key=sort_key,
            billing_mode=dynamodb.BillingMode.PAY_PER_REQUEST,
            removal_policy=RemovalPolicy.DESTROY,
            point_in_time_recovery=True,
            time_to_live_attribute=time_to_live_attribute,
        )

    def _build_rooms_table(self) -> dynamodb.Table:
        rooms_table = self._build_table(
            "Rooms",
            partition_key=_string_attribute("id"),
            time_to_live_attribute="ttl",
        )
        # Room code lookup on join
        rooms_table.add_global_secondary_index(
            index_name="code-index",
            partition_key=_string_attribute("code"),
        )
        rooms_table.add_global_secondary_index(
            index_name="hostId-createdAt-index",
            partition_key=_string_attribute("hostId"),
            sort_key=_string_attribute("createdAt"),
        )
        return rooms_table

    def _build_votes_table(self) -> dynamodb.Table:
        votes_table = self._build_table(
            "Votes",
            partition_key=_string_attribute("roomId"),
            sort_key=_string_attribute("userMovieId"),
        )
        votes_table.add_global_secondary_index(
            index_name="userId-timestamp-index",
            partition_key=_string_attribute("userId"),
            sort_key=_string_attribute("timestamp"),
        )
        return votes_table

    def _build_matches_table(self) -> dynamodb.Table:
        matches_table = self._build_table(
            "Matches",
            partition_key=_string_attribute("roomId"),
            sort_key=dynamodb.Attribute(name="movieId", type=dynamodb.AttributeType.NUMBER),
        )
        matches_table.add_local_secondary_index(
            index_name="timestamp-index",
            sort_key=_string_attribute("timestamp"),
        )
        # Per-user match copies are queried through this index
        matches_table.add_global_secondary_index(
            index_name="userId-timestamp-index",
            partition_key=_string_attribute("userId"),
            sort_key=_string_attribute("timestamp"),
        )
        return matches_table

    def _build_users_table(self) -> dynamodb.Table:
        return self._build_table("Users", partition_key=_string_attribute("id"))

    def _build_pre_sign_up_lambda(self) -> _lambda.Function:
        """Cognito trigger that auto-confirms users and their email."""
        function_name = self.context.build_resource_name(
            "trigger", action=constants.ACTION_PRE_SIGN_UP
        )
        return _lambda.Function(
            self,
            self.context.build_resource_id("Trigger", action=constants.ACTION_PRE_SIGN_UP),
            function_name=function_name,
            runtime=constants.PYTHON_RUNTIME,
            handler="pre_sign_up.handler",
            code=self.code,
            architecture=constants.DEFAULT_ARCHITECTURE,
            layers=self.layers,
            timeout=Duration.seconds(constants.TRIGGER_TIMEOUT_SECONDS),
            log_group=self.context.build_log_group(function_name),
            environment={"LOG_LEVEL": "INFO"},
        )

    def _build_user_pool(self, pre_sign_up: _lambda.IFunction) -> cognito.UserPool:
        return cognito.UserPool(
            self,
            self.context.build_resource_id("UserPool"),
            user_pool_name=self.context.build_resource_name("user-pool"),
            self_sign_up_enabled=True,
            sign_in_aliases=cognito.SignInAliases(email=True),
            # verification is handled by the pre sign-up trigger
            auto_verify=cognito.AutoVerifiedAttrs(email=False),
            standard_attributes=cognito.StandardAttributes(
                email=cognito.StandardAttribute(required=True, mutable=True),
            ),
            password_policy=cognito.PasswordPolicy(
                min_length=8,
                require_lowercase=False,
                require_uppercase=False,
                require_digits=False,
                require_symbols=False,
            ),
            account_recovery=cognito.AccountRecovery.EMAIL_ONLY,
            removal_policy=RemovalPolicy.DESTROY,
            lambda_triggers=cognito.UserPoolTriggers(pre_sign_up=pre_sign_up),
        )

    def _build_user_pool_client(self, user_pool: cognito.IUserPool) -> cognito.UserPoolClient:
        """Public client for the mobile app, so no secret is generated."""
        return cognito.UserPoolClient(
            self,
            self.context.build_resource_id("UserPoolClient"),
            user_pool=user_pool,
            user_pool_client_name=self.context.build_resource_name("client", action="mobile"),
            generate_secret=False,
            auth_flows=cognito.AuthFlow(
                user_srp=True,
                user_password=True,
                admin_user_password=True,
                custom=False,
            ),
            prevent_user_existence_errors=True,
            access_token_validity=Duration.hours(1),
            id_token_validity=Duration.hours(1),
            refresh_token_validity=Duration.days(30),
        )

    def _build_graphql_api(self, user_pool: cognito.IUserPool) -> appsync.GraphqlApi:
        return appsync.GraphqlApi(
            self,
            self.context.build_resource_id("API"),
            name=self.context.build_resource_name("api"),
            definition=appsync.Definition.from_file(
                str(PROJECT_ROOT / constants.SCHEMA_FILE)
            ),
            authorization_config=appsync.AuthorizationConfig(
                default_authorization=appsync.AuthorizationMode(
                    authorization_type=appsync.AuthorizationType.USER_POOL,
                    user_pool_config=appsync.UserPoolConfig(user_pool=user_pool),
                ),
            ),
            log_config=appsync.LogConfig(field_log_level=appsync.FieldLogLevel.ALL),
            xray_enabled=True,
        )

    def _lambda_environment(self) -> dict[str, str]:
        return {
            "LOG_LEVEL": "INFO",
            **self.tmdb_settings.to_lambda_environment(),
            "ROOMS_TABLE": self.rooms_table.table_name,
            "VOTES_TABLE": self.votes_table.table_name,
            "MATCHES_TABLE": self.matches_table.table_name,
            "USERS_TABLE": self.users_table.table_name,
        }

    def _build_api_lambda(
        self, action: str, handler: str, description: str
    ) -> _lambda.Function:
        function_name = self.context.build_resource_name("handler", action=action)
        return _lambda.Function(
            self,
            self.context.build_resource_id("Function", action=action),
            function_name=function_name,
            runtime=constants.PYTHON_RUNTIME,
            handler=handler,
            code=self.code,
            architecture=constants.DEFAULT_ARCHITECTURE,
            description=description,
            layers=self.layers,
            environment=self._lambda_environment(),
            timeout=Duration.seconds(constants.LAMBDA_TIMEOUT_SECONDS),
            memory_size=constants.LAMBDA_MEMORY_SIZE,
            tracing=_lambda.Tracing.ACTIVE,
            log_group=self.context.build_log_group(function_name),
        )

    def _grant_table_access(self, functions: list[_lambda.IFunction]) -> None:
        for function in functions:
            for table in self.tables:
                table.grant_read_write_data(function)

    def _build_resolvers(self) -> None:
        data_sources = {
            DATA_SOURCE_ROOM: self.api.add_lambda_data_source(DATA_SOURCE_ROOM, self.room_lambda),
            DATA_SOURCE_VOTE: self.api.add_lambda_data_source(DATA_SOURCE_VOTE, self.vote_lambda),
            DATA_SOURCE_MATCH: self.api.add_lambda_data_source(
                DATA_SOURCE_MATCH, self.match_lambda
            ),
        }
        for definition in RESOLVERS:
            data_sources[definition.data_source].create_resolver(
                definition.resolver_id,
                type_name=definition.type_name,
                field_name=definition.field_name,
                request_mapping_template=appsync.MappingTemplate.from_string(
                    definition.request_template()
                ),
                response_mapping_template=appsync.MappingTemplate.from_string(
                    definition.response_template()
                ),
            )
        logger.debug("AppSync resolvers created", count=len(RESOLVERS))

    def _build_outputs(self) -> None:
        CfnOutput(
            self,
            "UserPoolId",
            value=self.user_pool.user_pool_id,
            description="Cognito User Pool ID",
            export_name="TrinityUserPoolId",
        )
        CfnOutput(
            self,
            "UserPoolClientId",
            value=self.user_pool_client.user_pool_client_id,
            description="Cognito User Pool Client ID",
            export_name="TrinityUserPoolClientId",
        )
        CfnOutput(
            self,
            "GraphQLEndpoint",
            value=self.api.graphql_url,
            description="AppSync GraphQL API Endpoint",
            export_name="TrinityGraphQLEndpoint",
        )
        CfnOutput(
            self,
            "AWSRegion",
            value=self.region,
            description="AWS Region",
            export_name="TrinityAWSRegion",
        )
        for label, table in (
            ("Rooms", self.rooms_table),
            ("Votes", self.votes_table),
            ("Matches", self.matches_table),
            ("Users", self.users_table),
        ):
            CfnOutput(
                self,
                f"{label}TableName",
                value=table.table_name,
                description=f"DynamoDB {label} Table Name",
            )


def _string_attribute(name: str) -> dynamodb.Attribute:
    return dynamodb.Attribute(name=name, type=dynamodb.AttributeType.STRING)
