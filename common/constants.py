from aws_cdk import aws_lambda as _lambda

POWER_TOOLS_PYTHON_RUNTIME = "python312"
POWER_TOOLS_LAMBDA_LAYER_NAME = "AWSLambdaPowertoolsPythonV3"
POWER_TOOLS_LAMBDA_LAYER_ACCOUNT = "017000801446"
POWER_TOOLS_VERSION = "18"
POWER_TOOLS_ARCHITECTURE = "x86_64"
POWER_TOOLS_LAYER = "arn:aws:lambda:{region}:{lambda_layer_account}:layer:{power_tools_type}-{runtime}-{architecture}:{version}"

PYTHON_RUNTIME = _lambda.Runtime.PYTHON_3_12
DEFAULT_ARCHITECTURE = _lambda.Architecture.X86_64
LAMBDA_SRC = "lambdas"
SCHEMA_FILE = "schema.graphql"

# Deployment target
ACCOUNT_ID_ENV_VAR = "AWS_ACCOUNT_ID"
REGION_ENV_VAR = "AWS_REGION"
DEFAULT_ACCOUNT_ID = "847850007406"
DEFAULT_REGION = "eu-west-1"

STACK_NAME = "TrinityStack"
STACK_DESCRIPTION = "Trinity Movie Voting Application - Serverless Backend Infrastructure"

# TMDB settings forwarded to the Lambda environment
TMDB_API_KEY_ENV_VAR = "TMDB_API_KEY"
TMDB_READ_TOKEN_ENV_VAR = "TMDB_READ_TOKEN"
TMDB_BASE_URL_ENV_VAR = "TMDB_BASE_URL"
DEFAULT_TMDB_BASE_URL = "https://api.themoviedb.org/3"

# Naming convention components
SERVICE_NAME = "trinity"  # The application name

# Lambda action types (used in naming)
ACTION_TMDB = "tmdb"
ACTION_ROOM = "room"
ACTION_VOTE = "vote"
ACTION_MATCH = "match"
ACTION_PRE_SIGN_UP = "pre-sign-up"

LAMBDA_TIMEOUT_SECONDS = 30
LAMBDA_MEMORY_SIZE = 512
TRIGGER_TIMEOUT_SECONDS = 10
