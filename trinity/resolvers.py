"""AppSync resolver definitions backed by the Trinity Lambda data sources.

Every resolver invokes its Lambda with a ``{"operation": ..., ...}`` payload
and unwraps the ``{"statusCode", "body"}`` envelope the handlers return.
"""
import json
from typing import Optional

from attrs import define, field

DATA_SOURCE_ROOM = "RoomDataSource"
DATA_SOURCE_VOTE = "VoteDataSource"
DATA_SOURCE_MATCH = "MatchDataSource"

# VTL expressions spliced into the payload
CALLER_ID = '"$context.identity.sub"'
INPUT_ARG = "$util.toJson($context.arguments.input)"


def _string_arg(name: str) -> str:
    return f'"$context.arguments.{name}"'


@define(slots=True, frozen=True)
class ResolverDefinition:
    resolver_id: str
    data_source: str
    type_name: str
    field_name: str
    operation: str
    payload: dict[str, str] = field(factory=dict)
    result_path: Optional[str] = None

    def request_template(self) -> str:
        # values are raw VTL, so the payload object is assembled by hand
        entries = [f'"operation": {json.dumps(self.operation)}']
        entries.extend(f'"{key}": {value}' for key, value in self.payload.items())
        body = ",\n    ".join(entries)
        return (
            "{\n"
            '  "version": "2017-02-28",\n'
            '  "operation": "Invoke",\n'
            '  "payload": {\n'
            f"    {body}\n"
            "  }\n"
            "}"
        )

    def response_template(self) -> str:
        result = "$context.result.body"
        if self.result_path:
            result = f"{result}.{self.result_path}"
        return (
            "#if($context.error)\n"
            "  $util.error($context.error.message, $context.error.type)\n"
            "#end\n"
            "#if($context.result.statusCode == 200)\n"
            f"  $util.toJson({result})\n"
            "#else\n"
            '  $util.error($context.result.body.error, "BadRequest")\n'
            "#end"
        )


RESOLVERS = (
    ResolverDefinition(
        resolver_id="CreateRoomResolver",
        data_source=DATA_SOURCE_ROOM,
        type_name="Mutation",
        field_name="createRoom",
        operation="createRoom",
        payload={"userId": CALLER_ID, "input": INPUT_ARG},
    ),
    ResolverDefinition(
        resolver_id="JoinRoomResolver",
        data_source=DATA_SOURCE_ROOM,
        type_name="Mutation",
        field_name="joinRoom",
        operation="joinRoom",
        payload={"userId": CALLER_ID, "code": _string_arg("code")},
    ),
    ResolverDefinition(
        resolver_id="VoteResolver",
        data_source=DATA_SOURCE_VOTE,
        type_name="Mutation",
        field_name="vote",
        operation="vote",
        payload={"userId": CALLER_ID, "input": INPUT_ARG},
    ),
    ResolverDefinition(
        resolver_id="GetRoomResolver",
        data_source=DATA_SOURCE_ROOM,
        type_name="Query",
        field_name="getRoom",
        operation="getRoom",
        payload={"userId": CALLER_ID, "roomId": _string_arg("id")},
    ),
    ResolverDefinition(
        resolver_id="GetMyRoomsResolver",
        data_source=DATA_SOURCE_ROOM,
        type_name="Query",
        field_name="getMyRooms",
        operation="getMyRooms",
        payload={"userId": CALLER_ID},
    ),
    ResolverDefinition(
        resolver_id="GetMyMatchesResolver",
        data_source=DATA_SOURCE_MATCH,
        type_name="Query",
        field_name="getMyMatches",
        operation="getUserMatches",
        payload={"userId": CALLER_ID},
        result_path="matches",
    ),
    ResolverDefinition(
        resolver_id="CheckUserMatchesResolver",
        data_source=DATA_SOURCE_MATCH,
        type_name="Query",
        field_name="checkUserMatches",
        operation="checkUserMatches",
        payload={"userId": CALLER_ID},
        result_path="matches",
    ),
    ResolverDefinition(
        resolver_id="CheckRoomMatchResolver",
        data_source=DATA_SOURCE_MATCH,
        type_name="Query",
        field_name="checkRoomMatch",
        operation="checkRoomMatch",
        payload={"roomId": _string_arg("roomId")},
        result_path="match",
    ),
    ResolverDefinition(
        resolver_id="CreateMatchResolver",
        data_source=DATA_SOURCE_MATCH,
        type_name="Mutation",
        field_name="createMatch",
        operation="createMatch",
        payload={"input": INPUT_ARG},
        result_path="match",
    ),
)
