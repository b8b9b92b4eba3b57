import os
import secrets
import string
import uuid
from typing import Any, Optional

from aws_lambda_powertools.utilities.typing import LambdaContext
from boto3.dynamodb.conditions import Key
from botocore.exceptions import ClientError

from trinity_common import (
    ROOM_TTL_SECONDS,
    Room,
    TrinityRequestError,
    build_logger,
    epoch_seconds,
    error_response,
    get_table,
    invoke_lambda,
    now_iso,
    ok,
    require_env,
    validate_genres,
    validate_media_type,
)

logger = build_logger("trinity-room")


class RoomCodeGenerator:
    CHARACTERS = string.ascii_uppercase + string.digits
    CODE_LENGTH = 6
    MAX_ATTEMPTS = 10

    def __init__(self, rooms_table) -> None:
        self.rooms_table = rooms_table

    @classmethod
    def generate(cls) -> str:
        return "".join(secrets.choice(cls.CHARACTERS) for _ in range(cls.CODE_LENGTH))

    def generate_unique(self) -> str:
        for _ in range(self.MAX_ATTEMPTS):
            code = self.generate()
            try:
                result = self.rooms_table.query(
                    IndexName="code-index",
                    KeyConditionExpression=Key("code").eq(code),
                )
            except ClientError:
                logger.exception("Error checking code uniqueness", code=code)
                continue
            if not result.get("Items"):
                return code
        raise TrinityRequestError("Failed to generate unique room code after maximum attempts")


class TmdbIntegration:
    def __init__(self, function_arn: str) -> None:
        if not function_arn:
            raise TrinityRequestError("TMDB_LAMBDA_ARN environment variable is required")
        self.function_arn = function_arn

    def fetch_candidates(self, media_type: str, genre_ids: list[int]) -> list[dict[str, Any]]:
        payload = {"mediaType": media_type, "genreIds": genre_ids, "page": 1}
        logger.info("Invoking TMDB Lambda", payload=payload)
        try:
            result = invoke_lambda(self.function_arn, payload)
        except (ClientError, ValueError) as e:
            raise TrinityRequestError(f"Failed to fetch movie candidates: {e}") from e

        if result.get("statusCode") != 200:
            raise TrinityRequestError(
                f"Failed to fetch movie candidates: TMDB Lambda error: {result.get('body')}"
            )
        return result.get("body", {}).get("candidates") or []


class RoomService:
    def __init__(
        self,
        rooms_table,
        tmdb: TmdbIntegration,
        votes_table=None,
        matches_table=None,
    ) -> None:
        self.rooms_table = rooms_table
        self.votes_table = votes_table
        self.matches_table = matches_table
        self.tmdb = tmdb
        self.code_generator = RoomCodeGenerator(rooms_table)

    @classmethod
    def from_environment(cls) -> "RoomService":
        votes_table = os.environ.get("VOTES_TABLE")
        matches_table = os.environ.get("MATCHES_TABLE")
        return cls(
            rooms_table=get_table(require_env("ROOMS_TABLE")),
            tmdb=TmdbIntegration(os.environ.get("TMDB_LAMBDA_ARN", "")),
            votes_table=get_table(votes_table) if votes_table else None,
            matches_table=get_table(matches_table) if matches_table else None,
        )

    def create_room(self, user_id: str, media_type: Optional[str], genre_ids: Optional[list[int]]) -> Room:
        media_type = validate_media_type(media_type)
        genre_ids = validate_genres(genre_ids)

        code = self.code_generator.generate_unique()
        candidates = self.tmdb.fetch_candidates(media_type, genre_ids)
        if not candidates:
            logger.warning("No candidates returned from TMDB, proceeding with empty list")

        room = Room(
            id=str(uuid.uuid4()),
            code=code,
            host_id=user_id,
            media_type=media_type,
            genre_ids=genre_ids,
            candidates=candidates,
            created_at=now_iso(),
            ttl=epoch_seconds() + ROOM_TTL_SECONDS,
        )
        self.rooms_table.put_item(
            Item=room.to_item(),
            ConditionExpression="attribute_not_exists(id)",
        )
        logger.info("Room created", room_id=room.id, code=code)
        return room

    def join_room(self, code: Optional[str]) -> Room:
        if not code or not code.strip():
            raise TrinityRequestError("Room code is required")

        result = self.rooms_table.query(
            IndexName="code-index",
            KeyConditionExpression=Key("code").eq(code.upper()),
        )
        items = result.get("Items") or []
        if not items:
            raise TrinityRequestError("Room not found. Please check the room code.")
        if len(items) > 1:
            logger.error("Multiple rooms found for code", code=code, count=len(items))
            raise TrinityRequestError("Multiple rooms found for code. Please contact support.")

        room = Room.from_item(items[0])
        if room.is_expired():
            raise TrinityRequestError("Room has expired. Please create a new room.")

        logger.info("User joined room", room_id=room.id, code=code)
        return room

    def get_room(self, room_id: str) -> Optional[Room]:
        result = self.rooms_table.get_item(Key={"id": room_id})
        item = result.get("Item")
        if not item:
            return None
        room = Room.from_item(item)
        return None if room.is_expired() else room

    def get_my_rooms(self, user_id: str) -> list[Room]:
        if not user_id:
            raise TrinityRequestError("User ID is required")
        try:
            rooms = self._hosted_rooms(user_id)
            rooms.extend(self._participated_rooms(user_id, {room.id for room in rooms}))
        except ClientError as e:
            logger.exception("Error fetching user rooms", user_id=user_id)
            raise TrinityRequestError("Failed to fetch user rooms") from e

        now = epoch_seconds()
        active = [room for room in rooms if not room.is_expired(now)]
        if self.matches_table is not None:
            active = [room for room in active if not self._has_match(room.id)]

        logger.info("Active rooms found", user_id=user_id, count=len(active))
        return sorted(active, key=lambda room: room.created_at, reverse=True)

    def _hosted_rooms(self, user_id: str) -> list[Room]:
        result = self.rooms_table.query(
            IndexName="hostId-createdAt-index",
            KeyConditionExpression=Key("hostId").eq(user_id),
            ScanIndexForward=False,
        )
        return [Room.from_item(item) for item in result.get("Items") or []]

    def _participated_rooms(self, user_id: str, exclude: set[str]) -> list[Room]:
        if self.votes_table is None:
            return []
        result = self.votes_table.query(
            IndexName="userId-timestamp-index",
            KeyConditionExpression=Key("userId").eq(user_id),
        )
        room_ids = {vote["roomId"] for vote in result.get("Items") or []} - exclude

        rooms = []
        for room_id in sorted(room_ids):
            try:
                item = self.rooms_table.get_item(Key={"id": room_id}).get("Item")
            except ClientError:
                logger.exception("Error fetching room", room_id=room_id)
                continue
            if item:
                rooms.append(Room.from_item(item))
        return rooms

    def _has_match(self, room_id: str) -> bool:
        try:
            result = self.matches_table.query(
                KeyConditionExpression=Key("roomId").eq(room_id),
                Limit=1,
            )
        except ClientError:
            # keep the room visible when the lookup fails
            logger.exception("Error checking matches for room", room_id=room_id)
            return False
        return bool(result.get("Items"))


@logger.inject_lambda_context
def handler(event: dict[str, Any], context: LambdaContext) -> dict[str, Any]:
    return handle_event(event)


def handle_event(event: dict[str, Any], service: Optional[RoomService] = None) -> dict[str, Any]:
    operation = event.get("operation")
    logger.info("Room event received", operation=operation)
    try:
        service = service or RoomService.from_environment()

        if operation == "createRoom":
            user_id = event.get("userId")
            if not user_id:
                raise TrinityRequestError("User ID is required")
            room_input = event.get("input") or {}
            room = service.create_room(
                user_id, room_input.get("mediaType"), room_input.get("genreIds")
            )
            return ok(room.to_item())

        if operation == "joinRoom":
            return ok(service.join_room(event.get("code")).to_item())

        if operation == "getMyRooms":
            rooms = service.get_my_rooms(event.get("userId"))
            return ok([room.to_item() for room in rooms])

        if operation == "getRoom":
            room_id = event.get("roomId")
            if not room_id:
                raise TrinityRequestError("Room ID is required")
            room = service.get_room(room_id)
            if room is None:
                raise TrinityRequestError("Room not found or has expired")
            return ok(room.to_item())

        raise TrinityRequestError(f"Unknown operation: {operation}")

    except (ValueError, ClientError) as e:
        logger.exception("Room request failed", operation=operation)
        return error_response(400, str(e))
