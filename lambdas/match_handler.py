import os
from typing import Any, Optional

from aws_lambda_powertools.utilities.typing import LambdaContext
from boto3.dynamodb.conditions import Attr, Key
from botocore.exceptions import ClientError

from trinity_common import (
    Match,
    TrinityRequestError,
    build_logger,
    error_response,
    from_dynamodb,
    get_table,
    now_iso,
    ok,
    require_env,
)

logger = build_logger("trinity-match")

USER_MATCHES_LIMIT = 50
CHECK_MATCHES_LIMIT = 10


class MatchService:
    def __init__(self, matches_table, users_table=None) -> None:
        self.matches_table = matches_table
        self.users_table = users_table

    @classmethod
    def from_environment(cls) -> "MatchService":
        users_table = os.environ.get("USERS_TABLE")
        if not users_table:
            logger.warning("USERS_TABLE not configured, user activity tracking disabled")
        return cls(
            matches_table=get_table(require_env("MATCHES_TABLE")),
            users_table=get_table(users_table) if users_table else None,
        )

    def handle_match_created(self, match: Match) -> None:
        logger.info("Processing match created", match_id=match.id, users=len(match.matched_users))
        self.update_user_activity(match.matched_users)
        logger.info(
            "Match processed",
            title=match.title,
            media_type=match.media_type,
            matched_users=match.matched_users,
        )

    def get_user_matches(self, user_id: str) -> list[dict[str, Any]]:
        return self._scan_user_matches(user_id, USER_MATCHES_LIMIT)

    def check_user_matches(self, user_id: str) -> list[dict[str, Any]]:
        return self._scan_user_matches(user_id, CHECK_MATCHES_LIMIT)

    def _scan_user_matches(self, user_id: str, limit: int) -> list[dict[str, Any]]:
        """Return the newest ``limit`` matches the user took part in.

        ``Limit`` on a filtered scan caps the rows read, not the rows
        returned, so every page is read and the cap is applied afterwards.
        """
        scan_kwargs: dict[str, Any] = {
            # per-user copies carry userId; only the canonical rows are listed
            "FilterExpression": Attr("matchedUsers").contains(user_id)
            & Attr("userId").not_exists(),
        }
        items: list[dict[str, Any]] = []
        try:
            while True:
                result = self.matches_table.scan(**scan_kwargs)
                items.extend(result.get("Items") or [])
                last_key = result.get("LastEvaluatedKey")
                if not last_key:
                    break
                scan_kwargs["ExclusiveStartKey"] = last_key
        except ClientError:
            logger.exception("Error scanning user matches", user_id=user_id)
            return []

        matches = [from_dynamodb(item) for item in items]
        logger.info("User matches found", user_id=user_id, count=len(matches))
        # ISO-8601 timestamps sort chronologically as strings
        matches.sort(key=lambda item: item.get("timestamp", ""), reverse=True)
        return matches[:limit]

    def check_room_match(self, room_id: str) -> Optional[dict[str, Any]]:
        try:
            result = self.matches_table.query(
                KeyConditionExpression=Key("roomId").eq(room_id),
                Limit=1,
            )
        except ClientError:
            logger.exception("Error checking room match", room_id=room_id)
            return None
        items = result.get("Items") or []
        return from_dynamodb(items[0]) if items else None

    def update_user_activity(self, user_ids: list[str]) -> None:
        if self.users_table is None:
            logger.info("Skipping user activity update, USERS_TABLE not configured")
            return

        timestamp = now_iso()
        for user_id in user_ids:
            try:
                existing = self.users_table.get_item(Key={"id": user_id}).get("Item")
                if existing:
                    self.users_table.put_item(Item={**existing, "lastActiveAt": timestamp})
                else:
                    self.users_table.put_item(
                        Item={
                            "id": user_id,
                            "email": "",
                            "createdAt": timestamp,
                            "lastActiveAt": timestamp,
                        },
                        ConditionExpression="attribute_not_exists(id)",
                    )
                logger.info("Updated user activity", user_id=user_id)
            except ClientError:
                logger.exception("Error updating user activity", user_id=user_id)


def build_match_from_input(match_input: dict[str, Any]) -> Match:
    """Build the match returned by the createMatch mutation."""
    try:
        return Match(
            room_id=match_input["roomId"],
            movie_id=from_dynamodb(match_input["movieId"]),
            title=match_input["title"],
            poster_path=match_input.get("posterPath"),
            media_type=match_input.get("mediaType") or "MOVIE",
            matched_users=list(match_input.get("matchedUsers") or []),
            timestamp=now_iso(),
        )
    except (KeyError, TypeError) as e:
        raise TrinityRequestError(f"Invalid match input: {e}") from e


@logger.inject_lambda_context
def handler(event: dict[str, Any], context: LambdaContext) -> dict[str, Any]:
    return handle_event(event)


def handle_event(event: dict[str, Any], service: Optional[MatchService] = None) -> dict[str, Any]:
    operation = event.get("operation")
    logger.info("Match event received", operation=operation)
    try:
        service = service or MatchService.from_environment()

        if operation == "matchCreated":
            match = Match.from_item(event.get("match") or {})
            service.handle_match_created(match)
            return ok({"success": True})

        if operation in ("getUserMatches", "checkUserMatches"):
            user_id = event.get("userId")
            if not user_id:
                raise TrinityRequestError("User ID is required")
            if operation == "getUserMatches":
                matches = service.get_user_matches(user_id)
            else:
                matches = service.check_user_matches(user_id)
            return ok({"matches": matches})

        if operation == "checkRoomMatch":
            room_id = event.get("roomId")
            if not room_id:
                raise TrinityRequestError("Room ID is required")
            return ok({"match": service.check_room_match(room_id)})

        if operation == "createMatch":
            match = build_match_from_input(event.get("input") or {})
            logger.info(
                "createMatch executed",
                match_id=match.id,
                title=match.title,
                matched_users=match.matched_users,
            )
            return ok({"match": match.to_item()})

        raise TrinityRequestError(f"Unknown operation: {operation}")

    except (ValueError, KeyError, TypeError, ClientError) as e:
        logger.exception("Match request failed", operation=operation)
        return error_response(400, str(e), success=False)
