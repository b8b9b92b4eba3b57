import os
from typing import Any, Optional

from aws_lambda_powertools.utilities.typing import LambdaContext
from boto3.dynamodb.conditions import Attr, Key
from botocore.exceptions import ClientError

from trinity_common import (
    NOTIFICATION_TTL_SECONDS,
    PARTICIPATION_MARKER,
    Match,
    Room,
    TrinityRequestError,
    build_logger,
    epoch_seconds,
    error_response,
    from_dynamodb,
    get_table,
    invoke_lambda,
    now_iso,
    ok,
    require_env,
)

logger = build_logger("trinity-vote")


class VoteService:
    """Records votes and detects unanimous matches within a room.

    A match exists when every user who has voted in the room voted yes for
    the same movie and at least two users took part.
    """

    def __init__(
        self,
        rooms_table,
        votes_table,
        matches_table,
        match_function_arn: Optional[str] = None,
    ) -> None:
        self.rooms_table = rooms_table
        self.votes_table = votes_table
        self.matches_table = matches_table
        self.match_function_arn = match_function_arn

    @classmethod
    def from_environment(cls) -> "VoteService":
        try:
            rooms_table = require_env("ROOMS_TABLE")
            votes_table = require_env("VOTES_TABLE")
            matches_table = require_env("MATCHES_TABLE")
        except TrinityRequestError as e:
            raise TrinityRequestError("Required table environment variables are missing") from e
        return cls(
            rooms_table=get_table(rooms_table),
            votes_table=get_table(votes_table),
            matches_table=get_table(matches_table),
            match_function_arn=os.environ.get("MATCH_LAMBDA_ARN"),
        )

    def process_vote(
        self, user_id: str, room_id: str, movie_id: int, vote: bool
    ) -> dict[str, Any]:
        room = self._get_room(room_id)
        if room is None:
            raise TrinityRequestError("Room not found or has expired")

        candidate = room.find_candidate(movie_id)
        if candidate is None:
            raise TrinityRequestError("Movie not found in room candidates")

        self._record_vote(user_id, room_id, movie_id, vote)

        match = self._check_for_match(room_id, movie_id, candidate) if vote else None
        return {"success": True, "match": match.to_item() if match else None}

    def _get_room(self, room_id: str) -> Optional[Room]:
        try:
            item = self.rooms_table.get_item(Key={"id": room_id}).get("Item")
        except ClientError:
            logger.exception("Error getting room", room_id=room_id)
            return None
        if not item:
            return None
        room = Room.from_item(item)
        return None if room.is_expired() else room

    def _record_vote(self, user_id: str, room_id: str, movie_id: int, vote: bool) -> None:
        # overwrites any previous vote of this user for this movie
        self.votes_table.put_item(
            Item={
                "roomId": room_id,
                "userMovieId": f"{user_id}#{movie_id}",
                "userId": user_id,
                "movieId": movie_id,
                "vote": vote,
                "timestamp": now_iso(),
            }
        )
        logger.info(
            "Vote recorded",
            user_id=user_id,
            room_id=room_id,
            movie_id=movie_id,
            vote="YES" if vote else "NO",
        )

    def _check_for_match(
        self, room_id: str, movie_id: int, candidate: dict[str, Any]
    ) -> Optional[Match]:
        try:
            positive = self.votes_table.query(
                KeyConditionExpression=Key("roomId").eq(room_id),
                FilterExpression=Attr("movieId").eq(movie_id)
                & Attr("vote").eq(True)
                & Attr("movieId").ne(PARTICIPATION_MARKER),
            )
            all_votes = self.votes_table.query(
                KeyConditionExpression=Key("roomId").eq(room_id),
                FilterExpression=Attr("movieId").ne(PARTICIPATION_MARKER),
            )
        except ClientError:
            logger.exception("Error checking for match", room_id=room_id, movie_id=movie_id)
            return None

        voters = {item["userId"] for item in all_votes.get("Items") or []}
        positive_voters = {item["userId"] for item in positive.get("Items") or []}

        if len(voters) > 1 and positive_voters == voters:
            logger.info("Match detected", room_id=room_id, movie_id=movie_id, users=len(voters))
            existing = self._get_existing_match(room_id, movie_id)
            if existing is not None:
                return existing
            return self._create_match(room_id, movie_id, candidate, sorted(positive_voters))

        logger.info(
            "No match yet",
            room_id=room_id,
            positive_votes=len(positive_voters),
            total_users=len(voters),
        )
        return None

    def _get_existing_match(self, room_id: str, movie_id: int) -> Optional[Match]:
        try:
            item = self.matches_table.get_item(
                Key={"roomId": room_id, "movieId": movie_id}
            ).get("Item")
        except ClientError:
            logger.exception("Error checking existing match", room_id=room_id)
            return None
        return Match.from_item(item) if item else None

    def _create_match(
        self,
        room_id: str,
        movie_id: int,
        candidate: dict[str, Any],
        matched_users: list[str],
    ) -> Match:
        match = Match(
            room_id=room_id,
            movie_id=movie_id,
            title=candidate.get("title", ""),
            poster_path=candidate.get("posterPath"),
            media_type=candidate.get("mediaType") or "MOVIE",
            matched_users=matched_users,
            timestamp=now_iso(),
        )
        self.matches_table.put_item(
            Item=match.to_item(),
            ConditionExpression="attribute_not_exists(roomId) AND attribute_not_exists(movieId)",
        )

        # one copy per user so matches can be listed through the userId index
        for user_id in matched_users:
            user_match = {
                **match.to_item(),
                "userId": user_id,
                "id": f"{user_id}#{match.id}",
                "roomId": f"{user_id}#{room_id}",
            }
            try:
                self.matches_table.put_item(Item=user_match)
            except ClientError:
                logger.exception("Error creating user match record", user_id=user_id)

        logger.info("Match created", match_id=match.id, users=len(matched_users))

        self._delete_room(room_id)
        self._publish_match(match)
        return match

    def _delete_room(self, room_id: str) -> None:
        try:
            self.rooms_table.delete_item(Key={"id": room_id})
            logger.info("Room deleted after match creation", room_id=room_id)
            self._delete_room_votes(room_id)
        except ClientError:
            logger.exception("Error deleting room", room_id=room_id)

    def _delete_room_votes(self, room_id: str) -> None:
        records = self.votes_table.query(
            KeyConditionExpression=Key("roomId").eq(room_id),
        ).get("Items") or []
        for record in records:
            try:
                self.votes_table.delete_item(
                    Key={"roomId": record["roomId"], "userMovieId": record["userMovieId"]}
                )
            except ClientError:
                logger.exception("Error deleting vote record", room_id=room_id)
        logger.info("Room votes deleted", room_id=room_id, count=len(records))

    def _publish_match(self, match: Match) -> None:
        """Run the createMatch mutation path so subscribers are notified."""
        if self.match_function_arn:
            payload = {
                "operation": "createMatch",
                "input": {
                    "roomId": match.room_id,
                    "movieId": match.movie_id,
                    "title": match.title,
                    "posterPath": match.poster_path,
                    "mediaType": match.media_type,
                    "matchedUsers": match.matched_users,
                },
            }
            try:
                result = invoke_lambda(self.match_function_arn, payload)
            except (ClientError, ValueError):
                logger.exception("Error invoking match function", match_id=match.id)
            else:
                if result.get("statusCode") == 200:
                    logger.info("Match published", match_id=match.id)
                else:
                    logger.error(
                        "Match function returned error",
                        match_id=match.id,
                        error=(result.get("body") or {}).get("error"),
                    )
        else:
            logger.warning("MATCH_LAMBDA_ARN not configured, subscriptions will not fire")

        # polling fallback
        self._store_match_notifications(match)

    def _store_match_notifications(self, match: Match) -> None:
        expires_at = epoch_seconds() + NOTIFICATION_TTL_SECONDS
        for index, user_id in enumerate(match.matched_users):
            notification = {
                # notification rows live in the matches table under their own partition
                "roomId": f"NOTIFICATION#{user_id}",
                "movieId": epoch_seconds() * 1000 + index,
                "userId": user_id,
                "matchId": match.id,
                "matchRoomId": match.room_id,
                "matchMovieId": match.movie_id,
                "title": match.title,
                "timestamp": match.timestamp,
                "notified": False,
                "ttl": expires_at,
            }
            if match.poster_path:
                notification["posterPath"] = match.poster_path
            try:
                self.matches_table.put_item(Item=notification)
            except ClientError:
                logger.exception("Error storing match notification", user_id=user_id)


def _parse_vote_input(event: dict[str, Any]) -> tuple[str, str, int, bool]:
    user_id = event.get("userId")
    vote_input = event.get("input") or {}
    room_id = vote_input.get("roomId")
    movie_id = from_dynamodb(vote_input.get("movieId"))
    vote = vote_input.get("vote")

    if not user_id:
        raise TrinityRequestError("User ID is required")
    if not room_id:
        raise TrinityRequestError("Room ID is required")
    if not isinstance(movie_id, int) or isinstance(movie_id, bool):
        raise TrinityRequestError("Movie ID must be a number")
    if not isinstance(vote, bool):
        raise TrinityRequestError("Vote must be a boolean")
    return user_id, room_id, movie_id, vote


@logger.inject_lambda_context
def handler(event: dict[str, Any], context: LambdaContext) -> dict[str, Any]:
    return handle_event(event)


def handle_event(event: dict[str, Any], service: Optional[VoteService] = None) -> dict[str, Any]:
    logger.info("Vote event received", operation=event.get("operation"))
    try:
        user_id, room_id, movie_id, vote = _parse_vote_input(event)
        service = service or VoteService.from_environment()
        return ok(service.process_vote(user_id, room_id, movie_id, vote))
    except (ValueError, ClientError) as e:
        logger.exception("Vote request failed")
        return error_response(400, str(e), success=False)
