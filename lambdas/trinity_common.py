"""Shared models and AWS helpers for the Trinity Lambda handlers."""
import json
import os
import time
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Optional

import boto3
from attrs import define, field
from attrs.validators import in_, instance_of
from aws_lambda_powertools import Logger

MEDIA_TYPES = ("MOVIE", "TV")
MAX_GENRES = 2
ROOM_TTL_SECONDS = 24 * 60 * 60
NOTIFICATION_TTL_SECONDS = 7 * 24 * 60 * 60
# Votes with this movie id only record that a user joined a room
PARTICIPATION_MARKER = -1

_dynamodb_resource = None
_lambda_client = None


class TrinityRequestError(ValueError):
    """Raised when a request cannot be served; surfaced to the caller."""


def build_logger(service: str) -> Logger:
    return Logger(service=service, level=os.getenv("LOG_LEVEL", "INFO").upper())


# ---------- AWS clients ----------
def get_dynamodb_resource():
    global _dynamodb_resource
    if _dynamodb_resource is None:
        _dynamodb_resource = boto3.resource(
            "dynamodb", endpoint_url=os.getenv("DYNAMODB_ENDPOINT", None)
        )
    return _dynamodb_resource


def get_table(table_name: str):
    return get_dynamodb_resource().Table(table_name)


def get_lambda_client():
    global _lambda_client
    if _lambda_client is None:
        _lambda_client = boto3.client("lambda")
    return _lambda_client


def invoke_lambda(
    function_arn: str, payload: dict[str, Any], invocation_type: str = "RequestResponse"
) -> dict[str, Any]:
    """Invoke another function and decode its JSON response.

    Asynchronous (``Event``) invocations return an empty dict.
    """
    response = get_lambda_client().invoke(
        FunctionName=function_arn,
        InvocationType=invocation_type,
        Payload=json.dumps(payload).encode("utf-8"),
    )
    if invocation_type == "Event":
        return {}
    raw = response["Payload"].read()
    if not raw:
        raise TrinityRequestError(f"No response from {function_arn}")
    return json.loads(raw)


# ---------- environment ----------
def require_env(name: str) -> str:
    value = os.environ.get(name)
    if not value:
        raise TrinityRequestError(f"{name} environment variable is required")
    return value


# ---------- time ----------
def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def epoch_seconds() -> int:
    return int(time.time())


# ---------- serialization ----------
def from_dynamodb(value: Any) -> Any:
    """Convert boto3 ``Decimal`` numbers back into ints and floats."""
    if isinstance(value, Decimal):
        return int(value) if value == value.to_integral_value() else float(value)
    if isinstance(value, dict):
        return {key: from_dynamodb(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [from_dynamodb(item) for item in value]
    if isinstance(value, set):
        return [from_dynamodb(item) for item in sorted(value)]
    return value


def ok(body: Any) -> dict[str, Any]:
    return {"statusCode": 200, "body": body}


def error_response(status_code: int, message: str, **extra: Any) -> dict[str, Any]:
    return {"statusCode": status_code, "body": {**extra, "error": message}}


# ---------- validation ----------
def validate_media_type(media_type: Optional[str]) -> str:
    if media_type not in MEDIA_TYPES:
        raise TrinityRequestError("Invalid mediaType. Must be MOVIE or TV")
    return media_type


def validate_genres(genre_ids: Optional[list[int]]) -> list[int]:
    genre_ids = list(genre_ids or [])
    if len(genre_ids) > MAX_GENRES:
        raise TrinityRequestError(f"Maximum {MAX_GENRES} genres allowed")
    return genre_ids


# ---------- models ----------
@define(slots=True, kw_only=True, frozen=True)
class Room:
    id: str = field(validator=instance_of(str))  # Partition Key
    code: str = field(validator=instance_of(str))
    host_id: str = field(validator=instance_of(str))
    media_type: str = field(validator=in_(MEDIA_TYPES))
    genre_ids: list[int] = field(factory=list)
    candidates: list[dict[str, Any]] = field(factory=list)
    created_at: str = field(factory=now_iso)
    ttl: Optional[int] = None

    def is_expired(self, now: Optional[int] = None) -> bool:
        if not self.ttl:
            return False
        return self.ttl < (epoch_seconds() if now is None else now)

    def find_candidate(self, movie_id: int) -> Optional[dict[str, Any]]:
        return next((c for c in self.candidates if c.get("id") == movie_id), None)

    def to_item(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "code": self.code,
            "hostId": self.host_id,
            "mediaType": self.media_type,
            "genreIds": self.genre_ids,
            "candidates": self.candidates,
            "createdAt": self.created_at,
            "ttl": self.ttl,
        }

    @classmethod
    def from_item(cls, item: dict[str, Any]) -> "Room":
        item = from_dynamodb(item)
        return cls(
            id=item["id"],
            code=item["code"],
            host_id=item["hostId"],
            media_type=item["mediaType"],
            genre_ids=item.get("genreIds") or [],
            candidates=item.get("candidates") or [],
            created_at=item["createdAt"],
            ttl=item.get("ttl"),
        )


@define(slots=True, kw_only=True, frozen=True)
class Match:
    room_id: str = field(validator=instance_of(str))  # Partition Key
    movie_id: int = field(validator=instance_of(int))  # Sort Key
    title: str = field(validator=instance_of(str))
    poster_path: Optional[str] = None
    media_type: str = "MOVIE"
    matched_users: list[str] = field(factory=list)
    timestamp: str = field(factory=now_iso)

    @property
    def id(self) -> str:
        return f"{self.room_id}#{self.movie_id}"

    def to_item(self) -> dict[str, Any]:
        item = {
            "id": self.id,
            "roomId": self.room_id,
            "movieId": self.movie_id,
            "title": self.title,
            "mediaType": self.media_type,
            "matchedUsers": self.matched_users,
            "timestamp": self.timestamp,
        }
        if self.poster_path:
            item["posterPath"] = self.poster_path
        return item

    @classmethod
    def from_item(cls, item: dict[str, Any]) -> "Match":
        item = from_dynamodb(item)
        return cls(
            room_id=item["roomId"],
            movie_id=item["movieId"],
            title=item["title"],
            poster_path=item.get("posterPath"),
            media_type=item.get("mediaType") or "MOVIE",
            matched_users=item.get("matchedUsers") or [],
            timestamp=item["timestamp"],
        )
