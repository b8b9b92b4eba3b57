from decimal import Decimal
from unittest.mock import MagicMock, patch

import pytest
from botocore.exceptions import ClientError

import match_handler
from match_handler import MatchService, build_match_from_input, handle_event
from trinity_common import TrinityRequestError

MATCH_INPUT = {
    "roomId": "room-1",
    "movieId": 550,
    "title": "Fight Club",
    "posterPath": "https://image.tmdb.org/t/p/w500/poster.jpg",
    "mediaType": "MOVIE",
    "matchedUsers": ["u1", "u2"],
}


def _client_error(operation="Scan"):
    return ClientError({"Error": {"Code": "InternalServerError"}}, operation)


@pytest.fixture
def matches_table():
    return MagicMock()


@pytest.fixture
def users_table():
    return MagicMock()


@pytest.fixture
def service(matches_table, users_table):
    return MatchService(matches_table, users_table)


def test_user_matches_are_newest_first(service, matches_table):
    matches_table.scan.return_value = {
        "Items": [
            {"id": "a", "movieId": Decimal("1"), "timestamp": "2024-01-01T00:00:00+00:00"},
            {"id": "b", "movieId": Decimal("2"), "timestamp": "2024-03-01T00:00:00+00:00"},
        ]
    }

    matches = service.get_user_matches("u1")

    assert [m["id"] for m in matches] == ["b", "a"]
    assert matches[0]["movieId"] == 2
    assert "Limit" not in matches_table.scan.call_args.kwargs


def test_user_matches_found_beyond_first_page(service, matches_table):
    # filtered scan pages come back empty while unrelated rows are read
    matches_table.scan.side_effect = [
        {"Items": [], "LastEvaluatedKey": {"roomId": "room-30", "movieId": Decimal("30")}},
        {"Items": [], "LastEvaluatedKey": {"roomId": "room-60", "movieId": Decimal("60")}},
        {"Items": [{"id": "alice-match", "timestamp": "2024-01-01T00:00:00+00:00"}]},
    ]

    matches = service.check_user_matches("alice")

    assert [m["id"] for m in matches] == ["alice-match"]
    calls = [call.kwargs for call in matches_table.scan.call_args_list]
    assert len(calls) == 3
    assert "ExclusiveStartKey" not in calls[0]
    assert calls[1]["ExclusiveStartKey"] == {"roomId": "room-30", "movieId": Decimal("30")}
    assert calls[2]["ExclusiveStartKey"] == {"roomId": "room-60", "movieId": Decimal("60")}
    assert all("Limit" not in kwargs for kwargs in calls)


@pytest.mark.parametrize(
    "operation,expected",
    [("get_user_matches", 50), ("check_user_matches", 10)],
)
def test_user_matches_keep_newest_within_limit(service, matches_table, operation, expected):
    items = [
        {"id": f"m{day:02d}", "timestamp": f"2024-01-{day:02d}T00:00:00+00:00"}
        for day in range(1, 29)
    ] * 3
    matches_table.scan.side_effect = [
        {"Items": items[:40], "LastEvaluatedKey": {"roomId": "r", "movieId": Decimal("1")}},
        {"Items": items[40:]},
    ]

    matches = getattr(service, operation)("u1")

    assert len(matches) == min(expected, len(items))
    assert matches[0]["timestamp"] == "2024-01-28T00:00:00+00:00"
    timestamps = [m["timestamp"] for m in matches]
    assert timestamps == sorted(timestamps, reverse=True)


def test_user_matches_scan_failure_returns_empty(service, matches_table):
    matches_table.scan.side_effect = _client_error()
    assert service.get_user_matches("u1") == []


def test_check_room_match(service, matches_table):
    matches_table.query.return_value = {"Items": [{"roomId": "room-1", "movieId": Decimal("550")}]}
    assert service.check_room_match("room-1") == {"roomId": "room-1", "movieId": 550}
    assert matches_table.query.call_args.kwargs["Limit"] == 1

    matches_table.query.return_value = {"Items": []}
    assert service.check_room_match("room-1") is None


def test_update_user_activity(service, users_table):
    users_table.get_item.side_effect = [
        {"Item": {"id": "u1", "email": "a@example.com"}},
        {},
    ]

    service.update_user_activity(["u1", "u2"])

    existing, created = [call.kwargs for call in users_table.put_item.call_args_list]
    assert existing["Item"]["email"] == "a@example.com"
    assert "lastActiveAt" in existing["Item"]
    assert created["Item"]["id"] == "u2"
    assert created["ConditionExpression"] == "attribute_not_exists(id)"


def test_update_user_activity_continues_after_failure(service, users_table):
    users_table.get_item.side_effect = [_client_error("GetItem"), {}]
    service.update_user_activity(["u1", "u2"])
    assert users_table.put_item.call_count == 1


def test_update_user_activity_without_users_table(matches_table):
    MatchService(matches_table).update_user_activity(["u1"])


def test_build_match_from_input():
    match = build_match_from_input(MATCH_INPUT)
    assert match.id == "room-1#550"
    assert match.matched_users == ["u1", "u2"]


@pytest.mark.parametrize(
    "match_input",
    [
        {k: v for k, v in MATCH_INPUT.items() if k != "title"},
        {**MATCH_INPUT, "movieId": "550"},
    ],
)
def test_build_match_from_input_rejects_bad_input(match_input):
    with pytest.raises(TrinityRequestError, match="Invalid match input"):
        build_match_from_input(match_input)


# ---------- handler ----------


def test_handle_create_match_returns_match():
    service = MagicMock()

    response = handle_event({"operation": "createMatch", "input": MATCH_INPUT}, service=service)

    assert response["statusCode"] == 200
    match = response["body"]["match"]
    assert match["id"] == "room-1#550"
    assert match["title"] == "Fight Club"
    assert match["timestamp"]


def test_handle_create_match_invalid_input():
    response = handle_event({"operation": "createMatch", "input": {}}, service=MagicMock())
    assert response["statusCode"] == 400
    assert response["body"]["success"] is False


def test_handle_match_created_updates_activity():
    service = MagicMock()
    match_item = {**MATCH_INPUT, "timestamp": "2024-01-01T00:00:00+00:00"}

    response = handle_event({"operation": "matchCreated", "match": match_item}, service=service)

    assert response == {"statusCode": 200, "body": {"success": True}}
    assert service.handle_match_created.call_args.args[0].id == "room-1#550"


@pytest.mark.parametrize("operation", ["getUserMatches", "checkUserMatches"])
def test_handle_user_matches(operation):
    service = MagicMock()
    service.get_user_matches.return_value = [{"id": "a"}]
    service.check_user_matches.return_value = [{"id": "a"}]

    response = handle_event({"operation": operation, "userId": "u1"}, service=service)

    assert response == {"statusCode": 200, "body": {"matches": [{"id": "a"}]}}


def test_handle_user_matches_requires_user():
    response = handle_event({"operation": "getUserMatches"}, service=MagicMock())
    assert response["statusCode"] == 400
    assert response["body"]["error"] == "User ID is required"


def test_handle_check_room_match():
    service = MagicMock()
    service.check_room_match.return_value = None

    response = handle_event({"operation": "checkRoomMatch", "roomId": "room-1"}, service=service)

    assert response == {"statusCode": 200, "body": {"match": None}}


def test_handle_unknown_operation():
    response = handle_event({"operation": "deleteMatch"}, service=MagicMock())
    assert response["body"]["error"] == "Unknown operation: deleteMatch"


def test_handler_uses_environment_service():
    service = MagicMock()
    service.check_room_match.return_value = {"roomId": "room-1"}
    with patch.object(MatchService, "from_environment", return_value=service):
        response = match_handler.handler(
            {"operation": "checkRoomMatch", "roomId": "room-1"}, MagicMock()
        )
    assert response["body"]["match"] == {"roomId": "room-1"}
