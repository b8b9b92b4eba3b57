import json

import pytest

from trinity.resolvers import (
    DATA_SOURCE_MATCH,
    DATA_SOURCE_ROOM,
    DATA_SOURCE_VOTE,
    RESOLVERS,
    ResolverDefinition,
)


def _by_field(field_name: str) -> ResolverDefinition:
    return next(r for r in RESOLVERS if r.field_name == field_name)


def test_every_field_has_one_resolver():
    fields = [(r.type_name, r.field_name) for r in RESOLVERS]
    assert len(fields) == len(set(fields)) == 9


def test_resolver_ids_are_unique():
    assert len({r.resolver_id for r in RESOLVERS}) == len(RESOLVERS)


@pytest.mark.parametrize(
    "field_name,data_source",
    [
        ("createRoom", DATA_SOURCE_ROOM),
        ("joinRoom", DATA_SOURCE_ROOM),
        ("getRoom", DATA_SOURCE_ROOM),
        ("getMyRooms", DATA_SOURCE_ROOM),
        ("vote", DATA_SOURCE_VOTE),
        ("getMyMatches", DATA_SOURCE_MATCH),
        ("checkUserMatches", DATA_SOURCE_MATCH),
        ("checkRoomMatch", DATA_SOURCE_MATCH),
        ("createMatch", DATA_SOURCE_MATCH),
    ],
)
def test_resolver_data_source(field_name, data_source):
    assert _by_field(field_name).data_source == data_source


def test_request_template_is_lambda_invoke():
    template = _by_field("getMyRooms").request_template()
    # the template is plain JSON once the VTL reference is substituted
    rendered = json.loads(template.replace("$context.identity.sub", "user-1"))
    assert rendered == {
        "version": "2017-02-28",
        "operation": "Invoke",
        "payload": {"operation": "getMyRooms", "userId": "user-1"},
    }


def test_get_room_maps_id_argument_to_room_id():
    template = _by_field("getRoom").request_template()
    assert '"roomId": "$context.arguments.id"' in template


def test_get_my_matches_uses_user_matches_operation():
    template = _by_field("getMyMatches").request_template()
    assert '"operation": "getUserMatches"' in template


def test_input_argument_is_serialized():
    template = _by_field("vote").request_template()
    assert '"input": $util.toJson($context.arguments.input)' in template


def test_response_template_unwraps_body():
    template = _by_field("createRoom").response_template()
    assert "$util.toJson($context.result.body)" in template
    assert '$util.error($context.result.body.error, "BadRequest")' in template


@pytest.mark.parametrize(
    "field_name,path",
    [("getMyMatches", "matches"), ("checkRoomMatch", "match"), ("createMatch", "match")],
)
def test_response_template_selects_result_path(field_name, path):
    template = _by_field(field_name).response_template()
    assert f"$util.toJson($context.result.body.{path})" in template
