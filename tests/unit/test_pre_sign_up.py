from unittest.mock import MagicMock

import pre_sign_up


def _event(attributes):
    return {
        "userPoolId": "eu-west-1_pool",
        "userName": "user-1",
        "request": {"userAttributes": attributes},
        "response": {},
    }


def test_auto_confirms_user_and_email():
    event = pre_sign_up.auto_confirm(_event({"email": "alice@example.com"}))
    assert event["response"]["autoConfirmUser"] is True
    assert event["response"]["autoVerifyEmail"] is True


def test_does_not_verify_missing_email():
    event = pre_sign_up.auto_confirm(_event({}))
    assert event["response"]["autoConfirmUser"] is True
    assert "autoVerifyEmail" not in event["response"]


def test_handler_returns_event():
    event = _event({"email": "alice@example.com"})
    result = pre_sign_up.handler(event, MagicMock())
    assert result is event
    assert result["response"]["autoConfirmUser"] is True
