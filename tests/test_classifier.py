# pyright: reportUnknownParameterType=false, reportUnknownMemberType=false
# pyright: reportUnknownVariableType=false, reportMissingParameterType=false
# pyright: reportUnknownArgumentType=false
import io
import logging
from unittest.mock import Mock, patch

import pytest
from requests.structures import CaseInsensitiveDict

from urlfetch.networking.classifier import classify_response
from urlfetch.networking.config import ConfigSource
from urlfetch.networking.errors import HttpStatusError, TransportError
from urlfetch.networking.transport import HttpConnection, Transport

CLASSIFIER_LOGGER = "urlfetch.networking.classifier"


@pytest.fixture
def transport():
    return Transport(ConfigSource(user="tester"))


def _mock_response(
    *,
    status: int = 200,
    reason: str = "OK",
    headers: dict[str, str] | None = None,
    body: bytes = b"",
):
    response = Mock()
    response.status_code = status
    response.reason = reason
    response.headers = CaseInsensitiveDict(headers or {})
    response.raw = io.BytesIO(body)
    return response


@pytest.mark.parametrize("status", [200, 201, 204, 299])
def test_success_returns_same_connection(status, transport):
    connection = transport.open("http://example.com")
    with patch("requests.Session.send") as mock_send:
        mock_send.return_value = _mock_response(status=status)
        result = classify_response(connection, {}, transport)

    assert result is connection


@pytest.mark.parametrize("status", [301, 302, 303])
def test_redirect_codes_follow_location(status, transport):
    connection = transport.open("http://example.com/old")
    with patch("requests.Session.send") as mock_send:
        mock_send.side_effect = [
            _mock_response(
                status=status,
                reason="Moved",
                headers={"Location": "http://example.com/new"},
            ),
            _mock_response(body=b"moved here"),
        ]
        result = classify_response(connection, {}, transport)

    assert result is not connection
    assert result.url == "http://example.com/new"
    assert mock_send.call_count == 2


@pytest.mark.parametrize(
    ("status", "reason"),
    [
        (100, "Continue"),
        (304, "Not Modified"),
        (307, "Temporary Redirect"),
        (404, "Not Found"),
        (503, "Service Unavailable"),
    ],
)
def test_other_codes_fail_with_status_message(status, reason, transport):
    connection = transport.open("http://example.com/x")
    response = _mock_response(
        status=status,
        reason=reason,
        headers={"Location": "http://example.com/elsewhere"},
    )
    with patch("requests.Session.send") as mock_send:
        mock_send.return_value = response
        with pytest.raises(TransportError) as excinfo:
            classify_response(connection, {}, transport)

    assert isinstance(excinfo.value, HttpStatusError)
    assert str(excinfo.value) == reason
    assert excinfo.value.status_code == status
    assert excinfo.value.url == "http://example.com/x"
    assert mock_send.call_count == 1
    response.close.assert_called_once()


def test_missing_reason_falls_back_to_code(transport):
    connection = transport.open("http://example.com")
    with patch("requests.Session.send") as mock_send:
        mock_send.return_value = _mock_response(status=500, reason="")
        with pytest.raises(HttpStatusError, match="HTTP 500"):
            classify_response(connection, {}, transport)


def test_failure_logs_warning(transport, caplog):
    caplog.set_level(logging.WARNING, logger=CLASSIFIER_LOGGER)
    connection = transport.open("http://example.com")
    with patch("requests.Session.send") as mock_send:
        mock_send.return_value = _mock_response(status=403, reason="Forbidden")
        with pytest.raises(HttpStatusError):
            classify_response(connection, {}, transport)

    assert "http Status 403 - Forbidden" in caplog.text


def test_error_body_is_logged_at_debug(transport, caplog):
    caplog.set_level(logging.DEBUG, logger=CLASSIFIER_LOGGER)
    connection = transport.open("http://example.com")
    with patch("requests.Session.send") as mock_send:
        mock_send.return_value = _mock_response(
            status=500,
            reason="Server Error",
            body=b"stack trace\nline two\n",
        )
        with pytest.raises(HttpStatusError):
            classify_response(connection, {}, transport)

    assert "server response: stack traceline two" in caplog.text


def test_error_body_is_not_read_without_debug(transport, caplog):
    caplog.set_level(logging.WARNING, logger=CLASSIFIER_LOGGER)
    connection = transport.open("http://example.com")
    with patch("requests.Session.send") as mock_send, patch.object(
        HttpConnection, "error_stream"
    ) as mock_error_stream:
        mock_send.return_value = _mock_response(status=500, reason="Boom")
        with pytest.raises(HttpStatusError):
            classify_response(connection, {}, transport)

    mock_error_stream.assert_not_called()


def test_error_body_failure_does_not_mask_status_error(transport, caplog):
    caplog.set_level(logging.DEBUG, logger=CLASSIFIER_LOGGER)
    connection = transport.open("http://example.com")
    with patch("requests.Session.send") as mock_send, patch.object(
        HttpConnection, "error_stream", side_effect=OSError("reset")
    ):
        mock_send.return_value = _mock_response(
            status=502, reason="Bad Gateway"
        )
        with pytest.raises(HttpStatusError, match="Bad Gateway"):
            classify_response(connection, {}, transport)

    assert "could not read error body" in caplog.text
