"""
Tests for message parsing and the handler table.
"""

import pytest

import web  # noqa: F401  registers handlers
from errors import ProtocolError
from web.router import HANDLERS, MessageType, check_exhaustive, parse_message


def test_every_message_type_has_a_handler():
    check_exhaustive()
    assert set(HANDLERS) == set(MessageType)


def test_parse_message_keeps_payload():
    message = parse_message('{"id": 7, "type": "read-file", "path": "a.txt"}')
    assert message.id == 7
    assert message.key == "7"
    assert message.type == "read-file"
    assert message.require_str("path") == "a.txt"


@pytest.mark.parametrize("raw", ["{oops", "[1, 2]", '"ping"'])
def test_parse_message_rejects_non_objects(raw):
    with pytest.raises(ProtocolError) as excinfo:
        parse_message(raw)
    assert str(excinfo.value) == "Invalid JSON"


def test_require_str_reports_missing_field():
    message = parse_message('{"id": "1", "type": "revert"}')
    with pytest.raises(ProtocolError) as excinfo:
        message.require_str("annotationId")
    assert str(excinfo.value) == "Missing annotationId"
