"""
Tests for the inbound message union and task helpers.
"""

import pytest

from pel.errors import ProtocolError
from pel.models import (
    Action,
    Callbacks,
    CompletionMessage,
    ErrorMessage,
    ExecutionMessage,
    InspectionMessage,
    LogMessage,
    NameListMessage,
    ReplyMessage,
    Request,
    StreamMessage,
    Task,
    decode_message,
)


class TestDecodeMessage:
    @pytest.mark.parametrize(
        "raw, variant",
        [
            ({"log": "hi"}, LogMessage),
            ({"id": 1, "stdout": "out"}, StreamMessage),
            ({"id": 1, "stderr": "err"}, StreamMessage),
            ({"id": 1, "error": {"ename": "E", "evalue": "v", "traceback": []}}, ErrorMessage),
            ({"id": 1, "end": True, "mime": {"text/plain": "1"}}, ExecutionMessage),
            ({"completion": {"list": []}}, CompletionMessage),
            ({"inspection": {"string": "1"}}, InspectionMessage),
            ({"names": ["a"]}, NameListMessage),
            ({"id": 3}, ReplyMessage),
        ],
    )
    def test_variant_selection(self, raw, variant):
        assert type(decode_message(raw)) is variant

    def test_log_wins_over_other_fields(self):
        assert isinstance(decode_message({"log": "x", "stdout": "y"}), LogMessage)

    def test_stream_wins_over_error(self):
        message = decode_message({"id": 1, "stderr": "e", "error": {}})
        assert isinstance(message, StreamMessage)
        assert message.stream == "stderr"
        assert message.text == "e"

    def test_envelope_is_stripped_from_payload(self):
        message = decode_message({"id": 7, "end": True, "names": ["a", "b"]})
        assert message.id == 7
        assert message.end is True
        assert message.payload() == {"names": ["a", "b"]}

    def test_name_list_keeps_mapping_keys(self):
        message = decode_message({"id": 1, "end": True, "names": ["copy"], "keys": ["k"]})
        assert message.payload() == {"names": ["copy"], "keys": ["k"]}

    def test_error_payload_defaults_traceback(self):
        message = decode_message({"error": {"ename": "E", "evalue": "v"}})
        assert message.payload() == {"error": {"ename": "E", "evalue": "v", "traceback": []}}

    def test_end_defaults_to_false(self):
        assert decode_message({"id": 1, "mime": {}}).end is False

    @pytest.mark.parametrize("raw", [None, "text", ["id", 1], {"error": "oops"}])
    def test_malformed_raises_protocol_error(self, raw):
        with pytest.raises(ProtocolError):
            decode_message(raw)


class TestRequest:
    def test_as_tuple_uses_wire_action_names(self):
        request = Request(action=Action.LIST_NAMES, code="foo", context_id=3)
        assert request.as_tuple() == ("getAllPropertyNames", "foo", 3)

    def test_context_ids_start_at_one(self):
        with pytest.raises(ValueError):
            Request(action=Action.RUN, code="", context_id=0)


class TestTaskBuild:
    def test_copies_callbacks(self):
        def hook(result):
            return None

        task = Task.build(Action.RUN, "x", Callbacks(on_success=hook))
        assert task.on_success is hook
        assert task.after_run is None

    def test_overrides_win(self):
        def original():
            return None

        task = Task.build(Action.INSPECT, "x", Callbacks(after_run=original), after_run=None)
        assert task.after_run is None

    def test_tasks_compare_by_identity(self):
        assert Task(Action.RUN, "x") != Task(Action.RUN, "x")
