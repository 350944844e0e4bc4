"""Tests for FailureDescription and ErrorCode."""

import pytest

from railway import ErrorCode, FailureDescription


class TestErrorCode:
    def test_all_8_error_codes_exist(self):
        codes = list(ErrorCode)
        assert len(codes) == 8

    def test_operator_error_codes(self):
        operator_codes = {
            ErrorCode.VALIDATION_ERROR,
            ErrorCode.CONFIGURATION_ERROR,
            ErrorCode.STATE_ERROR,
            ErrorCode.NOT_FOUND,
        }
        assert len(operator_codes) == 4

    def test_collaborator_error_codes(self):
        collaborator_codes = {
            ErrorCode.ENGINE_ERROR,
            ErrorCode.PERSISTENCE_ERROR,
            ErrorCode.TECHNICAL_ERROR,
            ErrorCode.UNKNOWN_ERROR,
        }
        assert len(collaborator_codes) == 4

    def test_error_code_values_are_strings(self):
        for code in ErrorCode:
            assert isinstance(code.value, str)
            assert code.value == code.name


class TestFailureDescription:
    def test_creation_with_code_and_message(self):
        desc = FailureDescription(ErrorCode.STATE_ERROR, "CA already initialized")
        assert desc.code == ErrorCode.STATE_ERROR
        assert desc.message == "CA already initialized"
        assert desc.exception is None
        assert desc.reason is None
        assert desc.timestamp is not None

    def test_creation_with_exception(self):
        ex = OSError("disk full")
        desc = FailureDescription(ErrorCode.PERSISTENCE_ERROR, "write failed", ex)
        assert desc.exception is ex

    def test_factory_method_with_reason(self):
        desc = FailureDescription.create(ErrorCode.NOT_FOUND, "missing", reason="MissingCSR")
        assert desc.code == ErrorCode.NOT_FOUND
        assert desc.message == "missing"
        assert desc.reason == "MissingCSR"

    def test_immutability(self):
        desc = FailureDescription(ErrorCode.VALIDATION_ERROR, "test")
        with pytest.raises(AttributeError):
            desc.message = "changed"  # type: ignore

    def test_timestamp_is_utc(self):
        desc = FailureDescription(ErrorCode.VALIDATION_ERROR, "test")
        assert desc.timestamp.tzinfo is not None

    def test_at_prefixes_stage_and_keeps_the_rest(self):
        ex = ValueError("x")
        desc = FailureDescription(ErrorCode.STATE_ERROR, "not initialized", ex, reason="NotInitialized")
        staged = desc.at("issue[web1]")
        assert staged.message == "issue[web1]: not initialized"
        assert staged.code == ErrorCode.STATE_ERROR
        assert staged.reason == "NotInitialized"
        assert staged.exception is ex
        assert desc.message == "not initialized"

    def test_at_nests(self):
        desc = FailureDescription(ErrorCode.ENGINE_ERROR, "boom").at("inner").at("outer")
        assert desc.message == "outer: inner: boom"

    def test_str_with_reason(self):
        desc = FailureDescription(ErrorCode.STATE_ERROR, "already revoked", reason="AlreadyRevoked")
        assert str(desc) == "STATE_ERROR(AlreadyRevoked): already revoked"

    def test_str_without_reason(self):
        desc = FailureDescription(ErrorCode.ENGINE_ERROR, "bad key")
        assert str(desc) == "ENGINE_ERROR: bad key"

    def test_full_stack_trace_without_exception(self):
        desc = FailureDescription(ErrorCode.VALIDATION_ERROR, "just a message")
        assert desc.full_stack_trace() == "just a message"

    def test_full_stack_trace_with_exception(self):
        try:
            raise ValueError("boom")
        except ValueError as e:
            desc = FailureDescription(ErrorCode.ENGINE_ERROR, "signing failed", e)
            trace = desc.full_stack_trace()
            assert "signing failed" in trace
            assert "ValueError" in trace
            assert "boom" in trace

    def test_equality(self):
        a = FailureDescription(ErrorCode.NOT_FOUND, "x")
        b = FailureDescription(ErrorCode.NOT_FOUND, "x")
        # timestamps differ, so compare code + message
        assert a.code == b.code
        assert a.message == b.message
