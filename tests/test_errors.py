"""Tests for core/errors.py."""

from unittest.mock import patch

from orgtree.core.errors import (
    DispatchError,
    ExitCode,
    ExternalFailure,
    OrgTreeError,
    PollTimeoutError,
    ValidationError,
    format_error_message,
    main_with_error_handling,
)


class TestErrorKinds:
    def test_kinds_are_distinct(self):
        kinds = {
            cls.error_kind
            for cls in (ValidationError, DispatchError, PollTimeoutError, ExternalFailure)
        }
        assert kinds == {"validation", "dispatch", "poll_timeout", "external_failure"}

    def test_details_default_empty(self):
        error = DispatchError("rejected")
        assert error.details == {}
        assert str(error) == "rejected"

    def test_format_error_message(self):
        error = ValidationError("bad tree", details={"account": "a"})
        assert format_error_message(error) == "bad tree (account=a)"


class TestMainWithErrorHandling:
    def test_success_passthrough(self):
        @main_with_error_handling()
        def command():
            return ExitCode.SUCCESS

        assert command() == ExitCode.SUCCESS

    def test_orgtree_error_maps_to_exit_code(self):
        @main_with_error_handling()
        def command():
            raise ValidationError("bad tree")

        assert command() == ExitCode.VALIDATION_ERROR

    def test_error_printed_with_details(self):
        @main_with_error_handling(log_errors=False)
        def command():
            raise ValidationError("bad tree", details={"account": "a"})

        with patch("orgtree.cli.ux.error") as print_error:
            assert command() == ExitCode.VALIDATION_ERROR

        print_error.assert_called_once_with("bad tree (account=a)")

    def test_base_error_is_unknown(self):
        @main_with_error_handling(log_errors=False)
        def command():
            raise OrgTreeError("boom")

        assert command() == ExitCode.UNKNOWN_ERROR

    def test_unexpected_exception(self):
        @main_with_error_handling()
        def command():
            raise RuntimeError("boom")

        assert command() == ExitCode.UNKNOWN_ERROR

    def test_keyboard_interrupt(self):
        @main_with_error_handling()
        def command():
            raise KeyboardInterrupt

        assert command() == 130
