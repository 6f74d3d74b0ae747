"""
Validation-token policy tests.

The validator is permissive unless a schema is configured AND a value is
stored for it; only then must the incoming token match.
"""

from unittest.mock import MagicMock

from envelope_sync.services.memory_store import InMemoryRecordStore
from envelope_sync.services.record_store import QueryRecords
from envelope_sync.services.token_validator import TokenValidator


def _make_validator(expected: str | None = None, schema: str = "schema-x"):
    store = InMemoryRecordStore()
    if expected is not None:
        store.seed("environment_variables", {"schema_name": schema, "value": expected})
    return TokenValidator(store, "environment_variables"), store


class TestTokenPolicy:
    """The three-tier allow-unless-proven-otherwise policy."""

    def test_no_schema_configured_is_always_valid(self):
        validator, store = _make_validator(expected="right")
        assert validator.is_valid(None, "anything") is True
        assert validator.is_valid("", None) is True

    def test_no_schema_configured_does_not_query_store(self):
        validator, store = _make_validator(expected="right")
        validator.is_valid(None, "anything")
        assert store.operations == []

    def test_schema_without_stored_value_is_valid(self):
        validator, _ = _make_validator(expected=None)
        assert validator.is_valid("schema-x", "t") is True

    def test_blank_stored_value_counts_as_missing(self):
        validator, _ = _make_validator(expected="   ")
        assert validator.is_valid("schema-x", "t") is True

    def test_wrong_token_is_invalid(self):
        validator, _ = _make_validator(expected="right")
        assert validator.is_valid("schema-x", "wrong") is False

    def test_matching_token_is_valid(self):
        validator, _ = _make_validator(expected="right")
        assert validator.is_valid("schema-x", "right") is True

    def test_comparison_trims_both_sides(self):
        validator, _ = _make_validator(expected="  right\n")
        assert validator.is_valid("schema-x", " right ") is True

    def test_comparison_is_case_sensitive(self):
        validator, _ = _make_validator(expected="right")
        assert validator.is_valid("schema-x", "RIGHT") is False

    def test_missing_token_is_invalid_when_value_stored(self):
        validator, _ = _make_validator(expected="right")
        assert validator.is_valid("schema-x", None) is False
        assert validator.is_valid("schema-x", "   ") is False

    def test_other_schema_values_are_ignored(self):
        validator, _ = _make_validator(expected="right", schema="schema-y")
        assert validator.is_valid("schema-x", "wrong") is True


class TestExpectedValueLookup:

    def test_queries_variable_entity_by_schema_name(self):
        store = MagicMock()
        store.execute.return_value = []
        validator = TokenValidator(store, "vars")

        assert validator.expected_value("schema-x") is None

        op = store.execute.call_args[0][0]
        assert isinstance(op, QueryRecords)
        assert op.entity == "vars"
        assert op.field == "schema_name"
        assert op.value == "schema-x"
        assert op.columns == ("value",)
