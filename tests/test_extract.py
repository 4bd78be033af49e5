"""Tests for structured payload extraction and result mapping."""

from mongrate.orchestrator.extract import (
    GENERIC_SUMMARY,
    extract_structured_payload,
    map_execution_result,
)


class TestExtractStructuredPayload:
    """Tests for extract_structured_payload."""

    def test_fenced_json_block(self):
        text = 'I looked around.\n\n```json\n{"summary": "2 tables", "tables": []}\n```\nDone.'

        assert extract_structured_payload(text) == {"summary": "2 tables", "tables": []}

    def test_first_fenced_block_wins(self):
        text = '```json\n{"n": 1}\n```\nand\n```json\n{"n": 2}\n```'

        assert extract_structured_payload(text) == {"n": 1}

    def test_whole_buffer_json(self):
        assert extract_structured_payload('  {"status": "completed"}\n') == {"status": "completed"}

    def test_invalid_fenced_block_falls_back_to_raw_output(self):
        """A broken fenced block should never raise."""
        text = '```json\n{not json}\n```'

        assert extract_structured_payload(text) == {"rawOutput": text}

    def test_plain_text_falls_back_to_raw_output(self):
        text = "I could not finish the analysis."

        assert extract_structured_payload(text) == {"rawOutput": text}

    def test_non_object_json_falls_back_to_raw_output(self):
        assert extract_structured_payload("[1, 2, 3]") == {"rawOutput": "[1, 2, 3]"}

    def test_empty_text(self):
        assert extract_structured_payload("") == {"rawOutput": ""}

    def test_block_without_newlines(self):
        assert extract_structured_payload('```json{"a": 1}```') == {"a": 1}


class TestMapExecutionResult:
    """Tests for map_execution_result."""

    def test_maps_full_payload(self):
        payload = {
            "status": "completed",
            "files_changed": 15,
            "collections_created": ["users", "posts", "comments"],
            "rows_migrated": {"users": 1500, "posts": 3200},
            "pr_url": "https://github.com/acme/shop/pull/42",
            "pr_number": 42,
            "notes": ["All queries transformed", "Tests passing"],
        }

        result = map_execution_result(payload)

        assert result.files_changed == 15
        assert result.collections_created == 3
        assert result.rows_migrated == 4700
        assert result.pr_url == "https://github.com/acme/shop/pull/42"
        assert result.pr_number == 42
        assert result.summary == "All queries transformed, Tests passing"
        assert result.raw_output is None

    def test_counts_given_as_numbers_and_lists(self):
        result = map_execution_result(
            {"files_changed": ["a.ts", "b.ts"], "collections_created": 4, "rows_migrated": 10}
        )

        assert result.files_changed == 2
        assert result.collections_created == 4
        assert result.rows_migrated == 10

    def test_summary_used_when_no_notes(self):
        result = map_execution_result({"summary": "Moved 3 tables"})

        assert result.summary == "Moved 3 tables"

    def test_missing_fields_default(self):
        result = map_execution_result({"status": "completed"})

        assert result.summary == GENERIC_SUMMARY
        assert result.pr_url is None
        assert result.rows_migrated == 0

    def test_raw_output_payload(self):
        result = map_execution_result({"rawOutput": "Did things."})

        assert result.raw_output == "Did things."
        assert result.summary == GENERIC_SUMMARY
        assert result.to_dict()["rawOutput"] == "Did things."
