"""Tests for judge output parsing and schema validation."""

from __future__ import annotations

import json

import pytest

from consensus_judge.contracts import TOTAL_SCORE, ErrorKind
from consensus_judge.errors import ResponseValidationError
from consensus_judge.validation import extract_json, parse_json, validate_judgment


class TestExtractJson:
    def test_plain_object(self):
        assert extract_json('{"a": 1}') == '{"a": 1}'

    def test_fenced_block(self):
        assert extract_json('```json\n{"a": 1}\n```') == '{"a": 1}'

    def test_embedded_in_prose(self):
        text = 'Here is my evaluation: {"a": {"b": 2}} Let me know.'
        assert extract_json(text) == '{"a": {"b": 2}}'

    def test_unclosed_object_returned_for_truncation_report(self):
        """An unterminated object is returned as-is so parse_json can report truncation."""
        assert extract_json('Result: {"a": [1, 2') == '{"a": [1, 2'

    def test_no_object(self):
        assert extract_json("I cannot evaluate this transcript.") == ""


class TestParseJson:
    def test_parses_object(self):
        assert parse_json("p", '```json\n{"scores": {}}\n```') == {"scores": {}}

    def test_no_json_is_parse_error(self):
        with pytest.raises(ResponseValidationError) as exc_info:
            parse_json("p", "no json here")
        assert exc_info.value.kind == ErrorKind.PARSE
        assert exc_info.value.retryable is False

    def test_truncated(self):
        with pytest.raises(ResponseValidationError, match="Truncated JSON"):
            parse_json("p", '{"scores": {"work_competence": {"empathy": 4')

    def test_invalid(self):
        with pytest.raises(ResponseValidationError, match="Failed to parse JSON"):
            parse_json("p", '{"scores": nope}')

    def test_array_is_not_an_object(self):
        with pytest.raises(ResponseValidationError, match="No JSON object"):
            parse_json("p", "[1, 2]")


class TestValidateJudgment:
    def test_recomputes_scores(self, rubric, payload):
        """Subtotals and the total come from subcriterion scores, not the judge's arithmetic."""
        data = json.loads(
            payload(4.0, overrides={"writing": {"plain_wording": 1.0}})
        )
        judgment = validate_judgment(data, rubric, "p")
        # writing: (0.05*4 + 0.05*4 + 0.10*1 + 0.05*4) / 0.25 = 2.8
        assert judgment["scores"]["writing"] == pytest.approx(2.8)
        assert judgment["scores"]["work_competence"] == pytest.approx(4.0)
        expected_total = 0.60 * 4.0 + 0.25 * 2.8 + 0.15 * 4.0
        assert judgment["scores"][TOTAL_SCORE] == pytest.approx(expected_total)
        assert judgment["subcriterion_scores"]["writing"]["plain_wording"] == 1.0

    def test_reported_total_drift_warns(self, rubric, payload):
        """A self-reported total off by more than 0.1 becomes a warning."""
        data = json.loads(payload(4.0, overrides={"writing": {"plain_wording": 1.0}}))
        # payload reports total_score 4.0, computed is 3.7
        judgment = validate_judgment(data, rubric, "p")
        assert any(w.startswith(f"{TOTAL_SCORE}: reported 4.0") for w in judgment["warnings"])

    def test_reported_subtotal_drift_warns(self, rubric, payload):
        data = json.loads(payload(4.0))
        data["scores"]["basic_attitude"]["subtotal"] = 2.0
        judgment = validate_judgment(data, rubric, "p")
        assert any("basic_attitude: reported subtotal" in w for w in judgment["warnings"])

    def test_small_drift_tolerated(self, rubric, payload):
        """Rounding-sized drift in the reported total is not worth a warning."""
        data = json.loads(payload(4.0))
        data["scores"][TOTAL_SCORE] = 4.05
        assert validate_judgment(data, rubric, "p")["warnings"] == []

    def test_numeric_strings_accepted(self, rubric, payload):
        data = json.loads(payload(4.0))
        data["scores"]["writing"]["spelling"] = " 3.5 "
        judgment = validate_judgment(data, rubric, "p")
        assert judgment["subcriterion_scores"]["writing"]["spelling"] == 3.5

    def test_out_of_range(self, rubric, payload):
        data = json.loads(payload(4.0))
        data["scores"]["work_competence"]["empathy"] = 7
        with pytest.raises(ResponseValidationError, match="empathy: 7.0 outside"):
            validate_judgment(data, rubric, "p")

    def test_missing_subcriterion(self, rubric, payload):
        data = json.loads(payload(4.0))
        del data["scores"]["basic_attitude"]["apology_expressions"]
        with pytest.raises(ResponseValidationError, match="apology_expressions: missing"):
            validate_judgment(data, rubric, "p")

    def test_missing_category(self, rubric, payload):
        data = json.loads(payload(4.0))
        del data["scores"]["writing"]
        with pytest.raises(ResponseValidationError, match="missing category 'writing'"):
            validate_judgment(data, rubric, "p")

    def test_bool_rejected(self, rubric, payload):
        """JSON true is not a score even though bool subclasses int."""
        data = json.loads(payload(4.0))
        data["scores"]["writing"]["spelling"] = True
        with pytest.raises(ResponseValidationError):
            validate_judgment(data, rubric, "p")

    def test_nan_rejected(self, rubric, payload):
        data = json.loads(payload(4.0))
        data["scores"]["writing"]["spelling"] = "nan"
        with pytest.raises(ResponseValidationError):
            validate_judgment(data, rubric, "p")

    def test_missing_scores(self, rubric):
        with pytest.raises(ResponseValidationError, match="Missing 'scores'"):
            validate_judgment({"evidence": {}}, rubric, "p")

    def test_validation_errors_not_retryable(self, rubric):
        """Schema failures are terminal for the provider."""
        with pytest.raises(ResponseValidationError) as exc_info:
            validate_judgment({}, rubric, "p")
        assert exc_info.value.kind == ErrorKind.VALIDATION
        assert exc_info.value.retryable is False

    def test_evidence_and_improvements(self, rubric, payload):
        data = json.loads(
            payload(
                4.0,
                evidence={"positive": ["Apologised", "  "], "negative": ["Slow"], "quotes": ["Sorry for the wait."]},
                improvements=["Offer a tracking link"],
            )
        )
        judgment = validate_judgment(data, rubric, "p")
        assert judgment["evidence"]["positive"] == ["Apologised"]
        assert judgment["evidence"]["quotes"] == ["Sorry for the wait."]
        assert judgment["improvements"] == ["Offer a tracking link"]

    def test_malformed_evidence_ignored_with_warning(self, rubric, payload):
        data = json.loads(payload(4.0))
        data["evidence"] = {"positive": "good", "negative": [], "quotes": []}
        data["improvements"] = "be faster"
        judgment = validate_judgment(data, rubric, "p")
        assert judgment["evidence"]["positive"] == []
        assert judgment["improvements"] == []
        assert "evidence.positive is not a list; ignored" in judgment["warnings"]
        assert "improvements is not a list; ignored" in judgment["warnings"]
