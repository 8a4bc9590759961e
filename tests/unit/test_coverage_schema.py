"""Unit tests for coverage domain models."""

from __future__ import annotations

import json
from datetime import date

import pytest
from pydantic import ValidationError

from priorauth.coverage.schema import (
    CodeContext,
    CoverageReference,
    ExtractedPolicyDetails,
    ExtractionFailure,
    PolicyUrlInput,
    PriorAuthRequirement,
    SearchQuery,
    SourceType,
    StateScopedQuery,
    parse_api_date,
)


class TestSearchQuery:
    def test_query_is_stripped(self):
        assert SearchQuery(query="  knee MRI ").query == "knee MRI"

    @pytest.mark.parametrize("query", ["", "   "])
    def test_blank_query_rejected(self, query):
        with pytest.raises(ValidationError):
            SearchQuery(query=query)

    def test_state_from_bare_name(self):
        q = SearchQuery(query="x", state="Florida")
        assert q.state.description == "Florida"
        assert q.state.state_id is None

    def test_state_object(self):
        q = SearchQuery.model_validate({"query": "x", "state": {"state_id": 12, "description": "Florida"}})
        assert q.state.state_id == 12

    def test_state_scoped_requires_state(self):
        with pytest.raises(ValidationError):
            StateScopedQuery(query="x")


class TestPolicyUrlInput:
    def test_accepts_camel_case_alias(self):
        inp = PolicyUrlInput.model_validate({"policyUrl": "https://www.cms.gov/x"})
        assert inp.policy_url == "https://www.cms.gov/x"

    def test_rejects_relative_url(self):
        with pytest.raises(ValidationError):
            PolicyUrlInput.model_validate({"policyUrl": "/medicare-coverage-database/x"})


class TestCoverageReference:
    def test_relative_url_rejected(self):
        with pytest.raises(ValidationError):
            CoverageReference(title="t", display_id="L1", source_type=SourceType.LCD, url="/x")

    def test_lenient_dates(self):
        ref = CoverageReference(
            title="t",
            display_id="L1",
            source_type=SourceType.LCD,
            url="https://www.cms.gov/x",
            effective_date="10/01/2024",
        )
        assert ref.effective_date == date(2024, 10, 1)

    def test_unparseable_date_becomes_none(self):
        assert parse_api_date("sometime soon") is None


class TestExtractedPolicyDetails:
    def test_serializes_camel_case(self):
        details = ExtractedPolicyDetails(prior_auth_required="YES", summary="s")
        data = json.loads(details.to_json())
        assert data["priorAuthRequired"] == "YES"
        assert "icd10Codes" in data
        assert "limitationsExclusions" in data

    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("YES", PriorAuthRequirement.YES),
            ("conditional", PriorAuthRequirement.CONDITIONAL),
            ("maybe", PriorAuthRequirement.UNKNOWN),
            (None, PriorAuthRequirement.UNKNOWN),
            (True, PriorAuthRequirement.UNKNOWN),
        ],
    )
    def test_prior_auth_closed_set(self, raw, expected):
        details = ExtractedPolicyDetails.model_validate({"priorAuthRequired": raw})
        assert details.prior_auth_required == expected

    def test_round_trip_stays_in_closed_set(self):
        original = ExtractedPolicyDetails.model_validate(
            {"priorAuthRequired": "Required if inpatient", "summary": "x"}
        )
        parsed = ExtractedPolicyDetails.model_validate_json(original.to_json())
        assert parsed.prior_auth_required in {"YES", "NO", "CONDITIONAL", "UNKNOWN"}
        assert parsed == original

    def test_code_context_vocabulary(self):
        details = ExtractedPolicyDetails.model_validate(
            {
                "icd10Codes": [
                    {"code": "E11.9", "description": "T2DM", "context": "Covered"},
                    {"code": "Z00.0", "description": "exam", "context": "sometimes"},
                ],
                "cptCodes": [{"code": "95810", "context": "excluded"}],
            }
        )
        assert [c.context for c in details.icd10_codes] == [CodeContext.COVERED, CodeContext.UNSPECIFIED]
        assert details.cpt_codes[0].context == CodeContext.EXCLUDED


def test_extraction_failure_envelope():
    data = json.loads(ExtractionFailure(error="boom", details="why").to_json())
    assert data == {"error": "boom", "details": "why"}
