"""
Tests for in-process predicate evaluation.
"""

import pytest

from authrules.compiler.evaluator import EvaluationContext, evaluate, evaluate_all
from authrules.core.errors import DefinitionError
from authrules.domain.filters import (
    And,
    ClaimPropertyCheck,
    Eq,
    Identity,
    InClaim,
    Literal,
    Or,
    PropertyCheck,
)

CLAIMS = {
    "org_ids": [
        {"user_id": "alice", "org_id": 1},
        {"user_id": "alice", "org_id": 2},
        {"user_id": "bob", "org_id": 2},
    ],
    "file_ids": [
        {"user_id": "alice", "file_id": "f1", "permission": "owner"},
        {"user_id": "bob", "file_id": "f1", "permission": "view"},
    ],
}


def ctx(subject):
    return EvaluationContext(subject, CLAIMS)


class TestLeaves:
    def test_identity(self):
        row = {"owner_id": "alice"}
        assert evaluate(Eq("owner_id", Identity()), row, ctx("alice"))
        assert not evaluate(Eq("owner_id", Identity()), row, ctx("bob"))

    def test_anonymous_subject_never_matches_identity(self):
        assert not evaluate(Eq("owner_id", Identity()), {"owner_id": None}, ctx(None))

    def test_claim_membership_compares_text_form(self):
        assert evaluate(InClaim("org_id", "org_ids"), {"org_id": "2"}, ctx("bob"))
        assert evaluate(InClaim("org_id", "org_ids"), {"org_id": 1}, ctx("alice"))
        assert not evaluate(InClaim("org_id", "org_ids"), {"org_id": 1}, ctx("bob"))

    def test_claim_membership_without_subject_is_empty(self):
        assert not evaluate(InClaim("org_id", "org_ids"), {"org_id": 1}, ctx(None))

    def test_claim_property_check(self):
        node = InClaim("id", "file_ids", PropertyCheck("permission", ("owner", "edit")))
        assert evaluate(node, {"id": "f1"}, ctx("alice"))
        assert not evaluate(node, {"id": "f1"}, ctx("bob"))

        eq = Eq("id", ClaimPropertyCheck("file_ids", "permission", ("view",)))
        assert evaluate(eq, {"id": "f1"}, ctx("bob"))

    def test_literals(self):
        assert evaluate(Eq("status", Literal("open")), {"status": "open"}, ctx("alice"))
        assert not evaluate(Eq("status", Literal("open")), {"status": None}, ctx("alice"))
        assert evaluate(Eq("deleted_at", Literal(None)), {"deleted_at": None}, ctx("alice"))
        assert evaluate(Eq("public", Literal(True)), {"public": True}, ctx("alice"))

    def test_null_column_never_matches_claim(self):
        assert not evaluate(InClaim("org_id", "org_ids"), {"org_id": None}, ctx("alice"))

    def test_explicit_value_column(self):
        context = EvaluationContext(
            "alice", {"people": [{"user_id": "alice", "person_id": "p9"}]}, {"people": "person_id"}
        )
        assert evaluate(InClaim("id", "people"), {"id": "p9"}, context)

    def test_unknown_claim_raises(self):
        with pytest.raises(DefinitionError):
            evaluate(InClaim("id", "missing_ids"), {"id": 1}, ctx("alice"))

    def test_unknown_column_raises(self):
        with pytest.raises(DefinitionError):
            evaluate(Eq("owner_id", Identity()), {"id": 1}, ctx("alice"))


class TestCombinators:
    def test_or_and(self):
        node = Or(
            (
                Eq("owner_id", Identity()),
                And((InClaim("org_id", "org_ids"), Eq("status", Literal("shared")))),
            )
        )
        own = {"owner_id": "bob", "org_id": 9, "status": "private"}
        shared = {"owner_id": "carol", "org_id": 2, "status": "shared"}
        private = {"owner_id": "carol", "org_id": 2, "status": "private"}

        assert evaluate(node, own, ctx("bob"))
        assert evaluate(node, shared, ctx("bob"))
        assert not evaluate(node, private, ctx("bob"))

    def test_empty_filter_list_matches_everything(self):
        assert evaluate_all([], {"id": 1}, ctx(None))

    def test_top_level_filters_are_anded(self):
        filters = [Eq("owner_id", Identity()), Eq("status", Literal("open"))]
        assert evaluate_all(filters, {"owner_id": "alice", "status": "open"}, ctx("alice"))
        assert not evaluate_all(filters, {"owner_id": "alice", "status": "closed"}, ctx("alice"))
