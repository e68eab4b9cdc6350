"""
Tests for filter predicate parsing and rule definition validation.

These tests verify:
- Every node and value kind parses into the closed AST
- Unknown discriminators and malformed nodes fail at definition time
- Name validation for relations, columns and claims
- Rule-level checks (projection, undefined claims, write rules)
"""

import pytest

from authrules.compiler.validator import (
    MAX_DEPTH,
    check_name,
    parse_filters,
    validate_rule_definition,
)
from authrules.core.errors import DefinitionError
from authrules.domain.enums import Operation
from authrules.domain.filters import (
    And,
    ClaimMembership,
    ClaimPropertyCheck,
    Eq,
    Identity,
    InClaim,
    Literal,
    Or,
    PropertyCheck,
    filters_to_json,
)

# =============================================================================
# Parsing
# =============================================================================


class TestParseFilters:
    def test_none_and_empty_list_mean_no_filter(self):
        assert parse_filters(None) == ()
        assert parse_filters([]) == ()

    def test_single_node_is_wrapped(self):
        result = parse_filters({"type": "in", "column": "org_id", "claim": "org_ids"})
        assert result == (InClaim("org_id", "org_ids"),)

    def test_eq_with_each_value_kind(self):
        result = parse_filters(
            [
                {"type": "eq", "column": "owner_id", "value": {"type": "user_id"}},
                {"type": "eq", "column": "org_id", "value": {"type": "one_of", "claim": "org_ids"}},
                {"type": "eq", "column": "status", "value": {"type": "literal", "value": "open"}},
                {
                    "type": "eq",
                    "column": "team_id",
                    "value": {
                        "type": "check",
                        "claim": "team_ids",
                        "property": "role",
                        "values": ["admin", "editor"],
                    },
                },
            ]
        )
        assert result == (
            Eq("owner_id", Identity()),
            Eq("org_id", ClaimMembership("org_ids")),
            Eq("status", Literal("open")),
            Eq("team_id", ClaimPropertyCheck("team_ids", "role", ("admin", "editor"))),
        )

    def test_bare_scalar_is_literal(self):
        assert parse_filters({"type": "eq", "column": "archived", "value": False}) == (
            Eq("archived", Literal(False)),
        )
        assert parse_filters({"type": "eq", "column": "deleted_at", "value": None}) == (
            Eq("deleted_at", Literal(None)),
        )

    def test_in_with_check(self):
        result = parse_filters(
            {
                "type": "in",
                "column": "id",
                "claim": "accessible_file_ids",
                "check": {"property": "permission", "values": ["edit", "owner"]},
            }
        )
        assert result == (
            InClaim("id", "accessible_file_ids", PropertyCheck("permission", ("edit", "owner"))),
        )

    def test_nested_combinators(self):
        result = parse_filters(
            {
                "type": "or",
                "conditions": [
                    {"type": "eq", "column": "owner_id", "value": {"type": "user_id"}},
                    {
                        "type": "and",
                        "conditions": [
                            {"type": "in", "column": "org_id", "claim": "org_ids"},
                            {"type": "eq", "column": "public", "value": True},
                        ],
                    },
                ],
            }
        )
        assert result == (
            Or(
                (
                    Eq("owner_id", Identity()),
                    And((InClaim("org_id", "org_ids"), Eq("public", Literal(True)))),
                )
            ),
        )

    def test_already_parsed_nodes_pass_through(self):
        node = Eq("owner_id", Identity())
        assert parse_filters([node]) == (node,)

    def test_node_children_may_be_json(self):
        raw_child = {"type": "in", "column": "org_id", "claim": "org_ids"}
        parsed = parse_filters(Or((Eq("owner_id", Identity()), raw_child)))
        assert parsed == (Or((Eq("owner_id", Identity()), InClaim("org_id", "org_ids"))),)

    @pytest.mark.parametrize(
        "node",
        [
            Eq("owner_id", "alice"),
            Eq("owner_id", Literal(["a", "b"])),
            Eq("", Identity()),
            InClaim("org_id", ""),
            InClaim("id", "file_ids", "edit"),
            Or(()),
            And(()),
            Or((Eq("owner_id", Identity()), {"type": "bogus"})),
            And((Eq("owner_id", Identity()), "owner_id = 1")),
            Or((And(()),)),
        ],
    )
    def test_malformed_nodes_are_rejected(self, node):
        with pytest.raises(DefinitionError):
            parse_filters(node)

    def test_node_error_reports_path(self):
        with pytest.raises(DefinitionError) as exc_info:
            parse_filters([Eq("a", Identity()), Or((Eq("b", Identity()), {"type": "bogus"}))])
        assert exc_info.value.details["path"] == "$[1].conditions[1]"

    def test_in_to_dict_omits_missing_check(self):
        assert InClaim("org_id", "org_ids").to_dict() == {
            "type": "in",
            "column": "org_id",
            "claim": "org_ids",
        }
        assert InClaim("id", "file_ids", PropertyCheck("permission", ("edit",))).to_dict()["check"] == {
            "property": "permission",
            "values": ["edit"],
        }

    def test_parse_is_inverse_of_to_dict(self):
        nodes = (
            Or((Eq("owner_id", Identity()), InClaim("org_id", "org_ids"))),
            InClaim("id", "file_ids", PropertyCheck("permission", ("edit",))),
            Eq("status", Literal("open")),
        )
        assert parse_filters(filters_to_json(nodes)) == nodes

    @pytest.mark.parametrize(
        "payload",
        [
            {"type": "like", "column": "name", "value": "x"},
            {"column": "name", "value": "x"},
            {"type": "eq", "column": "name", "value": {"type": "regex", "value": "x"}},
        ],
    )
    def test_unknown_discriminator_is_rejected(self, payload):
        with pytest.raises(DefinitionError) as exc_info:
            parse_filters(payload)
        assert "Unknown" in exc_info.value.message

    @pytest.mark.parametrize(
        "payload",
        [
            "owner_id = 1",
            ["not a node"],
            {"type": "eq", "column": "", "value": 1},
            {"type": "eq", "column": "owner_id"},
            {"type": "in", "column": "org_id"},
            {"type": "or", "conditions": []},
            {"type": "and", "conditions": "x"},
            {"type": "eq", "column": "x", "value": {"type": "literal", "value": [1, 2]}},
            {"type": "eq", "column": "x", "value": {"type": "check", "claim": "c", "property": "p"}},
            {"type": "in", "column": "id", "claim": "c", "check": {"property": "p", "values": []}},
            {"type": "in", "column": "id", "claim": "c", "check": "edit"},
        ],
    )
    def test_malformed_payload_is_rejected(self, payload):
        with pytest.raises(DefinitionError):
            parse_filters(payload)

    def test_error_reports_path(self):
        with pytest.raises(DefinitionError) as exc_info:
            parse_filters(
                [
                    {"type": "eq", "column": "a", "value": 1},
                    {"type": "or", "conditions": [{"type": "nope"}]},
                ]
            )
        assert exc_info.value.details["path"] == "$[1].conditions[0]"

    def test_nesting_limit(self):
        node = {"type": "eq", "column": "a", "value": 1}
        for _ in range(MAX_DEPTH):
            node = {"type": "and", "conditions": [node]}
        with pytest.raises(DefinitionError) as exc_info:
            parse_filters(node)
        assert "nesting" in exc_info.value.message


# =============================================================================
# Names
# =============================================================================


class TestCheckName:
    def test_strips_whitespace(self):
        assert check_name("  files ", "relation") == "files"

    @pytest.mark.parametrize(
        "name", ["", "   ", None, "1files", "files;drop", "my-files", 'fi"les', "x" * 49]
    )
    def test_rejects_invalid(self, name):
        with pytest.raises(DefinitionError):
            check_name(name, "relation")


# =============================================================================
# Rule definitions
# =============================================================================


class TestValidateRuleDefinition:
    def test_read_rule_returns_normalized_columns(self):
        columns = validate_rule_definition(
            relation="files",
            operation=Operation.READ,
            columns=[" id", "name "],
            filters=(),
            known_claims=[],
        )
        assert columns == ("id", "name")

    def test_read_rule_requires_columns(self):
        with pytest.raises(DefinitionError):
            validate_rule_definition(
                relation="files",
                operation=Operation.READ,
                columns=[],
                filters=(),
                known_claims=[],
            )

    def test_duplicate_columns_rejected(self):
        with pytest.raises(DefinitionError):
            validate_rule_definition(
                relation="files",
                operation=Operation.READ,
                columns=["id", "id"],
                filters=(),
                known_claims=[],
            )

    def test_undefined_claim_rejected(self):
        with pytest.raises(DefinitionError) as exc_info:
            validate_rule_definition(
                relation="files",
                operation=Operation.READ,
                columns=["id"],
                filters=(Or((InClaim("id", "file_ids"), InClaim("org_id", "org_ids"))),),
                known_claims=["org_ids"],
            )
        assert exc_info.value.details["claims"] == ["file_ids"]

    def test_invalid_filter_column_rejected(self):
        with pytest.raises(DefinitionError):
            validate_rule_definition(
                relation="files",
                operation=Operation.READ,
                columns=["id"],
                filters=(Eq("id; --", Identity()),),
                known_claims=[],
            )

    def test_write_rule_takes_no_columns(self):
        with pytest.raises(DefinitionError):
            validate_rule_definition(
                relation="files",
                operation=Operation.UPDATE,
                columns=["name"],
                filters=(),
                known_claims=[],
            )

    def test_write_rule_returns_none(self):
        assert (
            validate_rule_definition(
                relation="files",
                operation=Operation.DELETE,
                columns=None,
                filters=(Eq("owner_id", Identity()),),
                known_claims=[],
            )
            is None
        )

    def test_strict_write_guards_reject_combinators(self):
        filters = (Or((Eq("owner_id", Identity()), Eq("public", Literal(True)))),)
        validate_rule_definition(
            relation="files",
            operation=Operation.CREATE,
            columns=None,
            filters=filters,
            known_claims=[],
        )
        with pytest.raises(DefinitionError):
            validate_rule_definition(
                relation="files",
                operation=Operation.CREATE,
                columns=None,
                filters=filters,
                known_claims=[],
                strict_write_guards=True,
            )
