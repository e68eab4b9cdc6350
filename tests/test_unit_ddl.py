"""
Tests for DDL rendering of compiled specs.

Statements are checked for the properties that matter at runtime:
definer-rights views, SECURITY DEFINER functions with a pinned search_path,
the SQLSTATEs the access client relies on, grants, and teardown order.
"""

import pytest

from authrules.compiler import ddl
from authrules.compiler.compiler import CompilerOptions, compile_claim, compile_rule
from authrules.compiler.ir import ArtifactRef
from authrules.compiler.render import RenderContext
from authrules.domain.enums import ArtifactKind, ObjectType, Operation
from authrules.domain.filters import Eq, Identity, InClaim, Literal, PropertyCheck

IDENTITY = "auth_rules.current_subject()"
READ_COLUMNS = ("id", "name", "owner_id", "folder_id")


@pytest.fixture
def ctx() -> RenderContext:
    return RenderContext("auth_rules_claims", IDENTITY)


@pytest.fixture
def options() -> CompilerOptions:
    return CompilerOptions()


def _read(options, filters=(InClaim("id", "file_ids"),)):
    return compile_rule("files", Operation.READ, READ_COLUMNS, filters, options)


def _write(options, operation, filters):
    return compile_rule("files", operation, None, filters, options, READ_COLUMNS)


class TestDerivedRelation:
    def test_claim_view(self, options):
        spec = compile_claim("file_ids", "SELECT owner_id AS user_id, id AS file_id FROM files;", options)
        statements = ddl.derived_relation_ddl(spec)

        assert statements[0] == (
            "CREATE VIEW auth_rules_claims.file_ids WITH (security_invoker = false) AS\n"
            "SELECT owner_id AS user_id, id AS file_id FROM files"
        )
        assert statements[1] == "GRANT SELECT ON auth_rules_claims.file_ids TO anon, authenticated"


class TestProjection:
    def test_view_selects_projected_columns_with_filter(self, options, ctx):
        statements = ddl.projection_ddl(_read(options).projection, ctx)

        assert statements[0] == (
            "CREATE VIEW data_api.files WITH (security_invoker = false) AS\n"
            "SELECT id, name, owner_id, folder_id\n"
            "FROM public.files\n"
            "WHERE id IN (SELECT file_id FROM auth_rules_claims.file_ids "
            f"WHERE user_id = {IDENTITY})"
        )

    def test_view_without_filters_has_no_where(self, options, ctx):
        statements = ddl.projection_ddl(_read(options, filters=()).projection, ctx)
        assert "WHERE" not in statements[0]

    def test_base_defaults_are_copied(self, options, ctx):
        defaults = ddl.projection_ddl(_read(options).projection, ctx)[1]
        assert defaults.startswith("DO $do$")
        assert "'public.files'::regclass" in defaults
        assert "ARRAY['id', 'name', 'owner_id', 'folder_id']::name[]" in defaults
        assert "ALTER VIEW %s ALTER COLUMN %I SET DEFAULT %s" in defaults

    def test_grant_select_to_readers(self, options, ctx):
        statements = ddl.projection_ddl(_read(options).projection, ctx)
        assert statements[-1] == "GRANT SELECT ON data_api.files TO anon, authenticated"


class TestAccessor:
    def test_signature_body_and_grants(self, options, ctx):
        compiled = _read(
            options,
            filters=(
                Eq("owner_id", Identity()),
                InClaim("folder_id", "folder_ids"),
                Eq("archived", Literal(False)),
            ),
        )
        create, revoke, grant = ddl.accessor_ddl(compiled.accessor, ctx)

        # Required parameters precede identity-defaulted ones
        assert create.startswith(
            "CREATE FUNCTION data_api.get_files("
            "p_folder_id public.files.folder_id%TYPE, "
            f"p_owner_id public.files.owner_id%TYPE DEFAULT {IDENTITY})\n"
        )
        assert "RETURNS SETOF data_api.files" in create
        assert "SECURITY DEFINER" in create
        assert "STABLE" in create
        assert "SET search_path = pg_catalog, pg_temp" in create
        assert f"IF p_owner_id IS DISTINCT FROM {IDENTITY} THEN" in create
        assert (
            "IF NOT EXISTS (SELECT 1 FROM auth_rules_claims.folder_ids "
            f"WHERE user_id = {IDENTITY} AND folder_id = p_folder_id) THEN"
        ) in create
        assert "RAISE EXCEPTION 'Not authorized' USING ERRCODE = '42501';" in create
        assert (
            "RETURN QUERY SELECT t.id, t.name, t.owner_id, t.folder_id FROM public.files AS t "
            "WHERE t.folder_id = p_folder_id AND t.owner_id = p_owner_id AND t.archived = false;"
        ) in create
        assert revoke == "REVOKE EXECUTE ON FUNCTION data_api.get_files FROM PUBLIC"
        assert grant == "GRANT EXECUTE ON FUNCTION data_api.get_files TO anon, authenticated"


class TestGuards:
    def test_insert_guard_checks_new_row_and_inserts_projected_columns(self, options, ctx):
        compiled = _write(options, Operation.CREATE, (Eq("owner_id", Identity()),))
        function, revoke, trigger, grant = ddl.guard_ddl(compiled.guard, ctx)

        assert function.startswith("CREATE FUNCTION data_api.files_insert_guard()\nRETURNS trigger")
        assert f"IF NEW.owner_id IS DISTINCT FROM {IDENTITY} THEN" in function
        assert "USING ERRCODE = '42501'" in function
        assert (
            "INSERT INTO public.files (id, name, owner_id, folder_id) "
            "VALUES (NEW.id, NEW.name, NEW.owner_id, NEW.folder_id);"
        ) in function
        assert "RETURN NEW;" in function
        assert revoke == "REVOKE EXECUTE ON FUNCTION data_api.files_insert_guard FROM PUBLIC"
        assert trigger == (
            "CREATE TRIGGER files_insert INSTEAD OF INSERT ON data_api.files "
            "FOR EACH ROW EXECUTE FUNCTION data_api.files_insert_guard()"
        )
        assert grant == "GRANT INSERT ON data_api.files TO authenticated"

    def test_update_guard_scopes_mutation_by_key_and_predicate(self, options, ctx):
        node = InClaim("id", "file_ids", PropertyCheck("permission", ("edit", "owner")))
        compiled = _write(options, Operation.UPDATE, (node,))
        function = ddl.guard_ddl(compiled.guard, ctx)[0]

        assert (
            "UPDATE public.files AS t SET name = NEW.name, owner_id = NEW.owner_id, "
            "folder_id = NEW.folder_id WHERE t.id = OLD.id AND t.id IN ("
        ) in function
        assert "permission::text = ANY (ARRAY['edit', 'owner']::text[])" in function
        assert "IF NOT FOUND THEN" in function
        assert "RAISE EXCEPTION 'Not found or not authorized' USING ERRCODE = 'P0002';" in function
        assert "RETURN NEW;" in function

    def test_delete_guard(self, options, ctx):
        compiled = _write(options, Operation.DELETE, (Eq("owner_id", Identity()),))
        function, _, trigger, grant = ddl.guard_ddl(compiled.guard, ctx)

        assert (
            f"DELETE FROM public.files AS t WHERE t.id = OLD.id AND t.owner_id = {IDENTITY};"
        ) in function
        assert "RETURN OLD;" in function
        assert "INSTEAD OF DELETE ON data_api.files" in trigger
        assert grant == "GRANT DELETE ON data_api.files TO authenticated"

    def test_write_rule_without_conditions_only_scopes_by_key(self, options, ctx):
        compiled = _write(options, Operation.DELETE, ())
        function = ddl.guard_ddl(compiled.guard, ctx)[0]
        assert "DELETE FROM public.files AS t WHERE t.id = OLD.id;" in function


class TestTeardown:
    def test_drop_statements(self):
        view = ArtifactRef(ArtifactKind.PROJECTION, ObjectType.VIEW, "data_api", "files")
        function = ArtifactRef(ArtifactKind.ACCESSOR, ObjectType.FUNCTION, "data_api", "get_files")
        trigger = ArtifactRef(
            ArtifactKind.GUARD, ObjectType.TRIGGER, "data_api", "files_insert", "files"
        )

        assert ddl.drop_statement(view) == "DROP VIEW IF EXISTS data_api.files"
        assert ddl.drop_statement(function) == "DROP FUNCTION IF EXISTS data_api.get_files"
        trigger_sql = ddl.drop_statement(trigger)
        assert "IF to_regclass('data_api.files') IS NOT NULL THEN" in trigger_sql
        assert "DROP TRIGGER IF EXISTS files_insert ON data_api.files;" in trigger_sql

    def test_teardown_order_is_triggers_functions_views(self, options):
        refs = list(_read(options).objects()) + list(
            _write(options, Operation.CREATE, ()).objects()
        )
        ordered = ddl.teardown_order(refs)
        assert [r.object_type for r in ordered] == [
            ObjectType.TRIGGER,
            ObjectType.FUNCTION,
            ObjectType.FUNCTION,
            ObjectType.VIEW,
        ]


def test_plan_is_deterministic(options, ctx):
    first = ddl.plan(_read(options), ctx)
    second = ddl.plan(_read(options), ctx)
    assert first == second
    assert first[0].startswith("CREATE VIEW data_api.files")
    assert any(s.startswith("CREATE FUNCTION data_api.get_files") for s in first)
