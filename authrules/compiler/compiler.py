"""
Artifact Compiler for authorization rules.

Compiles rule and claim definitions into the IR in `authrules.compiler.ir`:
- read   -> ProjectionSpec (always) + AccessorSpec (best effort)
- create -> GuardSpec on INSERT, conditions checked against the new row
- update -> GuardSpec on UPDATE, conditions scope the base-table mutation
- delete -> GuardSpec on DELETE, same scoping as update
- claim  -> DerivedRelationSpec

Compilation is pure and deterministic: the same definition always yields
equal specs. Anything that cannot be honoured for an optional artifact is
returned as a CompileDegradation rather than raised.
"""

import logging
from collections.abc import Sequence
from dataclasses import dataclass

from authrules.compiler.ir import (
    PARAMETER_PREFIX,
    AccessorParameter,
    AccessorSpec,
    CompileDegradation,
    CompiledRule,
    DerivedRelationSpec,
    GuardSpec,
    ProjectionSpec,
)
from authrules.compiler.validator import check_name
from authrules.core.errors import DefinitionError, OrderingError
from authrules.domain.enums import OPERATION_TO_EVENT, DegradationReason, GuardEvent, Operation
from authrules.domain.filters import (
    And,
    Eq,
    FilterNode,
    Identity,
    Literal,
    Or,
    claim_value_column,
    normalize_leaf,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CompilerOptions:
    """Deployment settings the compiler needs. Built from Settings in production."""

    api_schema: str = "data_api"
    source_schema: str = "public"
    claims_schema: str = "auth_rules_claims"
    reader_roles: tuple[str, ...] = ("anon", "authenticated")
    writer_roles: tuple[str, ...] = ("authenticated",)
    key_column: str = "id"
    strict_write_guards: bool = False

    @classmethod
    def from_settings(cls, settings) -> "CompilerOptions":
        return cls(
            api_schema=settings.api_schema,
            source_schema=settings.source_schema,
            claims_schema=settings.claims_schema,
            reader_roles=tuple(settings.reader_roles_list),
            writer_roles=tuple(settings.writer_roles_list),
            key_column=settings.row_key_column,
            strict_write_guards=settings.strict_write_guards,
        )


def compile_claim(
    name: str, query: str, options: CompilerOptions, value_column: str | None = None
) -> DerivedRelationSpec:
    """
    Compile a claim into its derived relation.

    The query is opaque and is not parsed; the backing store validates it
    when the view is created.

    Raises:
        DefinitionError: If the name is invalid or the query is empty
    """
    name = check_name(name, "claim")
    if not isinstance(query, str) or not query.strip():
        raise DefinitionError("Claim query cannot be empty", details={"claim": name})
    if value_column is not None:
        value_column = check_name(value_column, "column")

    return DerivedRelationSpec(
        schema=options.claims_schema,
        name=name,
        query=query.strip().rstrip(";"),
        value_column=claim_value_column(name, value_column),
        grant_to=options.reader_roles,
    )


def compile_rule(
    relation: str,
    operation: Operation,
    columns: Sequence[str] | None,
    filters: Sequence[FilterNode],
    options: CompilerOptions,
    read_columns: Sequence[str] | None = None,
) -> CompiledRule:
    """
    Compile one rule into artifact specs.

    Args:
        relation: Base relation name
        operation: Rule operation
        columns: Projection columns (read rules)
        filters: Top-level predicate nodes, implicitly AND-ed
        options: Compiler options
        read_columns: Projection columns of the relation's read rule (write rules)

    Returns:
        CompiledRule with specs and any degradations

    Raises:
        OrderingError: If a write rule is compiled without a read rule
        DefinitionError: If a required artifact cannot be derived
    """
    filters = tuple(filters)
    logger.debug("Compiling %s rule for %s (%d conditions)", operation.value, relation, len(filters))

    if operation is Operation.READ:
        columns = tuple(columns or ())
        if not columns:
            raise DefinitionError(
                "Read rules must project at least one column", details={"relation": relation}
            )
        projection = ProjectionSpec(
            schema=options.api_schema,
            relation=relation,
            source_schema=options.source_schema,
            columns=columns,
            filters=filters,
            grant_to=options.reader_roles,
        )
        accessor, degradations = _build_accessor(relation, columns, filters, options)
        specs = (projection, accessor) if accessor is not None else (projection,)
        return CompiledRule(relation, operation, specs, degradations)

    if not read_columns:
        raise OrderingError(
            f"Define the read rule for {relation} before its {operation.value} rule",
            details={"relation": relation, "operation": operation.value},
        )

    guard, degradations = _build_guard(relation, operation, tuple(read_columns), filters, options)
    return CompiledRule(relation, operation, (guard,), degradations)


def _build_accessor(
    relation: str,
    columns: tuple[str, ...],
    filters: tuple[FilterNode, ...],
    options: CompilerOptions,
) -> tuple[AccessorSpec | None, tuple[CompileDegradation, ...]]:
    """
    Derive the strict accessor from the read rule's conditions.

    One parameter per Eq/InClaim condition; literal conditions become fixed
    filters. Or/And and duplicate parameter columns skip the accessor.
    """
    if any(isinstance(node, (Or, And)) for node in filters):
        return None, (
            _degradation(
                DegradationReason.COMBINATOR_IN_ACCESSOR,
                "Or/And conditions are not supported by the strict accessor; accessor skipped",
                relation,
                Operation.READ,
            ),
        )

    parameters: list[AccessorParameter] = []
    literal_filters: list[Eq] = []
    seen: set[str] = set()

    for node in filters:
        condition = normalize_leaf(node)
        if isinstance(condition.value, Literal):
            literal_filters.append(condition)
            continue
        if condition.column in seen:
            return None, (
                _degradation(
                    DegradationReason.DUPLICATE_PARAMETER,
                    f"Column {condition.column} appears in more than one condition; accessor skipped",
                    relation,
                    Operation.READ,
                    column=condition.column,
                ),
            )
        seen.add(condition.column)
        parameters.append(
            AccessorParameter(
                name=PARAMETER_PREFIX + condition.column,
                condition=condition,
                defaults_to_identity=isinstance(condition.value, Identity),
            )
        )

    # Parameters with defaults must follow required ones
    ordered = [p for p in parameters if not p.defaults_to_identity] + [
        p for p in parameters if p.defaults_to_identity
    ]

    accessor = AccessorSpec(
        schema=options.api_schema,
        relation=relation,
        source_schema=options.source_schema,
        columns=columns,
        parameters=tuple(ordered),
        literal_filters=tuple(literal_filters),
        grant_to=options.reader_roles,
    )
    return accessor, ()


def _build_guard(
    relation: str,
    operation: Operation,
    read_columns: tuple[str, ...],
    filters: tuple[FilterNode, ...],
    options: CompilerOptions,
) -> tuple[GuardSpec, tuple[CompileDegradation, ...]]:
    event = OPERATION_TO_EVENT[operation]
    conditions: list[Eq] = []
    degradations: list[CompileDegradation] = []

    for index, node in enumerate(filters):
        if isinstance(node, (Or, And)):
            if options.strict_write_guards:
                raise DefinitionError(
                    "Or/And conditions are not supported in write rules",
                    details={"relation": relation, "operation": operation.value, "index": index},
                )
            degradations.append(
                _degradation(
                    DegradationReason.COMBINATOR_IN_GUARD,
                    f"Or/And condition #{index} ignored by the {operation.value} guard",
                    relation,
                    operation,
                    index=index,
                )
            )
            continue
        conditions.append(normalize_leaf(node))

    if event is GuardEvent.INSERT:
        outside = sorted({c.column for c in conditions} - set(read_columns))
        if outside:
            raise DefinitionError(
                "Create rule conditions must reference projected columns",
                details={"relation": relation, "columns": outside},
            )
        columns = read_columns
    else:
        if options.key_column not in read_columns:
            raise DefinitionError(
                f"The read rule for {relation} must project {options.key_column} "
                f"to support {operation.value} rules",
                details={"relation": relation, "key_column": options.key_column},
            )
        columns = tuple(c for c in read_columns if c != options.key_column)

    guard = GuardSpec(
        schema=options.api_schema,
        relation=relation,
        source_schema=options.source_schema,
        event=event,
        conditions=tuple(conditions),
        columns=columns,
        key_column=options.key_column,
        grant_to=options.writer_roles,
    )

    return guard, tuple(degradations)


def _degradation(
    reason: DegradationReason, message: str, relation: str, operation: Operation, **details
) -> CompileDegradation:
    return CompileDegradation(
        reason=reason, message=message, relation=relation, operation=operation, details=details
    )
