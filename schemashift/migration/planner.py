"""Migration planner - turns a desired schema into an ordered, risk-annotated plan."""

import logging
from typing import Any, Optional, Union

from schemashift.config import EngineConfig
from schemashift.migration.cost import CostEstimator
from schemashift.migration.differ import SchemaDiffer
from schemashift.migration.generators.postgres import PostgresGenerator
from schemashift.migration.models import MigrationOperation, MigrationOperationType, MigrationPlan
from schemashift.migration.ordering import order_operations
from schemashift.migration.risk import DataProfile, RiskAssessor
from schemashift.schema.models import SchemaSnapshot
from schemashift.schema.validator import SchemaDocumentValidator

logger = logging.getLogger(__name__)


class MigrationPlanner:
    """Plans the migration from the live schema to a desired snapshot.

    Planning only reads: the catalog through the introspector, plus row
    counts and orphan checks for the tables the plan touches.
    """

    def __init__(
        self,
        introspector: Any,
        config: Optional[EngineConfig] = None,
        validator: Optional[SchemaDocumentValidator] = None,
    ):
        self.introspector = introspector
        self.config = config or EngineConfig()
        self.validator = validator or SchemaDocumentValidator()
        self.differ = SchemaDiffer()
        self.assessor = RiskAssessor(self.config.risk_policy)
        self.estimator = CostEstimator(self.config.cost_model)
        self.generator = PostgresGenerator(schema=getattr(introspector, "schema", None))

    async def generate_migration_plan(
        self, desired: Union[SchemaSnapshot, dict[str, Any]]
    ) -> MigrationPlan:
        """
        Generate the plan that turns the live schema into ``desired``.

        Args:
            desired: Desired snapshot, as a model or as a snapshot document

        Returns:
            The migration plan

        Raises:
            InvalidDesiredSchema: If the desired schema is malformed
            SchemaUnavailable: If the live schema cannot be introspected
        """
        if isinstance(desired, SchemaSnapshot):
            self.validator.validate_consistency(desired)
            desired_snapshot = desired
        else:
            desired_snapshot = self.validator.parse(desired)

        current = await self.introspector.get_full_schema()
        return await self.plan_between(current, desired_snapshot)

    async def plan_between(self, current: SchemaSnapshot, desired: SchemaSnapshot) -> MigrationPlan:
        """Plan from an already captured snapshot of the live schema."""
        operations = self.differ.diff(current, desired)
        profile = await self.gather_profile(operations, current)

        assessed = [op.with_risk(self.assessor.assess(op, profile)) for op in operations]
        ordered = order_operations(assessed, current, desired)
        estimate = self.estimator.estimate(ordered, profile)

        plan = MigrationPlan.from_operations(
            ordered,
            estimate,
            warnings=list(current.warnings),
            rollback_statements=self.generator.generate_rollback_statements(ordered),
        )
        logger.info(
            "Planned %d operations (%d at medium risk or above), estimated %d ms",
            plan.summary.total,
            len(plan.risks),
            plan.estimated_time_ms,
        )
        return plan

    async def gather_profile(
        self, operations: list[MigrationOperation], current: SchemaSnapshot
    ) -> DataProfile:
        """Row counts and orphan checks for the tables the operations touch."""
        profile = DataProfile()
        tables = current.table_map()
        columns = current.column_map()

        for name in sorted({op.table for op in operations if op.table in tables}):
            estimate = tables[name].row_count_estimate
            if estimate > 0:
                profile.row_counts[name] = estimate
            else:
                # estimates are 0 until the table has been analyzed
                profile.row_counts[name] = await self.introspector.get_table_row_count(name)

        for op in operations:
            if op.type != MigrationOperationType.ADD_FOREIGN_KEY:
                continue
            fk = op.foreign_key_definition()
            if (fk.table_name, fk.column) not in columns or profile.rows(fk.table_name) == 0:
                profile.orphans[(op.table, op.detail_key)] = False
                continue
            target_exists = (fk.referenced_table, fk.referenced_column) in columns
            profile.orphans[(op.table, op.detail_key)] = (
                await self.introspector.has_orphaned_references(fk, target_exists=target_exists)
            )

        return profile
