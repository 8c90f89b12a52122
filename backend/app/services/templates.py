"""Template repository: seeding, lookup and company-specific resolution."""

from __future__ import annotations

from typing import Any

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.logging import get_logger
from app.models.tables import CompanyTemplateCustomizationRecord, TemplateSchemaRecord
from ingest.errors import TemplateNotFound
from ingest.templates import builtin_templates, merge_customization
from ingest.templates.schema import CompanyTemplateCustomization, TemplateSchema, ValidationRule, dump_definition

logger = get_logger(__name__)


def record_to_schema(record: TemplateSchemaRecord) -> TemplateSchema:
    """Build an immutable :class:`TemplateSchema` from a stored row."""

    return TemplateSchema.model_validate(
        {
            "id": record.id,
            "name": record.name,
            "display_name": record.display_name,
            "description": record.description,
            "category": record.category,
            "version": record.version,
            "is_active": record.is_active,
            "is_required": record.is_required,
            "schema_definition": record.schema_definition or {},
            "validation_rules": record.validation_rules or [],
        }
    )


def _customization(record: CompanyTemplateCustomizationRecord) -> CompanyTemplateCustomization:
    return CompanyTemplateCustomization.model_validate(
        {
            "id": record.id,
            "company_id": record.company_id,
            "template_schema_id": record.template_schema_id,
            "custom_schema": record.custom_schema,
            "custom_validations": record.custom_validations or [],
            "custom_display_name": record.custom_display_name,
            "notes": record.notes,
            "is_active": record.is_active,
        }
    )


class TemplateRepository:
    """Reads and writes templates through one session."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def seed_builtin(self) -> int:
        """Insert built-in templates that are not stored yet; return how many were added."""

        existing = {
            (name, version)
            for name, version in (
                await self._session.execute(select(TemplateSchemaRecord.name, TemplateSchemaRecord.version))
            ).all()
        }
        added = 0
        for template in builtin_templates():
            if (template.name, template.version) in existing:
                continue
            self._session.add(
                TemplateSchemaRecord(
                    name=template.name,
                    display_name=template.display_name,
                    description=template.description,
                    category=template.category,
                    version=template.version,
                    is_active=template.is_active,
                    is_required=template.is_required,
                    schema_definition=dump_definition(template.schema_definition),
                    validation_rules=[
                        rule.model_dump(mode="json", exclude_none=True) for rule in template.validation_rules
                    ],
                )
            )
            added += 1
        await self._session.commit()
        if added:
            logger.info("templates.seeded", count=added)
        return added

    async def _latest_record(self, name: str) -> TemplateSchemaRecord | None:
        stmt = (
            select(TemplateSchemaRecord)
            .where(TemplateSchemaRecord.name == name, TemplateSchemaRecord.is_active.is_(True))
            .order_by(TemplateSchemaRecord.version.desc())
            .limit(1)
        )
        return await self._session.scalar(stmt)

    async def list_active(self) -> list[TemplateSchema]:
        """Return the highest active version of every template, ordered by name."""

        latest = (
            select(TemplateSchemaRecord.name, func.max(TemplateSchemaRecord.version).label("version"))
            .where(TemplateSchemaRecord.is_active.is_(True))
            .group_by(TemplateSchemaRecord.name)
            .subquery()
        )
        stmt = (
            select(TemplateSchemaRecord)
            .join(
                latest,
                (TemplateSchemaRecord.name == latest.c.name) & (TemplateSchemaRecord.version == latest.c.version),
            )
            .order_by(TemplateSchemaRecord.name)
        )
        records = await self._session.scalars(stmt)
        return [record_to_schema(record) for record in records]

    async def get(self, name: str) -> TemplateSchema:
        """Return the base template; raise :class:`TemplateNotFound` when missing or inactive."""

        record = await self._latest_record(name)
        if record is None:
            raise TemplateNotFound(name)
        return record_to_schema(record)

    async def get_customization(self, company_id: str, template_id: str) -> CompanyTemplateCustomization | None:
        stmt = select(CompanyTemplateCustomizationRecord).where(
            CompanyTemplateCustomizationRecord.company_id == company_id,
            CompanyTemplateCustomizationRecord.template_schema_id == template_id,
            CompanyTemplateCustomizationRecord.is_active.is_(True),
        )
        record = await self._session.scalar(stmt)
        return _customization(record) if record is not None else None

    async def resolve(self, name: str, company_id: str | None = None) -> TemplateSchema:
        """Return the effective schema for ``name``, merged with the company's customization."""

        base = await self.get(name)
        if not company_id or base.id is None:
            return base
        customization = await self.get_customization(company_id, base.id)
        if customization is None:
            return base
        logger.info("templates.customization.applied", template=name, company_id=company_id)
        return merge_customization(base, customization)

    async def resolve_all(self, company_id: str | None = None) -> list[TemplateSchema]:
        """Effective schemas for every active template, for header detection."""

        return [await self.resolve(template.name, company_id) for template in await self.list_active()]

    async def save_customization(
        self,
        name: str,
        company_id: str,
        *,
        custom_schema: dict[str, Any] | None = None,
        custom_validations: list[ValidationRule] | None = None,
        custom_display_name: str | None = None,
        notes: str | None = None,
        is_active: bool = True,
        user_id: str | None = None,
    ) -> TemplateSchema:
        """Create or replace the single customization for (company, template); return the effective schema."""

        base = await self.get(name)
        assert base.id is not None
        validations = [rule.model_dump(mode="json", exclude_none=True) for rule in custom_validations or []]

        # Reject partial schemas that would not survive the merge before storing them.
        merge_customization(
            base,
            CompanyTemplateCustomization(
                company_id=company_id,
                custom_schema=custom_schema,
                custom_validations=tuple(custom_validations or ()),
                custom_display_name=custom_display_name,
            ),
        )

        stmt = select(CompanyTemplateCustomizationRecord).where(
            CompanyTemplateCustomizationRecord.company_id == company_id,
            CompanyTemplateCustomizationRecord.template_schema_id == base.id,
        )
        record = await self._session.scalar(stmt)
        if record is None:
            record = CompanyTemplateCustomizationRecord(company_id=company_id, template_schema_id=base.id)
            self._session.add(record)
        record.custom_schema = custom_schema
        record.custom_validations = validations
        record.custom_display_name = custom_display_name
        record.notes = notes
        record.is_active = is_active
        record.created_by = record.created_by or user_id
        await self._session.commit()

        logger.info("templates.customization.saved", template=name, company_id=company_id, active=is_active)
        return await self.resolve(name, company_id)
