"""Resolve catalog references by id or name, creating missing entities."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Iterator, TypeVar

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from catalog_import.db.models import (
    Attribute,
    AttributeOption,
    Catalog,
    CatalogAttribute,
    Category,
    Supplier,
)
from catalog_import.schemas.product_row import ProductRow
from catalog_import.utils.slugs import slugify

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT")

UNIQUE_VIOLATION = "23505"


class EntityKind(str, Enum):
    CATEGORY = "category"
    CATALOG = "catalog"
    SUPPLIER = "supplier"
    ATTRIBUTE = "attribute"
    ATTRIBUTE_OPTION = "attribute_option"


class EntityResolutionError(Exception):
    """A reference could not be looked up or created."""

    def __init__(
        self, kind: EntityKind, key: str, message: str, field: str | None = None
    ):
        super().__init__(message)
        self.kind = kind
        self.key = key
        self.message = message
        self.field = field or f"{kind.value}_name"


@dataclass(frozen=True)
class ResolvedReferences:
    category_id: int | None = None
    catalog_id: int | None = None
    supplier_id: int | None = None


def normalize_key(name: str) -> str:
    return name.strip().lower()


def is_unique_violation(error: IntegrityError) -> bool:
    """True when the failed insert clashed with a unique key."""
    sqlstate = getattr(error.orig, "sqlstate", None)
    if sqlstate is not None:
        return sqlstate == UNIQUE_VIOLATION
    # SQLite carries no SQLSTATE, only the message
    return "unique" in str(error.orig).lower()


def constraint_detail(error: IntegrityError | None) -> str:
    if error is None:
        return "unknown constraint failure"
    lines = str(error.orig).strip().splitlines()
    return lines[0] if lines else error.__class__.__name__


class EntityResolver:
    """Run-scoped resolver with a (kind, key) -> id cache.

    Entries created or modified while handling a row stay pending until the
    caller commits that row (``commit_pending``); ``discard_pending`` drops
    them after a rollback so the cache never points at rolled-back rows.
    """

    def __init__(self, session: Session, *, create_attempts: int = 3):
        self.session = session
        self.create_attempts = max(1, create_attempts)
        self._cache: dict[tuple[EntityKind, str], int] = {}
        self._pending: dict[tuple[EntityKind, str], int] = {}
        self._attribute_types: dict[int, str] = {}

    # -- cache -----------------------------------------------------------

    def _cached(self, kind: EntityKind, key: str) -> int | None:
        entry = (kind, key)
        if entry in self._pending:
            return self._pending[entry]
        return self._cache.get(entry)

    def _remember(self, kind: EntityKind, key: str, entity_id: int, *, pending: bool) -> int:
        if pending:
            self._pending[(kind, key)] = entity_id
        else:
            self._cache[(kind, key)] = entity_id
        return entity_id

    def commit_pending(self) -> None:
        self._cache.update(self._pending)
        self._pending.clear()

    def discard_pending(self) -> None:
        if self._pending:
            logger.debug(f"Discarding {len(self._pending)} pending resolver entries")
        self._pending.clear()

    @property
    def cache_size(self) -> int:
        return len(self._cache)

    # -- plumbing --------------------------------------------------------

    @contextmanager
    def _database_errors(
        self, kind: EntityKind, key: str, label: str | None = None
    ) -> Iterator[None]:
        label = label or f"{kind.value} '{key}'"
        try:
            yield
        except EntityResolutionError:
            raise
        except SQLAlchemyError as e:
            logger.warning(f"Database error resolving {label}: {e}")
            raise EntityResolutionError(
                kind, key, f"Failed to resolve {label}: {e.__class__.__name__}"
            ) from e

    def _find_or_create(
        self,
        kind: EntityKind,
        key: str,
        find: Callable[[], ModelT | None],
        build: Callable[[], ModelT],
        label: str | None = None,
    ) -> tuple[ModelT, bool]:
        """Select, else insert inside a SAVEPOINT; adopt the winner on a unique clash.

        Only unique-key clashes are retried. Any other constraint failure
        (a dangling foreign key, for instance) is reported at once with the
        database's own message.
        """
        label = label or f"{kind.value} '{key}'"
        last_error: IntegrityError | None = None
        for attempt in range(1, self.create_attempts + 1):
            existing = find()
            if existing is not None:
                return existing, False
            try:
                with self.session.begin_nested():
                    instance = build()
                    self.session.add(instance)
                    self.session.flush()
                return instance, True
            except IntegrityError as e:
                last_error = e
                if not is_unique_violation(e):
                    logger.warning(f"Could not create {label}: {constraint_detail(e)}")
                    raise EntityResolutionError(
                        kind, key, f"Could not create {label}: {constraint_detail(e)}"
                    ) from e
                logger.info(
                    f"Concurrent create of {label} "
                    f"(attempt {attempt}/{self.create_attempts}), re-selecting"
                )

        raise EntityResolutionError(
            kind,
            key,
            f"Could not create {label} after {self.create_attempts} attempts: "
            f"{constraint_detail(last_error)}",
        ) from last_error

    # -- catalog structure -------------------------------------------------

    def resolve_references(
        self, row: ProductRow, job_catalog_id: int | None = None
    ) -> ResolvedReferences:
        """Resolve the row's supplier, category and catalog (job catalog wins)."""
        supplier_id = self.resolve_supplier(row.supplier_id, row.supplier_name)
        category_id = self.resolve_category(
            row.category_id, row.category_name, row.category_parent_name
        )
        if job_catalog_id is not None:
            catalog_id = job_catalog_id
        else:
            catalog_id = self.resolve_catalog(row.catalog_id, row.catalog_name, supplier_id)
        return ResolvedReferences(
            category_id=category_id, catalog_id=catalog_id, supplier_id=supplier_id
        )

    def resolve_supplier(self, supplier_id: int | None, name: str | None) -> int | None:
        if supplier_id is not None:
            return supplier_id
        if not name or not name.strip():
            return None

        key = normalize_key(name)
        cached = self._cached(EntityKind.SUPPLIER, key)
        if cached is not None:
            return cached

        with self._database_errors(EntityKind.SUPPLIER, key):
            supplier, created = self._find_or_create(
                EntityKind.SUPPLIER,
                key,
                lambda: self.session.execute(
                    select(Supplier).where(func.lower(Supplier.name) == key)
                ).scalar_one_or_none(),
                lambda: Supplier(name=name.strip()),
            )
        if created:
            logger.info(f"Created supplier '{supplier.name}' (id={supplier.id})")
        return self._remember(EntityKind.SUPPLIER, key, supplier.id, pending=created)

    def resolve_category(
        self,
        category_id: int | None,
        name: str | None,
        parent_name: str | None = None,
    ) -> int | None:
        if category_id is not None:
            return category_id
        if not name or not name.strip():
            return None

        key = normalize_key(name)
        has_parent = bool(parent_name and parent_name.strip()) and (
            normalize_key(parent_name) != key
        )
        cached = self._cached(EntityKind.CATEGORY, key)
        if cached is not None:
            if has_parent:
                self._attach_parent(cached, key, self.resolve_category(None, parent_name))
            return cached

        parent_id = self.resolve_category(None, parent_name) if has_parent else None

        with self._database_errors(EntityKind.CATEGORY, key):
            category, created = self._find_or_create(
                EntityKind.CATEGORY,
                key,
                lambda: self.session.execute(
                    select(Category).where(func.lower(Category.name) == key)
                ).scalar_one_or_none(),
                lambda: Category(
                    name=name.strip(), slug=slugify(name), parent_id=parent_id
                ),
            )
        modified = not created and self._attach_parent(category.id, key, parent_id)

        if created:
            logger.info(f"Created category '{category.name}' (id={category.id})")
        return self._remember(
            EntityKind.CATEGORY, key, category.id, pending=created or modified
        )

    def _attach_parent(self, category_id: int, key: str, parent_id: int | None) -> bool:
        """Give a parentless category the row's parent. Existing parents are kept."""
        if parent_id is None or parent_id == category_id:
            return False
        with self._database_errors(EntityKind.CATEGORY, key):
            category = self.session.get(Category, category_id)
            if category is None or category.parent_id is not None:
                return False
            category.parent_id = parent_id
            self.session.flush()
        logger.info(f"Attached category '{category.name}' to parent id={parent_id}")
        return True

    def resolve_catalog(
        self,
        catalog_id: int | None,
        name: str | None,
        supplier_id: int | None = None,
    ) -> int | None:
        if catalog_id is not None:
            return catalog_id
        if not name or not name.strip():
            return None

        key = normalize_key(name)
        cached = self._cached(EntityKind.CATALOG, key)
        if cached is not None:
            return cached

        with self._database_errors(EntityKind.CATALOG, key):
            catalog, created = self._find_or_create(
                EntityKind.CATALOG,
                key,
                lambda: self.session.execute(
                    select(Catalog).where(func.lower(Catalog.name) == key)
                ).scalar_one_or_none(),
                lambda: Catalog(name=name.strip(), supplier_id=supplier_id, is_active=True),
            )
            modified = False
            if not created and catalog.supplier_id is None and supplier_id is not None:
                catalog.supplier_id = supplier_id
                self.session.flush()
                modified = True

        if created:
            logger.info(f"Created catalog '{catalog.name}' (id={catalog.id})")
        return self._remember(
            EntityKind.CATALOG, key, catalog.id, pending=created or modified
        )

    # -- attributes ------------------------------------------------------

    def resolve_attribute(self, name: str, attribute_type: str = "select") -> tuple[int, str]:
        """Return (attribute id, attribute type); new attributes get ``attribute_type``."""
        key = normalize_key(name)
        cached = self._cached(EntityKind.ATTRIBUTE, key)
        if cached is not None:
            return cached, self._attribute_types.get(cached, attribute_type)

        with self._database_errors(EntityKind.ATTRIBUTE, key):
            attribute, created = self._find_or_create(
                EntityKind.ATTRIBUTE,
                key,
                lambda: self.session.execute(
                    select(Attribute).where(func.lower(Attribute.name) == key)
                ).scalar_one_or_none(),
                lambda: Attribute(
                    name=name.strip(),
                    display_name=name.strip(),
                    attribute_type=attribute_type,
                    is_filterable=True,
                ),
            )

        if created:
            logger.info(
                f"Created attribute '{attribute.name}' ({attribute.attribute_type}, id={attribute.id})"
            )
        self._attribute_types[attribute.id] = attribute.attribute_type
        self._remember(EntityKind.ATTRIBUTE, key, attribute.id, pending=created)
        return attribute.id, attribute.attribute_type

    def resolve_option(self, attribute_id: int, value: str) -> int:
        key = f"{attribute_id}:{normalize_key(value)}"
        cached = self._cached(EntityKind.ATTRIBUTE_OPTION, key)
        if cached is not None:
            return cached

        lowered = normalize_key(value)
        label = f"option '{value.strip()}' of attribute {attribute_id}"
        with self._database_errors(EntityKind.ATTRIBUTE_OPTION, key, label):
            option, created = self._find_or_create(
                EntityKind.ATTRIBUTE_OPTION,
                key,
                lambda: self.session.execute(
                    select(AttributeOption).where(
                        AttributeOption.attribute_id == attribute_id,
                        func.lower(AttributeOption.value) == lowered,
                    )
                ).scalar_one_or_none(),
                lambda: AttributeOption(
                    attribute_id=attribute_id,
                    value=value.strip(),
                    display_value=value.strip(),
                    sort_order=0,
                ),
                label=label,
            )
        return self._remember(EntityKind.ATTRIBUTE_OPTION, key, option.id, pending=created)

    def ensure_catalog_attribute(self, catalog_id: int, attribute_id: int) -> None:
        """Register an attribute on a catalog so templates list its column."""
        key = f"{catalog_id}:{attribute_id}"
        if self._cached(EntityKind.ATTRIBUTE, f"catalog:{key}") is not None:
            return

        label = f"catalog attribute link (catalog {catalog_id}, attribute {attribute_id})"
        with self._database_errors(EntityKind.ATTRIBUTE, key, label):
            link, created = self._find_or_create(
                EntityKind.ATTRIBUTE,
                key,
                lambda: self.session.execute(
                    select(CatalogAttribute).where(
                        CatalogAttribute.catalog_id == catalog_id,
                        CatalogAttribute.attribute_id == attribute_id,
                    )
                ).scalar_one_or_none(),
                lambda: CatalogAttribute(catalog_id=catalog_id, attribute_id=attribute_id),
                label=label,
            )
        self._remember(EntityKind.ATTRIBUTE, f"catalog:{key}", link.id, pending=created)
