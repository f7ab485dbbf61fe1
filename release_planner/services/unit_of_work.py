"""
Unit of work and typed repositories for the plan aggregate.

``UnitOfWork`` wraps one SQLAlchemy session. Services and the reconciler
receive it explicitly instead of reaching into ``db.session`` from deep
inside an algorithm, which keeps the transaction boundary in one place:

    uow = UnitOfWork()
    plan = uow.with_transaction(lambda u: _apply(u, plan_id, data))

``with_transaction`` commits when *fn* returns and rolls back (then
re-raises) on any exception.
"""
import logging

from sqlalchemy import func, select

from release_planner.models import db
from release_planner.models.catalog import BasePhase, Feature, Owner, PlanReferenceType, RescheduleType
from release_planner.models.plan import Plan, PlanPhase
from release_planner.models.product import Product

logger = logging.getLogger(__name__)


class Repository:
    """Thin typed handle over one model."""

    model = None

    def __init__(self, session):
        self.session = session

    def get(self, pk):
        if pk is None:
            return None
        return self.session.get(self.model, pk)

    def add(self, row):
        self.session.add(row)
        return row

    def delete(self, row):
        self.session.delete(row)

    def find_by(self, **filters):
        stmt = select(self.model).filter_by(**filters)
        return self.session.execute(stmt).scalars().first()


class PlanRepository(Repository):
    model = Plan

    def list_all(self):
        stmt = select(Plan).order_by(Plan.created_at.desc())
        return self.session.execute(stmt).scalars().all()

    def find_by_name(self, normalized_name: str):
        """Case-insensitive lookup; names are stored whitespace-normalized."""
        stmt = select(Plan).where(func.lower(Plan.name) == normalized_name.lower())
        return self.session.execute(stmt).scalars().first()

    def load_phases(self, plan_id: str):
        """Fresh read of a plan's phases, overwriting any cached state."""
        stmt = (
            select(PlanPhase)
            .where(PlanPhase.plan_id == plan_id)
            .order_by(PlanPhase.sequence)
            .execution_options(populate_existing=True)
        )
        return self.session.execute(stmt).scalars().all()


class ProductRepository(Repository):
    model = Product

    def get_fresh(self, product_id):
        """Product with its (eager-loaded) components re-read from the database."""
        if product_id is None:
            return None
        stmt = (
            select(Product)
            .where(Product.id == product_id)
            .execution_options(populate_existing=True)
        )
        return self.session.execute(stmt).scalars().first()


class RescheduleTypeRepository(Repository):
    model = RescheduleType

    def find_by_name(self, name: str):
        return self.find_by(name=name)


class ReferenceTypeRepository(Repository):
    model = PlanReferenceType

    def find_by_name(self, name: str):
        return self.find_by(name=name)


class OwnerRepository(Repository):
    model = Owner


class FeatureRepository(Repository):
    model = Feature

    def list_by_ids(self, ids):
        if not ids:
            return []
        stmt = select(Feature).where(Feature.id.in_(list(ids)))
        return self.session.execute(stmt).scalars().all()


class BasePhaseRepository(Repository):
    model = BasePhase

    def list_defaults(self):
        """Default templates in catalog order: sequence first (unset last), then name."""
        stmt = (
            select(BasePhase)
            .where(BasePhase.is_default.is_(True))
            .order_by(BasePhase.sequence.is_(None), BasePhase.sequence, BasePhase.name)
        )
        return self.session.execute(stmt).scalars().all()


class UnitOfWork:
    """One session, typed repositories and an explicit transaction boundary."""

    def __init__(self, session=None):
        self.session = session if session is not None else db.session
        self.plans = PlanRepository(self.session)
        self.products = ProductRepository(self.session)
        self.reschedule_types = RescheduleTypeRepository(self.session)
        self.reference_types = ReferenceTypeRepository(self.session)
        self.owners = OwnerRepository(self.session)
        self.features = FeatureRepository(self.session)
        self.base_phases = BasePhaseRepository(self.session)

    def flush(self):
        self.session.flush()

    def delete_where(self, model, **filters) -> int:
        """Delete every *model* row matching *filters* through the ORM."""
        rows = self.session.execute(select(model).filter_by(**filters)).scalars().all()
        for row in rows:
            self.session.delete(row)
        return len(rows)

    def savepoint(self):
        """Nested transaction for best-effort work inside the outer one."""
        return self.session.begin_nested()

    def with_transaction(self, fn):
        try:
            result = fn(self)
            self.session.commit()
        except Exception:
            logger.debug("Rolling back unit of work")
            self.session.rollback()
            raise
        return result
