"""
Release Planner
Product master data — owned by the Products subsystem.

Models:
    - Product: product a plan releases
    - ProductComponentVersion: authoritative current/previous version of a component

The reconciliation engine reads these to police the version-increase rule and
only writes them in the two-entity transactional flow.
"""

from release_planner.models import db
from release_planner.models.base import TimestampedModel, _iso


class Product(TimestampedModel):
    """Product with its versioned components."""

    __tablename__ = "products"

    name = db.Column(db.String(200), nullable=False, unique=True)

    components = db.relationship(
        "ProductComponentVersion", backref="product", lazy="selectin",
        cascade="all, delete-orphan", passive_deletes=True,
        order_by="ProductComponentVersion.name",
    )

    def component_map(self) -> dict:
        """component id → ProductComponentVersion."""
        return {c.id: c for c in self.components}

    def to_dict(self, include_children=True):
        result = {
            "id": self.id,
            "name": self.name,
            "updated_at": _iso(self.updated_at),
        }
        if include_children:
            result["components"] = [c.to_dict() for c in self.components]
        return result

    def __repr__(self):
        return f"<Product {self.id}: {self.name}>"


class ProductComponentVersion(TimestampedModel):
    """Authoritative version record for one component of a product."""

    __tablename__ = "product_components"

    product_id = db.Column(
        db.String(36), db.ForeignKey("products.id", ondelete="CASCADE"), nullable=False,
        index=True,
    )
    name = db.Column(db.String(255), nullable=True)
    component_type = db.Column(
        db.String(30), nullable=True,
        comment="web | services | mobile | ...",
    )
    current_version = db.Column(db.String(50), nullable=False, default="")
    previous_version = db.Column(db.String(50), nullable=False, default="")

    def to_dict(self):
        return {
            "id": self.id,
            "product_id": self.product_id,
            "name": self.name,
            "component_type": self.component_type,
            "current_version": self.current_version,
            "previous_version": self.previous_version,
            "updated_at": _iso(self.updated_at),
        }

    def __repr__(self):
        return f"<ProductComponentVersion {self.id}: {self.name} {self.current_version}>"
