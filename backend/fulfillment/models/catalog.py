from __future__ import annotations

from ..extensions import db
from fulfillment.time_utils import to_utc_z, utcnow


PARTNER_KIND_SUPPLIER = "supplier"
PARTNER_KIND_TRANSPORTER = "transporter"
PARTNER_KIND_CUSTOMER = "customer"


class Product(db.Model):
    """
    Product master data.

    Catalog fields (name, price, threshold) are owned by catalog administration;
    the fulfillment core only resolves references and snapshots prices onto
    order lines. Quantities never live here: stock is per Batch.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.Index("ix_products_name", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sku = db.Column(db.String(64), nullable=False, unique=True)
    name = db.Column(db.String(255), nullable=False)

    # Stock level at or below which inventory status reports "low"
    threshold_limit = db.Column(db.Integer, nullable=False, default=0)
    shelf_life_days = db.Column(db.Integer, nullable=True)

    price_cents = db.Column(db.Integer, nullable=False, default=0)
    weight_grams = db.Column(db.Integer, nullable=False, default=0)

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    def __repr__(self) -> str:
        return f"<Product id={self.id} sku={self.sku!r} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sku": self.sku,
            "name": self.name,
            "threshold_limit": self.threshold_limit,
            "shelf_life_days": self.shelf_life_days,
            "price_cents": self.price_cents,
            "weight_grams": self.weight_grams,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class Warehouse(db.Model):
    __tablename__ = "warehouses"
    __table_args__ = ({"sqlite_autoincrement": True},)

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(32), nullable=False, unique=True)
    name = db.Column(db.String(255), nullable=False)
    address = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    def __repr__(self) -> str:
        return f"<Warehouse id={self.id} code={self.code!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "code": self.code,
            "name": self.name,
            "address": self.address,
            "created_at": to_utc_z(self.created_at),
        }


class Partner(db.Model):
    """
    External party: supplier, transporter, or customer.

    User management is an external collaborator; this table only lets the core
    resolve the ids it is handed (a transporter assignment must name an active
    transporter, a batch must name a supplier).
    """
    __tablename__ = "partners"
    __table_args__ = (
        db.Index("ix_partners_kind_active", "kind", "is_active"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    kind = db.Column(db.String(16), nullable=False)
    name = db.Column(db.String(255), nullable=False)
    company_name = db.Column(db.String(255), nullable=True)
    phone = db.Column(db.String(64), nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    def __repr__(self) -> str:
        return f"<Partner id={self.id} kind={self.kind} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "kind": self.kind,
            "name": self.name,
            "company_name": self.company_name,
            "phone": self.phone,
            "is_active": self.is_active,
        }
