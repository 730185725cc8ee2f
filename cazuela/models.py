import enum

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from cazuela.db import Base

ID_TYPE = BigInteger().with_variant(Integer, "sqlite")
QTY_TYPE = Numeric(12, 3)
MONEY_TYPE = Numeric(12, 2)
COST_TYPE = Numeric(12, 4)


class MovementType(str, enum.Enum):
    ENTRY = "ENTRY"
    EXIT = "EXIT"
    WASTE = "WASTE"
    ADJUSTMENT = "ADJUSTMENT"


class SaleStatus(str, enum.Enum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class PaymentType(str, enum.Enum):
    CASH = "CASH"
    CARD = "CARD"
    TRANSFER = "TRANSFER"
    MIXED = "MIXED"


class ComboType(str, enum.Enum):
    FIXED = "FIXED"
    SEASONAL = "SEASONAL"


def _enum(enum_cls: type[enum.Enum]) -> Enum:
    return Enum(enum_cls, native_enum=False, length=20, validate_strings=True)


class Branch(Base):
    __tablename__ = "branch"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    address: Mapped[str | None] = mapped_column(Text)
    phone: Mapped[str | None] = mapped_column(Text)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[DateTime] = mapped_column(DateTime(timezone=True), nullable=False)


class MaterialCategory(Base):
    __tablename__ = "material_category"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[str | None] = mapped_column(Text)


class Material(Base):
    __tablename__ = "material"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    category_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("material_category.id"), nullable=False
    )
    name: Mapped[str] = mapped_column(Text, nullable=False)
    unit: Mapped[str] = mapped_column(Text, nullable=False)
    min_stock: Mapped[Numeric] = mapped_column(QTY_TYPE, nullable=False, default=0)
    max_stock: Mapped[Numeric] = mapped_column(QTY_TYPE, nullable=False, default=0)
    average_cost: Mapped[Numeric] = mapped_column(COST_TYPE, nullable=False, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class BranchStock(Base):
    __tablename__ = "branch_stock"
    __table_args__ = (UniqueConstraint("branch_id", "material_id"),)

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    branch_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("branch.id"), nullable=False
    )
    material_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("material.id"), nullable=False
    )
    quantity: Mapped[Numeric] = mapped_column(QTY_TYPE, nullable=False, default=0)
    updated_at: Mapped[DateTime] = mapped_column(DateTime(timezone=True), nullable=False)


class InventoryMovement(Base):
    __tablename__ = "inventory_movement"
    __table_args__ = (
        Index("ix_inventory_movement_branch_created", "branch_id", "created_at"),
    )

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    branch_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("branch.id"), nullable=False
    )
    material_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("material.id"), nullable=False
    )
    movement_type: Mapped[MovementType] = mapped_column(_enum(MovementType), nullable=False)
    quantity: Mapped[Numeric] = mapped_column(QTY_TYPE, nullable=False)
    unit_cost: Mapped[Numeric] = mapped_column(COST_TYPE, nullable=False)
    total_amount: Mapped[Numeric] = mapped_column(MONEY_TYPE, nullable=False)
    reason: Mapped[str | None] = mapped_column(Text)
    reference_document: Mapped[str | None] = mapped_column(Text)
    supplier: Mapped[str | None] = mapped_column(Text)
    lot_number: Mapped[str | None] = mapped_column(Text)
    waste_type: Mapped[str | None] = mapped_column(Text)
    stock_before: Mapped[Numeric] = mapped_column(QTY_TYPE, nullable=False)
    stock_after: Mapped[Numeric] = mapped_column(QTY_TYPE, nullable=False)
    created_at: Mapped[DateTime] = mapped_column(DateTime(timezone=True), nullable=False)


class ProductCategory(Base):
    __tablename__ = "product_category"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class Product(Base):
    __tablename__ = "product"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    category_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("product_category.id"), nullable=False
    )
    name: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    base_price: Mapped[Numeric] = mapped_column(MONEY_TYPE, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class ProductVariant(Base):
    __tablename__ = "product_variant"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    product_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("product.id"), nullable=False
    )
    name: Mapped[str] = mapped_column(Text, nullable=False)
    price_multiplier: Mapped[Numeric] = mapped_column(Numeric(6, 2), nullable=False, default=1)
    unit_count: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    volume_ml: Mapped[int | None] = mapped_column(Integer)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class AttributeType(Base):
    __tablename__ = "attribute_type"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    category_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("product_category.id"), nullable=False
    )
    name: Mapped[str] = mapped_column(Text, nullable=False)
    is_required: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    allows_multiple: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class AttributeOption(Base):
    __tablename__ = "attribute_option"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    attribute_type_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("attribute_type.id"), nullable=False
    )
    name: Mapped[str] = mapped_column(Text, nullable=False)
    extra_price: Mapped[Numeric] = mapped_column(MONEY_TYPE, nullable=False, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class Combo(Base):
    __tablename__ = "combo"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    price: Mapped[Numeric] = mapped_column(MONEY_TYPE, nullable=False)
    combo_type: Mapped[ComboType] = mapped_column(
        _enum(ComboType), nullable=False, default=ComboType.FIXED
    )
    valid_from: Mapped[DateTime | None] = mapped_column(DateTime(timezone=True))
    valid_to: Mapped[DateTime | None] = mapped_column(DateTime(timezone=True))
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[DateTime] = mapped_column(DateTime(timezone=True), nullable=False)


class ComboComponent(Base):
    __tablename__ = "combo_component"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    combo_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("combo.id"), nullable=False
    )
    product_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey("product.id"))
    variant_id: Mapped[int | None] = mapped_column(
        BigInteger, ForeignKey("product_variant.id")
    )
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    special_name: Mapped[str | None] = mapped_column(Text)
    special_price: Mapped[Numeric | None] = mapped_column(MONEY_TYPE)


class Sale(Base):
    __tablename__ = "sale"
    __table_args__ = (Index("ix_sale_branch_sold_at", "branch_id", "sold_at"),)

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    branch_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("branch.id"), nullable=False
    )
    # not unique: the daily sequence is count-based, see DESIGN.md
    sale_number: Mapped[str] = mapped_column(Text, nullable=False, index=True)
    sold_at: Mapped[DateTime] = mapped_column(DateTime(timezone=True), nullable=False)
    subtotal: Mapped[Numeric] = mapped_column(MONEY_TYPE, nullable=False, default=0)
    discount: Mapped[Numeric] = mapped_column(MONEY_TYPE, nullable=False, default=0)
    total: Mapped[Numeric] = mapped_column(MONEY_TYPE, nullable=False, default=0)
    payment_type: Mapped[PaymentType | None] = mapped_column(_enum(PaymentType))
    status: Mapped[SaleStatus] = mapped_column(
        _enum(SaleStatus), nullable=False, default=SaleStatus.COMPLETED
    )
    customer_name: Mapped[str | None] = mapped_column(Text)
    customer_phone: Mapped[str | None] = mapped_column(Text)
    cancel_reason: Mapped[str | None] = mapped_column(Text)
    cancelled_at: Mapped[DateTime | None] = mapped_column(DateTime(timezone=True))


class SaleLine(Base):
    __tablename__ = "sale_line"
    __table_args__ = (
        CheckConstraint(
            "(combo_id IS NOT NULL AND product_id IS NULL AND variant_id IS NULL)"
            " OR (combo_id IS NULL AND product_id IS NOT NULL AND variant_id IS NOT NULL)",
            name="ck_sale_line_product_xor_combo",
        ),
        CheckConstraint("quantity > 0", name="ck_sale_line_quantity_positive"),
    )

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    sale_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("sale.id"), nullable=False, index=True
    )
    product_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey("product.id"))
    variant_id: Mapped[int | None] = mapped_column(
        BigInteger, ForeignKey("product_variant.id")
    )
    combo_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey("combo.id"))
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_price: Mapped[Numeric] = mapped_column(MONEY_TYPE, nullable=False)
    subtotal: Mapped[Numeric] = mapped_column(MONEY_TYPE, nullable=False)
    notes: Mapped[str | None] = mapped_column(Text)


class SaleLineOption(Base):
    __tablename__ = "sale_line_option"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    sale_line_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("sale_line.id"), nullable=False, index=True
    )
    attribute_type_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("attribute_type.id"), nullable=False
    )
    attribute_option_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("attribute_option.id"), nullable=False
    )
    extra_price: Mapped[Numeric] = mapped_column(MONEY_TYPE, nullable=False, default=0)
