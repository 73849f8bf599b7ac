"""
SQLAlchemy Database Models

Rows of the remote backend. Three collections:
- products: menu entries and stock
- orders: table orders, line items stored as JSON snapshots
- tables: active bill-closing sessions keyed by table number

Version: 1.0.0
"""

from sqlalchemy import BigInteger, Column, Enum, Float, Integer, JSON, String, Text

from app.database import Base
from app.schemas import Category, Order, OrderItem, OrderStatus, Product, TableSession, TableStatus


class ProductRecord(Base):
    """Menu entry. ``image_url`` may hold a full data URL, hence Text."""
    __tablename__ = "products"

    id = Column(String(64), primary_key=True)
    name = Column(String(200), nullable=False, index=True)
    description = Column(Text, nullable=False, default="")
    price = Column(Float, nullable=False)
    category = Column(Enum(Category), nullable=False, default=Category.BEBIDAS)
    stock = Column(Integer, nullable=False, default=0)
    image_url = Column(Text, nullable=False, default="")

    def to_schema(self) -> Product:
        return Product(
            id=self.id,
            name=self.name,
            description=self.description or "",
            price=self.price,
            category=self.category,
            stock=self.stock,
            image_url=self.image_url or "",
        )

    def __repr__(self):
        return f"<Product {self.id} - {self.name} - stock={self.stock}>"


class OrderRecord(Base):
    """Order placed from a table."""
    __tablename__ = "orders"

    id = Column(String(64), primary_key=True)
    table_id = Column(Integer, nullable=False, index=True)
    status = Column(
        Enum(OrderStatus),
        default=OrderStatus.PENDING,
        nullable=False,
        index=True
    )
    timestamp = Column(BigInteger, nullable=False, index=True)  # epoch ms
    items = Column(JSON, nullable=False)
    total = Column(Float, nullable=False)
    observation = Column(Text, nullable=False, default="")

    def to_schema(self) -> Order:
        return Order(
            id=self.id,
            table_id=self.table_id,
            status=self.status,
            timestamp=self.timestamp,
            items=[OrderItem.model_validate(item) for item in self.items],
            total=self.total,
            observation=self.observation or "",
        )

    def __repr__(self):
        return f"<Order {self.id} - table {self.table_id} - {self.status.value}>"


class TableSessionRecord(Base):
    """Bill-closing session. One row per table at most."""
    __tablename__ = "tables"

    table_id = Column(Integer, primary_key=True, autoincrement=False)
    status = Column(Enum(TableStatus), nullable=False, default=TableStatus.CLOSING_REQUESTED)
    payment_method = Column(String(50), nullable=True)

    def to_schema(self) -> TableSession:
        return TableSession(
            table_id=self.table_id,
            status=self.status,
            payment_method=self.payment_method,
        )

    def __repr__(self):
        return f"<TableSession {self.table_id} - {self.status.value}>"
