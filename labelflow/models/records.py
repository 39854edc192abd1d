# labelflow/models/records.py
from __future__ import annotations
from datetime import datetime
from sqlalchemy import String, Integer, DateTime, Text, Float
from sqlalchemy.orm import Mapped, mapped_column
from labelflow.db import Base


class Account(Base):
    __tablename__ = "accounts"

    company: Mapped[str] = mapped_column(String(128), primary_key=True)
    token: Mapped[str | None] = mapped_column(Text, nullable=True)  # carrier API bearer token


class Order(Base):
    """Denormalized projection of a carrier order, kept for label reprocessing."""

    __tablename__ = "orders"

    order_id: Mapped[str] = mapped_column(String(64), primary_key=True)   # carrier id
    number: Mapped[str | None] = mapped_column(String(64), nullable=True)
    order_number: Mapped[str | None] = mapped_column(String(128), index=True)  # store-facing number
    store_id: Mapped[str | None] = mapped_column(String(64), index=True)
    date: Mapped[str | None] = mapped_column(String(32), nullable=True)
    ship_date: Mapped[str | None] = mapped_column(String(32), nullable=True)
    total: Mapped[float | None] = mapped_column(Float, nullable=True)
    contact_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    contact_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    contact_document: Mapped[str | None] = mapped_column(String(64), nullable=True)
    status_id: Mapped[str | None] = mapped_column(String(32), nullable=True)
    invoice_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    label_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    label_street: Mapped[str | None] = mapped_column(String(255), nullable=True)
    label_number: Mapped[str | None] = mapped_column(String(32), nullable=True)
    label_complement: Mapped[str | None] = mapped_column(String(255), nullable=True)
    label_neighborhood: Mapped[str | None] = mapped_column(String(255), nullable=True)
    label_city: Mapped[str | None] = mapped_column(String(128), nullable=True)
    label_state: Mapped[str | None] = mapped_column(String(8), nullable=True)
    label_postal_code: Mapped[str | None] = mapped_column(String(16), nullable=True)
    tracking_code: Mapped[str | None] = mapped_column(String(64), nullable=True)

    items_json: Mapped[str | None] = mapped_column(Text, nullable=True)
    raw_json: Mapped[str | None] = mapped_column(Text, nullable=True)


class OrderItem(Base):
    __tablename__ = "order_items"

    item_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    order_id: Mapped[str | None] = mapped_column(String(64), index=True)
    order_number: Mapped[str | None] = mapped_column(String(128), index=True)
    store_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    sku: Mapped[str | None] = mapped_column(String(128), index=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    quantity: Mapped[float | None] = mapped_column(Float, nullable=True)
    value: Mapped[float | None] = mapped_column(Float, nullable=True)


class Invoice(Base):
    __tablename__ = "invoices"

    invoice_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    number: Mapped[str | None] = mapped_column(String(32), nullable=True)
    order_number: Mapped[str | None] = mapped_column(String(128), index=True)
    series: Mapped[str | None] = mapped_column(String(16), nullable=True)
    kind: Mapped[int | None] = mapped_column(Integer, nullable=True)
    status: Mapped[int | None] = mapped_column(Integer, nullable=True)
    value: Mapped[float | None] = mapped_column(Float, nullable=True)
    issue_date: Mapped[str | None] = mapped_column(String(32), index=True)  # wall-clock, as sent
    operation_date: Mapped[str | None] = mapped_column(String(32), nullable=True)
    access_key: Mapped[str | None] = mapped_column(String(64), nullable=True)
    xml_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    danfe_link: Mapped[str | None] = mapped_column(Text, nullable=True)
    pdf_link: Mapped[str | None] = mapped_column(Text, nullable=True)
    contact_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    contact_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    contact_document: Mapped[str | None] = mapped_column(String(64), nullable=True)
    phone: Mapped[str | None] = mapped_column(String(64), nullable=True)
    store_id: Mapped[str | None] = mapped_column(String(64), index=True)
    address_json: Mapped[str | None] = mapped_column(Text, nullable=True)


class LabelRecord(Base):
    __tablename__ = "label_records"

    order_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    company: Mapped[str | None] = mapped_column(String(128), nullable=True)
    store_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    order_number: Mapped[str | None] = mapped_column(String(128), unique=True, index=True)
    label_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    link: Mapped[str | None] = mapped_column(Text, nullable=True)
    downloaded_state: Mapped[str | None] = mapped_column(String(32), index=True)  # None | "label saved"
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    print_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    print_state: Mapped[str | None] = mapped_column(String(16), nullable=True)  # None | "printed" | "reprinted"
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class Logo(Base):
    __tablename__ = "logos"

    name: Mapped[str] = mapped_column(String(64), primary_key=True)
    base64: Mapped[str] = mapped_column(Text)
