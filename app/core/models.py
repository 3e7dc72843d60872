from __future__ import annotations

from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum

from flask_login import UserMixin
from sqlalchemy import CheckConstraint, Enum as SAEnum, ForeignKey, Index, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship, validates
from werkzeug.security import generate_password_hash

from app.core.extensions import db


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class BillingStatus(str, Enum):
    PENDING = "pending"
    BILLED = "billed"
    PAID = "paid"


class ApplicationStatus(str, Enum):
    PENDING = "pending"
    SCHEDULED = "scheduled"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class BurialType(str, Enum):
    FAMILY = "family"
    RELATIVE = "relative"
    OTHER = "other"


class UserRole(str, Enum):
    ADMIN = "admin"
    OPERATOR = "operator"


class DocumentType(str, Enum):
    PERMIT = "permit"
    CERTIFICATE = "certificate"
    AGREEMENT = "agreement"
    OTHER = "other"


APPLICATION_NUMBER_SEQUENCE = "burial_application"


class NumberSequence(db.Model):
    # Locked counter row: allocates application numbers and serializes admission
    __tablename__ = "number_sequence"

    name: Mapped[str] = mapped_column(db.String(40), primary_key=True)
    current_value: Mapped[int] = mapped_column(nullable=False, default=0)


class User(UserMixin, db.Model):
    __tablename__ = "user_account"

    id: Mapped[int] = mapped_column(primary_key=True)
    email: Mapped[str] = mapped_column(db.String(255), unique=True, nullable=False)
    full_name: Mapped[str] = mapped_column(db.String(120), nullable=False)
    password_hash: Mapped[str] = mapped_column(db.String(255), nullable=False)
    role: Mapped[UserRole] = mapped_column(
        SAEnum(UserRole, name="user_role"),
        nullable=False,
        default=UserRole.OPERATOR,
    )
    is_active: Mapped[bool] = mapped_column(default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)


class BurialSlot(db.Model):
    # Shared consolidation unit tied to one contracted plot
    __tablename__ = "burial_slot"
    __table_args__ = (
        UniqueConstraint("contract_plot_id", name="uq_burial_slot_contract_plot"),
        CheckConstraint("burial_capacity > 0", name="ck_slot_capacity_positive"),
        CheckConstraint(
            "current_burial_count >= 0 AND current_burial_count <= burial_capacity",
            name="ck_slot_count_within_capacity",
        ),
        CheckConstraint("validity_period_years > 0", name="ck_slot_validity_positive"),
        CheckConstraint(
            "(capacity_reached_date IS NULL AND billing_scheduled_date IS NULL) "
            "OR (capacity_reached_date IS NOT NULL AND billing_scheduled_date IS NOT NULL)",
            name="ck_slot_billing_dates_paired",
        ),
        Index("ix_burial_slot_status_scheduled", "billing_status", "billing_scheduled_date"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    contract_plot_id: Mapped[str] = mapped_column(db.String(40), nullable=False)
    plot_number: Mapped[str] = mapped_column(db.String(40), nullable=False, default="")
    area_name: Mapped[str] = mapped_column(db.String(60), nullable=False, default="")
    applicant_name: Mapped[str | None] = mapped_column(db.String(120), nullable=True)
    applicant_name_kana: Mapped[str | None] = mapped_column(db.String(120), nullable=True)
    contract_date: Mapped[date] = mapped_column(nullable=False)
    burial_capacity: Mapped[int] = mapped_column(nullable=False)
    current_burial_count: Mapped[int] = mapped_column(nullable=False, default=0)
    validity_period_years: Mapped[int] = mapped_column(nullable=False)
    capacity_reached_date: Mapped[date | None] = mapped_column(nullable=True)
    billing_scheduled_date: Mapped[date | None] = mapped_column(nullable=True)
    billing_status: Mapped[BillingStatus] = mapped_column(
        SAEnum(BillingStatus, name="billing_status"),
        nullable=False,
        default=BillingStatus.PENDING,
    )
    billing_amount: Mapped[Decimal | None] = mapped_column(db.Numeric(12, 2), nullable=True)
    notes: Mapped[str | None] = mapped_column(db.String(500), nullable=True)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(default=utcnow, onupdate=utcnow, nullable=False)

    applications = relationship("BurialApplication", back_populates="slot", order_by="BurialApplication.id")
    billing_events = relationship(
        "BillingStatusEvent",
        back_populates="slot",
        cascade="all, delete-orphan",
        order_by="BillingStatusEvent.event_at",
    )

    @property
    def location_label(self) -> str:
        return f"{self.area_name} / {self.plot_number}".strip(" /")

    @validates("burial_capacity", "validity_period_years")
    def validate_positive(self, key, value):
        if value is not None and int(value) <= 0:
            raise ValueError(f"{key} must be greater than zero")
        return value


class BurialApplication(db.Model):
    # Batch submission consolidating deceased persons into a slot
    __tablename__ = "burial_application"
    __table_args__ = (
        UniqueConstraint("application_number", name="uq_burial_application_number"),
        Index("ix_burial_application_status", "status"),
        Index("ix_burial_application_slot_status", "slot_id", "status"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    application_number: Mapped[str] = mapped_column(db.String(20), nullable=False)
    slot_id: Mapped[int] = mapped_column(ForeignKey("burial_slot.id"), nullable=False)
    status: Mapped[ApplicationStatus] = mapped_column(
        SAEnum(ApplicationStatus, name="application_status"),
        nullable=False,
        default=ApplicationStatus.PENDING,
    )
    application_date: Mapped[date] = mapped_column(nullable=False)
    desired_date: Mapped[date | None] = mapped_column(nullable=True)
    burial_type: Mapped[BurialType] = mapped_column(
        SAEnum(BurialType, name="burial_type"),
        nullable=False,
        default=BurialType.FAMILY,
    )
    main_representative: Mapped[str] = mapped_column(db.String(120), nullable=False, default="")
    applicant_name: Mapped[str] = mapped_column(db.String(120), nullable=False)
    applicant_name_kana: Mapped[str] = mapped_column(db.String(120), nullable=False, default="")
    applicant_phone: Mapped[str] = mapped_column(db.String(30), nullable=False, default="")
    applicant_email: Mapped[str | None] = mapped_column(db.String(255), nullable=True)
    applicant_postal_code: Mapped[str | None] = mapped_column(db.String(10), nullable=True)
    applicant_address: Mapped[str] = mapped_column(db.String(255), nullable=False, default="")
    ceremony_date: Mapped[date | None] = mapped_column(nullable=True)
    officiant: Mapped[str | None] = mapped_column(db.String(120), nullable=True)
    religion: Mapped[str | None] = mapped_column(db.String(60), nullable=True)
    ceremony_location: Mapped[str | None] = mapped_column(db.String(120), nullable=True)
    total_fee: Mapped[Decimal | None] = mapped_column(db.Numeric(12, 2), nullable=True)
    deposit_amount: Mapped[Decimal | None] = mapped_column(db.Numeric(12, 2), nullable=True)
    payment_method: Mapped[str | None] = mapped_column(db.String(30), nullable=True)
    payment_due_date: Mapped[date | None] = mapped_column(nullable=True)
    special_requests: Mapped[str | None] = mapped_column(db.String(1000), nullable=True)
    created_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("user_account.id"), nullable=True)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(default=utcnow, onupdate=utcnow, nullable=False)

    slot = relationship("BurialSlot", back_populates="applications")
    created_by = relationship("User")
    persons = relationship(
        "BuriedPerson",
        back_populates="application",
        cascade="all, delete-orphan",
        order_by="BuriedPerson.position",
    )
    ceremonies = relationship(
        "BurialCeremony",
        back_populates="application",
        cascade="all, delete-orphan",
        order_by="BurialCeremony.position",
    )
    documents = relationship(
        "BurialDocument",
        back_populates="application",
        cascade="all, delete-orphan",
        order_by="BurialDocument.position",
    )

    @property
    def person_count(self) -> int:
        return len(self.persons)


class BuriedPerson(db.Model):
    __tablename__ = "buried_person"
    __table_args__ = (
        UniqueConstraint("application_id", "position", name="uq_buried_person_position"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    application_id: Mapped[int] = mapped_column(ForeignKey("burial_application.id"), nullable=False, index=True)
    position: Mapped[int] = mapped_column(nullable=False)
    name: Mapped[str] = mapped_column(db.String(120), nullable=False)
    name_kana: Mapped[str] = mapped_column(db.String(120), nullable=False, default="")
    relationship_label: Mapped[str] = mapped_column("relationship", db.String(60), nullable=False, default="")
    death_date: Mapped[date | None] = mapped_column(nullable=True)
    age: Mapped[int | None] = mapped_column(nullable=True)
    gender: Mapped[str | None] = mapped_column(db.String(20), nullable=True)
    original_plot_number: Mapped[str | None] = mapped_column(db.String(40), nullable=True)
    certificate_number: Mapped[str | None] = mapped_column(db.String(40), nullable=True)
    notes: Mapped[str | None] = mapped_column(db.String(255), nullable=True)

    application = relationship("BurialApplication", back_populates="persons")


class BurialCeremony(db.Model):
    __tablename__ = "burial_ceremony"
    __table_args__ = (
        UniqueConstraint("application_id", "position", name="uq_burial_ceremony_position"),
        CheckConstraint("participants IS NULL OR participants >= 0", name="ck_ceremony_participants"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    application_id: Mapped[int] = mapped_column(ForeignKey("burial_application.id"), nullable=False, index=True)
    position: Mapped[int] = mapped_column(nullable=False)
    ceremony_date: Mapped[date | None] = mapped_column(nullable=True)
    officiant: Mapped[str | None] = mapped_column(db.String(120), nullable=True)
    religion: Mapped[str | None] = mapped_column(db.String(60), nullable=True)
    participants: Mapped[int | None] = mapped_column(nullable=True)
    location: Mapped[str | None] = mapped_column(db.String(120), nullable=True)
    memo: Mapped[str | None] = mapped_column(db.String(255), nullable=True)

    application = relationship("BurialApplication", back_populates="ceremonies")


class BurialDocument(db.Model):
    # Reburial permits, consent agreements and other paperwork of an application
    __tablename__ = "burial_document"
    __table_args__ = (
        UniqueConstraint("application_id", "position", name="uq_burial_document_position"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    application_id: Mapped[int] = mapped_column(ForeignKey("burial_application.id"), nullable=False, index=True)
    position: Mapped[int] = mapped_column(nullable=False)
    document_type: Mapped[DocumentType] = mapped_column(
        SAEnum(DocumentType, name="document_type"),
        nullable=False,
        default=DocumentType.OTHER,
    )
    name: Mapped[str] = mapped_column(db.String(120), nullable=False)
    issued_date: Mapped[date | None] = mapped_column(nullable=True)
    memo: Mapped[str | None] = mapped_column(db.String(255), nullable=True)

    application = relationship("BurialApplication", back_populates="documents")


class BillingStatusEvent(db.Model):
    # Audit trail of billing status transitions
    __tablename__ = "billing_status_event"
    __table_args__ = (
        Index("ix_billing_event_slot_at", "slot_id", "event_at"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    slot_id: Mapped[int] = mapped_column(ForeignKey("burial_slot.id"), nullable=False)
    from_status: Mapped[BillingStatus] = mapped_column(
        SAEnum(BillingStatus, name="billing_status"),
        nullable=False,
    )
    to_status: Mapped[BillingStatus] = mapped_column(
        SAEnum(BillingStatus, name="billing_status"),
        nullable=False,
    )
    billing_amount: Mapped[Decimal | None] = mapped_column(db.Numeric(12, 2), nullable=True)
    event_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    details: Mapped[str] = mapped_column(db.String(255), nullable=False, default="")
    user_id: Mapped[int | None] = mapped_column(ForeignKey("user_account.id"), nullable=True)

    slot = relationship("BurialSlot", back_populates="billing_events")
    user = relationship("User")


def seed_demo_data(session) -> None:
    admin = User(
        email="admin@reien.local",
        full_name="管理者",
        password_hash=generate_password_hash("admin123"),
        role=UserRole.ADMIN,
    )
    operator = User(
        email="staff@reien.local",
        full_name="受付スタッフ",
        password_hash=generate_password_hash("staff123"),
        role=UserRole.OPERATOR,
    )
    session.add_all([admin, operator])
    session.flush()

    slot_open = BurialSlot(
        contract_plot_id="cp-001",
        plot_number="A-001",
        area_name="1期",
        applicant_name="山田 太郎",
        applicant_name_kana="ヤマダ タロウ",
        contract_date=date(2013, 7, 19),
        burial_capacity=10,
        current_burial_count=2,
        validity_period_years=33,
        billing_amount=Decimal("300000"),
    )
    slot_full = BurialSlot(
        contract_plot_id="cp-002",
        plot_number="B-015",
        area_name="2期",
        applicant_name="佐藤 健一",
        applicant_name_kana="サトウ ケンイチ",
        contract_date=date(2021, 4, 1),
        burial_capacity=2,
        current_burial_count=2,
        validity_period_years=13,
        capacity_reached_date=date(2023, 11, 1),
        billing_scheduled_date=date(2036, 11, 1),
        billing_amount=Decimal("250000"),
        notes="上限到達済み",
    )
    slot_billed = BurialSlot(
        contract_plot_id="cp-003",
        plot_number="C-102",
        area_name="3期",
        applicant_name="鈴木 一郎",
        applicant_name_kana="スズキ イチロウ",
        contract_date=date(2014, 12, 1),
        burial_capacity=1,
        current_burial_count=1,
        validity_period_years=7,
        capacity_reached_date=date(2020, 6, 15),
        billing_scheduled_date=date(2027, 6, 15),
        billing_status=BillingStatus.BILLED,
        billing_amount=Decimal("200000"),
        notes="請求書送付済み",
    )
    session.add_all([slot_open, slot_full, slot_billed])
    session.flush()

    demo_applications = [
        (slot_open, "CBA-0001", date(2020, 3, 1), [("山田 一郎", "父"), ("山田 花子", "母")]),
        (slot_full, "CBA-0002", date(2021, 5, 10), [("佐藤 次郎", "父"), ("佐藤 美智子", "母")]),
        (slot_billed, "CBA-0003", date(2018, 1, 20), [("鈴木 三郎", "父")]),
    ]
    for slot, number, applied_on, persons in demo_applications:
        application = BurialApplication(
            application_number=number,
            slot_id=slot.id,
            status=ApplicationStatus.COMPLETED,
            application_date=applied_on,
            ceremony_date=applied_on,
            burial_type=BurialType.FAMILY,
            main_representative="契約者本人",
            applicant_name=slot.applicant_name or "",
            applicant_name_kana=slot.applicant_name_kana or "",
            applicant_address="福岡県北九州市小倉北区清水2-12-15",
            created_by_user_id=admin.id,
        )
        application.persons = [
            BuriedPerson(position=index, name=name, relationship_label=relation)
            for index, (name, relation) in enumerate(persons, start=1)
        ]
        session.add(application)

    session.add(NumberSequence(name=APPLICATION_NUMBER_SEQUENCE, current_value=len(demo_applications)))
    session.commit()
