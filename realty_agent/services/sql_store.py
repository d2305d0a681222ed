from __future__ import annotations

import asyncio
import json
import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, TypeVar

from sqlalchemy import func, or_, text, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.pool import StaticPool
from sqlmodel import Field, Session, SQLModel, create_engine, select

from realty_agent.models.crm import (
    ConversationTurn,
    Interaction,
    Lead,
    Property,
    PropertyFilters,
    TransactionInterest,
    TurnRole,
    price_in_range,
    utcnow,
)
from realty_agent.services.store import (
    ConversationStore,
    DuplicateLeadError,
    InMemoryConversationStore,
    LeadNotFoundError,
    StaleLeadError,
    StoreError,
    clean_lead_fields,
)
from realty_agent.utils.phone import normalize_phone, redact_phone

logger = logging.getLogger(__name__)

T = TypeVar("T")


class LeadRecord(SQLModel, table=True):
    __tablename__ = "leads"

    id: Optional[int] = Field(default=None, primary_key=True)
    phone: str = Field(index=True, unique=True)
    name: str = "Lead WhatsApp"
    email: Optional[str] = None
    source: str = "whatsapp"
    stage: str = "novo"
    qualification: str = "nao_qualificado"
    buyer_profile: str = "curioso"
    urgency_level: str = "baixa"
    transaction_interest: str = "venda"
    budget_min: int = 0
    budget_max: int = 0
    preferred_neighborhoods: Optional[str] = None
    preferred_property_types: Optional[str] = None
    notes: Optional[str] = None
    version: int = 0
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class PropertyRecord(SQLModel, table=True):
    __tablename__ = "properties"

    id: Optional[int] = Field(default=None, primary_key=True)
    title: str
    slug: Optional[str] = None
    reference_code: str = Field(index=True)
    property_type: str
    transaction_type: str
    status: str = Field(default="disponivel", index=True)
    neighborhood: str
    city: str = "Brasília"
    sale_price: Optional[int] = None
    rent_price: Optional[int] = None
    bedrooms: int = 0
    created_at: datetime = Field(default_factory=utcnow)


class InteractionRecord(SQLModel, table=True):
    __tablename__ = "interactions"

    id: Optional[int] = Field(default=None, primary_key=True)
    lead_id: int = Field(index=True)
    type: str
    subject: str
    description: str
    metadata_json: str = "{}"
    created_at: datetime = Field(default_factory=utcnow)


class ConversationTurnRecord(SQLModel, table=True):
    __tablename__ = "ai_context"

    id: Optional[int] = Field(default=None, primary_key=True)
    session_id: str = Field(index=True)
    phone: str
    role: str
    message: str
    created_at: datetime = Field(default_factory=utcnow, index=True)


def _lead(record: LeadRecord) -> Lead:
    return Lead.model_validate(record.model_dump())


def _property(record: PropertyRecord) -> Property:
    return Property.model_validate(record.model_dump())


def _interaction(record: InteractionRecord) -> Interaction:
    data = record.model_dump(exclude={"metadata_json"})
    data["metadata"] = json.loads(record.metadata_json or "{}")
    return Interaction.model_validate(data)


def _turn(record: ConversationTurnRecord) -> ConversationTurn:
    return ConversationTurn.model_validate(record.model_dump())


def _column_values(fields: Dict[str, Any]) -> Dict[str, Any]:
    # enums are stored by value
    return {key: getattr(value, "value", value) for key, value in fields.items()}


class SqlConversationStore(ConversationStore):
    """Durable store on SQLModel/SQLAlchemy.

    The engine is synchronous; each operation runs in a worker thread so the
    event loop keeps serving other conversations.
    """

    def __init__(self, database_url: str, echo: bool = False) -> None:
        self.database_url = database_url
        self._echo = echo
        self._engine = None

    async def open(self) -> None:
        if self._engine is not None:
            return
        kwargs: Dict[str, Any] = {"echo": self._echo}
        if self.database_url.startswith("sqlite"):
            kwargs["connect_args"] = {"check_same_thread": False}
            if ":memory:" in self.database_url or self.database_url in {"sqlite://", "sqlite:///"}:
                kwargs["poolclass"] = StaticPool
        self._engine = create_engine(self.database_url, **kwargs)
        await self._run(lambda: SQLModel.metadata.create_all(self._engine))
        logger.info("sql_store.opened dialect=%s", self._engine.dialect.name)

    async def close(self) -> None:
        if self._engine is None:
            return
        engine, self._engine = self._engine, None
        await asyncio.to_thread(engine.dispose)
        logger.info("sql_store.closed")

    async def health_check(self) -> bool:
        if self._engine is None:
            return False

        def _ping() -> bool:
            with self._engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            return True

        try:
            return await self._run(_ping)
        except StoreError:
            logger.warning("sql_store.health_check_failed", exc_info=True)
            return False

    async def _run(self, fn: Callable[[], T]) -> T:
        if self._engine is None:
            raise StoreError("Store is not open")
        try:
            return await asyncio.to_thread(fn)
        except StoreError:
            raise
        except SQLAlchemyError as exc:
            raise StoreError(str(exc)) from exc

    # Leads ---------------------------------------------------------------
    async def get_lead_by_phone(self, phone: str) -> Optional[Lead]:
        normalized = normalize_phone(phone)
        if not normalized:
            return None

        def _query() -> Optional[Lead]:
            with Session(self._engine) as session:
                record = session.exec(select(LeadRecord).where(LeadRecord.phone == normalized)).first()
                return _lead(record) if record else None

        return await self._run(_query)

    async def get_lead_by_id(self, lead_id: int) -> Optional[Lead]:
        def _query() -> Optional[Lead]:
            with Session(self._engine) as session:
                record = session.get(LeadRecord, lead_id)
                return _lead(record) if record else None

        return await self._run(_query)

    async def create_lead(self, lead: Lead) -> Lead:
        def _insert() -> Lead:
            data = _column_values(lead.model_dump(exclude={"id", "version"}))
            record = LeadRecord(**data)
            with Session(self._engine) as session:
                session.add(record)
                try:
                    session.commit()
                except IntegrityError as exc:
                    raise DuplicateLeadError(f"Lead with phone {redact_phone(lead.phone)} already exists") from exc
                session.refresh(record)
                return _lead(record)

        created = await self._run(_insert)
        logger.info("store.lead_created lead_id=%s", created.id)
        return created

    async def update_lead(
        self,
        lead_id: int,
        fields: Dict[str, Any],
        expected_version: Optional[int] = None,
    ) -> Lead:
        changes = clean_lead_fields(fields)
        # validate the values the same way the domain model does
        probe = Lead.model_validate({"phone": "0", **changes})
        values = _column_values({key: getattr(probe, key) for key in changes})

        def _update() -> Lead:
            with Session(self._engine) as session:
                stmt = (
                    update(LeadRecord)
                    .where(LeadRecord.id == lead_id)
                    .values(**values, version=LeadRecord.version + 1, updated_at=utcnow())
                )
                if expected_version is not None:
                    stmt = stmt.where(LeadRecord.version == expected_version)
                result = session.execute(stmt)
                if result.rowcount == 0:
                    session.rollback()
                    current = session.get(LeadRecord, lead_id)
                    if current is None:
                        raise LeadNotFoundError(f"Lead {lead_id} not found")
                    raise StaleLeadError(lead_id, expected_version, current.version)
                session.commit()
                record = session.get(LeadRecord, lead_id)
                session.refresh(record)
                return _lead(record)

        updated = await self._run(_update)
        logger.info("store.lead_updated lead_id=%s fields=%s version=%s", lead_id, sorted(changes), updated.version)
        return updated

    # Interactions ----------------------------------------------------------
    async def create_interaction(self, interaction: Interaction) -> Interaction:
        def _insert() -> Interaction:
            record = InteractionRecord(
                lead_id=interaction.lead_id,
                type=interaction.type.value,
                subject=interaction.subject,
                description=interaction.description,
                metadata_json=json.dumps(interaction.metadata, ensure_ascii=False),
                created_at=interaction.created_at,
            )
            with Session(self._engine) as session:
                session.add(record)
                session.commit()
                session.refresh(record)
                return _interaction(record)

        return await self._run(_insert)

    async def list_interactions(self, lead_id: int) -> List[Interaction]:
        def _query() -> List[Interaction]:
            with Session(self._engine) as session:
                records = session.exec(
                    select(InteractionRecord)
                    .where(InteractionRecord.lead_id == lead_id)
                    .order_by(InteractionRecord.created_at.desc(), InteractionRecord.id.desc())
                ).all()
                return [_interaction(record) for record in records]

        return await self._run(_query)

    # Conversation context --------------------------------------------------
    async def get_context_by_session(self, session_id: str, limit: int = 50) -> List[ConversationTurn]:
        if limit <= 0:
            return []

        def _query() -> List[ConversationTurn]:
            with Session(self._engine) as session:
                records = session.exec(
                    select(ConversationTurnRecord)
                    .where(ConversationTurnRecord.session_id == session_id)
                    .order_by(ConversationTurnRecord.created_at.desc(), ConversationTurnRecord.id.desc())
                    .limit(limit)
                ).all()
                return [_turn(record) for record in reversed(records)]

        return await self._run(_query)

    async def save_context(self, session_id: str, phone: str, message: str, role: TurnRole) -> ConversationTurn:
        def _insert() -> ConversationTurn:
            record = ConversationTurnRecord(
                session_id=session_id,
                phone=normalize_phone(phone),
                role=TurnRole(role).value,
                message=message,
            )
            with Session(self._engine) as session:
                session.add(record)
                session.commit()
                session.refresh(record)
                return _turn(record)

        return await self._run(_insert)

    # Properties ----------------------------------------------------------
    async def get_property_by_id(self, property_id: int) -> Optional[Property]:
        def _query() -> Optional[Property]:
            with Session(self._engine) as session:
                record = session.get(PropertyRecord, property_id)
                return _property(record) if record else None

        return await self._run(_query)

    async def list_properties(self, filters: PropertyFilters) -> List[Property]:
        def _query() -> List[Property]:
            stmt = select(PropertyRecord)
            if filters.status:
                stmt = stmt.where(PropertyRecord.status == filters.status.value)
            if filters.transaction_type and filters.transaction_type != TransactionInterest.BOTH:
                stmt = stmt.where(
                    or_(
                        PropertyRecord.transaction_type == filters.transaction_type.value,
                        PropertyRecord.transaction_type == TransactionInterest.BOTH.value,
                    )
                )
            if filters.property_type:
                stmt = stmt.where(func.lower(PropertyRecord.property_type) == filters.property_type.lower())
            if filters.neighborhood:
                stmt = stmt.where(PropertyRecord.neighborhood.ilike(f"%{filters.neighborhood}%"))
            if filters.min_bedrooms is not None:
                stmt = stmt.where(PropertyRecord.bedrooms >= filters.min_bedrooms)
            stmt = stmt.order_by(PropertyRecord.created_at.desc(), PropertyRecord.id.desc())
            with Session(self._engine) as session:
                records = session.exec(stmt).all()
                return [_property(record) for record in records]

        candidates = await self._run(_query)
        # price column depends on the transaction type
        return [prop for prop in candidates if price_in_range(prop, filters)]

    async def create_property(self, prop: Property) -> Property:
        def _insert() -> Property:
            record = PropertyRecord(**_column_values(prop.model_dump(exclude={"id"})))
            with Session(self._engine) as session:
                session.add(record)
                session.commit()
                session.refresh(record)
                return _property(record)

        return await self._run(_insert)


def build_store(database_url: Optional[str]) -> ConversationStore:
    if database_url:
        return SqlConversationStore(database_url)
    logger.warning("store.in_memory DATABASE_URL not set, conversation history will not survive restarts")
    return InMemoryConversationStore()

