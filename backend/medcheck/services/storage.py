"""
Storage: the single owner of accounts, patients and interaction checks.

Two interchangeable backends sit behind one `Storage` object:

- `SqlBackend`: async SQLAlchemy over DATABASE_URL (Postgres in production,
  SQLite in tests).
- `MemoryBackend`: plain dicts with per-table id counters starting at 1.

`Storage.connect()` tries the database once at startup; if it is not
configured or not reachable, every call goes to memory. When the database is
up, each call tries it first. On failure the call is logged and, with
`storage_fallback` enabled, served from memory instead. Nothing is written
back to the database afterwards, so the two backends can diverge while the
database is flaky. `status()` reports how many calls were served that way.
With `storage_fallback` disabled the failure raises StorageUnavailableError.

Account records carry the backend that served them, and sessions resolve
only against that backend, since ids from the two backends overlap.
"""

import logging
import threading
from typing import Any, Optional, Union

from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncEngine

from medcheck.config import Settings
from medcheck.database import Base, make_engine, make_sessionmaker
from medcheck.exceptions import DuplicateLoginError, StorageError, StorageUnavailableError
from medcheck.models.drug_interaction import DrugInteraction
from medcheck.models.patient import Patient
from medcheck.models.user import User
from medcheck.schemas.drug_interaction import InteractionCheckCreate, InteractionCheckRecord
from medcheck.schemas.patient import PatientCreate, PatientRecord
from medcheck.schemas.user import DEFAULT_ROLE, UserCreate, UserRecord
from medcheck.services.session_store import MemorySessionStore
from medcheck.utils import utcnow

logger = logging.getLogger(__name__)

BACKEND_DATABASE = "database"
BACKEND_MEMORY = "memory"


def _coerce(model: type[BaseModel], data: Union[BaseModel, dict]) -> Any:
    """Validate create payloads so a missing field fails loudly instead of defaulting."""
    if isinstance(data, model):
        return data
    if isinstance(data, BaseModel):
        data = data.model_dump()
    return model.model_validate(data)


class MemoryBackend:
    """In-process maps. Every record handed out is a copy."""

    def __init__(self):
        self._users: dict[int, UserRecord] = {}
        self._patients: dict[int, PatientRecord] = {}
        self._checks: dict[int, InteractionCheckRecord] = {}
        self._next_ids = {"users": 1, "patients": 1, "drug_interactions": 1}
        self._lock = threading.Lock()

    def _take_id(self, table: str) -> int:
        # caller holds self._lock
        new_id = self._next_ids[table]
        self._next_ids[table] = new_id + 1
        return new_id

    async def get_account_by_id(self, account_id: int) -> Optional[UserRecord]:
        with self._lock:
            user = self._users.get(account_id)
            return user.model_copy(deep=True) if user else None

    async def get_account_by_login(self, username: str) -> Optional[UserRecord]:
        with self._lock:
            for user in self._users.values():
                if user.username == username:
                    return user.model_copy(deep=True)
        return None

    async def create_account(self, data: UserCreate) -> UserRecord:
        with self._lock:
            if any(u.username == data.username for u in self._users.values()):
                raise DuplicateLoginError(data.username)
            user = UserRecord(
                id=self._take_id("users"),
                username=data.username,
                password=data.password,
                role=DEFAULT_ROLE,
            )
            self._users[user.id] = user
            return user.model_copy(deep=True)

    async def list_patients(self) -> list[PatientRecord]:
        with self._lock:
            return [p.model_copy(deep=True) for p in self._patients.values()]

    async def get_patient_by_id(self, patient_id: int) -> Optional[PatientRecord]:
        with self._lock:
            patient = self._patients.get(patient_id)
            return patient.model_copy(deep=True) if patient else None

    async def create_patient(self, data: PatientCreate) -> PatientRecord:
        with self._lock:
            patient = PatientRecord(
                id=self._take_id("patients"),
                created_at=utcnow(),
                **data.model_dump(),
            )
            self._patients[patient.id] = patient
            return patient.model_copy(deep=True)

    async def create_interaction_check(self, data: InteractionCheckCreate) -> InteractionCheckRecord:
        with self._lock:
            check = InteractionCheckRecord(
                id=self._take_id("drug_interactions"),
                checked_at=utcnow(),
                **data.model_dump(),
            )
            self._checks[check.id] = check
            return check.model_copy(deep=True)

    async def list_interaction_checks_for_patient(self, patient_id: int) -> list[InteractionCheckRecord]:
        with self._lock:
            return [
                c.model_copy(deep=True)
                for c in self._checks.values()
                if c.patient_id == patient_id
            ]


class SqlBackend:
    def __init__(self, engine: AsyncEngine):
        self.engine = engine
        self._sessionmaker = make_sessionmaker(engine)

    @classmethod
    async def connect(cls, url: str) -> "SqlBackend":
        """Open the engine and create missing tables. Raises if unreachable."""
        engine = make_engine(url)
        try:
            async with engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
        except Exception:
            await engine.dispose()
            raise
        return cls(engine)

    async def dispose(self) -> None:
        await self.engine.dispose()

    async def get_account_by_id(self, account_id: int) -> Optional[UserRecord]:
        async with self._sessionmaker() as session:
            user = await session.get(User, account_id)
            return UserRecord.model_validate(user) if user else None

    async def get_account_by_login(self, username: str) -> Optional[UserRecord]:
        async with self._sessionmaker() as session:
            user = await session.scalar(select(User).where(User.username == username))
            return UserRecord.model_validate(user) if user else None

    async def create_account(self, data: UserCreate) -> UserRecord:
        async with self._sessionmaker() as session:
            user = User(username=data.username, password=data.password, role=DEFAULT_ROLE)
            session.add(user)
            try:
                await session.commit()
            except IntegrityError as exc:
                await session.rollback()
                raise DuplicateLoginError(data.username) from exc
            return UserRecord.model_validate(user)

    async def list_patients(self) -> list[PatientRecord]:
        async with self._sessionmaker() as session:
            result = await session.execute(select(Patient).order_by(Patient.id))
            return [PatientRecord.model_validate(p) for p in result.scalars().all()]

    async def get_patient_by_id(self, patient_id: int) -> Optional[PatientRecord]:
        async with self._sessionmaker() as session:
            patient = await session.get(Patient, patient_id)
            return PatientRecord.model_validate(patient) if patient else None

    async def create_patient(self, data: PatientCreate) -> PatientRecord:
        async with self._sessionmaker() as session:
            patient = Patient(
                name=data.name,
                dob=data.dob,
                medical_history=[entry.model_dump() for entry in data.medical_history],
                medications=list(data.medications),
                ehr_data=data.ehr_data,
            )
            session.add(patient)
            await session.commit()
            # created_at comes from the server default
            await session.refresh(patient)
            return PatientRecord.model_validate(patient)

    async def create_interaction_check(self, data: InteractionCheckCreate) -> InteractionCheckRecord:
        async with self._sessionmaker() as session:
            check = DrugInteraction(
                patient_id=data.patient_id,
                medications=list(data.medications),
                interactions_detected=[f.model_dump() for f in data.interactions_detected],
            )
            session.add(check)
            await session.commit()
            await session.refresh(check)
            return InteractionCheckRecord.model_validate(check)

    async def list_interaction_checks_for_patient(self, patient_id: int) -> list[InteractionCheckRecord]:
        async with self._sessionmaker() as session:
            result = await session.execute(
                select(DrugInteraction)
                .where(DrugInteraction.patient_id == patient_id)
                .order_by(DrugInteraction.id)
            )
            return [InteractionCheckRecord.model_validate(c) for c in result.scalars().all()]


class Storage:
    def __init__(
        self,
        durable: Optional[SqlBackend] = None,
        memory: Optional[MemoryBackend] = None,
        session_store: Optional[MemorySessionStore] = None,
        fallback: bool = True,
    ):
        self.durable = durable
        self.memory = memory or MemoryBackend()
        self.session_store = session_store or MemorySessionStore()
        self.fallback = fallback
        self.fallback_calls = 0

    @classmethod
    async def connect(cls, settings: Settings) -> "Storage":
        session_store = MemorySessionStore(
            ttl_seconds=settings.session_ttl_seconds,
            check_period_seconds=settings.session_check_period_seconds,
        )
        durable = None
        if settings.database_url:
            try:
                durable = await SqlBackend.connect(settings.database_url)
                logger.info("Connected to database backend")
            except Exception as exc:
                logger.warning("Database unavailable, using in-memory storage: %s", exc)
        else:
            logger.info("DATABASE_URL not set, using in-memory storage")
        return cls(durable=durable, session_store=session_store, fallback=settings.storage_fallback)

    @property
    def backend_name(self) -> str:
        return BACKEND_DATABASE if self.durable is not None else BACKEND_MEMORY

    def status(self) -> dict:
        return {
            "backend": self.backend_name,
            "fallback_enabled": self.fallback,
            "fallback_calls": self.fallback_calls,
        }

    async def close(self) -> None:
        if self.durable is not None:
            await self.durable.dispose()

    async def _dispatch(self, operation: str, *args) -> tuple[Any, str]:
        """Run `operation` and report which backend served it."""
        if self.durable is not None:
            try:
                return await getattr(self.durable, operation)(*args), BACKEND_DATABASE
            except StorageError:
                raise
            except Exception as exc:
                if not self.fallback:
                    logger.error("Database error in %s: %s", operation, exc)
                    raise StorageUnavailableError(operation, exc) from exc
                self.fallback_calls += 1
                logger.warning("Database error in %s, serving from memory: %s", operation, exc)
        return await getattr(self.memory, operation)(*args), BACKEND_MEMORY

    async def _call(self, operation: str, *args):
        result, _ = await self._dispatch(operation, *args)
        return result

    async def _account_call(self, operation: str, *args) -> Optional[UserRecord]:
        user, source = await self._dispatch(operation, *args)
        return user.model_copy(update={"backend": source}) if user else None

    async def get_account_by_id(self, account_id: int) -> Optional[UserRecord]:
        return await self._account_call("get_account_by_id", account_id)

    async def get_account_by_login(self, username: str) -> Optional[UserRecord]:
        return await self._account_call("get_account_by_login", username)

    async def create_account(self, data: Union[UserCreate, dict]) -> UserRecord:
        return await self._account_call("create_account", _coerce(UserCreate, data))

    async def get_account_for_session(self, account_id: int, backend: str) -> Optional[UserRecord]:
        """Resolve a session's account against the backend that issued it.

        Ids from the two backends overlap after a fallback, so a session is
        never resolved against the other backend. While the database is down,
        database-issued sessions resolve to None.
        """
        if backend == BACKEND_MEMORY:
            user = await self.memory.get_account_by_id(account_id)
        elif self.durable is None:
            return None
        else:
            try:
                user = await self.durable.get_account_by_id(account_id)
            except Exception as exc:
                if not self.fallback:
                    logger.error("Database error in get_account_for_session: %s", exc)
                    raise StorageUnavailableError("get_account_for_session", exc) from exc
                self.fallback_calls += 1
                logger.warning("Database error resolving session for account %s: %s", account_id, exc)
                return None
        return user.model_copy(update={"backend": backend}) if user else None

    async def list_patients(self) -> list[PatientRecord]:
        return await self._call("list_patients")

    async def get_patient_by_id(self, patient_id: int) -> Optional[PatientRecord]:
        return await self._call("get_patient_by_id", patient_id)

    async def create_patient(self, data: Union[PatientCreate, dict]) -> PatientRecord:
        return await self._call("create_patient", _coerce(PatientCreate, data))

    async def create_interaction_check(
        self, data: Union[InteractionCheckCreate, dict]
    ) -> InteractionCheckRecord:
        return await self._call("create_interaction_check", _coerce(InteractionCheckCreate, data))

    async def list_interaction_checks_for_patient(self, patient_id: int) -> list[InteractionCheckRecord]:
        return await self._call("list_interaction_checks_for_patient", patient_id)
