import asyncio
import threading

import pytest
from pydantic import ValidationError

from medcheck.config import Settings
from medcheck.exceptions import DuplicateLoginError, StorageUnavailableError
from medcheck.schemas.drug_interaction import InteractionCheckCreate, InteractionFinding
from medcheck.schemas.patient import PatientCreate
from medcheck.schemas.user import UserCreate
from medcheck.services.storage import MemoryBackend, SqlBackend, Storage

from conftest import FlakyBackend


class BrokenBackend:
    """Durable backend whose every call fails like a dropped connection."""

    def __getattr__(self, name):
        async def fail(*args, **kwargs):
            raise ConnectionError(f"{name}: connection refused")
        return fail

    async def dispose(self):
        pass


def make_patient(name="Jane Doe", **extra):
    return PatientCreate(name=name, dob="1985-06-15", **extra)


@pytest.fixture
async def sql_storage(tmp_path):
    durable = await SqlBackend.connect(f"sqlite+aiosqlite:///{tmp_path / 'medcheck.db'}")
    storage = Storage(durable=durable)
    yield storage
    await storage.close()


@pytest.fixture(params=["memory", "sql"])
async def any_storage(request, tmp_path):
    if request.param == "memory":
        yield Storage()
        return
    durable = await SqlBackend.connect(f"sqlite+aiosqlite:///{tmp_path / 'any.db'}")
    storage = Storage(durable=durable)
    yield storage
    await storage.close()


async def test_patient_ids_strictly_increase(any_storage):
    ids = [(await any_storage.create_patient(make_patient(f"Patient {i}"))).id for i in range(5)]
    assert ids == sorted(set(ids))
    assert ids[0] == 1


async def test_create_patient_is_not_idempotent(any_storage):
    first = await any_storage.create_patient(make_patient())
    second = await any_storage.create_patient(make_patient())
    assert first.id != second.id
    assert len(await any_storage.list_patients()) == 2


async def test_patient_roundtrip_keeps_fields(any_storage):
    created = await any_storage.create_patient(
        make_patient(
            medical_history=[{"condition": "Asthma", "diagnosed_at": "2015-03-02"}],
            medications=["Albuterol", "Ventolin"],
            ehr_data={"vitalSigns": {"heartRate": 72}},
        )
    )
    assert created.created_at is not None

    fetched = await any_storage.get_patient_by_id(created.id)
    assert fetched.name == "Jane Doe"
    assert fetched.medical_history[0].condition == "Asthma"
    assert fetched.medications == ["Albuterol", "Ventolin"]
    assert fetched.ehr_data == {"vitalSigns": {"heartRate": 72}}
    assert await any_storage.get_patient_by_id(999) is None


async def test_list_patients_in_insertion_order(any_storage):
    for name in ["A", "B", "C"]:
        await any_storage.create_patient(make_patient(name))
    assert [p.name for p in await any_storage.list_patients()] == ["A", "B", "C"]


async def test_account_lookup_and_duplicate(any_storage):
    created = await any_storage.create_account(UserCreate(username="alice", password="$2b$hash"))
    assert created.role == "doctor"

    by_login = await any_storage.get_account_by_login("alice")
    assert by_login.username == "alice"
    assert by_login.password == "$2b$hash"
    assert (await any_storage.get_account_by_id(created.id)).username == "alice"
    assert await any_storage.get_account_by_login("bob") is None

    with pytest.raises(DuplicateLoginError):
        await any_storage.create_account(UserCreate(username="alice", password="other"))
    assert (await any_storage.get_account_by_login("alice")).password == "$2b$hash"


async def test_interaction_checks_filtered_by_patient(any_storage):
    finding = InteractionFinding(drug1="Warfarin", drug2="Aspirin", risk="high", description="bleeding")
    first = await any_storage.create_interaction_check(
        InteractionCheckCreate(patient_id=1, medications=["Warfarin", "Aspirin"], interactions_detected=[finding])
    )
    await any_storage.create_interaction_check(InteractionCheckCreate(patient_id=2, medications=["A", "B"]))
    await any_storage.create_interaction_check(InteractionCheckCreate(medications=["C"]))
    third = await any_storage.create_interaction_check(InteractionCheckCreate(patient_id=1, medications=["D", "E"]))

    checks = await any_storage.list_interaction_checks_for_patient(1)
    assert [c.id for c in checks] == [first.id, third.id]
    assert checks[0].interactions_detected[0].drug2 == "Aspirin"
    assert checks[0].checked_at is not None
    assert [c.medications for c in await any_storage.list_interaction_checks_for_patient(0)] == [["C"]]


async def test_missing_required_field_fails_loudly():
    storage = Storage()
    with pytest.raises(ValidationError):
        await storage.create_patient({"name": "No DOB"})
    with pytest.raises(ValidationError):
        await storage.create_account({"username": "nopass"})


async def test_accepts_camel_case_dicts():
    storage = Storage()
    check = await storage.create_interaction_check({"patientId": 3, "medications": ["A"]})
    assert check.patient_id == 3


async def test_returned_records_are_copies():
    storage = Storage()
    created = await storage.create_patient(make_patient(medications=["Metformin"]))
    created.medications.append("Tampered")
    assert (await storage.get_patient_by_id(created.id)).medications == ["Metformin"]


async def test_unreachable_database_falls_back_to_memory(tmp_path):
    settings = Settings(
        _env_file=None,
        database_url=f"sqlite:///{tmp_path / 'missing' / 'dir' / 'db.sqlite'}",
    )
    storage = await Storage.connect(settings)
    assert storage.durable is None
    assert storage.backend_name == "memory"

    created = await storage.create_account(UserCreate(username="alice", password="hash"))
    assert (await storage.get_account_by_login("alice")).id == created.id


async def test_runtime_failure_served_from_memory():
    storage = Storage(durable=BrokenBackend())
    created = await storage.create_account(UserCreate(username="alice", password="hash"))
    assert created.id == 1
    assert (await storage.get_account_by_id(1)).username == "alice"
    assert storage.status() == {"backend": "database", "fallback_enabled": True, "fallback_calls": 2}


async def test_runtime_failure_raises_when_fallback_disabled():
    storage = Storage(durable=BrokenBackend(), fallback=False)
    with pytest.raises(StorageUnavailableError) as excinfo:
        await storage.list_patients()
    assert excinfo.value.operation == "list_patients"
    assert storage.fallback_calls == 0


async def test_duplicate_login_from_database_is_not_masked_by_fallback(sql_storage):
    await sql_storage.create_account(UserCreate(username="alice", password="hash"))
    with pytest.raises(DuplicateLoginError):
        await sql_storage.create_account(UserCreate(username="alice", password="hash2"))
    assert sql_storage.fallback_calls == 0
    assert await sql_storage.memory.get_account_by_login("alice") is None


async def test_accounts_carry_the_backend_that_issued_them(tmp_path):
    durable = FlakyBackend(await SqlBackend.connect(f"sqlite+aiosqlite:///{tmp_path / 'flaky.db'}"))
    storage = Storage(durable=durable)
    admin = await storage.create_account(UserCreate(username="admin", password="hash"))
    assert (admin.id, admin.backend) == (1, "database")

    durable.down = True
    mallory = await storage.create_account(UserCreate(username="mallory", password="hash"))
    assert (mallory.id, mallory.backend) == (1, "memory")
    assert await storage.get_account_for_session(admin.id, "database") is None
    assert (await storage.get_account_for_session(mallory.id, "memory")).username == "mallory"

    durable.down = False
    assert (await storage.get_account_for_session(mallory.id, "memory")).username == "mallory"
    restored = await storage.get_account_for_session(admin.id, "database")
    assert (restored.username, restored.backend) == ("admin", "database")
    await storage.close()


async def test_database_session_without_database_resolves_to_nobody():
    storage = Storage()
    await storage.create_account(UserCreate(username="alice", password="hash"))
    assert await storage.get_account_for_session(1, "database") is None
    assert (await storage.get_account_for_session(1, "memory")).username == "alice"


async def test_session_lookup_raises_when_fallback_disabled():
    storage = Storage(durable=BrokenBackend(), fallback=False)
    with pytest.raises(StorageUnavailableError):
        await storage.get_account_for_session(1, "database")


def test_memory_ids_unique_across_threads():
    backend = MemoryBackend()
    ids = []
    ids_lock = threading.Lock()

    def worker():
        for _ in range(25):
            patient = asyncio.run(backend.create_patient(make_patient()))
            with ids_lock:
                ids.append(patient.id)

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert sorted(ids) == list(range(1, 201))
