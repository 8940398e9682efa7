"""
Thesis Supervision Tracker - Test Configuration and Fixtures
"""
import os
from typing import AsyncGenerator, Callable, Optional
import pytest
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from faker import Faker

# Set testing environment
os.environ['TESTING'] = 'true'
os.environ['ENVIRONMENT'] = 'test'
os.environ['DATABASE_URL'] = 'sqlite+aiosqlite:///./test.db'
os.environ['SECRET_KEY'] = 'test-secret-key-for-testing-only'
os.environ['JWT_SECRET_KEY'] = 'test-jwt-secret-key-for-testing'
os.environ['TIMEZONE'] = 'UTC'
os.environ['CACHE_ENABLED'] = 'false'
os.environ['LOG_FILE'] = ''

from app.main import app
from app.core.database import Base, get_db
from app.models.user import User, UserRole
from app.models.thesis import Thesis
from app.models.milestone import Milestone, MilestoneStatus, MilestoneTemplate
from tests.factories import auth_headers_for

fake = Faker()

# Test database setup
TEST_DATABASE_URL = 'sqlite+aiosqlite:///./test.db'
test_engine = create_async_engine(TEST_DATABASE_URL, echo=False)
TestSessionLocal = async_sessionmaker(
    bind=test_engine,
    class_=AsyncSession,
    expire_on_commit=False
)


@pytest.fixture(scope='function')
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """Create a fresh database session for each test"""
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with TestSessionLocal() as session:
        yield session
        await session.rollback()

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture
def session_factory(db_session: AsyncSession) -> async_sessionmaker:
    """Independent sessions on the same test database, one per simulated request"""
    return TestSessionLocal


@pytest.fixture
async def client(db_session: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """Create test client with database override"""
    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url='http://test') as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
def make_user(db_session: AsyncSession) -> Callable:
    """Factory for committed users"""
    async def _make(role: UserRole = UserRole.STUDENT, full_name: Optional[str] = None,
                    is_active: bool = True) -> User:
        user = User(
            email=fake.unique.email(),
            full_name=full_name or fake.name(),
            identity_number=fake.numerify('##########'),
            role=role,
            is_active=is_active,
        )
        db_session.add(user)
        await db_session.commit()
        await db_session.refresh(user)
        return user
    return _make


@pytest.fixture
async def student(make_user) -> User:
    return await make_user(UserRole.STUDENT, full_name='Budi Santoso')


@pytest.fixture
async def other_student(make_user) -> User:
    return await make_user(UserRole.STUDENT, full_name='Siti Rahma')


@pytest.fixture
async def supervisor(make_user) -> User:
    return await make_user(UserRole.LECTURER, full_name='Dr. Andi Wijaya')


@pytest.fixture
async def second_supervisor(make_user) -> User:
    return await make_user(UserRole.LECTURER, full_name='Dr. Rina Kusuma')


@pytest.fixture
async def outsider_lecturer(make_user) -> User:
    return await make_user(UserRole.LECTURER, full_name='Dr. Outside')


@pytest.fixture
def make_thesis(db_session: AsyncSession) -> Callable:
    async def _make(student: User, supervisor_1: Optional[User] = None,
                    supervisor_2: Optional[User] = None) -> Thesis:
        thesis = Thesis(
            student_id=student.id,
            title=fake.sentence(nb_words=8),
            supervisor_1_id=supervisor_1.id if supervisor_1 else None,
            supervisor_2_id=supervisor_2.id if supervisor_2 else None,
        )
        db_session.add(thesis)
        await db_session.commit()
        await db_session.refresh(thesis)
        return thesis
    return _make


@pytest.fixture
async def thesis(make_thesis, student, supervisor, second_supervisor) -> Thesis:
    """The student's thesis, co-supervised by both lecturers"""
    return await make_thesis(student, supervisor, second_supervisor)


@pytest.fixture
async def other_thesis(make_thesis, other_student, supervisor) -> Thesis:
    return await make_thesis(other_student, supervisor)


@pytest.fixture
async def milestones(db_session: AsyncSession, thesis: Thesis) -> list:
    """Five milestones: two completed, the rest at order 3, 4, 5"""
    rows = [
        (1, 'Proposal', MilestoneStatus.COMPLETED, 100),
        (2, 'Literature review', MilestoneStatus.COMPLETED, 100),
        (3, 'Methodology', MilestoneStatus.IN_PROGRESS, 50),
        (4, 'Implementation', MilestoneStatus.NOT_STARTED, 0),
        (5, 'Final defense', MilestoneStatus.NOT_STARTED, 0),
    ]
    items = []
    for order_index, title, status, progress in rows:
        milestone = Milestone(
            thesis_id=thesis.id,
            title=title,
            order_index=order_index,
            status=status,
            progress_percentage=progress,
        )
        db_session.add(milestone)
        items.append(milestone)
    await db_session.commit()
    return items


@pytest.fixture
async def templates(db_session: AsyncSession) -> list:
    rows = [
        (1, 'Proposal', 'proposal'),
        (2, 'Chapter 1-3', 'writing'),
        (3, 'Final defense', 'defense'),
    ]
    items = []
    for order_index, name, category in rows:
        template = MilestoneTemplate(name=name, category=category, order_index=order_index)
        db_session.add(template)
        items.append(template)
    inactive = MilestoneTemplate(name='Retired step', order_index=9, is_active=False)
    db_session.add(inactive)
    await db_session.commit()
    return items


@pytest.fixture
def student_headers(student: User) -> dict:
    return auth_headers_for(student)


@pytest.fixture
def supervisor_headers(supervisor: User) -> dict:
    return auth_headers_for(supervisor)
