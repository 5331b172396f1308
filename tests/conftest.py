from typing import Dict, List, Optional

import pytest
from fastapi.testclient import TestClient
from sqlmodel import Session, SQLModel, create_engine

from crm.main import app
from crm.database import get_session
from crm.auth.google import get_google_client
from crm.auth.schemas import GoogleAccount
from crm.auth.service import create_user_token
from crm.ai.service import AIServiceError, get_chat_client
from crm.mail import EmailDeliveryError, OutgoingEmail, get_mailer
from crm.storage import FileStorage, get_storage
from crm.users.models import User, UserRole
from crm.users import service as user_service
from crm.leads.models import Lead

PASSWORD = "password123"

class FakeMailer:
    """Records outgoing mail instead of talking to an SMTP server."""

    def __init__(self):
        self.sent: List[OutgoingEmail] = []
        self.fail = False

    def send(self, email: OutgoingEmail) -> None:
        if self.fail:
            raise EmailDeliveryError("SMTP unavailable")
        self.sent.append(email)

class FakeGoogle:
    def __init__(self):
        self.accounts: Dict[str, GoogleAccount] = {}

    def fetch_userinfo(self, token: str) -> Optional[GoogleAccount]:
        return self.accounts.get(token)

class FakeChat:
    def __init__(self):
        self.reply = "Hello from the assistant"
        self.fail = False
        self.messages: List[str] = []

    def chat(self, message: str) -> str:
        self.messages.append(message)
        if self.fail:
            raise AIServiceError("upstream down")
        return self.reply

@pytest.fixture(name="engine")
def engine_fixture(tmp_path):
    # File backed so the dashboard's worker threads see the same data
    engine = create_engine(f"sqlite:///{tmp_path / 'test.db'}", connect_args={"check_same_thread": False})
    SQLModel.metadata.create_all(engine)
    yield engine
    engine.dispose()

@pytest.fixture(name="session")
def session_fixture(engine):
    with Session(engine) as session:
        yield session

@pytest.fixture(name="mailer")
def mailer_fixture():
    return FakeMailer()

@pytest.fixture(name="google")
def google_fixture():
    return FakeGoogle()

@pytest.fixture(name="chat")
def chat_fixture():
    return FakeChat()

@pytest.fixture(name="storage")
def storage_fixture(tmp_path):
    return FileStorage(upload_dir=str(tmp_path / "uploads"), base_url="http://testserver")

@pytest.fixture(name="client")
def client_fixture(session: Session, mailer: FakeMailer, google: FakeGoogle, chat: FakeChat, storage: FileStorage):
    def get_session_override():
        return session

    app.dependency_overrides[get_session] = get_session_override
    app.dependency_overrides[get_mailer] = lambda: mailer
    app.dependency_overrides[get_google_client] = lambda: google
    app.dependency_overrides[get_chat_client] = lambda: chat
    app.dependency_overrides[get_storage] = lambda: storage

    client = TestClient(app)
    yield client
    app.dependency_overrides.clear()

def make_user(session: Session, email: str, role: UserRole = UserRole.SALES, name: Optional[str] = None, **profile) -> User:
    return user_service.create_user(
        session,
        name=name or email.split("@")[0].title(),
        email=email,
        password=PASSWORD,
        role=role,
        **profile,
    )

def auth_headers(user: User) -> Dict[str, str]:
    return {"Authorization": f"Bearer {create_user_token(user)}"}

def make_lead(session: Session, creator: User, assignees: Optional[List[User]] = None, **fields) -> Lead:
    fields.setdefault("title", "Website redesign")
    lead = Lead(created_by_id=creator.id, **fields)
    lead.assigned_users = list(assignees or [])
    session.add(lead)
    session.commit()
    session.refresh(lead)
    return lead

@pytest.fixture(name="admin")
def admin_fixture(session: Session) -> User:
    return make_user(session, "admin@example.com", UserRole.ADMIN, name="Ada Admin")

@pytest.fixture(name="sales")
def sales_fixture(session: Session) -> User:
    return make_user(session, "sam@example.com", UserRole.SALES, name="Sam Sales")

@pytest.fixture(name="other_sales")
def other_sales_fixture(session: Session) -> User:
    return make_user(session, "olive@example.com", UserRole.SALES, name="Olive Other")

@pytest.fixture(name="viewer")
def viewer_fixture(session: Session) -> User:
    return make_user(session, "vic@example.com", UserRole.VIEWER, name="Vic Viewer")
