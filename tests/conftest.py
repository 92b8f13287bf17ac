import itertools
from datetime import datetime, timedelta
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from main import app
from drivetheory.core.database import Base, get_db
from drivetheory.core.exceptions import PaymentGatewayError
from drivetheory.core.security import create_access_token
from drivetheory.features.payment.journey import new_journey
from drivetheory.features.payment.model import Payment
from drivetheory.features.question.model import Question
from drivetheory.features.user.model import User
from drivetheory.features.user.schema import UserCreate
from drivetheory.features.user.service import UserService
from drivetheory.models.enums import PackageType, PaymentStatus, UserRole
from drivetheory.services.flutterwave import get_payment_gateway


class FakeGateway:
    """Stands in for FlutterwaveClient; verification results are set per tx_ref"""

    def __init__(self):
        self.initiated = []
        self.verified = []
        self.results = {}
        self.fail_initiate = False

    def initiate_payment(self, amount, user, package_type, tx_ref, redirect_url, payment_method="mobilemoney"):
        if self.fail_initiate:
            raise PaymentGatewayError("Gateway unavailable")
        self.initiated.append({"amount": amount, "tx_ref": tx_ref, "payment_method": payment_method})
        return {"link": f"https://checkout.test/{tx_ref}", "tx_ref": tx_ref}

    def verify_payment(self, tx_ref):
        self.verified.append(tx_ref)
        return self.results.get(tx_ref, {"status": "pending"})

    def succeed(self, tx_ref, amount, currency="RWF"):
        self.results[tx_ref] = {
            "status": "successful", "amount": amount, "currency": currency,
            "id": 4242, "payment_type": "mobilemoneyrw",
        }

    def fail(self, tx_ref, reason="Insufficient funds"):
        self.results[tx_ref] = {"status": "failed", "processor_response": reason}


@pytest.fixture
def db():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    session = sessionmaker(bind=engine, autocommit=False, autoflush=False)()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def client(db, gateway):
    app.dependency_overrides[get_db] = lambda: db
    app.dependency_overrides[get_payment_gateway] = lambda: gateway
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


def auth_headers(user: User) -> dict:
    token = create_access_token({"sub": str(user.id), "role": user.role.value})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def user(db):
    return UserService.create_user(db, UserCreate(username="learner", password="secret123"))


@pytest.fixture
def other_user(db):
    return UserService.create_user(db, UserCreate(username="someone", password="secret123"))


@pytest.fixture
def admin(db):
    return UserService.create_user(db, UserCreate(username="boss", password="secret123"), role=UserRole.ADMIN)


@pytest.fixture
def headers(user):
    return auth_headers(user)


@pytest.fixture
def admin_headers(admin):
    return auth_headers(admin)


def make_questions(db, count, categories=("signs", "rules")):
    questions = [
        Question(
            category=categories[i % len(categories)],
            question=f"Question {i}?",
            options=["A", "B", "C", "D"],
            correct_answer=i % 4,
        )
        for i in range(count)
    ]
    db.add_all(questions)
    db.commit()
    return questions


@pytest.fixture
def questions(db):
    return make_questions(db, 25)


_tx_counter = itertools.count(1)


def make_payment(db, user, status=PaymentStatus.COMPLETED, valid_until=None, package_type=PackageType.DAILY):
    now = datetime.now()
    payment = Payment(
        user_id=user.id,
        amount=800,
        package_type=package_type,
        status=status,
        valid_until=valid_until or now + timedelta(days=1),
        tx_ref=f"DRV_test_{user.id}_{next(_tx_counter)}",
        meta={"journey": new_journey(now)},
    )
    db.add(payment)
    db.commit()
    db.refresh(payment)
    return payment


@pytest.fixture
def paid_user(db, user):
    make_payment(db, user)
    return user
