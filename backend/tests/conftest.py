"""
Pytest fixtures for doccredits backend tests.

Provides test database setup, user factories, and test client.
"""

import itertools
from datetime import datetime

import pytest
from doccredits import create_app
from doccredits.extensions import db
from doccredits.models import User, CreditTransaction
from doccredits.models.credits import TRANSACTION_CREDIT_PURCHASE
from doccredits.models.users import ROLE_PATIENT, ROLE_DOCTOR


# Ledger rows used to seed balances are dated well before any test month
SEED_DATE = datetime(2000, 1, 1)


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def make_user(db_session):
    """
    Factory for users with a ledger-consistent starting balance.

    A non-zero balance is backed by a CREDIT_PURCHASE row dated SEED_DATE,
    so the balance audit stays clean and this month's allocation gate is open.
    """
    counter = itertools.count(1)

    def _make(role=ROLE_PATIENT, credits=0, external_id=None):
        n = next(counter)
        user = User(
            external_id=external_id or f"user_ext_{n}",
            name=f"Test User {n}",
            email=f"user{n}@example.com",
            role=role,
            credits=credits,
        )
        db_session.add(user)
        db_session.flush()
        if credits:
            db_session.add(CreditTransaction(
                user_id=user.id,
                transaction_type=TRANSACTION_CREDIT_PURCHASE,
                amount=credits,
                package_id="standard",
                allocation_period="2000-01",
                created_at=SEED_DATE,
            ))
        db_session.commit()
        return user

    return _make


@pytest.fixture(scope='function')
def patient(make_user):
    return make_user(role=ROLE_PATIENT, credits=5, external_id="patient_ext")


@pytest.fixture(scope='function')
def doctor(make_user):
    return make_user(role=ROLE_DOCTOR, external_id="doctor_ext")


def principal_headers(external_id: str, plans: str | None = None, **extra) -> dict:
    """Helper to build the trusted auth-proxy headers for a principal."""
    headers = {'X-Auth-User-Id': external_id}
    if plans is not None:
        headers['X-Auth-Plans'] = plans
    if extra.get('email'):
        headers['X-Auth-Email'] = extra['email']
    if extra.get('first_name'):
        headers['X-Auth-First-Name'] = extra['first_name']
    if extra.get('last_name'):
        headers['X-Auth-Last-Name'] = extra['last_name']
    return headers
