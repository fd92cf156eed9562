"""
Pytest fixtures for QRPark backend tests.

Provides test database setup, seeded system roles and user factories.
"""

import pytest

from qrpark import create_app
from qrpark.extensions import db
from qrpark.models import BaseRole, User
from qrpark.permissions import DISTRIBUTOR_ROLE, RETAILER_ROLE, SUPER_ADMIN_ROLE
from qrpark.services import role_service


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
def system_roles(db_session):
    """Seed the system roles; returns {name: AccessRole}."""
    role_service.ensure_system_roles()
    return {
        name: role_service.get_role_by_name(name)
        for name in (SUPER_ADMIN_ROLE, DISTRIBUTOR_ROLE, RETAILER_ROLE)
    }


@pytest.fixture(scope='function')
def make_user(db_session):
    """Factory for users; bypasses the service so tests can build any shape."""
    counter = {'n': 0}

    def _make(name=None, base_role=BaseRole.RETAILER, role=None, is_active=True, email=None):
        counter['n'] += 1
        user = User(
            name=name or f"User {counter['n']}",
            email=email or f"user{counter['n']}@example.com",
            base_role=base_role,
            access_role_id=role.id if role is not None else None,
            is_active=is_active,
        )
        db_session.add(user)
        db_session.commit()
        return user

    return _make


@pytest.fixture(scope='function')
def admin(make_user, system_roles):
    """Elevated user bound to the Super Admin role."""
    return make_user(
        name="Admin User",
        email="admin@admin.com",
        base_role=BaseRole.SUPER_ADMIN,
        role=system_roles[SUPER_ADMIN_ROLE],
    )


@pytest.fixture(scope='function')
def retailer(make_user, system_roles):
    """Retailer bound to the Standard Retailer role."""
    return make_user(
        name="Corner Shop",
        email="retailer@example.com",
        base_role=BaseRole.RETAILER,
        role=system_roles[RETAILER_ROLE],
    )


@pytest.fixture(scope='function')
def orphan(make_user):
    """Elevated user with no access role."""
    return make_user(name="Jane (Ops)", email="jane@example.com", base_role=BaseRole.SUPER_ADMIN)
