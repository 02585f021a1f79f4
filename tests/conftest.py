# tests/conftest.py
"""
Shared fixtures: a fresh SQLite database per test (file based, so several
sessions can see each other's commits), seeded statuses, and a small
factory for routing configuration.
"""
import os
from datetime import datetime, timedelta

# Settings are read at import time
os.environ["DATABASE_URL"] = "sqlite://"
os.environ.setdefault("JWT_SECRET_KEY", "test-secret")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from campus_helpdesk.backend.app import models
from campus_helpdesk.backend.app.auth import Identity
from campus_helpdesk.backend.app.db import Base
from campus_helpdesk.backend.app.services.assignment import AssignmentResolver
from campus_helpdesk.backend.app.services.directory import DirectoryCache
from campus_helpdesk.backend.app.services.status_registry import StatusRegistry, seed_statuses
from campus_helpdesk.backend.app.services.tickets import TicketService

T0 = datetime(2026, 3, 2, 9, 0, 0)


class Clock:
    def __init__(self, now: datetime = T0):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class Factory:
    def __init__(self, db):
        self.db = db
        self._n = 0

    def _seq(self) -> int:
        self._n += 1
        return self._n

    def _save(self, obj):
        self.db.add(obj)
        self.db.commit()
        return obj

    def user(self, role="admin", is_active=True, slack_user_id=None, **kw):
        n = self._seq()
        return self._save(
            models.User(
                external_id=kw.pop("external_id", f"ext-{n}"),
                email=kw.pop("email", f"user{n}@campus.test"),
                full_name=kw.pop("full_name", f"User {n}"),
                role=role,
                is_active=is_active,
                slack_user_id=slack_user_id,
                **kw,
            )
        )

    def student(self, hostel=None):
        user = self.user(role="student")
        self._save(models.StudentProfile(user_id=user.id, hostel=hostel))
        return user

    def general_domain(self):
        return self.db.query(models.Domain).filter_by(name="General").one()

    def domain(self, name):
        return self._save(models.Domain(name=name, is_active=True))

    def scope(self, domain, name):
        return self._save(models.Scope(domain_id=domain.id, name=name, is_active=True))

    def category(self, domain=None, **kw):
        n = self._seq()
        domain = domain or self.general_domain()
        return self._save(
            models.Category(
                name=kw.pop("name", f"Category {n}"),
                slug=kw.pop("slug", f"category-{n}"),
                domain_id=domain.id,
                **kw,
            )
        )

    def subcategory(self, category, **kw):
        n = self._seq()
        return self._save(
            models.Subcategory(
                category_id=category.id,
                name=kw.pop("name", f"Subcategory {n}"),
                slug=kw.pop("slug", f"subcategory-{n}"),
                **kw,
            )
        )

    def sub_subcategory(self, subcategory, **kw):
        n = self._seq()
        return self._save(
            models.SubSubcategory(
                subcategory_id=subcategory.id,
                name=kw.pop("name", f"Item {n}"),
                slug=kw.pop("slug", f"item-{n}"),
                **kw,
            )
        )

    def field(self, subcategory, slug, **kw):
        return self._save(
            models.CategoryField(
                subcategory_id=subcategory.id,
                name=kw.pop("name", slug.title()),
                slug=slug,
                field_type=kw.pop("field_type", "text"),
                **kw,
            )
        )

    def assignment(self, category, user, is_primary=False, priority=0):
        return self._save(
            models.CategoryAssignment(
                category_id=category.id,
                user_id=user.id,
                is_primary=is_primary,
                priority=priority,
            )
        )

    def rule(self, domain, level, user, scope=None, notify_channel="slack"):
        return self._save(
            models.EscalationRule(
                domain_id=domain.id,
                scope_id=scope.id if scope else None,
                level=level,
                user_id=user.id,
                notify_channel=notify_channel,
            )
        )


def identity(user) -> Identity:
    return Identity(user_id=user.id, role=user.role)


@pytest.fixture
def engine(tmp_path):
    eng = create_engine(
        f"sqlite:///{tmp_path / 'helpdesk.db'}",
        future=True,
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(
        bind=engine,
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
        future=True,
    )


@pytest.fixture
def db(session_factory):
    session = session_factory()
    seed_statuses(session)
    yield session
    session.close()


@pytest.fixture
def factory(db):
    return Factory(db)


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def service(clock):
    return TicketService(
        registry=StatusRegistry(),
        resolver=AssignmentResolver(directory=DirectoryCache()),
        clock=clock,
    )
