"""
Shared fixtures: an in-memory SQLite database with every table created,
plus small factories for the rows most tests need.
"""

import os
import sys
import uuid
from datetime import date, timedelta
from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("WORKERS_ENABLED", "false")
os.environ.setdefault("MAIL_GATEWAY_URL", "")


@pytest.fixture
def engine():
    from podcastflow.database import create_tables

    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    create_tables(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db(engine):
    Session = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = Session()
    yield session
    session.close()


@pytest.fixture(autouse=True)
def clear_settings_cache():
    from podcastflow.services.workflow_settings import settings_cache

    settings_cache.invalidate()
    yield
    settings_cache.invalidate()


@pytest.fixture
def org(db):
    from podcastflow.models import Organization

    organization = Organization(name="Test Network", slug=f"test-{uuid.uuid4().hex[:8]}", settings={})
    db.add(organization)
    db.commit()
    return organization


@pytest.fixture
def make_user(db, org):
    from podcastflow.models import User

    def _make(role="sales", email=None, organization=None):
        user = User(
            organization_id=(organization or org).id,
            email=email or f"{role}-{uuid.uuid4().hex[:6]}@example.com",
            name=f"{role.title()} User",
            role=role,
        )
        db.add(user)
        db.commit()
        return user

    return _make


@pytest.fixture
def admin(make_user):
    return make_user("admin")


@pytest.fixture
def make_show(db, org):
    from podcastflow.models import Show

    def _make(name="Tech Talk", category="technology", rates=(500, 750, 300), thresholds=None):
        show = Show(
            organization_id=org.id,
            name=name,
            category=category,
            spot_thresholds=thresholds,
            pre_roll_rate=Decimal(str(rates[0])) if rates else None,
            mid_roll_rate=Decimal(str(rates[1])) if rates else None,
            post_roll_rate=Decimal(str(rates[2])) if rates else None,
        )
        db.add(show)
        db.commit()
        return show

    return _make


@pytest.fixture
def make_episode(db, org):
    """Episode plus its inventory row."""
    from podcastflow.models import Episode
    from podcastflow.services.inventory_ledger import InventoryLedger

    def _make(show, air_date, length_minutes=45):
        episode = Episode(
            organization_id=org.id,
            show_id=show.id,
            title=f"{show.name} {air_date.isoformat()}",
            air_date=air_date,
            length_minutes=length_minutes,
        )
        db.add(episode)
        db.flush()
        InventoryLedger(db, org.id).ensure_inventory(episode)
        db.commit()
        return episode

    return _make


@pytest.fixture
def next_monday():
    today = date.today()
    return today + timedelta(days=7 - today.weekday())


@pytest.fixture
def make_advertiser(db, org):
    from podcastflow.models import Advertiser

    def _make(name="Acme"):
        advertiser = Advertiser(organization_id=org.id, name=name)
        db.add(advertiser)
        db.commit()
        return advertiser

    return _make


@pytest.fixture
def make_campaign(db, org):
    from podcastflow.models import Campaign

    def _make(advertiser, name="Spring Push", status="draft", probability=10,
              start_date=None, end_date=None, seller_id=None):
        campaign = Campaign(
            organization_id=org.id,
            name=name,
            advertiser_id=advertiser.id if advertiser else None,
            status=status,
            probability=probability,
            start_date=start_date,
            end_date=end_date,
            seller_id=seller_id,
        )
        db.add(campaign)
        db.commit()
        return campaign

    return _make


@pytest.fixture
def competitive_group(db, org):
    """Category + competitive group factory: returns a function assigning advertisers to the group."""
    from podcastflow.models import AdvertiserCategory, Category, CompetitiveGroup

    def _make(advertisers, name="Soft Drinks", conflict_mode=None):
        category = Category(organization_id=org.id, name=name)
        group = CompetitiveGroup(organization_id=org.id, name=f"{name} group", conflict_mode=conflict_mode)
        db.add_all([category, group])
        db.flush()
        for advertiser in advertisers:
            db.add(AdvertiserCategory(
                advertiser_id=advertiser.id,
                category_id=category.id,
                competitive_group_id=group.id,
            ))
        db.commit()
        return group

    return _make


@pytest.fixture
def quiet_notifier():
    """NotificationService stand-in that records emissions instead of sending."""
    from unittest.mock import MagicMock
    from podcastflow.services.notification_service import EmissionResult

    notifier = MagicMock()
    notifier.emit.return_value = EmissionResult(status="skipped", reason="test")
    return notifier
