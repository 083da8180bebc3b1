import logging

import pytest

from crm_dedupe.models import EntityType
from crm_dedupe.store import SqliteRecordStore


@pytest.fixture
def store():
    db = SqliteRecordStore(":memory:")
    yield db
    db.close()


@pytest.fixture
def contact_pair(store):
    """Primary and duplicate contacts with deals, tasks, activities and tags."""
    store.insert_contact(
        id="c-primary",
        first_name="Jane",
        last_name="Doe",
        email="jane@acme.io",
        job_title="VP Sales",
        user_id="u1",
        created_at="2024-01-01T00:00:00+00:00",
    )
    store.insert_contact(
        id="c-dup",
        first_name="Janet",
        last_name="Doe",
        email="JANE@acme.io",
        phone="(415) 555-2671",
        notes="Met at conference",
        user_id="u1",
        created_at="2024-02-01T00:00:00+00:00",
    )
    store.insert_row("deals", {"id": "deal-1", "contact_id": "c-dup", "title": "Renewal"})
    store.insert_row("deals", {"id": "deal-2", "contact_id": "c-dup", "title": "Upsell"})
    store.insert_row("deals", {"id": "deal-3", "contact_id": "c-primary", "title": "Pilot"})
    store.insert_row("tasks", {"id": "task-1", "contact_id": "c-dup", "title": "Call back"})
    store.insert_row(
        "activities",
        {
            "id": "act-1",
            "type": "call",
            "title": "Intro call",
            "activity_date": "2024-02-02T10:00:00+00:00",
            "contact_id": "c-dup",
            "created_by": "rep@acme.io",
        },
    )
    for tag_id, name in (("tag-a", "vip"), ("tag-b", "partner"), ("tag-c", "churn-risk")):
        store.insert_row("tags", {"id": tag_id, "name": name})
    store.add_tag(EntityType.CONTACT, "c-primary", "tag-a")
    store.add_tag(EntityType.CONTACT, "c-primary", "tag-b")
    store.add_tag(EntityType.CONTACT, "c-dup", "tag-b")
    store.add_tag(EntityType.CONTACT, "c-dup", "tag-c")
    return "c-primary", "c-dup"


@pytest.fixture
def root_level():
    """Restore the root logger level changed by configure_logging()."""
    root = logging.getLogger()
    previous = root.level
    yield root
    root.setLevel(previous)
