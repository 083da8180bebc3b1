import logging
import threading

import pytest

from crm_dedupe.config_loader import DedupeConfig
from crm_dedupe.errors import PersistenceError, ScanCancelled
from crm_dedupe.models import EntityType
from crm_dedupe.service import DedupeService


@pytest.fixture
def companies(store):
    store.insert_company(id="acme", name="Acme Corp", website="https://www.acme.io/", user_id="u1")
    store.insert_company(
        id="acme-2", name="Acme Corporation", industry="Manufacturing", user_id="u1"
    )
    store.insert_company(id="globex", name="Globex", website="globex.com", user_id="u1")
    store.insert_company(id="globex-2", name="Initech", website="http://globex.com", user_id="u1")
    store.insert_company(id="other", name="Acme Corp", user_id="u2")
    return store


def test_check_candidate_finds_email_case_insensitively(store, contact_pair):
    service = DedupeService(store)
    check = service.check_candidate("contact", {"first_name": "J", "email": " Jane@ACME.io "})
    assert check.has_duplicates
    assert check.exact_match.id in contact_pair
    assert check.similar == []


def test_check_candidate_excludes_record_being_edited(store):
    store.insert_contact(id="c1", first_name="Jane", email="jane@acme.io", user_id="u1")
    service = DedupeService(store)
    check = service.check_candidate(EntityType.CONTACT, {"email": "jane@acme.io"}, exclude_id="c1")
    assert check.exact_match is None


def test_check_candidate_ignores_invalid_or_missing_email(store, contact_pair):
    service = DedupeService(store)
    assert service.check_candidate("contact", {"email": "not-an-email"}).exact_match is None
    assert service.check_candidate("contact", {"email": "   "}).exact_match is None
    assert service.check_candidate("contact", {}).has_duplicates is False


def test_email_blocking_can_be_disabled(store, contact_pair):
    service = DedupeService(store, settings=DedupeConfig(block_exact_email_duplicates=False))
    assert service.check_candidate("contact", {"email": "jane@acme.io"}).exact_match is None


def test_similar_contact_names_are_opt_in(store, contact_pair):
    fields = {"name": "Jane Do"}
    assert DedupeService(store).check_candidate("contact", fields).similar == []

    service = DedupeService(store, settings=DedupeConfig(warn_similar_contact_names=True))
    similar = service.check_candidate("contact", fields).similar
    assert [match.entity.id for match in similar][0] == "c-primary"
    assert all(match.score >= 0.8 for match in similar)


def test_check_candidate_company_by_name_then_website(companies):
    service = DedupeService(companies)
    by_name = service.check_candidate("company", {"name": "  acme corp "}, user_id="u1")
    assert by_name.exact_match.id == "acme"
    assert "acme" not in [match.entity.id for match in by_name.similar]
    assert "acme-2" in [match.entity.id for match in by_name.similar]

    by_site = service.check_candidate("companies", {"name": "Brand New", "website": "acme.io"})
    assert by_site.exact_match.id == "acme"


def test_similar_company_warning_can_be_disabled(companies):
    service = DedupeService(companies, settings=DedupeConfig(warn_similar_company_names=False))
    check = service.check_candidate("company", {"name": "Acme Corporation Ltd"})
    assert check.similar == []


def test_check_candidate_degrades_when_storage_fails(store, monkeypatch, caplog):
    def unavailable(*args, **kwargs):
        raise PersistenceError("database is locked")

    monkeypatch.setattr(store, "query", unavailable)
    service = DedupeService(store)
    with caplog.at_level(logging.WARNING, logger="crm_dedupe.service"):
        check = service.check_candidate("contact", {"email": "jane@acme.io"})
    assert check.has_duplicates is False
    assert "storage unavailable" in caplog.text


def test_scan_contacts_groups_by_email_and_phone(store, contact_pair):
    store.insert_contact(id="c-3", first_name="Bob", phone="+1 415-555-2671", user_id="u1")
    store.insert_contact(id="c-4", first_name="Alice", email="alice@acme.io", user_id="u1")
    result = DedupeService(store).scan("contact")

    kinds = {cluster.kind: cluster.record_ids for cluster in result.exact}
    assert kinds["exact:email"] == ["c-dup", "c-primary"]
    assert sorted(kinds["exact:primary_phone"]) == ["c-3", "c-dup"]
    assert result.fuzzy == []
    assert "c-4" not in result.record_ids()


def test_scan_contacts_with_fuzzy_names(store, contact_pair):
    service = DedupeService(store, settings=DedupeConfig(scan_fuzzy_contacts=True))
    result = service.scan("contact")
    assert len(result.fuzzy) == 1
    assert sorted(result.fuzzy[0].record_ids) == ["c-dup", "c-primary"]
    assert result.fuzzy[0].score == pytest.approx(1 - 1 / 9)


def test_scan_companies_is_scoped_to_owner(companies):
    result = DedupeService(companies).scan(EntityType.COMPANY, user_id="u1")

    exact = {cluster.kind: sorted(cluster.record_ids) for cluster in result.exact}
    assert exact == {"exact:website": ["globex", "globex-2"]}
    fuzzy = [sorted(cluster.record_ids) for cluster in result.fuzzy]
    assert ["acme", "acme-2"] in fuzzy
    assert "other" not in result.record_ids()


def test_scan_skips_merged_records(store, contact_pair):
    service = DedupeService(store)
    primary_id, duplicate_id = contact_pair
    primary = store.get(EntityType.CONTACT, primary_id)
    duplicate = store.get(EntityType.CONTACT, duplicate_id)
    service.execute_merge(primary_id, duplicate_id, service.plan_merge(primary, duplicate), "admin")

    result = service.scan("contact")
    assert duplicate_id not in result.record_ids()
    check = service.check_candidate("contact", {"email": "jane@acme.io"})
    assert check.exact_match.id == primary_id


def test_scan_can_be_cancelled(store, contact_pair):
    cancel = threading.Event()
    cancel.set()
    with pytest.raises(ScanCancelled):
        DedupeService(store).scan("contact", cancel=cancel)


def test_suggest_merge_is_opt_in(store, contact_pair):
    cluster = DedupeService(store).scan("contact").exact[0]
    assert DedupeService(store).suggest_merge(cluster) is None

    service = DedupeService(store, settings=DedupeConfig(auto_suggest_merge=True))
    decision = service.suggest_merge(cluster)
    assert decision.entity_type is EntityType.CONTACT
    # the most complete member is proposed as primary
    assert decision.source_for("job_title") == "duplicate"
    assert decision.source_for("phone") == "primary"


def test_merge_history_lists_audits(store, contact_pair):
    service = DedupeService(store)
    primary_id, duplicate_id = contact_pair
    decision = service.plan_merge(
        store.get(EntityType.CONTACT, primary_id), store.get(EntityType.CONTACT, duplicate_id)
    )
    audit = service.execute_merge(primary_id, duplicate_id, decision, actor="admin")

    history = service.merge_history("contacts", primary_id)
    assert [entry.audit_id for entry in history] == [audit.audit_id]
    assert history[0].entity_type is EntityType.CONTACT
    assert [entry.audit_id for entry in service.merge_history("contact", duplicate_id)] == [
        audit.audit_id
    ]
    assert service.merge_history("contact", "c-unrelated") == []


@pytest.mark.parametrize(
    "stored,candidate",
    [("ops@corp.local", "OPS@corp.local"), ("jo@intranet", "Jo@Intranet")],
)
def test_check_candidate_matches_addresses_the_validator_rejects(store, stored, candidate):
    store.insert_contact(id="c-internal", first_name="Ops", email=stored, user_id="u1")
    check = DedupeService(store).check_candidate("contact", {"email": candidate})
    assert check.exact_match is not None
    assert check.exact_match.id == "c-internal"
