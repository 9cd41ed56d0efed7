import logging

import pytest

from sharpspring_sync.cache import LocalLeadCache
from sharpspring_sync.exceptions import SharpSpringRestApiError
from sharpspring_sync.models import SourceLead
from sharpspring_sync.storage import MemoryStore

from conftest import SOURCE_FIELD

LEADS = [
    {"id": 1, "emailAddress": "Ann@Example.com", "firstName": "Ann", SOURCE_FIELD: "S1"},
    {"id": 2, "emailAddress": "bob@example.com", "firstName": "Bob", SOURCE_FIELD: "S2"},
    {"id": 3, "emailAddress": "gone@example.com", "firstName": "Gone", "active": 0},
]


@pytest.fixture()
def server(make_server):
    return make_server(LEADS)


@pytest.fixture()
def make_cache(make_connection):
    def factory(client, store=None, refresh_since="", **kwargs):
        kwargs.setdefault("foreign_key", SOURCE_FIELD)
        return LocalLeadCache(make_connection(client), store if store is not None else MemoryStore(), refresh_since, **kwargs)

    return factory


def test_full_refresh_caches_active_leads_in_pages(server, make_cache, monkeypatch) -> None:
    monkeypatch.setattr(LocalLeadCache, "LEADS_GET_LIMIT", 1)
    store = MemoryStore({"99": {"id": 99, "emailAddress": "stale@example.com"}})

    cache = make_cache(server, store)

    assert sorted(lead["id"] for lead in cache.iter_leads()) == [1, 2]
    assert server.methods_called() == ["getLeads", "getLeads", "getLeads"]
    assert cache.get_leads_by_email("ann@EXAMPLE.com", False)[0]["id"] == 1
    assert cache.get_leads_by_foreign_key("S2")[0]["id"] == 2
    assert not store.has(99)


def test_skip_refresh_only_indexes_the_store(server, make_cache) -> None:
    store = MemoryStore({"7": {"id": 7, "emailAddress": "seven@example.com", SOURCE_FIELD: "S7"}})

    cache = make_cache(server, store, "-")

    assert server.calls == []
    assert cache.get_leads_by_foreign_key("S7") == [{"id": 7, "emailAddress": "seven@example.com", SOURCE_FIELD: "S7"}]


def test_skip_all_leaves_indexes_empty_until_rebuilt(server, make_cache) -> None:
    store = MemoryStore({"7": {"id": 7, "emailAddress": "seven@example.com", SOURCE_FIELD: "S7"}})

    cache = make_cache(server, store, "--")

    assert server.calls == []
    assert cache.get_leads_by_foreign_key("S7") == []
    cache.rebuild_indexes()
    assert len(cache.get_leads_by_foreign_key("S7")) == 1


def test_timestamp_refresh_merges_recently_updated_leads(server, make_cache) -> None:
    server.leads["2"]["firstName"] = "Robert"
    server.leads["2"]["updateTimestamp"] = "2024-06-01 10:00:00"
    store = MemoryStore({"1": dict(LEADS[0]), "2": dict(LEADS[1])})

    cache = make_cache(server, store, "2024-05-01 00:00:00")

    assert server.methods_called() == ["getLeadsDateRange"]
    assert server.calls[0][1]["startDate"] == "2024-05-01 00:00:00"
    assert cache.get_lead(2, False)["firstName"] == "Robert"
    assert cache.get_lead(1, False)["firstName"] == "Ann"


def test_non_mapping_store_values_are_rejected(server, make_cache) -> None:
    with pytest.raises(ValueError):
        make_cache(server, MemoryStore({"1": "not a lead"}), "-")


def test_duplicate_foreign_keys_are_logged_and_both_kept(make_server, make_cache, caplog) -> None:
    server = make_server([
        {"id": 1, "emailAddress": "a@example.com", SOURCE_FIELD: "S1"},
        {"id": 2, "emailAddress": "b@example.com", SOURCE_FIELD: "S1"},
    ])

    with caplog.at_level(logging.WARNING):
        cache = make_cache(server)

    assert "Duplicate leads found for foreign key S1" in caplog.text
    assert [lead["id"] for lead in cache.get_leads_by_foreign_key("S1")] == [1, 2]


def test_changed_email_moves_the_index_entry(server, make_cache) -> None:
    cache = make_cache(server)

    cache.update_lead({"id": 2, "emailAddress": "robert@example.com"})

    assert cache.get_leads_by_email("bob@example.com", False) == []
    lead = cache.get_leads_by_email("robert@example.com", False)[0]
    assert lead["firstName"] == "Bob"
    assert lead[SOURCE_FIELD] == "S2"


def test_lookup_by_email_falls_back_to_remote_and_uncaches_missing(server, make_cache) -> None:
    cache = make_cache(server)
    assert cache.get_leads_by_email("gone@example.com")[0]["id"] == 3
    assert cache.get_lead(3, False)["active"] == 0

    del server.leads["3"]
    assert cache.get_leads({"emailAddress": "gone@example.com"}) == []
    assert cache.get_lead(3, False) == {}
    assert cache.get_leads_by_email("gone@example.com", False) == []


def test_get_lead_remote_uncaches_deleted_leads(server, make_cache) -> None:
    cache = make_cache(server)
    del server.leads["1"]

    assert cache.get_lead_remote(1) == {}
    assert cache.get_leads_by_foreign_key("S1") == []
    assert cache.get_leads_by_email("ann@example.com", False) == []


def test_compare_lead_prefers_id_then_foreign_key_then_email(server, make_cache) -> None:
    cache = make_cache(server)

    assert cache.compare_lead(SourceLead({"id": 1, "firstName": "Ann"})) == {"id": 1}
    assert cache.compare_lead(SourceLead({"sourceId": "S2", "emailAddress": "ann@example.com"})) == {
        "id": 2,
        "emailAddress": "bob@example.com",
    }
    assert cache.compare_lead(SourceLead({"emailAddress": "ANN@example.com", "firstName": "Anne"})) == {
        "id": 1,
        "firstName": "Ann",
    }
    assert cache.compare_lead(SourceLead({"emailAddress": "new@example.com"}), False) == {}


def test_compare_lead_without_identifying_values_fails(server, make_cache) -> None:
    cache = make_cache(server)

    with pytest.raises(ValueError, match="no ID / e-mail"):
        cache.compare_lead(SourceLead({"firstName": "Nobody"}))


def test_partial_create_caches_the_successful_leads(server, make_cache) -> None:
    cache = make_cache(server)
    leads = [SourceLead({"emailAddress": "bob@example.com"}), SourceLead({"emailAddress": "new@example.com", "sourceId": "S9"})]

    with pytest.raises(SharpSpringRestApiError) as excinfo:
        cache.create_leads(leads)

    assert excinfo.value.is_batch_wrapper
    assert excinfo.value.data[0]["error"]["code"] == 301
    created = cache.get_leads_by_foreign_key("S9")
    assert created == [{"id": 1001, "emailAddress": "new@example.com", SOURCE_FIELD: "S9"}]


def test_delete_leads_cleans_store_and_indexes(server, make_cache) -> None:
    cache = make_cache(server)

    cache.delete_leads([1])

    assert "1" not in server.leads
    assert cache.get_lead(1, False) == {}
    assert cache.get_leads_by_foreign_key("S1") == []


def test_cached_properties_are_served_without_store_lookups(server, make_cache) -> None:
    cache = make_cache(server, cached_properties=["firstName"])
    cache.store.delete_all()

    assert cache.get_property_value("firstName", 2, False) == "Bob"
    assert cache.get_property_value("lastName", 2, False) is None
