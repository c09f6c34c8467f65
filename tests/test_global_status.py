"""
Tests for the status key registry and the SHOW STATUS collector
"""

import pytest

from collectors import STATUS_DESCS, GlobalStatusCollector, build_status_descs, resolve_key
from collectors.base import COUNTER, GAUGE
from collectors.global_status import SKIP_UNPARSABLE, SKIP_UNREGISTERED, STATUS_QUERY

from conftest import FakeConnection


# =============================================================================
# Registry
# =============================================================================


def test_registry_covers_status_keys():
    """Test the registry knows the documented searchd counters"""
    for key in (
        "uptime",
        "connections",
        "maxed_out",
        "agent_connect",
        "agent_retry",
        "queries",
        "dist_queries",
        "query_wall",
        "query_cpu",
        "dist_wall",
        "dist_local",
        "dist_wait",
        "query_reads",
        "query_readkb",
        "query_readtime",
    ):
        assert STATUS_DESCS[key].fqname == f"sphinx_status_{key}"
        assert STATUS_DESCS[key].labels == ()


def test_command_keys_share_one_descriptor():
    """Test every command_* key points at the same labelled descriptor"""
    commands = [k for k in STATUS_DESCS if k.startswith("command_")]
    assert len(commands) == 8
    descs = {STATUS_DESCS[k] for k in commands}
    assert len(descs) == 1
    (desc,) = descs
    assert desc.fqname == "sphinx_status_command"
    assert desc.labels == ("command",)


def test_registry_is_read_only():
    """Test the shared table cannot be mutated"""
    with pytest.raises(TypeError):
        STATUS_DESCS["uptime"] = None


def test_all_counters_by_default():
    """Test every descriptor is a counter unless overridden"""
    assert {d.kind for d in STATUS_DESCS.values()} == {COUNTER}


def test_kind_overrides():
    """Test metric kinds can be overridden per descriptor name"""
    descs = build_status_descs({"uptime": GAUGE, "command": GAUGE})
    assert descs["uptime"].kind == GAUGE
    assert descs["connections"].kind == COUNTER
    assert descs["command_search"].kind == GAUGE
    assert descs["command_search"] is descs["command_delete"]


@pytest.mark.parametrize("kinds", [{"no_such_metric": GAUGE}, {"uptime": "histogram"}])
def test_bad_kind_overrides_rejected(kinds):
    """Test unknown names and kinds are refused"""
    with pytest.raises(ValueError):
        build_status_descs(kinds)


def test_namespace_override():
    """Test the namespace flows into descriptor names"""
    descs = build_status_descs(namespace="search")
    assert descs["queries"].fqname == "search_status_queries"


def test_resolve_is_case_insensitive():
    """Test mixed-case keys resolve to the same descriptor"""
    assert resolve_key(STATUS_DESCS, "Connections") == resolve_key(STATUS_DESCS, "connections")
    assert resolve_key(STATUS_DESCS, "Connections")[0] is STATUS_DESCS["connections"]


def test_resolve_command_label():
    """Test command_* keys carry the suffix as their label"""
    desc, labels = resolve_key(STATUS_DESCS, "command_search")
    assert desc is STATUS_DESCS["command_search"]
    assert labels == ("search",)


def test_resolve_unknown_keys():
    """Test unregistered keys, prefixed or not, do not resolve"""
    assert resolve_key(STATUS_DESCS, "command_foo") is None
    assert resolve_key(STATUS_DESCS, "avg_query_wall") is None


# =============================================================================
# Collector
# =============================================================================


@pytest.mark.asyncio
async def test_scrape_emits_known_rows(status_conn):
    """Test known rows become samples and the rest are counted as skipped"""
    result = await GlobalStatusCollector().scrape(status_conn)

    assert result.error is None
    assert status_conn.queries == [STATUS_QUERY]
    got = [(s.desc.name, s.label_values, s.value) for s in result.samples]
    assert got == [
        ("uptime", (), 12345.0),
        ("connections", (), 77.0),
        ("maxed_out", (), 0.0),
        ("command", ("search",), 10.0),
        ("command", ("excerpt",), 3.0),
        ("agent_connect", (), 0.0),
        ("queries", (), 10.0),
        ("query_wall", (), 0.125),
    ]
    assert all(s.kind == COUNTER for s in result.samples)
    assert result.skipped == {SKIP_UNREGISTERED: 1, SKIP_UNPARSABLE: 1}


@pytest.mark.asyncio
async def test_scrape_mixed_rows():
    """Test a state row for an unregistered key is dropped without error"""
    conn = FakeConnection(
        {
            STATUS_QUERY: [
                ("uptime", "12345"),
                ("Slave_IO_Running", "Connecting"),
                ("command_search", "10"),
                ("command_foo", "4"),
            ]
        }
    )
    result = await GlobalStatusCollector().scrape(conn)

    assert result.error is None
    assert [(s.desc.fqname, s.label_values, s.value) for s in result.samples] == [
        ("sphinx_status_uptime", (), 12345.0),
        ("sphinx_status_command", ("search",), 10.0),
    ]
    assert result.skipped == {SKIP_UNREGISTERED: 2}


@pytest.mark.asyncio
async def test_scrape_uppercase_keys_and_bytes():
    """Test keys are lowercased and byte rows decoded"""
    conn = FakeConnection({STATUS_QUERY: [(b"Uptime", b"9"), ("COMMAND_Status", "2")]})
    result = await GlobalStatusCollector().scrape(conn)
    assert [(s.desc.name, s.label_values, s.value) for s in result.samples] == [
        ("uptime", (), 9.0),
        ("command", ("status",), 2.0),
    ]


@pytest.mark.asyncio
async def test_scrape_uses_overridden_kinds():
    """Test samples carry the kind of their descriptor"""
    descs = build_status_descs({"uptime": GAUGE})
    conn = FakeConnection({STATUS_QUERY: [("uptime", "5"), ("queries", "1")]})
    result = await GlobalStatusCollector(descs).scrape(conn)
    assert [s.kind for s in result.samples] == [GAUGE, COUNTER]


@pytest.mark.asyncio
async def test_scrape_query_failure():
    """Test a failing query is reported in the result, not raised"""
    conn = FakeConnection({STATUS_QUERY: RuntimeError("unknown command")})
    result = await GlobalStatusCollector().scrape(conn)
    assert result.samples == []
    assert "unknown command" in result.error


@pytest.mark.asyncio
async def test_scrape_timeout():
    """Test a hung query fails once the timeout expires"""
    conn = FakeConnection({STATUS_QUERY: [("uptime", "1")]}, delay=1.0)
    result = await GlobalStatusCollector(timeout=0.01).scrape(conn)
    assert result.samples == []
    assert result.error is not None


@pytest.mark.asyncio
async def test_scrape_malformed_row_keeps_earlier_samples():
    """Test a structurally broken row stops the scrape with an error"""
    conn = FakeConnection({STATUS_QUERY: [("uptime", "1"), ("queries",), ("connections", "2")]})
    result = await GlobalStatusCollector().scrape(conn)
    assert [s.desc.name for s in result.samples] == ["uptime"]
    assert "malformed" in result.error


def test_collector_error_label():
    """Test the label used for per-collector error counting"""
    assert GlobalStatusCollector().error_label == "collect.global_status"
