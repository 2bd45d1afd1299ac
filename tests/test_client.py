"""
Client-level operations, query values and the command line entry point.
"""

import sys
import urllib.parse

import pytest

import triggerware
from triggerware import FolQuery, Query, QueryRestriction, SqlQuery, TriggerwareClient


class TestQueries:
    def test_constructors(self):
        assert FolQuery("((x) s.t. (p x))") == Query("((x) s.t. (p x))", "fol", "AP5")
        assert SqlQuery("select 1;", namespace="demo") == Query("select 1;", "sql", "demo")

    def test_unknown_language_is_rejected(self):
        with pytest.raises(ValueError, match="prolog"):
            Query("p(X).", "prolog")

    def test_restriction_params_omit_unset_fields(self):
        assert QueryRestriction().to_params() == {}
        assert QueryRestriction(limit=5).to_params() == {"limit": 5}
        assert QueryRestriction(timelimit=0.5).to_params() == {"timelimit": 0.5}


class TestServerOperations:
    @pytest.mark.asyncio
    async def test_noop(self, server, client):
        await client.noop()
        assert server.calls == [("noop", None)]

    @pytest.mark.asyncio
    async def test_runtime(self, server, client):
        server.handlers["runtime"] = lambda params: {"run-time": 12, "gc-time": 3, "bytes": 4096}
        assert await client.runtime() == {"run-time": 12, "gc-time": 3, "bytes": 4096}

    @pytest.mark.asyncio
    async def test_validate_query(self, server, client):
        server.handlers["validate"] = lambda params: True
        assert await client.validate_query(SqlQuery("select * from inflation;")) is True
        assert server.params_of("validate") == [
            {"query": "select * from inflation;", "language": "sql", "namespace": "AP5"}
        ]

    @pytest.mark.asyncio
    async def test_get_rel_data(self, server, client):
        server.handlers["reldata2017"] = lambda params: [
            {
                "name": "Economics",
                "symbol": "ECON",
                "description": "Economic indicators",
                "elements": [
                    {
                        "name": "inflation",
                        "description": "Yearly inflation by country",
                        "signatureNames": ["country", "year", "rate"],
                        "signatureTypes": ["casesensitive", "integer", "double"],
                        "usage": "(inflation ?country ?year ?rate)",
                        "noninputs": [2],
                    }
                ],
            }
        ]

        (group,) = await client.get_rel_data()
        (element,) = group.elements

        assert (group.name, group.symbol) == ("Economics", "ECON")
        assert element.description == "Yearly inflation by country"
        assert element.signature_names == ["country", "year", "rate"]
        assert element.signature_types == ["casesensitive", "integer", "double"]
        assert element.model_extra == {"noninputs": [2]}

    def test_labels_are_independent_per_prefix_and_client(self):
        first = TriggerwareClient()
        second = TriggerwareClient()

        assert [first.next_label("sub") for _ in range(3)] == ["sub0", "sub1", "sub2"]
        assert first.next_label("batch") == "batch0"
        assert second.next_label("sub") == "sub0"

    def test_defaults(self):
        client = TriggerwareClient()
        assert (client.default_fetch_size, client.default_timelimit) == (10, None)
        assert not client.is_open


class TestCommandLine:
    def test_main_parses_arguments(self, monkeypatch):
        seen = {}

        async def fake_run(address, query, restriction):
            seen.update(address=address, query=query, restriction=restriction)

        monkeypatch.setattr(triggerware, "_run", fake_run)
        monkeypatch.setattr(
            sys,
            "argv",
            ["triggerware-client", "tcp://example.org:6000", "select 1;", "--language", "sql", "--limit", "7"],
        )

        triggerware.main()

        assert (seen["address"].hostname, seen["address"].port) == ("example.org", 6000)
        assert seen["query"] == SqlQuery("select 1;")
        assert seen["restriction"] == QueryRestriction(limit=7)

    def test_main_without_query_lists_relations(self, monkeypatch):
        seen = {}

        async def fake_run(address, query, restriction):
            seen["query"] = query

        monkeypatch.setattr(triggerware, "_run", fake_run)
        monkeypatch.setattr(sys, "argv", ["triggerware-client", "tcp://localhost:5221"])

        triggerware.main()
        assert seen["query"] is None

    @pytest.mark.asyncio
    async def test_only_tcp_is_supported(self):
        with pytest.raises(ValueError, match="http"):
            await triggerware._run(urllib.parse.urlparse("http://localhost:5221"), None, QueryRestriction())
