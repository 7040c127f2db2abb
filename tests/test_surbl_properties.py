"""
Property-based tests for the SURBL checker.

Covers host rollup with multi-level TLDs, DNS answer interpretation,
simulation mode and the cached TLD tables.
"""

import asyncio
import os
import socket
import tempfile
import time
from pathlib import Path
from unittest.mock import AsyncMock, patch

import httpx
import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from tinyurl.config import SurblConfig
from tinyurl.enums import SurblStatus
from tinyurl.exceptions import InvalidInputError, UnreachableError
from tinyurl.surbl import SurblChecker, TldTable, parse_tld_list, query_domain


label_strategy = st.text(alphabet="abcdefghijklmnopqrstuvwxyz0123456789", min_size=1, max_size=10)

TWO_LEVEL = frozenset({"co.uk", "com.au", "org.uk"})


def make_checker(tmp_dir: str, simulation_mode: bool = False, **kwargs) -> SurblChecker:
    """Checker whose TLD tables come from fresh copies in tmp_dir."""
    (Path(tmp_dir) / "two-level-tlds").write_text("\n".join(sorted(TWO_LEVEL)) + "\n")
    (Path(tmp_dir) / "three-level-tlds").write_text("act.edu.au\n")
    return SurblChecker(
        SurblConfig(),
        cache_dir=Path(tmp_dir),
        simulation_mode=simulation_mode,
        **kwargs,
    )


def gaierror(code: int) -> socket.gaierror:
    return socket.gaierror(code, "lookup failed")


class TestRollupProperty:
    """
    **Feature: tinyurl, Property 17: Hosts roll up to the registrable domain**
    """

    @given(subs=st.lists(label_strategy, max_size=3), name=label_strategy, tld=st.sampled_from(["com", "org", "de"]))
    @settings(max_examples=200)
    def test_plain_tld_uses_two_labels(self, subs: list, name: str, tld: str) -> None:
        host = ".".join(subs + [name, tld])
        assert query_domain(host, TWO_LEVEL) == f"{name}.{tld}"

    @given(subs=st.lists(label_strategy, max_size=3), name=label_strategy, tld=st.sampled_from(sorted(TWO_LEVEL)))
    @settings(max_examples=200)
    def test_two_level_tld_uses_three_labels(self, subs: list, name: str, tld: str) -> None:
        """
        Property 17: A host under a known 2-level TLD rolls up to three
        labels, never to the TLD itself.
        """
        host = ".".join(subs + [name, tld])
        assert query_domain(host, TWO_LEVEL) == f"{name}.{tld}"

    def test_examples(self) -> None:
        two = frozenset({"co.uk", "edu.au"})
        three = frozenset({"act.edu.au"})

        assert query_domain("www.foo.co.uk", two, three) == "foo.co.uk"
        assert query_domain("www.example.com", two, three) == "example.com"
        assert query_domain("www.school.act.edu.au", two, three) == "school.act.edu.au"
        assert query_domain("uni.edu.au", two, three) == "uni.edu.au"
        assert query_domain("co.uk", two, three) == "co.uk"
        assert query_domain("WWW.Example.COM.", two, three) == "example.com"

    @given(octets=st.tuples(*[st.integers(min_value=0, max_value=255)] * 4))
    @settings(max_examples=100)
    def test_ipv4_is_reversed(self, octets: tuple) -> None:
        host = ".".join(str(o) for o in octets)
        assert query_domain(host) == ".".join(str(o) for o in reversed(octets))

    def test_ipv6_is_invalid(self) -> None:
        with pytest.raises(InvalidInputError):
            query_domain("2001:db8::1")


class TestLookupProperty:
    """
    **Feature: tinyurl, Property 18: Answers in 127/8 mean listed**
    """

    @given(last=st.integers(min_value=0, max_value=255), mask=st.integers(min_value=1, max_value=255))
    @settings(max_examples=50)
    def test_loopback_answer_is_listed(self, last: int, mask: int) -> None:
        with tempfile.TemporaryDirectory() as tmp_dir:
            checker = make_checker(tmp_dir)
            answer = [f"127.0.{mask}.{last}"]
            with patch.object(checker, "_resolve", AsyncMock(return_value=answer)) as resolve:
                status = asyncio.run(checker.check("www.spam.co.uk"))

        assert status is SurblStatus.LISTED
        resolve.assert_awaited_once_with("spam.co.uk.multi.surbl.org")

    def test_other_answer_is_clean(self) -> None:
        with tempfile.TemporaryDirectory() as tmp_dir:
            checker = make_checker(tmp_dir)
            with patch.object(checker, "_resolve", AsyncMock(return_value=["10.0.0.2"])):
                assert asyncio.run(checker.check("example.com")) is SurblStatus.CLEAN

    def test_name_not_found_is_clean(self) -> None:
        with tempfile.TemporaryDirectory() as tmp_dir:
            checker = make_checker(tmp_dir)
            with patch.object(checker, "_resolve", AsyncMock(side_effect=gaierror(socket.EAI_NONAME))):
                assert asyncio.run(checker.check("example.com")) is SurblStatus.CLEAN

    def test_temporary_failure_is_unreachable(self) -> None:
        with tempfile.TemporaryDirectory() as tmp_dir:
            checker = make_checker(tmp_dir)
            with patch.object(checker, "_resolve", AsyncMock(side_effect=gaierror(socket.EAI_AGAIN))):
                with pytest.raises(UnreachableError) as exc_info:
                    asyncio.run(checker.check("example.com"))
        assert exc_info.value.code == "surbl_lookup_failed"

    def test_timeout_is_unreachable(self) -> None:
        with tempfile.TemporaryDirectory() as tmp_dir:
            checker = make_checker(tmp_dir)
            with patch.object(checker, "_resolve", AsyncMock(side_effect=asyncio.TimeoutError())):
                with pytest.raises(UnreachableError) as exc_info:
                    asyncio.run(checker.check("example.com"))
        assert exc_info.value.code == "surbl_timeout"

    def test_ipv6_host_is_invalid_input(self) -> None:
        with tempfile.TemporaryDirectory() as tmp_dir:
            checker = make_checker(tmp_dir)
            with patch.object(checker, "_resolve", AsyncMock()) as resolve:
                assert asyncio.run(checker.check("::1")) is SurblStatus.INVALID_INPUT
        resolve.assert_not_awaited()

    def test_ipv4_host_queries_reversed_octets(self) -> None:
        with tempfile.TemporaryDirectory() as tmp_dir:
            checker = make_checker(tmp_dir)
            with patch.object(checker, "_resolve", AsyncMock(return_value=[])) as resolve:
                asyncio.run(checker.check("192.0.2.10"))
        resolve.assert_awaited_once_with("10.2.0.192.multi.surbl.org")


class TestSimulationModeProperty:
    """
    **Feature: tinyurl, Property 19: Simulation mode makes no network requests**
    """

    @given(name=label_strategy, subs=st.lists(label_strategy, max_size=2), listed=st.booleans())
    @settings(max_examples=100, deadline=None)
    def test_simulated_answers(self, name: str, subs: list, listed: bool) -> None:
        """
        Property 19: In simulation mode a registrable label starting with
        'listed-' is reported listed, any other host clean, without DNS.
        """
        label = f"listed-{name}" if listed else name
        host = ".".join(subs + [label, "co.uk"])
        with tempfile.TemporaryDirectory() as tmp_dir:
            checker = make_checker(tmp_dir, simulation_mode=True)
            with patch.object(checker, "_resolve", AsyncMock()) as resolve, \
                    patch.object(TldTable, "_download", AsyncMock()) as download:
                status = asyncio.run(checker.check(host))

        expected = SurblStatus.LISTED if listed else SurblStatus.CLEAN
        assert status is expected
        resolve.assert_not_awaited()
        download.assert_not_awaited()


class TestTldTable:
    def test_parse(self) -> None:
        assert parse_tld_list("# comment\nCO.UK\n\n.com.au\n") == {"co.uk", "com.au"}

    def test_fresh_disk_copy_loaded_without_network(self) -> None:
        with tempfile.TemporaryDirectory() as tmp_dir:
            (Path(tmp_dir) / "two-level-tlds").write_text("co.uk\ncom.au\n")
            table = TldTable("two-level-tlds", "http://tlds.example.net/two", Path(tmp_dir))
            with patch.object(table, "_download", AsyncMock()) as download:
                asyncio.run(table.refresh())

        download.assert_not_awaited()
        assert "co.uk" in table
        assert len(table) == 2

    def test_stale_copy_refreshed_conditionally(self) -> None:
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(304)

        async def scenario(table: TldTable) -> None:
            await table.refresh()

        with tempfile.TemporaryDirectory() as tmp_dir:
            path = Path(tmp_dir) / "two-level-tlds"
            path.write_text("co.uk\n")
            stale = time.time() - 2 * 24 * 60 * 60
            os.utime(path, (stale, stale))

            client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
            table = TldTable("two-level-tlds", "http://tlds.example.net/two", Path(tmp_dir), client=client)
            asyncio.run(scenario(table))

            assert path.stat().st_mtime > stale + 24 * 60 * 60

        assert len(seen) == 1
        assert "If-Modified-Since" in seen[0].headers
        assert "co.uk" in table

    def test_download_written_to_disk(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, text="co.uk\norg.uk\n")

        with tempfile.TemporaryDirectory() as tmp_dir:
            client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
            table = TldTable("two-level-tlds", "http://tlds.example.net/two", Path(tmp_dir), client=client)
            asyncio.run(table.refresh())

            assert (Path(tmp_dir) / "two-level-tlds").read_text() == "co.uk\norg.uk\n"
        assert table.entries == {"co.uk", "org.uk"}

    def test_failed_download_keeps_entries(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(500)

        with tempfile.TemporaryDirectory() as tmp_dir:
            path = Path(tmp_dir) / "two-level-tlds"
            path.write_text("co.uk\n")
            stale = time.time() - 2 * 24 * 60 * 60
            os.utime(path, (stale, stale))

            client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
            table = TldTable("two-level-tlds", "http://tlds.example.net/two", Path(tmp_dir), client=client)
            asyncio.run(table.refresh())

        assert table.entries == {"co.uk"}

    def test_refresh_if_due_respects_interval(self) -> None:
        now = {"t": 1_000_000.0}
        with tempfile.TemporaryDirectory() as tmp_dir:
            table = TldTable(
                "two-level-tlds",
                "http://tlds.example.net/two",
                Path(tmp_dir),
                refresh_interval=100,
                clock=lambda: now["t"],
            )
            with patch.object(table, "_download", AsyncMock()) as download:
                asyncio.run(table.refresh_if_due())
                now["t"] += 50
                asyncio.run(table.refresh_if_due())
                now["t"] += 60
                asyncio.run(table.refresh_if_due())

        assert download.await_count == 2
