"""
Property-based tests for the shortener service.

Covers URL validation, idempotent submission, collision logging, key
lookup and the token protected dump.
"""

import asyncio
import io
import os
import stat
import tempfile
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from tinyurl.audit_logger import AuditLogger
from tinyurl.config import StorageConfig, SystemConfig
from tinyurl.decision_cache import DecisionCache
from tinyurl.dump_key import DUMP_KEY_ALPHABET, DUMP_KEY_FILENAME, DUMP_KEY_LENGTH, generate_dump_key
from tinyurl.enums import CheckType, LogLevel
from tinyurl.exceptions import AccessDenied, InvalidInputError, WhitelistMissError
from tinyurl.gate import ReputationGate
from tinyurl.key_deriver import candidate_for
from tinyurl.persistence import MemoryStorage, SqliteStorage
from tinyurl.service import MIN_URL_LENGTH, ShortenerService, build_service, validate_url


DUMP_KEY = "k" * DUMP_KEY_LENGTH

path_strategy = st.text(alphabet="abcdefghijklmnopqrstuvwxyz0123456789/-_", min_size=1, max_size=30)


def make_service(logger: AuditLogger = None, checks=frozenset(), **kwargs) -> ShortenerService:
    store = MemoryStorage()
    gate = ReputationGate(checks, DecisionCache(), **kwargs)
    return ShortenerService(store, gate, dump_key=DUMP_KEY, logger=logger)


def make_logger() -> AuditLogger:
    return AuditLogger(output_format="json", output_stream=io.StringIO(), level=LogLevel.DEBUG)


class TestUrlValidationProperty:
    """
    **Feature: tinyurl, Property 23: Short or non-http URLs are rejected before any check**
    """

    @given(url=st.text(max_size=MIN_URL_LENGTH - 1))
    @settings(max_examples=100)
    def test_short_urls_rejected(self, url: str) -> None:
        with pytest.raises(InvalidInputError) as exc_info:
            validate_url(url)
        assert exc_info.value.code == "invalid_url"

    @pytest.mark.parametrize("url", [
        "ftp://files.example.com/archive",
        "javascript:alert(1)//x",
        "https:///no-host-here",
        "mailto:someone@example.com",
    ])
    def test_unsupported_urls_rejected(self, url: str) -> None:
        with pytest.raises(InvalidInputError):
            validate_url(url)

    def test_missing_url_rejected(self) -> None:
        with pytest.raises(InvalidInputError):
            validate_url(None)

    def test_gate_not_run_for_invalid_url(self) -> None:
        service = make_service()
        with patch.object(service.gate, "validate", AsyncMock()) as validate:
            with pytest.raises(InvalidInputError):
                asyncio.run(service.submit("http://a.b"))
        validate.assert_not_awaited()


class TestIdempotentSubmitProperty:
    """
    **Feature: tinyurl, Property 24: Resubmitting a URL returns the same key without a write**
    """

    @given(path=path_strategy)
    @settings(max_examples=100)
    def test_resubmit_same_key(self, path: str) -> None:
        """
        Property 24: The second submission of a URL returns the first key,
        skips the gate and does not write to the store.
        """
        url = f"https://good.example.com/{path}"
        service = make_service()

        with patch.object(service.store, "put_if_absent", wraps=service.store.put_if_absent) as put:
            first = asyncio.run(service.submit(url))
            with patch.object(service.gate, "validate", AsyncMock()) as validate:
                second = asyncio.run(service.submit(url))

        assert first.key == second.key == candidate_for(url, 0)
        assert first.created
        assert not second.created
        assert put.call_count == 1
        validate.assert_not_awaited()
        assert service.resolve(first.key).url == url

    def test_rejected_url_not_stored(self) -> None:
        whitelist = MagicMock()
        whitelist.check = AsyncMock(return_value=False)
        service = make_service(checks={CheckType.WHITELIST}, whitelist=whitelist)
        url = "https://evil.example.net/offer"

        with pytest.raises(WhitelistMissError):
            asyncio.run(service.submit(url))

        assert service.store.get(candidate_for(url, 0)) is None

    def test_collision_logged_as_warning(self) -> None:
        logger = make_logger()
        service = make_service(logger=logger)
        url = "https://good.example.com/page"
        service.store.put(candidate_for(url, 0), "https://other.example.com/")

        result = asyncio.run(service.submit(url))

        assert result.key == candidate_for(url, 1)
        assert result.collisions == 1
        mapping = [e for e in logger.entries if e.message == "Mapping"]
        assert mapping[-1].level is LogLevel.WARN
        assert mapping[-1].data["collisions"] == 1

    def test_concurrent_colliding_submissions_keep_their_keys(self) -> None:
        """
        Two URLs deriving the same key while both wait on the gate end up
        under different keys, each resolving to its own URL.
        """
        async def slow_connect(url: str) -> int:
            await asyncio.sleep(0.05)
            return 200

        reachability = MagicMock()
        reachability.probe = AsyncMock(side_effect=slow_connect)
        service = make_service(checks={CheckType.CONNECTION}, probe=reachability)
        first_url = "https://a.example.com/page"
        second_url = "https://b.example.com/page"

        def colliding_hash(text: str) -> str:
            return "AAAAAA" if text.startswith("https://") else "AAAAA" + text.split(":", 1)[0]

        async def scenario():
            return await asyncio.gather(service.submit(first_url), service.submit(second_url))

        with patch("tinyurl.key_deriver.hash_url", side_effect=colliding_hash):
            first, second = asyncio.run(scenario())

        assert first.key != second.key
        assert service.resolve(first.key).url == first_url
        assert service.resolve(second.key).url == second_url
        assert reachability.probe.await_count == 2

    def test_plain_mapping_logged_as_info(self) -> None:
        logger = make_logger()
        service = make_service(logger=logger)

        asyncio.run(service.submit("https://good.example.com/page"))

        mapping = [e for e in logger.entries if e.message == "Mapping"]
        assert mapping[-1].level is LogLevel.INFO
        assert mapping[-1].data["id"] == "aUPQmj"


class TestResolve:
    @given(key=st.text(alphabet="!@#$%^&*() .,;", min_size=1, max_size=8))
    @settings(max_examples=50)
    def test_malformed_keys_not_found(self, key: str) -> None:
        service = make_service()
        assert service.resolve(key) is None

    def test_unknown_key(self) -> None:
        assert make_service().resolve("AAAAAA") is None


class TestDumpProperty:
    """
    **Feature: tinyurl, Property 25: The dump requires the exact dump key**
    """

    @given(token=st.text(max_size=80))
    @settings(max_examples=100)
    def test_wrong_token_rejected(self, token: str) -> None:
        service = make_service()
        if token == DUMP_KEY:
            return
        with pytest.raises(AccessDenied):
            service.dump(io.BytesIO(), token)

    def test_dump_with_key(self) -> None:
        service = make_service()
        asyncio.run(service.submit("https://good.example.com/page"))
        buffer = io.BytesIO()

        count = service.dump(buffer, DUMP_KEY)

        lines = buffer.getvalue().split(b"\r\n")
        assert count == 1
        assert lines[0] == b"token,url,created-unix-epoch-utc"
        assert lines[1].startswith(b"aUPQmj,https://good.example.com/page,")

    def test_no_key_rejects_everything(self) -> None:
        store = MemoryStorage()
        service = ShortenerService(store, ReputationGate((), DecisionCache()))
        with pytest.raises(AccessDenied):
            service.check_dump_token("")


class TestDumpKey:
    def test_generated_key_alphabet(self) -> None:
        key = generate_dump_key()
        assert len(key) == DUMP_KEY_LENGTH
        assert set(key) <= set(DUMP_KEY_ALPHABET)
        assert not set(key) & set("IOl01")

    def test_open_writes_owner_only_key(self) -> None:
        with tempfile.TemporaryDirectory() as tmp_dir:
            logger = make_logger()
            store = MemoryStorage()
            service = ShortenerService(
                store,
                ReputationGate((), DecisionCache()),
                storage_dir=Path(tmp_dir),
                logger=logger,
            )

            asyncio.run(service.open())

            path = Path(tmp_dir) / DUMP_KEY_FILENAME
            assert path.read_text() == service.dump_key
            assert stat.S_IMODE(os.stat(path).st_mode) == 0o600

        generated = [e for e in logger.entries if e.message == "Generated random dump key"]
        assert generated[0].data["dump_key"] == AuditLogger.MASK_VALUE

    def test_configured_key_not_written(self) -> None:
        with tempfile.TemporaryDirectory() as tmp_dir:
            service = ShortenerService(
                MemoryStorage(),
                ReputationGate((), DecisionCache()),
                dump_key=DUMP_KEY,
                storage_dir=Path(tmp_dir),
            )
            asyncio.run(service.open())

            assert not (Path(tmp_dir) / DUMP_KEY_FILENAME).exists()
            assert service.dump_key == DUMP_KEY


class TestBuildService:
    def test_components_follow_checks(self) -> None:
        with tempfile.TemporaryDirectory() as tmp_dir:
            config = SystemConfig(
                checks=frozenset({CheckType.WHITELIST}),
                storage=StorageConfig(directory=Path(tmp_dir), dump_key=DUMP_KEY),
                simulation_mode=True,
            )
            service = build_service(config)

            assert service.gate.checks == {CheckType.WHITELIST}
            assert isinstance(service.store, SqliteStorage)
            assert service.dump_key == DUMP_KEY

    def test_end_to_end_sqlite(self) -> None:
        async def scenario(service: ShortenerService) -> str:
            async with service:
                result = await service.submit("https://good.example.com/page")
                return service.resolve(result.key).url

        with tempfile.TemporaryDirectory() as tmp_dir:
            Path(tmp_dir, "whitelist.conf").write_text(".example.com\n")
            config = SystemConfig(
                checks=frozenset({CheckType.WHITELIST, CheckType.SURBL, CheckType.CONNECTION}),
                storage=StorageConfig(directory=Path(tmp_dir), dump_key=DUMP_KEY),
                simulation_mode=True,
            )
            service = build_service(config)
            with patch.object(service._surbl.two_level, "_download", AsyncMock()), \
                    patch.object(service._surbl.three_level, "_download", AsyncMock()):
                assert asyncio.run(scenario(service)) == "https://good.example.com/page"
