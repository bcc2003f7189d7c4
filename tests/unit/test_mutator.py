"""
Unit tests for BatchMutator.
"""

import pytest

from mailclean.errors import TransientError
from mailclean.gmail.mutator import BatchMutator, BatchResult, chunks
from mailclean.gmail.requester import ResilientRequester
from tests.mocks.gmail_mock import http_error


def ids(n):
    return [f"m{i}" for i in range(n)]


class TestChunks:
    def test_split(self):
        assert list(chunks(ids(7), 3)) == [ids(7)[0:3], ids(7)[3:6], ids(7)[6:7]]

    def test_empty(self):
        assert list(chunks([], 3)) == []


class TestBatchMutator:
    """Test cases for BatchMutator."""

    @pytest.mark.asyncio
    async def test_third_chunk_fails_after_retries(self, fake_gmail, sleeps):
        """2500 ids in chunks of 1000: first two chunks land, the rest is reported back."""
        requester = ResilientRequester(max_attempts=3, base_delay=0.1, sleep=sleeps)
        mutator = BatchMutator(requester, chunk_size=1000, sleep=sleeps)
        fake_gmail.delete_failures = [None, None, http_error(429), http_error(429), http_error(429)]
        all_ids = ids(2500)

        result = await mutator.delete_all(fake_gmail, all_ids)

        assert result.succeeded_count == 2000
        assert result.failed_remainder == all_ids[2000:]
        assert len(result.failed_remainder) == 500
        assert isinstance(result.error, TransientError)
        assert not result.complete
        # Two successful chunks plus three attempts of the third
        assert [len(c) for c in fake_gmail.delete_calls] == [1000, 1000, 500, 500, 500]

    @pytest.mark.asyncio
    async def test_all_chunks_succeed(self, mutator, fake_gmail):
        result = await mutator.delete_all(fake_gmail, ids(7))

        assert result == BatchResult(succeeded_count=7)
        assert result.complete
        assert fake_gmail.delete_calls == [ids(7)[0:3], ids(7)[3:6], ids(7)[6:7]]

    @pytest.mark.asyncio
    async def test_stops_at_first_failed_chunk(self, mutator, fake_gmail):
        fake_gmail.delete_failures = [None, http_error(400, "invalidArgument")]

        result = await mutator.delete_all(fake_gmail, ids(9))

        assert result.succeeded_count == 3
        assert result.failed_remainder == ids(9)[3:]
        # The third chunk is never attempted
        assert len(fake_gmail.delete_calls) == 2

    @pytest.mark.asyncio
    async def test_empty_input_makes_no_calls(self, mutator, fake_gmail):
        result = await mutator.delete_all(fake_gmail, [])

        assert result.succeeded_count == 0
        assert result.complete
        assert fake_gmail.delete_calls == []

    @pytest.mark.asyncio
    async def test_invalid_ids_rejected(self, mutator, fake_gmail):
        with pytest.raises(ValueError):
            await mutator.delete_all(fake_gmail, ["ok", ""])
        assert fake_gmail.delete_calls == []

    @pytest.mark.asyncio
    async def test_chunk_delay_between_chunks_only(self, requester, fake_gmail, sleeps):
        mutator = BatchMutator(requester, chunk_size=2, chunk_delay=0.3, sleep=sleeps)

        await mutator.delete_all(fake_gmail, ids(5))

        assert sleeps.delays == [0.3, 0.3]

    @pytest.mark.asyncio
    async def test_request_body(self, mutator, fake_gmail):
        fake_gmail.add_messages(ids(2), query="q")

        await mutator.delete_all(fake_gmail, ids(2))

        assert fake_gmail.scopes[("q", ())] == []

    @pytest.mark.parametrize("kwargs", [{"chunk_size": 0}, {"chunk_size": 1001}, {"chunk_delay": -1}])
    def test_invalid_arguments(self, requester, kwargs):
        with pytest.raises(ValueError):
            BatchMutator(requester, **kwargs)
