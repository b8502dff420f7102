"""
Unit tests for the in-process claim registry and cancellation tokens.
"""

import threading

import pytest

from backend.src.utils.cancellation import CancellationToken, is_cancelled
from backend.src.utils.claims import ClaimRegistry, ClaimUnavailableError


class TestClaimRegistry:
    """Tests for ClaimRegistry."""

    def test_claim_and_release(self, claims):
        assert claims.claim("evt-1") is True
        assert claims.claim("evt-1") is False
        assert claims.is_claimed("evt-1")

        claims.release("evt-1")

        assert not claims.is_claimed("evt-1")
        assert claims.claim("evt-1") is True

    def test_hold_releases_on_error(self, claims):
        with pytest.raises(RuntimeError):
            with claims.hold("evt-1"):
                raise RuntimeError("external call failed")

        assert not claims.is_claimed("evt-1")

    def test_hold_conflict(self, claims):
        with claims.hold("evt-1"):
            with pytest.raises(ClaimUnavailableError) as exc_info:
                with claims.hold("evt-1"):
                    pass
            assert exc_info.value.key == "evt-1"
            assert claims.is_claimed("evt-1")

    def test_only_one_thread_wins(self):
        registry = ClaimRegistry()
        barrier = threading.Barrier(8)
        winners = []

        def contender():
            barrier.wait()
            if registry.claim("evt-1"):
                winners.append(threading.get_ident())

        threads = [threading.Thread(target=contender) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len(winners) == 1


class TestCancellationToken:
    """Tests for CancellationToken."""

    def test_explicit_cancel(self):
        token = CancellationToken()
        assert not token.cancelled

        token.cancel()

        assert token.cancelled
        assert is_cancelled(token)

    def test_deadline(self):
        now = [100.0]
        token = CancellationToken.with_timeout(5, clock=lambda: now[0])

        assert not token.cancelled
        now[0] = 105.0
        assert token.cancelled

    def test_no_token(self):
        assert is_cancelled(None) is False
