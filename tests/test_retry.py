# MIT License © 2025 Motohiro Suzuki
import pytest

from conftest import SleepRecorder
from ether_keygen.policy.retry import NO_RETRY, RetryPolicy
from ether_keygen.protocol.errors import PublishError, RPCError
from ether_keygen.transport.bus import EventPublisher, RetryingPublisher


class Flaky(EventPublisher):
    def __init__(self, failures):
        self.failures = list(failures)
        self.calls = []

    async def publish(self, name, payload, coalesce=False):
        self.calls.append((name, payload, coalesce))
        if self.failures:
            raise self.failures.pop(0)


def test_delays_grow_and_cap():
    p = RetryPolicy(attempts=6, base_delay=0.5, max_delay=3.0, multiplier=2.0)
    assert [p.delay_for(n) for n in range(1, 7)] == [0.0, 0.5, 1.0, 2.0, 3.0, 3.0]


def test_should_retry_counts_the_first_attempt():
    p = RetryPolicy(attempts=3)
    assert [p.should_retry(n) for n in (1, 2, 3)] == [True, True, False]
    assert NO_RETRY.should_retry(1) is False


@pytest.mark.parametrize(
    "kw",
    [{"attempts": 0}, {"base_delay": -1.0}, {"max_delay": -0.1}, {"multiplier": 0.5}],
)
def test_policy_rejects_bad_knobs(kw):
    with pytest.raises(ValueError):
        RetryPolicy(**kw)


@pytest.mark.asyncio
async def test_transient_failures_are_retried():
    inner = Flaky([RPCError("event", "timed out"), ConnectionResetError("reset")])
    sleep = SleepRecorder()
    pub = RetryingPublisher(inner, RetryPolicy(attempts=3, base_delay=0.5), sleep=sleep)

    await pub.publish("ether:install-key", b"k", coalesce=False)

    assert len(inner.calls) == 3
    assert sleep.calls == [0.5, 1.0]


@pytest.mark.asyncio
async def test_escalates_after_last_attempt():
    inner = Flaky([RPCError("event", "down")] * 5)
    sleep = SleepRecorder()
    pub = RetryingPublisher(inner, RetryPolicy(attempts=2, base_delay=0.1), sleep=sleep)

    with pytest.raises(PublishError) as exc_info:
        await pub.publish("ether:remove-key", b"n")

    assert "after 2 attempt(s)" in str(exc_info.value)
    assert isinstance(exc_info.value.__cause__, RPCError)
    assert len(inner.calls) == 2


@pytest.mark.asyncio
async def test_no_retry_passes_publish_error_through():
    err = RPCError("event", "refused")
    inner = Flaky([err])
    pub = RetryingPublisher(inner, NO_RETRY, sleep=SleepRecorder())

    with pytest.raises(RPCError) as exc_info:
        await pub.publish("ether:set-default-key", b"n")
    assert exc_info.value is err


@pytest.mark.asyncio
async def test_unexpected_errors_are_not_retried():
    inner = Flaky([KeyError("bug")])
    pub = RetryingPublisher(inner, RetryPolicy(attempts=5), sleep=SleepRecorder())
    with pytest.raises(KeyError):
        await pub.publish("ether:wipe-keys", b"", coalesce=True)
    assert len(inner.calls) == 1
