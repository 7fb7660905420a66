import threading
import time

import pytest

from rootstock.context import DEADLINE_EXCEEDED, BuildContext
from rootstock.errors import CancelledError


def test_background_context_is_never_done() -> None:
    ctx = BuildContext.background()

    assert ctx.done is False
    assert ctx.remaining() is None
    ctx.check("fetch")


def test_cancel_is_reported_by_check() -> None:
    ctx = BuildContext.background()
    ctx.cancel()

    with pytest.raises(CancelledError) as excinfo:
        ctx.check("fetch")

    assert excinfo.value.reason == "cancelled"
    assert excinfo.value.context["operation"] == "fetch"


def test_deadline_is_distinguished_from_cancel() -> None:
    ctx = BuildContext.background().with_timeout(0.0)

    with pytest.raises(CancelledError) as excinfo:
        ctx.check("pack")

    assert excinfo.value.reason == DEADLINE_EXCEEDED
    assert "deadline" in str(excinfo.value)


def test_parent_cancel_propagates_to_children() -> None:
    parent = BuildContext.background()
    child = parent.with_cancel()
    grandchild = child.with_timeout(60)

    parent.cancel("shutdown")

    assert child.reason == "shutdown"
    assert grandchild.reason == "shutdown"


def test_child_of_cancelled_parent_starts_cancelled() -> None:
    parent = BuildContext.background()
    parent.cancel()

    assert parent.with_cancel().done is True


def test_child_cancel_does_not_affect_parent() -> None:
    parent = BuildContext.background()
    child = parent.with_cancel()
    child.cancel()

    assert child.done is True
    assert parent.done is False


def test_child_never_outlives_parent_deadline() -> None:
    parent = BuildContext.background().with_timeout(5)
    child = parent.with_timeout(600)

    remaining = child.remaining()
    assert remaining is not None
    assert remaining <= 5


def test_wait_returns_when_cancelled_from_another_thread() -> None:
    ctx = BuildContext.background()
    timer = threading.Timer(0.05, ctx.cancel)
    timer.start()
    started = time.monotonic()

    assert ctx.wait(5) is True
    assert time.monotonic() - started < 5
    timer.join()


def test_wait_times_out_without_cancel() -> None:
    assert BuildContext.background().wait(0.01) is False
