import io

from core.progress import ProgressRelay, ProgressTracker


def test_tracker_renders_and_clamps():
    stream = io.StringIO()
    tracker = ProgressTracker(total=4, label="Run", width=8, stream=stream)
    tracker.tick()
    assert "Run [##------] 25% (1/4)" in stream.getvalue()

    tracker.tick(10)
    assert tracker.current == 4
    assert stream.getvalue().endswith("100% (4/4)\n")


def test_tracker_complete_forces_full_bar():
    stream = io.StringIO()
    tracker = ProgressTracker(total=10, stream=stream)
    tracker.complete()
    assert tracker.current == 10
    assert stream.getvalue().endswith("(10/10)\n")


def test_tracker_with_zero_total_is_silent():
    stream = io.StringIO()
    tracker = ProgressTracker(total=0, stream=stream)
    tracker.tick()
    tracker.complete()
    assert stream.getvalue() == ""


def test_relay_counts_without_sink():
    relay = ProgressRelay()
    relay.tick()
    relay.tick(2)
    assert relay.count == 3
    assert relay.sink is None


def test_relay_forwards_to_attached_sink():
    stream = io.StringIO()
    tracker = ProgressTracker(total=5, stream=stream)
    relay = ProgressRelay()
    relay.tick()
    relay.attach(tracker)
    relay.tick()
    assert tracker.current == 1

    relay.detach()
    relay.tick()
    assert tracker.current == 1
    assert relay.count == 3
