from digger.progress import STARTED, Category, ProgressState, ProgressTracker


def collect():
    seen: list[ProgressState] = []
    return seen, ProgressTracker(seen.append)


def test_tracker_starts_at_zero():
    tracker = ProgressTracker()
    assert all(v == 0.0 for v in tracker.snapshot().fractions.values())
    assert tracker.snapshot().overall == 0.0


def test_start_marks_every_category_in_flight():
    seen, tracker = collect()
    tracker.start()
    assert len(seen) == 1
    assert all(v == STARTED for v in seen[0].fractions.values())


def test_values_never_move_backwards():
    seen, tracker = collect()
    tracker.update(Category.DNS, 0.6)
    tracker.update(Category.DNS, 0.3)
    assert tracker.snapshot()[Category.DNS] == 0.6
    assert len(seen) == 1


def test_values_are_clamped():
    tracker = ProgressTracker()
    tracker.update(Category.HISTORY, 7)
    tracker.update(Category.OVERVIEW, -1)
    assert tracker.snapshot()[Category.HISTORY] == 1.0
    assert tracker.snapshot()[Category.OVERVIEW] == 0.0


def test_complete_sets_listed_categories_only():
    tracker = ProgressTracker()
    tracker.complete(Category.METADATA, Category.RESOURCES)
    snap = tracker.snapshot()
    assert snap[Category.METADATA] == 1.0 and snap[Category.RESOURCES] == 1.0
    assert snap[Category.DNS] == 0.0
    assert not snap.is_complete


def test_complete_all():
    tracker = ProgressTracker()
    tracker.complete_all()
    snap = tracker.snapshot()
    assert snap.is_complete
    assert snap.overall == 1.0
    assert snap.as_dict()["dataFeeds"] == 1.0


def test_frozen_tracker_ignores_updates():
    seen, tracker = collect()
    tracker.start()
    tracker.freeze()
    tracker.complete_all()
    assert tracker.frozen
    assert len(seen) == 1
    assert tracker.snapshot()[Category.OVERVIEW] == STARTED


def test_snapshots_are_independent():
    tracker = ProgressTracker()
    before = tracker.snapshot()
    tracker.complete(Category.DNS)
    assert before[Category.DNS] == 0.0


def test_lookup_accepts_string_values():
    tracker = ProgressTracker()
    tracker.complete(Category.HOST_METADATA)
    assert tracker.snapshot()["hostMetadata"] == 1.0
