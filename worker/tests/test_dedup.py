from leadfinder.core.dedup import Deduplicator, identity_key, merge
from leadfinder.models import RawResult


def test_merge_keeps_first_occurrence_in_order():
    first = [RawResult(name="A", place_id="a"), RawResult(name="Shared", place_id="s")]
    second = [RawResult(name="Shared again", place_id="s"), RawResult(name="B", place_id="b")]

    merged = merge([first, second])

    assert [r.place_id for r in merged] == ["a", "s", "b"]
    assert merged[1].name == "Shared"


def test_seen_set_spans_pages_and_variants():
    dedup = Deduplicator()

    assert len(dedup.add([RawResult(name="A", place_id="a")])) == 1
    assert dedup.add([RawResult(name="A", place_id="a"), RawResult(name="C", place_id="c")]) == [
        RawResult(name="C", place_id="c")
    ]
    assert len(dedup) == 2
    assert dedup.dropped == 1


def test_fallback_key_prefers_phone_then_name():
    assert identity_key(RawResult(name="Acme", place_id="pid")) == "id:pid"
    assert identity_key(RawResult(name="Acme", phone="+91 98765 43210")) == "phone:+919876543210"
    assert identity_key(RawResult(name="  Acme Bakery ")) == "name:acme bakery"
    assert identity_key(RawResult(name="")) is None


def test_fallback_merges_same_phone_in_different_formats():
    merged = merge(
        [
            [RawResult(name="Acme Bakery", phone="+91 98765 43210")],
            [RawResult(name="Acme Bakers", phone="+91-98765-43210")],
        ]
    )

    assert len(merged) == 1
    assert merged[0].name == "Acme Bakery"


def test_fallback_by_name_merges_branches_with_same_name():
    merged = merge(
        [[RawResult(name="Loaf Lane", address="Baner")], [RawResult(name="loaf lane", address="Aundh")]]
    )

    assert len(merged) == 1
    assert merged[0].address == "Baner"
