"""Annotation id namespace: ``ann-`` prefixing and stripping."""

from epistemic_core.identity import (
    add_prefix,
    annotation_id_for,
    new_note_id,
    raw_id_for,
    strip_prefix,
)


class TestAnnotationIds:

    def test_round_trip(self):
        assert annotation_id_for("1") == "ann-1"
        assert raw_id_for("ann-1") == "1"

    def test_prefix_not_doubled(self):
        assert annotation_id_for("ann-1") == "ann-1"
        assert add_prefix("ann-", "ann-ann-1") == "ann-ann-1"

    def test_raw_id_that_looks_prefixed(self):
        # A raw id starting with "ann-" is read as already prefixed, so the
        # pair is not reversible for it. Store ids are UUIDs and never do.
        assert annotation_id_for("ann-7") == "ann-7"
        assert raw_id_for(annotation_id_for("ann-7")) == "7"

    def test_strip_only_a_leading_prefix(self):
        assert strip_prefix("ann-", "x-ann-1") == "x-ann-1"
        assert raw_id_for("1") == "1"


def test_note_ids_are_prefixed_and_unique():
    first, second = new_note_id(), new_note_id()

    assert first.startswith("note-")
    assert first != second
