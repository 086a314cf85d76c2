"""
Reconciliation Tests
====================

Verifies:
1. ``find_unsynced`` reports block-only annotations and nothing else
2. ``resync_from_store`` makes the store win, dropping block-only annotations
3. ``upsert`` replaces in place and appends new entries at the end
4. Namespace prefixes are added and stripped exactly
"""

from datetime import datetime, timezone

from epistemic_markers import reconcile
from epistemic_markers.block import codec
from epistemic_markers.models.annotation import Annotation
from epistemic_markers.models.block import Relationship
from epistemic_markers.models.record import StoreRecord
from epistemic_markers.reconcile import AnnotationState
from epistemic_markers.tokenizer import tokenize

STAMP = datetime(2030, 1, 1, tzinfo=timezone.utc)


def _annotation(annotation_id, text="content", start=0, end=10):
    return Annotation(id=annotation_id, kind="Hypothesis", text=text, start=start, end=end)


def _record(record_id, content="content", start=0, end=10):
    return StoreRecord(
        id=record_id,
        content=content,
        source_file="note.md",
        start_offset=start,
        end_offset=end,
        kind="Hypothesis",
    )


def _block(*annotation_ids):
    return codec.create_empty("Note", annotations=[_annotation(a) for a in annotation_ids])


class TestFindUnsynced:

    def test_block_only_annotation_reported(self):
        unsynced = reconcile.find_unsynced(_block("ann-1", "ann-2"), [_record("1")])

        assert [a.id for a in unsynced] == ["ann-2"]

    def test_store_only_record_not_reported(self):
        assert reconcile.find_unsynced(_block("ann-1"), [_record("1"), _record("3")]) == []

    def test_prefixed_store_ids_are_normalized(self):
        assert reconcile.find_unsynced(_block("ann-1"), [_record("ann-1")]) == []


class TestResyncFromStore:

    def test_store_wins(self):
        block = _block("ann-1", "ann-2")

        resynced = reconcile.resync_from_store(block, [_record("1"), _record("3")], "text", now=STAMP)

        assert resynced.annotation_ids() == ["ann-1", "ann-3"]
        assert resynced.modified == STAMP

    def test_relationships_and_metadata_kept(self):
        block = _block("ann-1").model_copy(
            update={"relationships": [Relationship(id="r1", type="SUPPORTS", source="ann-1", target="ann-9")]}
        )

        resynced = reconcile.resync_from_store(block, [_record("1")], "text")

        assert resynced.relationships == block.relationships
        assert resynced.metadata.title == "Note"
        assert [r.id for r in resynced.dangling_relationships()] == ["r1"]

    def test_lines_computed_from_text(self):
        text = "title\n\n:::H claim :::"
        start = text.index(":::H")

        resynced = reconcile.resync_from_store(_block(), [_record("7", start=start, end=len(text))], text)

        annotation = resynced.annotations[0]
        assert (annotation.line_start, annotation.line_end) == (3, 3)
        assert annotation.id == "ann-7"


class TestUpsert:

    def test_replace_keeps_position(self):
        block = _block("ann-1", "ann-2", "ann-3")

        updated = reconcile.upsert(block, _annotation("ann-2", text="changed"), now=STAMP)

        assert updated.annotation_ids() == ["ann-1", "ann-2", "ann-3"]
        assert updated.get_annotation("ann-2").text == "changed"
        assert updated.get_annotation("ann-2").modified == STAMP
        assert updated.modified == STAMP

    def test_new_annotation_appended(self):
        updated = reconcile.upsert(_block("ann-3", "ann-1"), _annotation("ann-2"))

        assert updated.annotation_ids() == ["ann-3", "ann-1", "ann-2"]

    def test_original_block_untouched(self):
        block = _block("ann-1")

        reconcile.upsert(block, _annotation("ann-2"))

        assert block.annotation_ids() == ["ann-1"]

    def test_remove(self):
        updated = reconcile.remove(_block("ann-1", "ann-2"), "ann-1", now=STAMP)

        assert updated.annotation_ids() == ["ann-2"]
        assert updated.modified == STAMP


class TestDrift:

    def test_both_directions(self):
        report = reconcile.drift_report(_block("ann-1", "ann-2"), [_record("1"), _record("3")])

        assert report.synced == ["ann-1"]
        assert [a.id for a in report.block_only] == ["ann-2"]
        assert [r.id for r in report.store_only] == ["3"]
        assert report.has_drift

    def test_no_drift(self):
        assert not reconcile.drift_report(_block("ann-1"), [_record("1")]).has_drift

    def test_classify_state(self):
        block = _block("ann-1", "ann-2")
        records = [_record("1"), _record("3")]

        assert reconcile.classify_state(None, block, records) is AnnotationState.unidentified
        assert reconcile.classify_state("1", block, records) is AnnotationState.synced
        assert reconcile.classify_state("ann-2", block, records) is AnnotationState.drifted
        assert reconcile.classify_state("3", block, records) is AnnotationState.drifted
        assert reconcile.classify_state("4", block, records) is AnnotationState.identified


class TestConversions:

    def test_record_to_annotation_adds_prefix(self):
        annotation = reconcile.record_to_annotation(_record("42"))

        assert annotation.id == "ann-42"
        assert (annotation.line_start, annotation.line_end) == (0, 0)

    def test_annotation_to_record_strips_prefix(self):
        record = reconcile.annotation_to_record(_annotation("ann-42"), "note.md", "personal")

        assert record.id == "42"
        assert record.source_file == "note.md"

    def test_annotation_from_marker(self, registry):
        text = "intro\n:::E CMB data :::"
        [marker] = tokenize(text, registry)

        annotation = reconcile.annotation_from_marker(marker, "abc", text, author="bob", now=STAMP)

        assert annotation.id == "ann-abc"
        assert annotation.kind == "Evidence"
        assert annotation.text == "CMB data"
        assert (annotation.start, annotation.end) == (marker.start_offset, marker.end_offset)
        assert annotation.line_start == 2
        assert annotation.author == "bob"
        assert annotation.created == STAMP

    def test_in_bounds(self):
        assert _annotation("ann-1", start=0, end=4).in_bounds("abcd")
        assert not _annotation("ann-1", start=2, end=9).in_bounds("abcd")
