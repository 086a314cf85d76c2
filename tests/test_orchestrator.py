"""
Document Sync Orchestrator Tests
================================

End-to-end saves against in-memory SQLite.

Verifies:
1. New markers get store ids injected and mirrored in the semantic block
2. Repeated saves update rather than duplicate
3. Malformed and unknown markers are reported without aborting the save
4. A failing store write is counted and the rest of the save continues
5. Outbox entries survive an unwritten save and can be recovered
6. Previews discard their store writes
7. Drift checks, out-of-range annotations, store-wins resync, relationships
   and query answering
"""

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError

from epistemic_core.db.enums import RelationType
from epistemic_core.db.models import QueryHistory
from epistemic_markers.block import codec
from epistemic_markers.errors.types import ErrorType
from epistemic_markers.query import parse_query_commands
from epistemic_markers.store.repository import transaction
from epistemic_markers.tokenizer import tokenize
from sync_pipeline.stages.orchestrator import DocumentSyncOrchestrator, SyncConfig

NOTE = (
    "# Quantum Notes\n"
    "\n"
    ":::H Time is emergent from quantum decoherence :::\n"
    "\n"
    "Some prose in between.\n"
    "\n"
    ":::E CMB data shows unexpected patterns :::\n"
)


def _ids(text, registry):
    return [m.identifier for m in tokenize(text, registry)]


class TestSave:

    def test_new_markers_get_identifiers(self, orchestrator, store, registry):
        result = orchestrator.save(NOTE, "note.md")

        assert result.success
        assert (result.created, result.updated, result.failed, result.skipped) == (2, 0, 0, 0)
        ids = _ids(result.text, registry)
        assert all(ids)
        assert {r.id for r in store.nodes_for_file("note.md")} == set(ids)

    def test_block_mirrors_markers(self, orchestrator, registry):
        result = orchestrator.save(NOTE, "note.md", title="Quantum Notes")

        block = codec.decode(result.text)
        markers = tokenize(result.text, registry)
        assert block.metadata.title == "Quantum Notes"
        assert block.annotation_ids() == [f"ann-{m.identifier}" for m in markers]
        for annotation, marker in zip(block.annotations, markers):
            assert result.text[annotation.start:annotation.end] == marker.raw_match
            assert annotation.author == "tester"
        assert [a.line_start for a in block.annotations] == [3, 7]

    def test_store_offsets_follow_injection(self, orchestrator, store, registry):
        result = orchestrator.save(NOTE, "note.md")

        for marker in tokenize(result.text, registry):
            record = store.get_record(marker.identifier)
            assert (record.start_offset, record.end_offset) == (marker.start_offset, marker.end_offset)

    def test_prose_is_untouched(self, orchestrator):
        result = orchestrator.save(NOTE, "note.md")

        body = codec.remove(result.text)
        assert body.startswith("# Quantum Notes\n\n:::H<")
        assert "\n\nSome prose in between.\n\n:::E<" in body

    def test_second_save_updates(self, orchestrator, store, registry):
        first = orchestrator.save(NOTE, "note.md")
        edited = first.text.replace("unexpected patterns", "large-scale anomalies")

        second = orchestrator.save(edited, "note.md")

        assert (second.created, second.updated) == (0, 2)
        assert _ids(second.text, registry) == _ids(first.text, registry)
        assert len(store.nodes_for_file("note.md")) == 2
        block = codec.decode(second.text)
        assert len(block.annotations) == 2
        assert block.id == codec.decode(first.text).id
        assert block.annotations[1].text == "CMB data shows large-scale anomalies"
        assert second.text.count("%%semantic") == 1

    def test_unknown_identifier_is_recreated(self, orchestrator, store):
        result = orchestrator.save(":::H<legacy-id> Imported claim :::", "note.md")

        assert result.created == 1
        assert store.get_record("legacy-id").content == "Imported claim"
        assert result.text.startswith(":::H<legacy-id> Imported claim :::")

    def test_malformed_marker_skipped(self, orchestrator):
        result = orchestrator.save(":::H    ::: and :::E fine :::", "note.md")

        assert (result.created, result.skipped) == (1, 1)
        assert [w.error_type for w in result.warnings] == [ErrorType.MALFORMED_MARKER]
        assert result.warnings[0].source_file == "note.md"
        assert result.text.startswith(":::H    ::: and :::E<")

    def test_unknown_code_reported(self, orchestrator):
        result = orchestrator.save("Ask :::Q what now ::: later", "note.md")

        assert result.created == 0
        assert [w.error_type for w in result.warnings] == [ErrorType.UNKNOWN_CODE]
        assert codec.remove(result.text) == "Ask :::Q what now ::: later"

    def test_malformed_block_is_rebuilt(self, orchestrator, registry):
        text = NOTE + "\n%%semantic\n{broken\n%%\n"

        result = orchestrator.save(text, "note.md")

        assert ErrorType.MALFORMED_BLOCK in [w.error_type for w in result.warnings]
        assert len(codec.decode(result.text).annotations) == 2

    def test_store_failure_is_counted_and_save_continues(self, orchestrator, store, registry, monkeypatch):
        create_node = store.create_node

        def failing_create(marker, source_file, **kwargs):
            if marker.code == "H":
                raise SQLAlchemyError("disk full")
            return create_node(marker, source_file, **kwargs)

        monkeypatch.setattr(store, "create_node", failing_create)

        result = orchestrator.save(NOTE, "note.md")

        assert (result.created, result.failed) == (1, 1)
        assert not result.success
        assert ErrorType.STORE_TRANSACTION in [w.error_type for w in result.warnings]
        hypothesis, evidence = tokenize(result.text, registry)
        assert hypothesis.identifier is None
        assert evidence.identifier is not None
        assert codec.decode(result.text).annotation_ids() == [f"ann-{evidence.identifier}"]

    def test_lexicon_marker_records_entry(self, orchestrator, store):
        result = orchestrator.save(":::LW Wave Function -> SW Void Oscillation (DP:90%) :::", "lexicon.md")

        [entry] = store.lexicon_entries()
        assert (entry.legacy_word, entry.sister_word, entry.drift_percentage) == (
            "Wave Function",
            "SW Void Oscillation",
            90.0,
        )
        [record] = store.nodes_for_file("lexicon.md")
        assert record.attributes["legacy_word"] == "Wave Function"
        assert entry.definition_node_id == record.id
        assert result.created == 1

    def test_without_block(self, store, registry):
        orchestrator = DocumentSyncOrchestrator(store, registry, SyncConfig(write_block=False))

        result = orchestrator.save(NOTE, "note.md")

        assert "%%semantic" not in result.text
        assert result.created == 2

    def test_save_file(self, orchestrator, store, tmp_path):
        path = tmp_path / "note.md"
        path.write_text(NOTE, encoding="utf-8")

        result = orchestrator.save_file(path)

        assert path.read_text(encoding="utf-8") == result.text
        assert codec.decode(result.text).metadata.title == "note"
        assert store.pending_injections(str(path)) == []


class TestPreview:

    def test_preview_leaves_store_untouched(self, orchestrator, store, registry):
        preview = orchestrator.preview(NOTE, "note.md")

        assert preview.created == 2
        assert all(_ids(preview.text, registry))
        assert preview.pending_node_ids == []
        assert store.nodes_for_file("note.md") == []
        assert store.pending_injections("note.md") == []

    def test_save_after_preview_creates_each_node_once(self, orchestrator, store, registry):
        orchestrator.preview(NOTE, "note.md")

        result = orchestrator.save(NOTE, "note.md")

        assert result.created == 2
        assert {r.id for r in store.nodes_for_file("note.md")} == set(_ids(result.text, registry))
        assert len(store.pending_injections("note.md")) == 2

    def test_preview_of_saved_note_keeps_versions(self, orchestrator, store, registry):
        saved = orchestrator.save(NOTE, "note.md")
        hypothesis_id = _ids(saved.text, registry)[0]

        preview = orchestrator.preview(saved.text.replace("emergent", "fundamental"), "note.md")

        assert preview.updated == 2
        node = store.get_node(hypothesis_id)
        assert node.version == 1
        assert "emergent" in node.content_text


class TestOutboxRecovery:

    def test_unwritten_save_leaves_pending_entries(self, orchestrator, store):
        result = orchestrator.save(NOTE, "note.md")

        assert len(store.pending_injections("note.md")) == 2

        assert orchestrator.confirm_written("note.md", result.pending_node_ids) == 2
        assert store.pending_injections("note.md") == []

    def test_recover_injects_lost_identifiers(self, orchestrator, store, registry):
        result = orchestrator.save(NOTE, "note.md")
        # The document write never happened: NOTE is still on disk.

        recovery = orchestrator.recover(NOTE, "note.md")

        assert _ids(recovery.text, registry) == _ids(result.text, registry)
        assert len(recovery.recovered) == 2
        assert recovery.unmatched == []

        orchestrator.confirm_written("note.md", recovery.resolved)
        assert store.pending_injections("note.md") == []

    def test_recover_recognises_applied_entries(self, orchestrator):
        result = orchestrator.save(NOTE, "note.md")

        recovery = orchestrator.recover(result.text, "note.md")

        assert recovery.text == result.text
        assert recovery.recovered == []
        assert len(recovery.already_applied) == 2

    def test_recover_reports_unmatched(self, orchestrator):
        orchestrator.save(NOTE, "note.md")

        recovery = orchestrator.recover("The markers were deleted.", "note.md")

        assert len(recovery.unmatched) == 2
        assert recovery.text == "The markers were deleted."

    def test_recover_without_pending(self, orchestrator):
        assert orchestrator.recover(NOTE, "note.md").text == NOTE


class TestReconciliation:

    def test_check_after_save(self, orchestrator):
        result = orchestrator.save(NOTE, "note.md")

        report = orchestrator.check(result.text, "note.md")

        assert not report.has_drift
        assert len(report.synced) == 2

    def test_check_both_directions(self, orchestrator, store, registry):
        result = orchestrator.save(NOTE, "note.md")
        hypothesis_id = tokenize(result.text, registry)[0].identifier
        [extra] = tokenize(":::O A fresh observation :::", registry)
        with transaction(store.session):
            store.delete_node(hypothesis_id)
            extra_id = store.create_node(extra, "note.md")

        report = orchestrator.check(result.text, "note.md")

        assert [a.id for a in report.block_only] == [f"ann-{hypothesis_id}"]
        assert [r.id for r in report.store_only] == [extra_id]

    def test_check_without_block(self, orchestrator):
        orchestrator.save(NOTE, "note.md")

        report = orchestrator.check(NOTE, "note.md")

        assert len(report.store_only) == 2

    def test_check_reports_offsets_outside_note(self, orchestrator, registry):
        result = orchestrator.save(NOTE, "note.md")
        block = codec.decode(result.text)
        truncated = codec.embed("# Quantum Notes\n\n" + tokenize(result.text, registry)[0].raw_match + "\n", block)

        report = orchestrator.check(truncated, "note.md")

        [issue] = report.out_of_range
        assert issue.error_type is ErrorType.OFFSET_OUT_OF_RANGE
        assert issue.details["annotation_id"] == block.annotations[1].id
        assert issue.offset == block.annotations[1].start

    def test_check_in_bounds_after_save(self, orchestrator):
        result = orchestrator.save(NOTE, "note.md")

        assert orchestrator.check(result.text, "note.md").out_of_range == []

    def test_resync_drops_block_only(self, orchestrator, store, registry):
        result = orchestrator.save(NOTE, "note.md")
        hypothesis_id, evidence_id = _ids(result.text, registry)
        with transaction(store.session):
            store.delete_node(hypothesis_id)

        resynced = orchestrator.resync(result.text, "note.md")

        block = codec.decode(resynced)
        assert block.annotation_ids() == [f"ann-{evidence_id}"]
        assert block.annotations[0].line_start == 7
        assert codec.remove(resynced) == codec.remove(result.text)


class TestLink:

    def test_relationship_in_store_and_block(self, orchestrator, store, registry):
        result = orchestrator.save(NOTE, "note.md")
        hypothesis_id, evidence_id = _ids(result.text, registry)

        linked = orchestrator.link(result.text, "note.md", f"ann-{evidence_id}", hypothesis_id, RelationType.supports)

        [relationship] = codec.decode(linked).relationships
        assert relationship.type == "SUPPORTS"
        assert relationship.source == f"ann-{evidence_id}"
        assert relationship.target == f"ann-{hypothesis_id}"
        assert not relationship.bidirectional
        assert len(store.edges_for_node(evidence_id, "outgoing")) == 1

    def test_contradiction_is_bidirectional(self, orchestrator, registry):
        result = orchestrator.save(NOTE, "note.md")
        hypothesis_id, evidence_id = _ids(result.text, registry)

        linked = orchestrator.link(result.text, "note.md", hypothesis_id, evidence_id, "CONTRADICTS")

        assert codec.decode(linked).relationships[0].bidirectional


class TestQueries:

    def test_translation_query(self, orchestrator, session):
        orchestrator.save(":::LW Wave Function -> SW Void Oscillation (DP:90%) :::", "lexicon.md")
        text = "Notes\n{{QUERY: Show sister translations}}\nMore"

        answered = orchestrator.run_queries(text, "note.md")

        assert "> [!info] Query Results (TRANSLATION)" in answered
        assert "> 1. Wave Function -> SW Void Oscillation (DP:90%)..." in answered
        assert answered.endswith("\n\nMore")
        assert session.execute(select(func.count()).select_from(QueryHistory)).scalar_one() == 1

    def test_answered_queries_are_not_repeated(self, orchestrator):
        text = "{{QUERY: anything at all}}"

        once = orchestrator.run_queries(text, "note.md")
        twice = orchestrator.run_queries(once, "note.md")

        assert twice == once
        assert once.count("[!info]") == 1

    def test_support_query_follows_edges(self, orchestrator, registry):
        result = orchestrator.save(NOTE, "note.md")
        hypothesis_id, evidence_id = _ids(result.text, registry)
        orchestrator.link(result.text, "note.md", hypothesis_id, evidence_id, RelationType.supports, weight=0.6)
        [command] = parse_query_commands("{{QUERY: supporting evidence}}")

        [row] = orchestrator.run_query(command, "note.md")

        assert row["node_id"] == evidence_id
        assert row["content"] == "CMB data shows unexpected patterns"
        assert row["weight"] == 0.6

    def test_theory_query(self, orchestrator):
        orchestrator.save(":::XT Bohm's Implicate Order (#42) :::", "refs.md")
        [command] = parse_query_commands("{{QUERY: theory matches}}")

        [row] = orchestrator.run_query(command)

        assert row["node_type"] == "External_Theory"

    def test_general_query_searches_content(self, orchestrator):
        orchestrator.save(NOTE, "note.md")
        [command] = parse_query_commands("{{QUERY: decoherence}}")

        [row] = orchestrator.run_query(command, "note.md")

        assert row["content"] == "Time is emergent from quantum decoherence"

    @pytest.mark.parametrize("query", ["{{QUERY: show contradictions}}", "{{QUERY: list}}"])
    def test_empty_results(self, orchestrator, query):
        [command] = parse_query_commands(query)

        assert orchestrator.run_query(command, "note.md") == []
