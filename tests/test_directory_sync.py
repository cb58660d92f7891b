"""Tests for one reconciliation pass of DirectorySyncEngine."""
import pytest

from conftest import FakeDirectoryHandle, make_file
from core.directory_sync import DirectorySyncEngine
from core.errors import EnumerationError, PermissionDeniedError
from core.models import Origin


@pytest.fixture()
def engine(ingestor):
    return DirectorySyncEngine(ingestor)


class TestReconcile:

    def test_first_pass_adds_everything(self, engine, store, fake_dir):
        fake_dir.put("a.png")
        fake_dir.put("b.png")
        outcome = engine.reconcile(fake_dir, store)

        assert (outcome.summary.added, outcome.summary.updated, outcome.summary.removed) == (2, 0, 0)
        assert {f.name for f in store.files} == {"a.png", "b.png"}
        assert all(f.origin == Origin.synced("photos") for f in store.files)

    def test_second_pass_is_idempotent(self, engine, store, fake_dir):
        fake_dir.put("a.png")
        fake_dir.put("b.png", mtime=2_000)
        engine.reconcile(fake_dir, store)
        before = store.snapshot()

        outcome = engine.reconcile(fake_dir, store)
        assert not outcome.summary.has_changes
        assert outcome.summary.describe() == "Folder 'photos' sync: No changes detected."
        assert store.snapshot() == before

    def test_update_preserves_identity_rating_and_association(self, engine, store, fake_dir):
        ref = store.add_references(["R"])[0]
        fake_dir.put("a.png", data=b"v1", mtime=1_000)
        engine.reconcile(fake_dir, store)
        file_id = store.files[0].id
        store.set_rating([file_id], 4)
        store.set_association([file_id], ref.id)

        fake_dir.put("a.png", data=b"version-2", mtime=5_000)
        outcome = engine.reconcile(fake_dir, store)

        updated = store.get_file(file_id)
        assert outcome.summary.updated == 1
        assert updated.size_bytes == len(b"version-2")
        assert updated.last_modified == 5_000
        assert (updated.rating, updated.reference_id) == (4, ref.id)

    def test_association_bump_does_not_count_as_update(self, engine, store, fake_dir):
        ref = store.add_references(["R"])[0]
        fake_dir.put("a.png")
        engine.reconcile(fake_dir, store)
        store.set_association([store.files[0].id], ref.id, now_ms=99_999)

        outcome = engine.reconcile(fake_dir, store)
        assert outcome.summary.updated == 0
        assert store.files[0].last_modified == 99_999

    def test_manual_conflict_is_replaced_by_folder_version(self, engine, store, fake_dir):
        store.add_files([make_file("manual", name="a.png", rating=5)])
        fake_dir.put("a.png")

        outcome = engine.reconcile(fake_dir, store)

        assert outcome.summary.conflicts_resolved == 1
        assert outcome.summary.added == 0
        assert outcome.conflict_names == ("a.png",)
        assert "manual" in outcome.removed_ids
        (replaced,) = store.files
        assert replaced.id != "manual"
        assert replaced.origin == Origin.synced("photos")
        assert replaced.rating == 0

    def test_removed_file_cascades_to_custom_order(self, engine, store, fake_dir):
        ref = store.add_references(["R"])[0]
        fake_dir.put("b.png")
        engine.reconcile(fake_dir, store)
        b_id = store.files[0].id
        store.set_association([b_id], ref.id)
        assert store.custom_order == {ref.id: [b_id]}

        fake_dir.remove("b.png")
        outcome = engine.reconcile(fake_dir, store)

        assert outcome.summary.removed == 1
        assert outcome.removed_ids == frozenset({b_id})
        assert store.get_file(b_id) is None
        assert ref.id not in store.custom_order
        assert store.check_invariants() == []

    def test_other_origins_untouched(self, engine, store, fake_dir):
        store.add_files([
            make_file("m", name="manual.png"),
            make_file("g", name="a.png", origin=Origin.synced("elsewhere")),
        ])
        fake_dir.put("a.png")
        outcome = engine.reconcile(fake_dir, store)

        assert outcome.summary.added == 1
        assert store.get_file("m") is not None
        assert store.get_file("g").origin == Origin.synced("elsewhere")
        assert len(store.files) == 3

    def test_unreadable_entry_is_skipped(self, engine, store, fake_dir):
        fake_dir.put("ok.png")
        fake_dir.put("gone.png")
        fake_dir.unreadable.add("gone.png")

        outcome = engine.reconcile(fake_dir, store)
        assert outcome.summary.added == 1
        assert [f.name for f in store.files] == ["ok.png"]

    def test_ingest_failure_skips_only_that_entry(self, store, fake_dir, ingestor):
        class FailingIngestor(type(ingestor)):
            def ingest(self, name, data, **kwargs):
                if name == "bad.png":
                    raise ValueError("cannot decode")
                return super().ingest(name, data, **kwargs)

        fake_dir.put("ok.png")
        fake_dir.put("bad.png")
        outcome = DirectorySyncEngine(FailingIngestor(preview_size=32)).reconcile(fake_dir, store)

        assert outcome.summary.added == 1
        assert [f.name for f in store.files] == ["ok.png"]

    def test_enumeration_failure_leaves_store_unchanged(self, engine, store, fake_dir):
        fake_dir.put("a.png")
        engine.reconcile(fake_dir, store)
        before = store.snapshot()

        fake_dir.enumerate_error = OSError("disk on fire")
        with pytest.raises(EnumerationError):
            engine.reconcile(fake_dir, store)
        assert store.snapshot() == before

    def test_raw_permission_error_maps_to_domain_error(self, engine, store, fake_dir):
        fake_dir.enumerate_error = PermissionError("nope")
        with pytest.raises(PermissionDeniedError):
            engine.reconcile(fake_dir, store)
        assert store.files == ()

    def test_unchanged_entries_are_not_re_read(self, engine, store, fake_dir):
        fake_dir.put("a.png")
        engine.reconcile(fake_dir, store)
        fake_dir.unreadable.add("a.png")

        outcome = engine.reconcile(fake_dir, store)
        assert not outcome.summary.has_changes
        assert len(store.files) == 1


class TestDiff:

    def test_every_manual_duplicate_counts_as_conflict(self, engine):
        files = [make_file("m1", name="a.png"), make_file("m2", name="a.png"), make_file("keep", name="b.png")]
        incoming = make_file("new", name="a.png", origin=Origin.synced("F"))

        ctx = engine.diff("F", files, {"a.png": incoming})

        assert ctx.conflicts_resolved == 2
        assert ctx.purged_ids == {"m1", "m2"}
        assert [f.id for f in ctx.next_files] == ["new", "keep"]

    def test_summary_message(self, engine):
        ctx = engine.diff("F", [make_file("old", name="x.png", origin=Origin.synced("F"))],
                          {"y.png": make_file("y", name="y.png", origin=Origin.synced("F"))})
        assert ctx.summary().describe() == "Folder 'F' sync: 1 added, 1 removed."


def test_two_folders_coexist(engine, store):
    first, second = FakeDirectoryHandle("one"), FakeDirectoryHandle("two")
    first.put("same.png")
    second.put("same.png")
    engine.reconcile(first, store)
    engine.reconcile(second, store)
    assert sorted(f.origin.folder_name for f in store.files) == ["one", "two"]
    assert store.check_invariants() == []
