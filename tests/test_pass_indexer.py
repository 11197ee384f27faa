"""Tests for the pass indexer modes."""

import os
import sqlite3
from unittest.mock import patch

import pytest

from utils.database import PassStore
from utils.passes.indexer import IndexerError, PassIndexer
from utils.passes.stability import AlwaysStablePolicy, DirectoryAgePolicy

NOAA_PASS = '2024-01-05_10-30_NOAA19'


def _rows(store):
    """Pass/image content without row ids."""
    with store.connection() as conn:
        passes = sorted(
            tuple(row) for row in conn.execute(
                'SELECT name, satellite, timestamp, rawDataPath, downlink FROM passes'
            )
        )
        images = sorted(
            tuple(row) for row in conn.execute('''
                SELECT passes.name, images.path, images.composite, images.sensor,
                       images.mapOverlay, images.corrected, images.filled, images.vPixels
                FROM images JOIN passes ON images.passId = passes.id
            ''')
        )
    return passes, images


@pytest.fixture
def indexer(store, live_output):
    return PassIndexer(store, live_output, stability=AlwaysStablePolicy(), dimension_workers=1)


@pytest.fixture
def populated(pass_tree):
    pass_tree.noaa(NOAA_PASS, {
        'avhrr_apt_rgb_MCIR.png': 900,
        'AVHRR_221_map.png': 910,
        'raw_sync.png': 920,
    })
    pass_tree.meteor(
        '2024-01-06_09-15_meteor_lrpt',
        msu={'msu_mr_rgb_221.png': 1200},
        filled={'msu_mr_rgb_221_corrected.png': 1150},
        cadu='meteor.cadu',
    )
    pass_tree.empty('mystery')
    return pass_tree


class TestRepopulate:
    """Tests for repopulate mode."""

    def test_example_noaa_pass(self, indexer, store, pass_tree):
        pass_tree.noaa(NOAA_PASS, {
            'avhrr_apt_rgb_MCIR.png': 900,
            'AVHRR_221_map.png': 910,
            'raw_sync.png': 920,
        })

        result = indexer.run('repopulate')

        assert result.added == 1
        stored = store.get_pass(NOAA_PASS)
        assert stored['satellite'] == 'NOAA 19'
        assert stored['timestamp'] == 1704450600
        assert stored['rawDataPath'] == '0'
        images = store.get_pass_images(NOAA_PASS)
        assert len(images) == 3
        assert all(image['corrected'] == 1 and image['filled'] == 1 for image in images)
        assert sum(image['mapOverlay'] for image in images) == 1

    def test_unknown_pass_is_recorded(self, indexer, store, pass_tree):
        pass_tree.empty('mystery')

        indexer.run('repopulate')

        stored = store.get_pass('mystery')
        assert stored['satellite'] == 'Unknown'
        assert stored['timestamp'] is None
        assert store.get_pass_images('mystery') == []

    def test_clears_passes_that_disappeared(self, indexer, store, populated, live_output):
        indexer.run('repopulate')
        (live_output / 'mystery').rmdir()

        result = indexer.run('repopulate')

        assert result.added == 2
        assert store.get_pass('mystery') is None

    def test_files_in_root_are_not_passes(self, indexer, store, pass_tree, live_output):
        pass_tree.empty('mystery')
        (live_output / 'README.txt').write_text('x')

        assert indexer.run('repopulate').added == 1

    def test_missing_live_output_raises(self, store, tmp_path):
        indexer = PassIndexer(store, tmp_path / 'nowhere', stability=AlwaysStablePolicy())

        with pytest.raises(IndexerError):
            indexer.run('repopulate')

    def test_unreadable_pass_does_not_abort_run(self, indexer, store, populated):
        real_build = indexer.build_pass

        def flaky(name):
            if name == NOAA_PASS:
                raise PermissionError('denied')
            return real_build(name)

        with patch.object(indexer, 'build_pass', side_effect=flaky):
            result = indexer.run('repopulate')

        assert result.added == 2
        assert result.failed == 1
        assert store.get_pass(NOAA_PASS) is None


class TestUpdate:
    """Tests for update mode."""

    def test_adds_only_new_passes(self, indexer, store, populated, pass_tree):
        indexer.run('repopulate')
        pass_tree.noaa('2024-01-07_08-00_noaa_apt', {'a.png': 100}, satellite='NOAA 18')

        result = indexer.run('update')

        assert result.added == 1
        assert result.added_names == ['2024-01-07_08-00_noaa_apt']
        assert store.count_passes() == 4

    def test_second_update_changes_nothing(self, indexer, store, populated):
        first = indexer.run('update')
        before = _rows(store)

        second = indexer.run('update')

        assert first.added == 3
        assert second.added == 0
        assert _rows(store) == before

    def test_repopulate_after_update_converges(self, indexer, store, populated, tmp_path, live_output):
        indexer.run('update')
        indexer.run('repopulate')
        after_update = _rows(store)

        fresh = PassStore(tmp_path / 'fresh.db')
        try:
            PassIndexer(fresh, live_output, stability=AlwaysStablePolicy()).run('repopulate')
            assert _rows(fresh) == after_update
        finally:
            fresh.close()

    def test_unstable_directories_skipped(self, store, populated, live_output):
        indexer = PassIndexer(store, live_output, stability=DirectoryAgePolicy(window_seconds=900))

        result = indexer.run('update')

        assert result.added == 0
        assert result.skipped == 3

        populated.settle()
        result = indexer.run('update')

        assert result.added == 3
        assert result.skipped == 0

    def test_falls_back_to_repopulate_without_table(self, tmp_path, live_output, populated):
        store = PassStore(tmp_path / 'new.db')
        stability = DirectoryAgePolicy(window_seconds=900)
        try:
            result = PassIndexer(store, live_output, stability=stability).run('update')
            assert result.mode == 'repopulate'
            assert result.added == 3
        finally:
            store.close()

    def test_mode_name_accepts_dashes(self, indexer, populated):
        assert indexer.run('--update').added == 3

    def test_unknown_mode(self, indexer):
        with pytest.raises(ValueError):
            indexer.run('reindex')


class TestRebuild:
    """Tests for rebuild mode."""

    def test_rebuild_recreates_database(self, store, populated, live_output):
        indexer = PassIndexer(store, live_output, stability=AlwaysStablePolicy())
        indexer.run('repopulate')
        with store.connection() as conn:
            conn.execute("INSERT INTO passes (name, satellite) VALUES ('ghost', 'Nobody')")

        result = indexer.run('rebuild')

        assert result.mode == 'rebuild'
        assert result.added == 3
        assert store.get_pass('ghost') is None
        assert store.db_path.exists()

    def test_rebuild_keeps_database_when_source_missing(self, store, tmp_path):
        with store.connection() as conn:
            conn.execute("INSERT INTO passes (name, satellite) VALUES ('kept', 'NOAA 19')")
        indexer = PassIndexer(store, tmp_path / 'nowhere', stability=AlwaysStablePolicy())

        with pytest.raises(IndexerError):
            indexer.run('rebuild')

        assert store.get_pass('kept') is not None


class TestStoreWrites:
    """Tests for pass replacement in the store."""

    def test_reindexing_a_pass_replaces_its_images(self, indexer, store, populated):
        indexer.run('repopulate')
        record = indexer.build_pass(NOAA_PASS)

        store.write_pass(record)
        store.write_pass(record)

        assert len(store.get_pass_images(NOAA_PASS)) == 3
        with store.connection() as conn:
            orphans = conn.execute('''
                SELECT COUNT(*) FROM images
                WHERE passId NOT IN (SELECT id FROM passes)
            ''').fetchone()[0]
        assert orphans == 0

    def test_delete_pass_allows_reindex(self, indexer, store, populated):
        indexer.run('repopulate')

        assert store.delete_pass(NOAA_PASS) is True
        assert store.get_pass_images(NOAA_PASS) == []

        result = indexer.run('update')
        assert result.added_names == [NOAA_PASS]

    def test_outdated_schema_is_replaced(self, tmp_path):
        db_path = tmp_path / 'old.db'
        conn = sqlite3.connect(db_path)
        conn.execute('CREATE TABLE passes (id INTEGER PRIMARY KEY, name TEXT, timestamp INTEGER)')
        conn.execute("INSERT INTO passes (name, timestamp) VALUES ('old', 1)")
        conn.commit()
        conn.close()

        store = PassStore(db_path)
        try:
            store.init_schema()
            assert store.count_passes() == 0
            with store.connection() as conn:
                columns = {row['name'] for row in conn.execute('PRAGMA table_info(passes)')}
            assert {'satellite', 'downlink'} <= columns
        finally:
            store.close()

    def test_delete_file_removes_side_files(self, store):
        store.count_passes()
        wal = f'{store.db_path}-wal'

        assert store.delete_file() is True
        assert not store.db_path.exists()
        assert not os.path.exists(wal)
        assert store.delete_file() is False
