"""Tests for the gallery API endpoints."""

from unittest.mock import patch

import pytest

from utils.database import StoreError, get_store
from utils.passes.indexer import IndexerError
from utils.passes.models import ImageRecord, PassRecord
from utils.passes.scheduler import IndexerBusyError


@pytest.fixture
def seeded(temp_db):
    store = get_store()
    store.write_pass(PassRecord(
        name='2024-01-05_10-30_noaa_apt', satellite='NOAA 19', timestamp=1704450600,
        raw_data_path='0', downlink='VHF',
        images=[
            ImageRecord(path='2024-01-05_10-30_noaa_apt/avhrr_221_map.png', composite='avhrr_221_map',
                        map_overlay=True, corrected=True, filled=True, v_pixels=900),
            ImageRecord(path='2024-01-05_10-30_noaa_apt/thermal.png', composite='thermal',
                        corrected=True, filled=True, v_pixels=910),
        ],
    ))
    store.write_pass(PassRecord(
        name='elektro', satellite='Elektro-L3', timestamp=1704612600, raw_data_path='0', downlink='L Band',
        images=[
            ImageRecord(path='elektro/IMAGES/ELEKTRO-L3/x/l3_1.png', composite='l3_1',
                        corrected=True, filled=True, v_pixels=2784),
        ],
    ))
    return store


class TestImagesEndpoint:
    """Tests for GET /api/images."""

    def test_list_images(self, client, seeded):
        response = client.get('/api/images')

        assert response.status_code == 200
        data = response.get_json()
        assert data['status'] == 'ok'
        assert data['total'] == 3
        assert data['limitType'] == 'images'
        assert data['images'][0]['satellite'] == 'Elektro-L3'
        assert data['images'][0]['compositeDisplay'] == 'L3 Channel 1'

    def test_filters_from_query_string(self, client, seeded):
        response = client.get('/api/images?satellite=noaa%2019&composite=other&useUTC=1')

        data = response.get_json()
        assert [image['composite'] for image in data['images']] == ['thermal']

    def test_maps_only(self, client, seeded):
        data = client.get('/api/images?map=only').get_json()

        assert [image['mapOverlay'] for image in data['images']] == [1]

    def test_pass_limit(self, client, seeded):
        data = client.get('/api/images?limitType=passes&limit=1&sortOrder=ASC').get_json()

        assert {image['name'] for image in data['images']} == {'2024-01-05_10-30_noaa_apt'}
        assert len(data['images']) == 2

    def test_bad_values_ignored(self, client, seeded):
        response = client.get('/api/images?startDate=yesterday&limit=abc&page=-4&sortBy=evil')

        assert response.status_code == 200
        assert response.get_json()['total'] == 3

    def test_oversized_page_falls_back_to_first_page(self, client, seeded):
        response = client.get('/api/images?page=99999999999999999999')

        assert response.status_code == 200
        data = response.get_json()
        assert data['page'] == 1
        assert len(data['images']) == 3

    def test_store_failure(self, client, seeded):
        with patch('routes.gallery.GalleryQuery.images', side_effect=StoreError('disk I/O error')):
            response = client.get('/api/images')

        assert response.status_code == 500
        assert response.get_json()['status'] == 'error'


class TestLookupEndpoints:
    """Tests for the satellites, bands and composites endpoints."""

    def test_satellites(self, client, seeded):
        data = client.get('/api/satellites').get_json()

        assert data['satellites'] == ['NOAA 19', 'Elektro-L3']

    def test_bands(self, client, seeded):
        data = client.get('/api/bands').get_json()

        assert data['bands'] == ['L Band', 'VHF']

    def test_composites_for_satellite(self, client, seeded):
        data = client.get('/api/composites?satellite=NOAA%2019').get_json()

        assert data['composites'] == [
            {'value': 'AVHRR_221', 'label': 'AVHRR 221'},
            {'value': 'other', 'label': 'Other'},
        ]

    def test_all_composites(self, client, seeded):
        data = client.get('/api/composites').get_json()

        assert data['composites'][0] == {'value': 'AVHRR_221', 'label': 'AVHRR 221'}


class TestPassEndpoints:
    """Tests for reading and dropping single passes."""

    def test_get_pass(self, client, seeded):
        response = client.get('/api/passes/2024-01-05_10-30_noaa_apt')

        assert response.status_code == 200
        data = response.get_json()
        assert data['pass']['satellite'] == 'NOAA 19'
        assert data['pass']['downlink'] == 'VHF'
        assert [image['composite'] for image in data['images']] == ['avhrr_221_map', 'thermal']

    def test_get_missing_pass(self, client, seeded):
        response = client.get('/api/passes/nothing_here')

        assert response.status_code == 404
        assert response.get_json()['status'] == 'error'

    def test_delete_pass(self, client, seeded):
        response = client.delete('/api/passes/elektro')

        assert response.status_code == 200
        assert response.get_json() == {'status': 'deleted', 'name': 'elektro'}
        assert seeded.get_pass('elektro') is None
        assert seeded.count_images() == 2
        assert client.get('/api/passes/elektro').status_code == 404

    def test_delete_missing_pass(self, client, seeded):
        response = client.delete('/api/passes/nothing_here')

        assert response.status_code == 404

    def test_deleted_pass_is_indexed_again(self, client, temp_db, pass_tree):
        pass_tree.noaa('2024-01-05_10-30_NOAA19', {'a.png': 120})
        pass_tree.settle()
        client.post('/api/index', json={'mode': 'update'})

        client.delete('/api/passes/2024-01-05_10-30_NOAA19')
        data = client.post('/api/index', json={'mode': 'update'}).get_json()

        assert data['result']['added'] == 1
        assert client.get('/api/passes/2024-01-05_10-30_NOAA19').status_code == 200

    def test_store_failure(self, client, seeded):
        with patch('utils.database.PassStore.get_pass', side_effect=StoreError('locked')):
            response = client.get('/api/passes/elektro')

        assert response.status_code == 500


class TestIndexEndpoint:
    """Tests for on-demand indexing."""

    def test_run_update(self, client, temp_db, pass_tree):
        pass_tree.noaa('2024-01-05_10-30_NOAA19', {'a.png': 120, 'b_map.png': 130})
        pass_tree.settle()

        response = client.post('/api/index', json={'mode': 'update'})

        assert response.status_code == 200
        data = response.get_json()
        assert data['result']['mode'] == 'update'
        assert data['result']['added'] == 1
        assert get_store().count_images() == 2

    def test_default_mode_is_update(self, client, temp_db):
        response = client.post('/api/index')

        assert response.status_code == 200
        assert response.get_json()['result']['mode'] == 'update'

    def test_invalid_mode(self, client, temp_db):
        response = client.post('/api/index', json={'mode': 'everything'})

        assert response.status_code == 400
        assert response.get_json()['status'] == 'error'

    def test_busy(self, client, temp_db):
        with patch('utils.passes.scheduler.IndexScheduler.run_now', side_effect=IndexerBusyError('busy')):
            response = client.post('/api/index', json={'mode': 'repopulate'})

        assert response.status_code == 409
        assert response.get_json()['status'] == 'busy'

    def test_indexer_failure(self, client, temp_db):
        with patch('utils.passes.scheduler.IndexScheduler.run_now', side_effect=IndexerError('no live output')):
            response = client.post('/api/index', json={'mode': 'rebuild'})

        assert response.status_code == 500
        assert response.get_json()['message'] == 'no live output'

    def test_status_reports_last_result(self, client, temp_db, pass_tree):
        pass_tree.empty('mystery')
        client.post('/api/index', json={'mode': 'repopulate'})

        data = client.get('/api/index/status').get_json()

        assert data['scheduler']['running'] is False
        assert data['scheduler']['last_result']['added'] == 1
        assert data['scheduler']['last_error'] is None


class TestHealth:
    """Tests for the health check."""

    def test_health(self, client, seeded):
        response = client.get('/health')

        assert response.status_code == 200
        data = response.get_json()
        assert data['status'] == 'healthy'
        assert data['data'] == {'passes': 2, 'images': 3}
        assert data['indexer']['enabled'] is False
