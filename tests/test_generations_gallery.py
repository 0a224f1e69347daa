import pytest

from signage_studio.errors import NotFoundError, ValidationError


def _generation(services, **overrides):
    data = {'user_id': 'user-1', 'generation_type': 'image', 'type': 'free',
            'model': 'fal-ai/imagen4/preview', 'prompt': 'a sunny terrace', 'width': 1024, 'height': 1024}
    data.update(overrides)
    return services['generations'].create_generation(data)


def _file(services, generation, size=10, file_type='image'):
    stored = services['files'].store_bytes(b'x' * size, 'image/png' if file_type == 'image' else 'video/mp4')
    return services['generations'].create_generated_file({
        'user_id': generation['user_id'], 'storage_id': stored['storage_id'], 'file_url': stored['file_url'],
        'file_type': file_type, 'mime_type': stored['mime_type'], 'file_size': stored['file_size'],
        'generation_id': generation['id'], 'generation_type': generation['generation_type'],
    })


class TestGenerationRecords:
    def test_new_records_are_pending(self, services):
        generation = _generation(services, product_config={'product_name': 'Latte'})

        assert generation['status'] == 'pending'
        assert generation['generated_file_ids'] == []
        assert generation['product_config'] == {'product_name': 'Latte'}
        assert generation['completed_at'] is None

    @pytest.mark.parametrize('overrides', [
        {'type': 'text-to-video'},
        {'generation_type': 'video', 'type': 'menu'},
        {'generation_type': 'audio'},
        {'model': ''},
    ])
    def test_invalid_records(self, services, overrides):
        with pytest.raises(ValidationError):
            _generation(services, **overrides)

    def test_update_status_is_partial(self, services):
        generation = _generation(services)

        processing = services['generations'].update_status(generation['id'], 'processing', fal_request_id='req-1')
        completed = services['generations'].update_status(generation['id'], 'completed', generated_file_ids=[4, 5])

        assert processing['completed_at'] is None
        assert completed['fal_request_id'] == 'req-1'
        assert completed['generated_file_ids'] == [4, 5]
        assert completed['completed_at'] is not None

    def test_completion_clears_an_earlier_error(self, services):
        generation = _generation(services)
        services['generations'].mark_failed(generation['id'], 'Generation completed but no files found')

        completed = services['generations'].update_status(generation['id'], 'completed', generated_file_ids=[1])

        assert completed['status'] == 'completed'
        assert completed['error_message'] is None

    def test_mark_failed(self, services):
        generation = _generation(services)

        failed = services['generations'].mark_failed(generation['id'], 'quota exceeded')

        assert failed['status'] == 'failed'
        assert failed['error_message'] == 'quota exceeded'

    def test_list_filters_and_unfinished(self, services):
        image = _generation(services)
        video = _generation(services, generation_type='video', type='text-to-video', model='fal-ai/video')
        _generation(services, user_id='user-2')
        services['generations'].update_status(video['id'], 'processing', fal_request_id='req-v')

        assert [g['id'] for g in services['generations'].list_generations('user-1', generation_type='video')] \
            == [video['id']]
        assert [g['id'] for g in services['generations'].list_generations('user-1', status='pending')] \
            == [image['id']]
        assert [g['id'] for g in services['generations'].list_unfinished()] == [video['id']]

    def test_delete_file_everywhere(self, services):
        generation = _generation(services)
        kept = _file(services, generation)
        removed = _file(services, generation)
        services['generations'].update_status(generation['id'], 'completed',
                                              generated_file_ids=[kept['id'], removed['id']])
        collection = services['gallery'].create_collection('user-1', {
            'name': 'Favourites', 'file_ids': [removed['id'], kept['id']]})

        services['generations'].delete_generated_file(removed['id'])

        assert services['generations'].get_generation(generation['id'])['generated_file_ids'] == [kept['id']]
        assert services['gallery'].get_collection(collection['id'])['file_ids'] == [kept['id']]
        assert services['files'].get_url(removed['storage_id']) is None
        with pytest.raises(NotFoundError):
            services['generations'].get_generated_file(removed['id'])


class TestGallery:
    def test_filters_and_sorting(self, services):
        free = _generation(services, prompt='Rainy street')
        product = _generation(services, type='product', model='fal-ai/flux', prompt='Latte art')
        video = _generation(services, generation_type='video', type='image-to-video', model='fal-ai/kling')
        small = _file(services, free, size=5)
        big = _file(services, product, size=50)
        clip = _file(services, video, size=20, file_type='video')

        gallery = services['gallery']
        ids = lambda items: [item['id'] for item in items]

        assert ids(gallery.files_with_details('user-1')) == [clip['id'], big['id'], small['id']]
        assert ids(gallery.files_with_details('user-1', sort_by='oldest')) == [small['id'], big['id'], clip['id']]
        assert ids(gallery.files_with_details('user-1', sort_by='file_size')) == [big['id'], clip['id'], small['id']]
        assert ids(gallery.files_with_details('user-1', file_type='video')) == [clip['id']]
        assert ids(gallery.files_with_details('user-1', image_generation_type='product')) == [big['id']]
        assert ids(gallery.files_with_details('user-1', model='fal-ai/kling')) == [clip['id']]
        assert ids(gallery.files_with_details('user-1', search='LATTE')) == [big['id']]
        assert ids(gallery.files_with_details('user-1', search='flux')) == [big['id']]
        assert gallery.files_with_details('user-2') == []
        assert gallery.files_with_details('user-1', generation_type='image')[0]['generation']['id'] == product['id']

        with pytest.raises(ValidationError):
            gallery.files_with_details('user-1', sort_by='random')

    def test_available_models(self, services):
        _generation(services, model='fal-ai/flux')
        _generation(services, model='fal-ai/flux')
        _generation(services, model='fal-ai/bria')

        assert services['gallery'].available_models('user-1') == ['fal-ai/bria', 'fal-ai/flux']

    def test_file_with_full_details(self, services):
        generation = _generation(services)
        record = _file(services, generation)
        collection = services['gallery'].create_collection('user-1', {'name': 'Menus', 'file_ids': [record['id']]})

        details = services['gallery'].file_with_full_details(record['id'])

        assert details['file']['id'] == record['id']
        assert details['generation']['id'] == generation['id']
        assert [c['id'] for c in details['collections']] == [collection['id']]


class TestCollections:
    def test_create_requires_name_and_existing_files(self, services):
        with pytest.raises(ValidationError):
            services['gallery'].create_collection('user-1', {'name': ''})
        with pytest.raises(NotFoundError):
            services['gallery'].create_collection('user-1', {'name': 'Broken', 'file_ids': [99]})

    def test_add_and_remove_files(self, services):
        generation = _generation(services)
        first = _file(services, generation)
        second = _file(services, generation)
        collection = services['gallery'].create_collection('user-1', {'name': 'Picks'})

        services['gallery'].add_file(collection['id'], first['id'])
        services['gallery'].add_file(collection['id'], second['id'])
        services['gallery'].add_file(collection['id'], first['id'])
        after_remove = services['gallery'].remove_file(collection['id'], first['id'])

        assert after_remove['file_ids'] == [second['id']]
        resolved = services['gallery'].get_collection(collection['id'], with_files=True)
        assert [f['id'] for f in resolved['files']] == [second['id']]

    def test_update_and_delete_keep_files(self, services):
        generation = _generation(services)
        record = _file(services, generation)
        collection = services['gallery'].create_collection('user-1', {'name': 'Draft', 'file_ids': [record['id']]})

        updated = services['gallery'].update_collection(collection['id'], {'name': 'Final', 'is_public': True})
        services['gallery'].delete_collection(collection['id'])

        assert updated['name'] == 'Final'
        assert updated['is_public'] is True
        assert updated['file_ids'] == [record['id']]
        assert services['gallery'].list_collections('user-1') == []
        assert services['generations'].get_generated_file(record['id'])['id'] == record['id']
