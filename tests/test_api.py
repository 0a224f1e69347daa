import io

from signage_studio.errors import FalAPIError
from signage_studio.fal_client import SubmitResult


def _create_location(client, name='Harbour Cafe'):
    response = client.post('/api/locations', json={'name': name})
    assert response.status_code == 201
    return response.get_json()


def test_location_crud(client):
    location = _create_location(client)

    assert client.get(f"/api/locations/{location['id']}").get_json()['slug'] == 'harbour-cafe'
    assert client.get('/api/locations/slug/harbour-cafe').get_json()['id'] == location['id']
    assert client.get('/api/locations/slug/nope').status_code == 404

    response = client.put(f"/api/locations/{location['id']}", json={'status': 'inactive'})
    assert response.get_json()['status'] == 'inactive'

    response = client.delete(f"/api/locations/{location['id']}")
    assert response.get_json() == {'success': 'Location deleted successfully'}
    assert client.get(f"/api/locations/{location['id']}").status_code == 404


def test_validation_errors_are_400(client):
    response = client.post('/api/locations', json={})
    assert response.status_code == 400
    assert response.get_json() == {'error': 'name is required'}

    response = client.post('/api/products', json={'name': 'Tea', 'price': 'cheap'})
    assert response.status_code == 400

    response = client.post('/api/products', data='{"name": "Tea", "price": NaN}', content_type='application/json')
    assert response.status_code == 400
    assert response.get_json() == {'error': 'price must be a finite number'}


def test_products_endpoints(client):
    ids = [client.post('/api/products', json={'name': name, 'price': 10, 'category': 'drinks'}).get_json()['id']
           for name in ('Cola', 'Juice')]

    client.post('/api/products/bulk-status', json={'ids': [ids[0]], 'status': 'inactive'})
    assert [p['name'] for p in client.get('/api/products?status=active').get_json()] == ['Juice']
    assert len(client.get('/api/products?category=drinks').get_json()) == 2
    client.post('/api/products', json={'name': 'Bagel', 'price': 59, 'category': 'food'})
    assert [p['name'] for p in client.get('/api/products?status=active&category=drinks').get_json()] == ['Juice']

    response = client.put('/api/products/reorder', json={'orders': [{'id': ids[1], 'order': 0}]})
    assert response.get_json() == {'reordered': 1}
    assert client.get('/api/products').get_json()[0]['id'] == ids[1]

    assert client.post('/api/products/bulk-delete', json={'ids': ids}).get_json() == {'deleted': 2}
    assert client.delete('/api/products/999').status_code == 404


def test_templates_seed_and_default(client):
    assert client.post('/api/templates/seed').get_json() == {'message': 'Default templates seeded successfully'}
    templates = client.get('/api/templates').get_json()
    assert len(templates) == 5

    response = client.post(f"/api/templates/{templates[3]['id']}/default")
    assert response.get_json()['is_default'] is True
    assert [t['name'] for t in client.get('/api/templates').get_json() if t['is_default']] == ['List Layout']


def test_screen_and_display_feed(client):
    location = _create_location(client)
    template = client.post('/api/templates', json={'name': 'Grid'}).get_json()
    product = client.post('/api/products', json={'name': 'Bagel', 'price': 59}).get_json()

    response = client.post('/api/screens', json={
        'screen_id': 'lobby-1', 'name': 'Lobby', 'location_id': location['id'],
        'dynamic_config': {'template_id': template['id'], 'product_ids': [product['id']]},
    })
    assert response.status_code == 201
    screen = response.get_json()

    feed = client.get('/api/display/lobby-1').get_json()
    assert feed['location']['name'] == 'Harbour Cafe'
    assert [p['name'] for p in feed['products']] == ['Bagel']
    assert client.get('/api/display/unknown').status_code == 404

    response = client.post(f"/api/screens/{screen['id']}/publish", json={'image_url': 'https://cdn/menu.png'})
    assert response.get_json()['mode'] == 'static'
    assert client.get('/api/display/lobby-1').get_json()['products'] == []

    assert client.delete(f"/api/locations/{location['id']}").status_code == 400
    assert client.get(f"/api/screens?location_id={location['id']}").get_json()[0]['screen_id'] == 'lobby-1'


def test_upload_and_serve_file(client):
    response = client.post('/api/files', data={'file': (io.BytesIO(b'pixels'), 'poster.png')},
                           content_type='multipart/form-data')
    assert response.status_code == 201
    stored = response.get_json()

    assert client.get(f"/api/files/{stored['storage_id']}").get_json()['url'] == stored['file_url']
    served = client.get(f"/uploads/{stored['storage_id']}")
    assert served.status_code == 200
    assert served.data == b'pixels'
    served.close()

    assert client.get('/api/files/missing.png').status_code == 404
    assert client.get('/uploads/missing.png').status_code == 404
    assert client.post('/api/files', data={}, content_type='multipart/form-data').status_code == 400


def test_static_assets(client):
    response = client.post('/api/assets', data={'file': (io.BytesIO(b'bg'), 'bg.png'), 'name': 'Background'},
                           content_type='multipart/form-data')
    assert response.status_code == 201
    asset = response.get_json()

    assert [a['name'] for a in client.get('/api/assets').get_json()] == ['Background']
    assert client.delete(f"/api/assets/{asset['id']}").get_json() == {'success': 'Asset deleted successfully'}
    assert client.get(f"/api/assets/{asset['id']}").status_code == 404


def test_generation_flow(client, fake_fal):
    fake_fal.submit_result = SubmitResult(request_id='sync-9', status='completed',
                                          images=['https://fal.media/menu.png'], is_completed=True)

    response = client.post('/api/generations/image', json={'prompt': 'a cozy cafe'})
    assert response.status_code == 202
    generation = response.get_json()
    assert generation['status'] == 'completed'

    detail = client.get(f"/api/generations/{generation['id']}").get_json()
    assert len(detail['files']) == 1
    file_id = detail['files'][0]['id']

    listing = client.get('/api/generated-files?search=cozy').get_json()
    assert [item['id'] for item in listing] == [file_id]
    assert client.get('/api/generated-files/models').get_json() == ['fal-ai/imagen4/preview']
    assert client.get(f'/api/generated-files/{file_id}').get_json()['generation']['id'] == generation['id']

    collection = client.post('/api/collections', json={'name': 'Menus'}).get_json()
    client.post(f"/api/collections/{collection['id']}/files", json={'file_id': file_id})
    assert client.get(f"/api/collections/{collection['id']}").get_json()['files'][0]['id'] == file_id

    assert client.delete(f'/api/generated-files/{file_id}').status_code == 200
    assert client.get(f"/api/collections/{collection['id']}").get_json()['file_ids'] == []


def test_generation_errors(client, fake_fal):
    assert client.post('/api/generations/image', json={'prompt': ''}).status_code == 400

    fake_fal.submit_error = FalAPIError('fal.ai API error: 401 - unauthorized', status_code=401)
    response = client.post('/api/generations/image', json={'prompt': 'a cat'})
    assert response.status_code == 502
    assert 'unauthorized' in response.get_json()['error']

    failed = client.get('/api/generations?status=failed').get_json()
    assert len(failed) == 1


def test_manual_poll(client, fake_fal):
    generation = client.post('/api/generations/video', json={'model': 'fal-ai/video', 'prompt': 'rain'}).get_json()
    assert generation['status'] == 'processing'

    response = client.post(f"/api/generations/{generation['id']}/poll")
    assert response.get_json()['status'] == 'processing'
    assert client.post('/api/generations/999/poll').status_code == 404


def test_publish_generated_file_to_screen(client, fake_fal):
    fake_fal.submit_result = SubmitResult(request_id='sync-1', status='completed',
                                          images=['https://fal.media/menu.png'], is_completed=True)
    generation = client.post('/api/generations/menu', json={
        'products': [{'name': 'Tea', 'price': 40}], 'include_logo': False}).get_json()
    file_id = generation['generated_file_ids'][0]
    location = _create_location(client)
    screen = client.post('/api/screens', json={
        'screen_id': 'window', 'name': 'Window', 'location_id': location['id'], 'mode': 'static',
        'static_config': {'image_url': 'https://cdn/old.png'},
    }).get_json()

    response = client.post(f"/api/screens/{screen['id']}/publish", json={'file_id': file_id})

    assert response.get_json()['static_config']['image_url'].startswith('https://signage.example.com/uploads/')


def test_system_status(client):
    _create_location(client)

    status = client.get('/api/system/status').get_json()

    assert status['status'] == 'running'
    assert status['counts']['locations'] == 1
    assert status['public_base_url'] == 'https://signage.example.com'
    assert status['active_polls'] == []
