from unittest import mock

import pytest
import requests

from signage_studio.errors import ConfigurationError, FalAPIError
from signage_studio.fal_client import FalClient, aspect_ratio_for, collect_media_urls, resolution_for


def _response(status_code=200, payload=None, text='', content=b'', headers=None):
    response = mock.Mock()
    response.status_code = status_code
    response.ok = status_code < 400
    response.reason = 'Error' if status_code >= 400 else 'OK'
    response.text = text
    response.content = content
    response.headers = headers or {}
    if payload is None:
        response.json.side_effect = ValueError('no json')
    else:
        response.json.return_value = payload
    return response


@pytest.fixture
def session():
    return mock.Mock(spec=requests.Session)


@pytest.fixture
def fal(session):
    return FalClient('secret', base_url='https://fal.test/', timeout=5, session=session)


def _sent(session, index=0):
    return session.request.call_args_list[index]


def test_media_url_extraction():
    assert collect_media_urls({'images': [{'url': 'a'}, 'b', {'width': 1}]}) == ['a', 'b']
    assert collect_media_urls({'video': {'url': 'v.mp4'}}) == ['v.mp4']
    assert collect_media_urls({'output': 'o.png'}) == ['o.png']
    assert collect_media_urls({'status': 'IN_QUEUE'}) == []


def test_aspect_ratio_and_resolution():
    assert aspect_ratio_for(1024, 1024) == '1:1'
    assert aspect_ratio_for(1920, 1080) == '16:9'
    assert aspect_ratio_for(1080, 1920) == '9:16'
    assert aspect_ratio_for(3000, 1000) == '16:9'
    assert resolution_for(1920, 1080) == '2K'
    assert resolution_for(1024, 768) == '1K'


def test_missing_key_is_a_configuration_error(session):
    with pytest.raises(ConfigurationError):
        FalClient('', session=session).generate_image('fal-ai/flux', 'cat', 512, 512)
    session.request.assert_not_called()


def test_imagen_payload_uses_aspect_ratio(fal, session):
    session.request.return_value = _response(payload={'images': [{'url': 'https://cdn/a.png'}]})

    result = fal.generate_image('fal-ai/imagen4/preview', 'a cat', 1920, 1080, num_images=2)

    call = _sent(session)
    assert call.args == ('POST', 'https://fal.test/fal-ai/imagen4/preview')
    assert call.kwargs['headers']['Authorization'] == 'Key secret'
    assert call.kwargs['json'] == {'prompt': 'a cat', 'aspect_ratio': '16:9', 'resolution': '2K', 'num_images': 2}
    assert result.is_completed
    assert result.images == ['https://cdn/a.png']
    assert result.request_id.startswith('sync-')


def test_other_models_use_image_size(fal, session):
    session.request.return_value = _response(payload={'request_id': 'abc'})

    fal.generate_image('fal-ai/flux/dev', 'a dog', 512, 768, negative_prompt='blurry', seed=7,
                       guidance_scale=3.5, image_url='https://cdn/style.png', strength=0.6)

    assert _sent(session).kwargs['json'] == {
        'prompt': 'a dog', 'image_size': '512x768', 'guidance_scale': 3.5,
        'image_url': 'https://cdn/style.png', 'strength': 0.6, 'negative_prompt': 'blurry', 'seed': 7,
    }


def test_nano_banana_never_gets_num_images(fal, session):
    session.request.return_value = _response(payload={'request_id': 'abc'})

    fal.generate_image('fal-ai/nano-banana', 'menu', 1920, 1080, num_images=3)

    assert 'num_images' not in _sent(session).kwargs['json']


def test_queued_submission(fal, session):
    session.request.return_value = _response(payload={'requestId': 'queued-1', 'status': 'IN_QUEUE'})

    result = fal.edit_image('fal-ai/nano-banana/edit', ['https://cdn/a.png'], 'make it blue', num_images=1)

    assert not result.is_completed
    assert result.status == 'processing'
    assert result.request_id == 'queued-1'
    assert _sent(session).kwargs['json'] == {
        'prompt': 'make it blue', 'image_urls': ['https://cdn/a.png'], 'num_images': 1}


def test_data_envelope_is_unwrapped(fal, session):
    session.request.return_value = _response(payload={'data': {'images': ['https://cdn/x.png'], 'id': 'r-9'}})

    result = fal.generate_image('fal-ai/flux', 'x', 512, 512)

    assert result.request_id == 'r-9'
    assert result.images == ['https://cdn/x.png']


def test_completed_without_files_is_an_error(fal, session):
    session.request.return_value = _response(payload={'status': 'COMPLETED'})

    with pytest.raises(FalAPIError, match='no files'):
        fal.generate_image('fal-ai/flux', 'x', 512, 512)


def test_http_error_carries_status(fal, session):
    session.request.return_value = _response(status_code=422, text='bad prompt')

    with pytest.raises(FalAPIError) as excinfo:
        fal.generate_video_from_text('fal-ai/video', 'waves')

    assert excinfo.value.status_code == 422
    assert 'bad prompt' in str(excinfo.value)


def test_rate_limit_is_retried(fal, session):
    session.request.side_effect = [_response(status_code=429), _response(payload={'request_id': 'later'})]

    with mock.patch('signage_studio.fal_client.time.sleep') as sleep:
        result = fal.generate_video_from_image('fal-ai/video', 'https://cdn/a.png', 'pan', motion_strength=0.5)

    sleep.assert_called_once_with(1)
    assert result.request_id == 'later'
    assert _sent(session, 1).kwargs['json']['motion_bucket_id'] == 63


def test_network_failure_becomes_fal_error(fal, session):
    session.request.side_effect = requests.ConnectionError('unreachable')

    with pytest.raises(FalAPIError):
        fal.generate_image('fal-ai/flux', 'x', 512, 512)


def test_poll_sync_request_short_circuits(fal, session):
    result = fal.poll_status('fal-ai/flux', 'sync-123')

    assert result.is_completed
    session.request.assert_not_called()


def test_poll_falls_back_to_request_endpoint(fal, session):
    session.request.side_effect = [
        _response(status_code=404, text='not found'),
        _response(payload={'status': 'COMPLETED', 'images': [{'url': 'https://cdn/done.png'}]}),
    ]

    result = fal.poll_status('fal-ai/flux', 'req-7')

    assert _sent(session, 0).args == ('GET', 'https://fal.test/fal-ai/flux/queue/result')
    assert _sent(session, 0).kwargs['params'] == {'request_id': 'req-7'}
    assert _sent(session, 1).args == ('GET', 'https://fal.test/fal-ai/flux/requests/req-7')
    assert result.is_completed
    assert result.images == ['https://cdn/done.png']


def test_poll_reports_failure(fal, session):
    session.request.return_value = _response(payload={'status': 'FAILED', 'error': {'message': 'NSFW'}})

    result = fal.poll_status('fal-ai/flux', 'req-7')

    assert result.is_failed
    assert result.error == 'NSFW'


def test_poll_in_progress(fal, session):
    session.request.return_value = _response(payload={'status': 'IN_PROGRESS'})

    result = fal.poll_status('fal-ai/flux', 'req-7')

    assert not result.is_completed
    assert not result.is_failed


def test_download(fal, session):
    session.get.return_value = _response(content=b'png', headers={'content-type': 'image/png'})

    assert fal.download('https://cdn/a.png') == (b'png', 'image/png')

    session.get.return_value = _response(status_code=403)
    with pytest.raises(FalAPIError):
        fal.download('https://cdn/a.png')
