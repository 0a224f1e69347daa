import pytest

from signage_studio import create_app
from signage_studio.fal_client import PollResult, SubmitResult


class FakeFal:
    """Stands in for FalClient; records calls and replays canned answers"""

    def __init__(self):
        self.calls = []
        self.submit_result = SubmitResult(request_id='req-1', status='processing')
        self.submit_error = None
        self.poll_results = []
        self.download_error = None

    def _submit(self, name, args, kwargs):
        self.calls.append((name, args, kwargs))
        if self.submit_error:
            raise self.submit_error
        return self.submit_result

    def generate_image(self, *args, **kwargs):
        return self._submit('generate_image', args, kwargs)

    def edit_image(self, *args, **kwargs):
        return self._submit('edit_image', args, kwargs)

    def generate_video_from_image(self, *args, **kwargs):
        return self._submit('generate_video_from_image', args, kwargs)

    def generate_video_from_text(self, *args, **kwargs):
        return self._submit('generate_video_from_text', args, kwargs)

    def poll_status(self, model, request_id):
        self.calls.append(('poll_status', (model, request_id), {}))
        if len(self.poll_results) > 1:
            result = self.poll_results.pop(0)
        elif self.poll_results:
            result = self.poll_results[0]
        else:
            result = PollResult(request_id=request_id, status='processing')
        if isinstance(result, Exception):
            raise result
        return result

    def download(self, url):
        self.calls.append(('download', (url,), {}))
        if self.download_error:
            raise self.download_error
        return b'\x89PNG fake image bytes', 'image/png'

    def called(self, name):
        return [call for call in self.calls if call[0] == name]


@pytest.fixture
def config(tmp_path):
    return {
        'TESTING': True,
        'DB_PATH': str(tmp_path / 'signage.db'),
        'UPLOAD_FOLDER': str(tmp_path / 'uploads'),
        'LOG_FOLDER': str(tmp_path / 'logs'),
        'PUBLIC_BASE_URL': 'https://signage.example.com/',
        'TEMP_USER_ID': 'user-1',
        'FAL_API_KEY': 'test-key',
        # Long enough that background loops never fire unless a test asks for it
        'GENERATION_POLL_INTERVAL': 3600,
        'GENERATION_POLL_TIMEOUT': 7200,
        'MENU_DEFAULT_LOGO_URL': '',
    }


@pytest.fixture
def fake_fal():
    return FakeFal()


@pytest.fixture
def app(config, fake_fal):
    app = create_app(config, fal_client=fake_fal)
    yield app
    app.extensions['signage_studio']['orchestrator'].shutdown()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def services(app):
    return app.extensions['signage_studio']


@pytest.fixture
def location(services):
    return services['locations'].create_location({'name': 'Main Street Cafe'})


@pytest.fixture
def stored_image(services):
    return services['files'].store_bytes(b'image-bytes', 'image/png', 'photo.png')
