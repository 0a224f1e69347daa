"""
@fal_client
Thin HTTP client for the fal.ai image and video generation API
"""

import time
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

import requests

from .config import now_ms
from .errors import ConfigurationError, FalAPIError

logger = logging.getLogger(__name__)

SYNC_REQUEST_PREFIX = 'sync-'
FAILED_STATUSES = ('failed', 'error')


@dataclass
class SubmitResult:
    request_id: str
    status: str
    images: List[str] = field(default_factory=list)
    is_completed: bool = False


@dataclass
class PollResult:
    request_id: str
    status: str
    images: List[str] = field(default_factory=list)
    error: Optional[str] = None
    is_completed: bool = False
    is_failed: bool = False


def extract_urls(value: Any) -> List[str]:
    """Media URLs from a string, a {url} object, or a list of either"""
    if not value:
        return []
    if isinstance(value, str):
        return [value]
    if isinstance(value, dict):
        return [value['url']] if value.get('url') else []
    if isinstance(value, list):
        urls = []
        for item in value:
            if isinstance(item, str):
                urls.append(item)
            elif isinstance(item, dict) and item.get('url'):
                urls.append(item['url'])
        return urls
    return []


def collect_media_urls(data: Dict) -> List[str]:
    """First non-empty list of URLs among the fields fal.ai uses for outputs"""
    for key in ('images', 'output', 'image_url', 'image', 'video_url', 'video'):
        urls = extract_urls(data.get(key))
        if urls:
            return urls
    return []


def aspect_ratio_for(width: int, height: int) -> str:
    ratio = width / height
    for label, target in (('1:1', 1.0), ('16:9', 16 / 9), ('9:16', 9 / 16), ('3:4', 3 / 4), ('4:3', 4 / 3)):
        if abs(ratio - target) < 0.1:
            return label
    if ratio > 1.3:
        return '16:9'
    if ratio < 0.7:
        return '9:16'
    return '1:1'


def resolution_for(width: int, height: int) -> str:
    return '2K' if max(width, height) >= 1920 else '1K'


class FalClient:
    def __init__(self, api_key: str, base_url: str = 'https://fal.run', timeout: float = 30.0,
                 max_retries: int = 5, session: Optional[requests.Session] = None):
        self.api_key = api_key
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.max_retries = max_retries
        self.session = session or requests.Session()

    def _get_headers(self, json_body: bool = True) -> dict:
        if not self.api_key:
            raise ConfigurationError("FAL_API_KEY is not configured")
        headers = {"Authorization": f"Key {self.api_key}"}
        if json_body:
            headers["Content-Type"] = "application/json"
        return headers

    def _request_with_retry(self, method: str, url: str, headers: dict,
                            json: Optional[dict] = None, params: Optional[dict] = None) -> requests.Response:
        """Make request with exponential backoff on 429 errors."""
        response = None
        for attempt in range(self.max_retries):
            try:
                response = self.session.request(method, url, json=json, params=params,
                                                headers=headers, timeout=self.timeout)
            except requests.RequestException as e:
                raise FalAPIError(f"fal.ai request failed: {e}")

            if response.status_code == 429 and attempt < self.max_retries - 1:
                wait_time = 2 ** attempt
                logger.warning(f"fal.ai rate limited, retrying in {wait_time}s")
                time.sleep(wait_time)
                continue

            return response

        return response

    @staticmethod
    def _raise_for_status(response: requests.Response) -> None:
        if not response.ok:
            raise FalAPIError(f"fal.ai API error: {response.status_code} - {response.text}",
                              status_code=response.status_code)

    @staticmethod
    def _json(response: requests.Response) -> Dict:
        try:
            payload = response.json()
        except ValueError:
            raise FalAPIError(f"fal.ai returned non-JSON content: {response.text[:200]}")
        if not isinstance(payload, dict):
            raise FalAPIError(f"Unexpected response format from fal.ai: {payload!r}")
        return payload

    def _submit(self, model: str, body: Dict) -> SubmitResult:
        """@fal_submit - POST a job and classify the answer as finished or queued"""
        response = self._request_with_retry("POST", f"{self.base_url}/{model}", self._get_headers(), json=body)
        self._raise_for_status(response)
        payload = self._json(response)

        # Some endpoints wrap the result in a 'data' envelope
        data = payload.get('data') if isinstance(payload.get('data'), dict) else payload
        urls = collect_media_urls(data)
        queued_id = payload.get('requestId') or data.get('request_id')

        if urls:
            request_id = queued_id or data.get('id') or f"{SYNC_REQUEST_PREFIX}{now_ms()}"
            logger.info(f"fal.ai {model} returned {len(urls)} file(s) synchronously")
            return SubmitResult(request_id=request_id, status='completed', images=urls, is_completed=True)

        if queued_id:
            logger.info(f"fal.ai {model} queued request {queued_id}")
            return SubmitResult(request_id=queued_id, status='processing')

        if str(data.get('status', '')).lower() == 'completed':
            raise FalAPIError("Generation completed but no files found in response")
        raise FalAPIError(f"Unexpected response format from fal.ai: {payload}")

    def generate_image(self, model: str, prompt: str, width: int, height: int,
                       negative_prompt: Optional[str] = None, num_images: Optional[int] = None,
                       seed: Optional[int] = None, guidance_scale: Optional[float] = None,
                       image_url: Optional[str] = None, strength: Optional[float] = None) -> SubmitResult:
        """Submit a text-to-image (optionally style-guided) generation."""
        if 'imagen' in model:
            body = {
                'prompt': prompt,
                'aspect_ratio': aspect_ratio_for(width, height),
                'resolution': resolution_for(width, height),
            }
        else:
            body = {'prompt': prompt, 'image_size': f'{width}x{height}'}
            if guidance_scale is not None:
                body['guidance_scale'] = guidance_scale
            if image_url:
                body['image_url'] = image_url
            if strength is not None:
                body['strength'] = strength

        if negative_prompt:
            body['negative_prompt'] = negative_prompt
        if seed is not None:
            body['seed'] = seed
        if num_images and num_images > 1 and 'banana' not in model:
            body['num_images'] = num_images

        return self._submit(model, body)

    def edit_image(self, model: str, image_urls: List[str], prompt: str,
                   num_images: Optional[int] = None, output_format: Optional[str] = None,
                   aspect_ratio: Optional[str] = None) -> SubmitResult:
        """Submit a prompt-based edit/remix of one or more public images."""
        if not image_urls:
            raise FalAPIError("At least one image is required for editing")
        body = {'prompt': prompt, 'image_urls': list(image_urls)}
        if num_images:
            body['num_images'] = num_images
        if output_format:
            body['output_format'] = output_format
        if aspect_ratio:
            body['aspect_ratio'] = aspect_ratio
        return self._submit(model, body)

    def generate_video_from_image(self, model: str, image_url: str, prompt: str,
                                  motion_strength: Optional[float] = None, duration: Optional[int] = None,
                                  width: Optional[int] = None, height: Optional[int] = None) -> SubmitResult:
        body = {'image_url': image_url, 'prompt': prompt}
        if motion_strength is not None:
            body['motion_bucket_id'] = int(motion_strength * 127)
        if duration:
            body['duration'] = duration
        if width and height:
            body['image_size'] = f'{width}x{height}'
        return self._submit(model, body)

    def generate_video_from_text(self, model: str, prompt: str, negative_prompt: Optional[str] = None,
                                 width: Optional[int] = None, height: Optional[int] = None,
                                 duration: Optional[int] = None, num_frames: Optional[int] = None,
                                 fps: Optional[int] = None, seed: Optional[int] = None) -> SubmitResult:
        body = {'prompt': prompt}
        if negative_prompt:
            body['negative_prompt'] = negative_prompt
        if width and height:
            body['image_size'] = f'{width}x{height}'
        if duration:
            body['duration'] = duration
        if num_frames:
            body['num_frames'] = num_frames
        if fps:
            body['fps'] = fps
        if seed is not None:
            body['seed'] = seed
        return self._submit(model, body)

    def poll_status(self, model: str, request_id: str) -> PollResult:
        """@fal_poll - Check a queued request once"""
        if request_id.startswith(SYNC_REQUEST_PREFIX):
            return PollResult(request_id=request_id, status='completed', is_completed=True)

        headers = self._get_headers(json_body=False)
        response = self._request_with_retry("GET", f"{self.base_url}/{model}/queue/result", headers,
                                            params={'request_id': request_id})
        if response.status_code == 404:
            response = self._request_with_retry("GET", f"{self.base_url}/{model}/requests/{request_id}", headers)
        self._raise_for_status(response)
        payload = self._json(response)

        data = payload.get('data') if isinstance(payload.get('data'), dict) else payload
        urls = collect_media_urls(data)
        status = str(data.get('status') or 'processing').lower()
        error = data.get('error')
        if isinstance(error, dict):
            error = error.get('message') or str(error)

        return PollResult(
            request_id=request_id,
            status=status,
            images=urls,
            error=error or None,
            is_completed=status == 'completed' or bool(urls),
            is_failed=status in FAILED_STATUSES,
        )

    def download(self, url: str) -> Tuple[bytes, Optional[str]]:
        """Fetch a result file. Returns (content, content type header)."""
        try:
            response = self.session.get(url, timeout=max(self.timeout, 60))
        except requests.RequestException as e:
            raise FalAPIError(f"Failed to download file: {e}")
        if not response.ok:
            raise FalAPIError(f"Failed to download file: {response.status_code} {response.reason}",
                              status_code=response.status_code)
        return response.content, response.headers.get('content-type')
