"""
@generation_orchestrator
Create record -> call fal.ai -> store now or poll until done -> download -> persist
"""

import logging
import threading
from collections import defaultdict
from typing import Callable, Dict, List, Optional

from .catalog import ProductService, check_choice
from .errors import FalAPIError, NotFoundError, StorageError, ValidationError
from .fal_client import FalClient, SubmitResult
from .generations import ACTIVE_STATUSES, GenerationService
from .poller import GenerationPoller
from .prompts import (IMAGE_STYLES, PRICE_POSITIONS, build_menu_prompt,
                      build_menu_update_prompt, build_product_prompt)
from .storage import FileManager

logger = logging.getLogger(__name__)

MAX_PROMPT_LENGTH = 2000
DEFAULT_IMAGE_MODEL = 'fal-ai/imagen4/preview'
DEFAULT_EDIT_MODEL = 'fal-ai/nano-banana/edit'
MENU_FALLBACK_MODEL = 'fal-ai/nano-banana'
DEFAULT_MIME_TYPES = {'image': 'image/png', 'video': 'video/mp4'}


def _dimension(value, default: int, label: str) -> int:
    if value is None:
        return default
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{label} must be a whole number")
    if number <= 0:
        raise ValidationError(f"{label} must be positive")
    return number


def _prompt(value: Optional[str], required: bool = True) -> str:
    prompt = (value or '').strip()
    if required and not prompt:
        raise ValidationError("Please enter a prompt")
    if len(prompt) > MAX_PROMPT_LENGTH:
        raise ValidationError(f"Prompt must be at most {MAX_PROMPT_LENGTH} characters")
    return prompt


class GenerationOrchestrator:
    """Drives a generation record from creation to stored files"""

    def __init__(self, fal: FalClient, generations: GenerationService, file_manager: FileManager,
                 products: Optional[ProductService] = None, user_id: str = 'user-1',
                 poll_interval: float = 2.0, poll_timeout: float = 600.0, default_logo_url: str = ''):
        self.fal = fal
        self.generations = generations
        self.file_manager = file_manager
        self.products = products
        self.user_id = user_id
        self.default_logo_url = default_logo_url
        self.poller = GenerationPoller(self.check_generation, self._on_poll_timeout,
                                       interval=poll_interval, timeout=poll_timeout)
        self._locks: Dict[int, threading.Lock] = defaultdict(threading.Lock)
        self._locks_guard = threading.Lock()

    def _lock_for(self, generation_id: int) -> threading.Lock:
        with self._locks_guard:
            return self._locks[generation_id]

    def _release_lock(self, generation_id: int) -> None:
        with self._locks_guard:
            self._locks.pop(generation_id, None)

    # =========================================================================
    # @source_images - Resolving images fal.ai has to fetch
    # =========================================================================
    def resolve_public_url(self, image_url: Optional[str] = None, file_id: Optional[int] = None) -> str:
        """fal.ai only accepts publicly reachable HTTPS URLs"""
        if file_id is not None:
            url = self.generations.get_generated_file(int(file_id))['file_url']
        elif image_url and self.file_manager.is_storage_id(image_url):
            url = self.file_manager.get_url(image_url)
            if not url:
                raise ValidationError(f"Unknown storage id: {image_url}")
        else:
            url = image_url
        if not url:
            raise ValidationError("An image is required")
        if not url.startswith('https://'):
            raise ValidationError(f"Image URL must be publicly accessible HTTPS URL. Got: {url}")
        return url

    # =========================================================================
    # @submission
    # =========================================================================
    def _submit(self, generation: Dict, call: Callable[[], SubmitResult]) -> Dict:
        """Call fal.ai for a fresh record, then store results or start polling"""
        generation_id = generation['id']
        try:
            result = call()
        except Exception as e:
            self.generations.mark_failed(generation_id, str(e))
            raise

        generation = self.generations.update_status(generation_id, 'processing', fal_request_id=result.request_id)
        if result.is_completed and result.images:
            return self.complete_generation(generation_id, result.images)

        self.poller.start(generation_id)
        return generation

    def generate_image(self, params: Dict) -> Dict:
        """@image_generation - Free or product image from a prompt"""
        kind = check_choice(params.get('type', 'free'), ('free', 'product'), 'type')
        prompt = _prompt(params.get('prompt'))
        model = params.get('model') or DEFAULT_IMAGE_MODEL
        width = _dimension(params.get('width'), 1024, 'width')
        height = _dimension(params.get('height'), 1024, 'height')
        num_images = _dimension(params.get('num_images'), 1, 'num_images')
        negative_prompt = (params.get('negative_prompt') or '').strip() or None

        product_config = None
        style_url = None
        strength = None
        final_prompt = prompt
        if kind == 'product':
            product_config = dict(params.get('product_config') or {})
            product_name = (product_config.get('product_name') or '').strip()
            if not product_name:
                raise ValidationError("Please enter a product name")
            background_prompt = (product_config.get('background_prompt')
                                 if product_config.get('background_type', 'generated') == 'generated' else None)
            final_prompt = _prompt(build_product_prompt(
                product_name, prompt, product_config.get('product_description'), background_prompt))
            if product_config.get('style_image_id') is not None:
                style_url = self.resolve_public_url(file_id=product_config['style_image_id'])
                strength = product_config.get('style_strength', 0.7)

        generation = self.generations.create_generation({
            'user_id': self.user_id,
            'generation_type': 'image',
            'type': kind,
            'model': model,
            'prompt': final_prompt,
            'negative_prompt': negative_prompt,
            'width': width,
            'height': height,
            'num_images': num_images,
            'seed': params.get('seed'),
            'guidance_scale': params.get('guidance_scale'),
            'source_image_url': style_url,
            'style_image_id': product_config.get('style_image_id') if product_config else None,
            'product_config': product_config,
        })
        return self._submit(generation, lambda: self.fal.generate_image(
            model, final_prompt, width, height,
            negative_prompt=negative_prompt,
            num_images=num_images if num_images > 1 else None,
            seed=params.get('seed'),
            guidance_scale=params.get('guidance_scale'),
            image_url=style_url,
            strength=strength,
        ))

    def edit_image(self, params: Dict) -> Dict:
        """@image_edit - Prompt-based edit of an existing image"""
        prompt = _prompt(params.get('prompt'))
        model = params.get('model') or DEFAULT_EDIT_MODEL
        source = self.resolve_public_url(params.get('image_url'), params.get('file_id'))
        extra = [self.resolve_public_url(url) for url in params.get('additional_image_urls') or []]

        generation = self.generations.create_generation({
            'user_id': self.user_id,
            'generation_type': 'image',
            'type': 'edit',
            'model': model,
            'prompt': prompt,
            'width': params.get('width'),
            'height': params.get('height'),
            'num_images': 1,
            'source_image_url': source,
        })
        return self._submit(generation, lambda: self.fal.edit_image(
            model, [source] + extra, prompt,
            num_images=1,
            output_format=params.get('output_format'),
            aspect_ratio=params.get('aspect_ratio'),
        ))

    def _menu_products(self, items: List[Dict]) -> List[Dict]:
        products = []
        for index, item in enumerate(items):
            item = dict(item)
            if item.get('product_id') is not None and self.products is not None:
                catalog = self.products.get_product(int(item['product_id']))
                item.setdefault('name', catalog['name'])
                item.setdefault('price', catalog['price'])
            if not item.get('name') or item.get('price') is None:
                raise ValidationError("Menu products need a name and a price")
            if item.get('image_style') and item['image_style'] not in IMAGE_STYLES:
                raise ValidationError(f"image_style must be one of: {', '.join(IMAGE_STYLES)}")
            item.setdefault('order', index)
            products.append(item)
        return products

    def generate_menu(self, params: Dict) -> Dict:
        """@menu_generation - Compose a menu board from products, logo and background"""
        items = params.get('products') or []
        if not items:
            raise ValidationError("Please add at least one product to the menu")
        products = self._menu_products(items)
        orientation = check_choice(params.get('orientation', 'landscape'), ('landscape', 'portrait'), 'orientation')
        price_position = check_choice(params.get('price_position', 'bottom'), PRICE_POSITIONS, 'price_position')
        background_source = check_choice(params.get('background_source', 'generated'),
                                         ('generated', 'provided'), 'background_source')
        default_size = (1080, 1920) if orientation == 'portrait' else (1920, 1080)
        width = _dimension(params.get('width'), default_size[0], 'width')
        height = _dimension(params.get('height'), default_size[1], 'height')

        logo_url = None
        if params.get('include_logo', True):
            logo_url = params.get('logo_url') or self.default_logo_url or None

        background_url = None
        if background_source == 'provided' or params.get('preserve_background'):
            if params.get('background_image_id') is not None or params.get('background_image_url'):
                background_url = self.resolve_public_url(params.get('background_image_url'),
                                                         params.get('background_image_id'))
            elif background_source == 'provided':
                raise ValidationError("A provided background needs an image")

        if params.get('preserve_background') and background_url:
            prompt = build_menu_update_prompt(products, price_position, logo_url)
            image_urls = [background_url] + ([logo_url] if logo_url else [])
        else:
            prompt = build_menu_prompt(products, orientation, price_position, background_source,
                                       params.get('background_prompt'), logo_url)
            image_urls = [logo_url] if logo_url else []
            if background_url:
                image_urls.append(background_url)
        image_urls += [self.resolve_public_url(p['image_url']) for p in products if p.get('image_url')]

        menu_config = {
            'orientation': orientation,
            'price_position': price_position,
            'background_source': background_source,
            'background_image_id': params.get('background_image_id'),
            'use_generated_images': any(p.get('image_source') == 'generated' for p in products),
            'use_provided_images': any(p.get('image_source') == 'provided' for p in products),
            'products': [
                {key: p.get(key) for key in ('product_id', 'name', 'price', 'image_id', 'order')}
                for p in products
            ],
        }

        model = DEFAULT_EDIT_MODEL if image_urls else MENU_FALLBACK_MODEL
        generation = self.generations.create_generation({
            'user_id': self.user_id,
            'generation_type': 'image',
            'type': 'menu',
            'model': model,
            'prompt': prompt,
            'width': width,
            'height': height,
            'num_images': 1,
            'menu_config': menu_config,
        })
        if image_urls:
            return self._submit(generation, lambda: self.fal.edit_image(model, image_urls, prompt, num_images=1))
        return self._submit(generation, lambda: self.fal.generate_image(model, prompt, width, height))

    def generate_video(self, params: Dict) -> Dict:
        """@video_generation - Image-to-video when a source image is given, else text-to-video"""
        model = params.get('model')
        if not model:
            raise ValidationError("model is required")
        prompt = _prompt(params.get('prompt'))
        width = _dimension(params.get('width'), 0, 'width') if params.get('width') else None
        height = _dimension(params.get('height'), 0, 'height') if params.get('height') else None
        has_source = params.get('image_url') or params.get('file_id') is not None
        source = self.resolve_public_url(params.get('image_url'), params.get('file_id')) if has_source else None

        video_config = {key: params.get(key) for key in ('duration', 'fps', 'num_frames', 'motion_strength')
                        if params.get(key) is not None}
        generation = self.generations.create_generation({
            'user_id': self.user_id,
            'generation_type': 'video',
            'type': 'image-to-video' if source else 'text-to-video',
            'model': model,
            'prompt': prompt,
            'negative_prompt': params.get('negative_prompt'),
            'width': width,
            'height': height,
            'seed': params.get('seed'),
            'source_image_url': source,
            'video_config': video_config,
        })

        if source:
            return self._submit(generation, lambda: self.fal.generate_video_from_image(
                model, source, prompt,
                motion_strength=params.get('motion_strength'),
                duration=params.get('duration'),
                width=width, height=height,
            ))
        return self._submit(generation, lambda: self.fal.generate_video_from_text(
            model, prompt,
            negative_prompt=params.get('negative_prompt'),
            width=width, height=height,
            duration=params.get('duration'),
            num_frames=params.get('num_frames'),
            fps=params.get('fps'),
            seed=params.get('seed'),
        ))

    # =========================================================================
    # @completion - Polling steps and result storage
    # =========================================================================
    def check_generation(self, generation_id: int) -> bool:
        """One poll step. Returns True once the generation is terminal."""
        with self._lock_for(generation_id):
            finished = self._check_once(generation_id)
        if finished:
            self._release_lock(generation_id)
        return finished

    def _check_once(self, generation_id: int) -> bool:
        try:
            generation = self.generations.get_generation(generation_id)
        except NotFoundError:
            logger.warning(f"Generation {generation_id} disappeared while polling")
            return True
        if generation['status'] not in ACTIVE_STATUSES:
            return True
        if not generation['fal_request_id']:
            return False

        try:
            status = self.fal.poll_status(generation['model'], generation['fal_request_id'])
        except Exception as e:
            self.generations.mark_failed(generation_id, f"Failed to poll generation status: {e}")
            return True

        if status.is_completed and status.images:
            try:
                self.complete_generation(generation_id, status.images)
            except (FalAPIError, StorageError) as e:
                logger.error(f"Storing results of generation {generation_id} failed: {e}")
            return True
        if status.is_completed:
            self.generations.mark_failed(generation_id, 'Generation completed but no files found')
            return True
        if status.is_failed:
            self.generations.mark_failed(generation_id, status.error or 'Generation failed')
            return True
        return False

    def complete_generation(self, generation_id: int, urls: List[str]) -> Dict:
        """@result_storage - Download every result, store it, mark the record completed"""
        generation = self.generations.get_generation(generation_id)
        generation_type = generation['generation_type']
        file_ids = []
        try:
            for url in urls:
                content, content_type = self.fal.download(url)
                stored = self.file_manager.store_bytes(content, content_type or DEFAULT_MIME_TYPES[generation_type])
                record = self.generations.create_generated_file({
                    'user_id': generation['user_id'],
                    'storage_id': stored['storage_id'],
                    'file_url': stored['file_url'],
                    'file_type': generation_type,
                    'mime_type': stored['mime_type'],
                    'file_size': stored['file_size'],
                    'width': generation['width'],
                    'height': generation['height'],
                    'generation_id': generation_id,
                    'generation_type': generation_type,
                    'is_original': True,
                })
                file_ids.append(record['id'])
        except (FalAPIError, StorageError) as e:
            self.generations.mark_failed(generation_id, f"Failed to download and store file: {e}")
            raise

        return self.generations.update_status(generation_id, 'completed', generated_file_ids=file_ids)

    def _on_poll_timeout(self, generation_id: int, message: str) -> None:
        with self._lock_for(generation_id):
            generation = self.generations.get_generation(generation_id)
            if generation['status'] in ACTIVE_STATUSES:
                self.generations.mark_failed(generation_id, message)
        self._release_lock(generation_id)

    def resume_pending(self) -> int:
        """Restart poll loops for records left unfinished, e.g. by a restart"""
        resumed = 0
        for generation in self.generations.list_unfinished():
            if self.poller.start(generation['id']):
                resumed += 1
        if resumed:
            logger.info(f"Resumed polling for {resumed} generation(s)")
        return resumed

    def shutdown(self) -> None:
        self.poller.shutdown()
