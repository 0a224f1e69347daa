"""
@prompt_builders
Prompt text for product shots and menu boards
"""

from typing import Dict, List, Optional

PRICE_POSITIONS = ('top', 'bottom', 'right', 'left')
IMAGE_STYLES = ('photorealistic', 'cartoonish', 'text-only')


def build_product_prompt(product_name: str, prompt: str, product_description: Optional[str] = None,
                         background_prompt: Optional[str] = None) -> str:
    """'<name>. <description>. <prompt>' with an optional background clause"""
    parts = [product_name.strip()]
    if product_description and product_description.strip():
        parts.append(product_description.strip())
    parts.append(prompt.strip())
    final = '. '.join(parts)
    if background_prompt and background_prompt.strip():
        final = f'{final}. Background: {background_prompt.strip()}'
    return final


def _price_text(price) -> str:
    if isinstance(price, float) and price.is_integer():
        price = int(price)
    return f'{price},-'


def sorted_menu_products(products: List[Dict]) -> List[Dict]:
    return sorted(products, key=lambda p: p.get('order', 0))


def product_list_text(products: List[Dict]) -> str:
    return ', '.join(f"{p['name']} - {_price_text(p['price'])}" for p in sorted_menu_products(products))


def _describe_product(product: Dict) -> str:
    desc = f"{product['name']} - {_price_text(product['price'])}"
    style = product.get('image_style')
    extra = f": {product['image_prompt']}" if product.get('image_prompt') else ''
    if style == 'text-only':
        desc += ' (display as text only, no image, no box)'
    elif style == 'photorealistic':
        desc += (f' (photorealistic product image{extra}, seamlessly integrated into background, '
                 'no box or container around it)')
    elif style == 'cartoonish':
        desc += (f' (cartoonish/stylized product image{extra}, seamlessly integrated into background, '
                 'no box or container around it)')
    return desc


def build_menu_prompt(products: List[Dict], orientation: str, price_position: str,
                      background_source: str = 'generated', background_prompt: Optional[str] = None,
                      logo_url: Optional[str] = None) -> str:
    """@menu_prompt - Full menu board description for a fresh generation"""
    ordered = sorted_menu_products(products)
    prompt = (
        f'Create a professional, minimalist menu display for a restaurant/cafe. {orientation} orientation. '
        'Design requirements: Minimalist, clean design with excellent contrast. '
        'Text must be accurate and clearly readable. Use a modern, simple layout. '
        'CRITICAL: Integrate all elements seamlessly into the background. '
        'NO boxes, cards, borders, or containers around ANY elements. '
        'The logo, products, and text should blend naturally with the background design as one cohesive piece. '
    )
    if logo_url:
        prompt += (
            'Integrate the company logo naturally into the design - place it at the top center or top left, '
            f'make it visible but seamlessly blended with the background. The logo image URL is: {logo_url}. '
        )

    prompt += f"Products: {', '.join(_describe_product(p) for p in ordered)}. "
    prompt += (
        'IMPORTANT: Do not create boxes, cards, or borders around product images or text. '
        'Text should be placed directly on the background with good contrast for readability. '
    )

    positions = ', '.join(f"{p['name']}: {p['position']}" for p in ordered if p.get('position'))
    if positions:
        prompt += f'Product positions: {positions}. '

    if background_source == 'generated' and background_prompt:
        prompt += f'Background: {background_prompt}. '
    elif background_source == 'provided':
        prompt += 'Use the uploaded background image. '
    else:
        prompt += ('Use a clean, minimal background with good contrast - avoid busy patterns, '
                   'use solid colors or subtle gradients. ')

    prompt += f'Price position: {price_position}. '
    prompt += (
        'Ensure all text is perfectly readable and accurate. Minimalist aesthetic with high contrast. '
        'Focus on readability and consistency - all product names and prices must be clearly visible and accurate. '
        'Everything should flow naturally together as part of the background design. '
    )
    return prompt.strip()


def build_menu_update_prompt(products: List[Dict], price_position: str, logo_url: Optional[str] = None) -> str:
    """Edit an existing menu image in place, keeping its background"""
    prompt = (
        f'Update the menu to show these products: {product_list_text(products)}. '
        f'Price position: {price_position}. Keep the background exactly the same. '
        'Only update the product cards and text. Ensure text is accurate and readable. '
        'IMPORTANT: Integrate all elements seamlessly into the background. No boxes, cards, or borders around elements. '
    )
    if logo_url:
        prompt += f'Include the company logo prominently, seamlessly integrated into the background. Logo URL: {logo_url}. '
    return prompt.strip()
