"""Image pipeline - placeholder extraction, prompt building and bounded generation"""

import asyncio
import logging
import re
from typing import Dict, List

from bs4 import BeautifulSoup

from pagestream_api.models.schemas import GeneratedImage, ImageRequest, ImageSize

logger = logging.getLogger(__name__)

# Stock photography used when the image service fails for a request
FALLBACK_IMAGES: Dict[ImageSize, List[str]] = {
    ImageSize.HERO: [
        "https://images.unsplash.com/photo-1556909114-f6e7ad7d3136?w=2000&h=800&fit=crop",
        "https://images.unsplash.com/photo-1490818387583-1baba5e638af?w=2000&h=800&fit=crop",
        "https://images.unsplash.com/photo-1512621776951-a57141f2eefd?w=2000&h=800&fit=crop",
    ],
    ImageSize.CARD: [
        "https://images.unsplash.com/photo-1622597467836-f3285f2131b8?w=750&h=562&fit=crop",
        "https://images.unsplash.com/photo-1610970881699-44a5587cabec?w=750&h=562&fit=crop",
        "https://images.unsplash.com/photo-1589733955941-5eeaf752f6dd?w=750&h=562&fit=crop",
    ],
    ImageSize.COLUMN: [
        "https://images.unsplash.com/photo-1638439430466-b2bb7fdc1d67?w=600&h=400&fit=crop",
        "https://images.unsplash.com/photo-1502741338009-cac2772e18bc?w=600&h=400&fit=crop",
    ],
    ImageSize.THUMBNAIL: [
        "https://images.unsplash.com/photo-1546069901-ba9599a7e63c?w=300&h=225&fit=crop",
    ],
}

SIZE_STYLES = {
    ImageSize.HERO: "Composition: Wide cinematic shot, horizontal layout, dramatic lighting, "
                    "plenty of negative space on left for text overlay.",
    ImageSize.CARD: "Composition: Centered subject, clean background, eye-level angle, appetizing presentation.",
    ImageSize.COLUMN: "Composition: Tight crop, detail-focused, artistic angle, ingredient highlight.",
    ImageSize.THUMBNAIL: "Composition: Simple, recognizable, high contrast, single focal point.",
}

# Checked in order; first match decides the subject style
CONTENT_STYLES = [
    (re.compile(r"smoothie|shake|blend|fruit|berry|green"),
     "Subject: Vibrant smoothie in glass with fresh ingredients around it. Condensation on glass, "
     "garnish on top. Bright, energetic mood."),
    (re.compile(r"soup|hot|warm|steaming|broth"),
     "Subject: Steaming bowl of soup with visible steam, garnished herbs. Warm, cozy lighting."),
    (re.compile(r"recipe|dish|food|meal|cook"),
     "Subject: Beautifully plated dish with fresh ingredients. Professional food styling."),
    (re.compile(r"blender|product|vitamix|machine|appliance"),
     "Subject: Vitamix blender as hero product, clean modern kitchen background. Premium feel."),
]
LIFESTYLE_STYLE = (
    "Subject: Modern kitchen scene with Vitamix blender. Fresh ingredients, warm morning light, "
    "healthy living vibe."
)
QUALITY_STYLE = (
    "Style: Professional food photography, natural lighting, shallow depth of field.\n"
    "Avoid: Text, logos, watermarks, people's faces, brand names."
)


def extract_image_requests(html: str, slug: str) -> List[ImageRequest]:
    """One request per <img data-image-hint>, in document order"""
    soup = BeautifulSoup(html or "", "html.parser")
    requests = []
    for index, img in enumerate(soup.find_all("img", attrs={"data-image-hint": True})):
        is_hero = "placeholder-hero" in (img.get("src") or "")
        requests.append(ImageRequest(
            id=f"img-{index}",
            prompt=img["data-image-hint"],
            size=ImageSize.HERO if is_hero else ImageSize.CARD,
            block_id=slug,
        ))
    return requests


def build_image_prompt(hint: str, size: ImageSize) -> str:
    lower = hint.lower()
    content_style = next((style for pattern, style in CONTENT_STYLES if pattern.search(lower)), LIFESTYLE_STYLE)
    return f"{hint}\n\n{SIZE_STYLES[size]}\n\n{content_style}\n{QUALITY_STYLE}"


def _stable_hash(text: str) -> int:
    value = 0
    for char in text:
        value = ((value << 5) - value + ord(char)) & 0xFFFFFFFF
    return value


def fallback_image(request: ImageRequest, error: str) -> GeneratedImage:
    """Deterministic stock image for a failed request"""
    options = FALLBACK_IMAGES[request.size]
    return GeneratedImage(
        id=request.id,
        url=options[_stable_hash(request.id) % len(options)],
        size=request.size,
        success=False,
        error=error,
    )


async def _generate_one(request: ImageRequest, service) -> GeneratedImage:
    try:
        url = await service.generate_image(build_image_prompt(request.prompt, request.size), request.size.value)
        return GeneratedImage(id=request.id, url=url, size=request.size, success=True)
    except Exception as e:
        logger.warning(f"[IMAGES] {request.id} failed, using fallback image: {e}")
        return fallback_image(request, str(e))


async def generate_images(requests: List[ImageRequest], service, concurrency: int = 3) -> List[GeneratedImage]:
    """
    Generate images in batches of `concurrency`.

    Returns exactly one result per request, in request order. A failed image
    takes the URL of a successful sibling of the same size when there is one,
    otherwise it keeps its stock fallback.
    """
    results: List[GeneratedImage] = []
    for start in range(0, len(requests), max(concurrency, 1)):
        batch = requests[start:start + max(concurrency, 1)]
        results.extend(await asyncio.gather(*(_generate_one(r, service) for r in batch)))

    successful: Dict[ImageSize, List[GeneratedImage]] = {}
    for image in results:
        if image.success:
            successful.setdefault(image.size, []).append(image)

    final = []
    for image in results:
        siblings = successful.get(image.size)
        if not image.success and siblings:
            sibling = siblings[_stable_hash(image.id) % len(siblings)]
            image = image.model_copy(update={"url": sibling.url})
        final.append(image)

    logger.info(f"[IMAGES] total={len(final)} successful={sum(1 for i in final if i.success)}")
    return final
