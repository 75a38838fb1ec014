"""Block rendering

Turns (block, atoms) into block HTML fragments. Each block is rendered in
isolation: a renderer exception becomes an error placeholder and blocks with
no visible content are dropped. All model text is escaped on output.
"""

import logging
from typing import Callable, Dict, List, Optional

from bs4 import BeautifulSoup

from pagestream_api.models.atoms import AtomType, ContentAtom
from pagestream_api.models.schemas import HeroContent, LayoutBlock, RenderedBlock, RenderResult
from pagestream_api.utils.sanitization import escape_html

logger = logging.getLogger(__name__)

DEFAULT_HERO_IMAGE_HINT = "vitamix blender on kitchen counter"
MEDIA_TAGS = ["img", "picture", "video", "iframe"]
MAX_COLUMNS = 3


# ============================================================================
# Markup helpers
# ============================================================================

def _cell(*lines: str) -> str:
    inner = "\n      ".join(line for line in lines if line)
    return f"    <div>\n      {inner}\n    </div>"


def _row(*cells: str) -> str:
    return "  <div>\n" + "\n".join(cells) + "\n  </div>"


def _block(name: str, variant: Optional[str], rows: List[str]) -> str:
    css = f"{name} {variant}" if variant else name
    body = "\n".join(r for r in rows if r)
    return f'<div class="{escape_html(css)}">\n{body}\n</div>'


def _picture(src: str, alt: str, hint: Optional[str] = None, sku: Optional[str] = None) -> str:
    attrs = f'src="{src}" alt="{escape_html(alt)}"'
    if sku:
        attrs += f' data-sku="{escape_html(sku)}"'
    if hint:
        attrs += f' data-image-hint="{escape_html(hint)}"'
    return f"<picture>\n        <img {attrs}>\n      </picture>"


def _items(values: List[str], tag: str = "ul", css: Optional[str] = None) -> str:
    if not values:
        return ""
    lis = "".join(f"<li>{escape_html(v)}</li>" for v in values)
    class_attr = f' class="{css}"' if css else ""
    return f"<{tag}{class_attr}>{lis}</{tag}>"


def _number(value) -> str:
    """649.0 -> '649', 649.5 -> '649.5'"""
    return f"{value:g}" if isinstance(value, float) else str(value)


def _first(atoms: List[ContentAtom], atom_type: AtomType) -> Optional[ContentAtom]:
    return next((a for a in atoms if a.type == atom_type), None)


def _price(value) -> str:
    return f'<p class="price">${_number(value)}</p>' if value else ""


# ============================================================================
# Block renderers
# ============================================================================

def render_hero(atoms: List[ContentAtom], variant: Optional[str] = None) -> str:
    heading = _first(atoms, AtomType.HEADING)
    paragraph = _first(atoms, AtomType.PARAGRAPH)
    title = heading.content.text if heading else "Vitamix"
    subtitle = paragraph.content.text if paragraph else ""
    hint = (heading.image_hint if heading else None) or DEFAULT_HERO_IMAGE_HINT
    return _hero_html(title, subtitle, hint, variant)


def _hero_html(title: str, subtitle: str, hint: str, variant: Optional[str] = None) -> str:
    return _block("hero", variant, [
        _row(_cell(_picture("/images/placeholder-hero.jpg", title, hint))),
        _row(_cell(
            f"<h1>{escape_html(title)}</h1>",
            f"<p>{escape_html(subtitle)}</p>" if subtitle else "",
        )),
    ])


def render_hero_content(hero: HeroContent) -> str:
    """Hero block for the fast hero call, streamed before the content atoms exist"""
    return _hero_html(hero.title, hero.subtitle, hero.image_hint or DEFAULT_HERO_IMAGE_HINT)


def render_cards(atoms, variant=None) -> str:
    feature_set = _first(atoms, AtomType.FEATURE_SET)
    related = _first(atoms, AtomType.RELATED)
    rows = []
    if feature_set:
        for f in feature_set.content.features:
            rows.append(_row(
                _cell(_picture("/images/placeholder-card.jpg", f.title, f"{f.title} vitamix feature")),
                _cell(f"<h3>{escape_html(f.title)}</h3>", f"<p>{escape_html(f.description)}</p>"),
            ))
    elif related:
        for item in related.content.items:
            title = escape_html(item.title)
            if item.url:
                title = f'<a href="{escape_html(item.url)}">{title}</a>'
            rows.append(_row(_cell(f"<h3>{title}</h3>", f"<p>{escape_html(item.description)}</p>")))
    return _block("cards", variant, rows)


def render_columns(atoms, variant=None) -> str:
    feature_set = _first(atoms, AtomType.FEATURE_SET)
    if feature_set and feature_set.content.features:
        return _block("columns", variant, [
            _row(_cell(f"<h3>{escape_html(f.title)}</h3>", f"<p>{escape_html(f.description)}</p>"))
            for f in feature_set.content.features[:MAX_COLUMNS]
        ])

    rows = []
    for atom in atoms:
        if atom.type == AtomType.PARAGRAPH:
            rows.append(_row(_cell(f"<p>{escape_html(atom.content.text)}</p>")))
        elif atom.type == AtomType.LIST and atom.content.items:
            rows.append(_row(_cell(_items(atom.content.items, "ol" if atom.content.ordered else "ul"))))
        elif atom.type == AtomType.TIPS and atom.content.tips:
            rows.append(_row(_cell("<h3>Pro Tips</h3>", _items(atom.content.tips))))
    if not rows:
        rows = [_row(_cell("<p>Explore our full range of Vitamix products and recipes.</p>"))]
    return _block("columns", variant, rows)


def render_accordion(atoms, variant=None) -> str:
    faq_set = _first(atoms, AtomType.FAQ_SET)
    rows = []
    if faq_set:
        rows = [
            _row(_cell(f"<h3>{escape_html(faq.question)}</h3>"), _cell(f"<p>{escape_html(faq.answer)}</p>"))
            for faq in faq_set.content.faqs
        ]
    return _block("accordion", variant, rows)


def render_pdp(atoms, variant=None) -> str:
    product = _first(atoms, AtomType.PRODUCT_DETAIL)
    if not product:
        return _block("pdp", variant, [])
    p = product.content
    return _block("pdp", variant, [
        _row(_cell(_picture(
            "/images/placeholder-product.jpg", p.name, f"{p.name} vitamix blender product shot", sku=p.sku
        ))),
        _row(_cell(
            f"<h1>{escape_html(p.name)}</h1>",
            f'<p class="series">{escape_html(p.series)} Series</p>' if p.series else "",
            _price(p.price),
            f"<p>{escape_html(p.description)}</p>" if p.description else "",
            _items(p.features, css="features"),
            f'<p class="warranty">{escape_html(p.warranty)} Warranty</p>' if p.warranty else "",
        )),
    ])


def _product_link(sku: str, name: str) -> str:
    return f"/products/{escape_html(sku or name)}"


def render_plp(atoms, variant=None) -> str:
    comparison = _first(atoms, AtomType.COMPARISON)
    rows = []
    if comparison:
        for p in comparison.content.products:
            rows.append(_row(
                _cell(_picture("/images/placeholder-product.jpg", p.name, f"{p.name} vitamix blender", sku=p.sku)),
                _cell(
                    f'<h3><a href="{_product_link(p.sku, p.name)}">{escape_html(p.name)}</a></h3>',
                    _price(p.price),
                    _items(p.features[:3], css="features"),
                ),
            ))
    return _block("plp", variant, rows)


def render_comparison_cards(atoms, variant=None) -> str:
    comparison = _first(atoms, AtomType.COMPARISON)
    rows = []
    if comparison:
        for p in comparison.content.products:
            pros_cons = "".join(f'<li class="pro">{escape_html(v)}</li>' for v in p.pros)
            pros_cons += "".join(f'<li class="con">{escape_html(v)}</li>' for v in p.cons)
            rows.append(_row(
                _cell(_picture("/images/placeholder-product.jpg", p.name, sku=p.sku)),
                _cell(
                    f"<h3>{escape_html(p.name)}</h3>",
                    _price(p.price),
                    f'<ul class="pros-cons">{pros_cons}</ul>' if pros_cons else "",
                ),
            ))
    return _block("comparison-cards", variant, rows)


def render_recommended_products(atoms, variant=None) -> str:
    products = []
    comparison = _first(atoms, AtomType.COMPARISON)
    if comparison:
        products.extend((p.sku, p.name, p.price, p.features) for p in comparison.content.products)
    for atom in atoms:
        if atom.type == AtomType.PRODUCT_DETAIL:
            p = atom.content
            products.append((p.sku, p.name, p.price, p.features))
    if not products:
        return _block("recommended-products", variant, [])

    rows = [_row(_cell("<h2>Recommended for You</h2>"))]
    for sku, name, price, features in products:
        rows.append(_row(
            _cell(_picture("/images/placeholder-product.jpg", name, f"{name} vitamix blender", sku=sku)),
            _cell(
                f'<h3><a href="{_product_link(sku, name)}">{escape_html(name)}</a></h3>',
                _price(price),
                f"<p>{escape_html(features[0])}</p>" if features else "",
            ),
        ))
    return _block("recommended-products", variant, rows)


def render_recipe_detail(atoms, variant=None) -> str:
    recipe = _first(atoms, AtomType.RECIPE_DETAIL)
    if not recipe:
        return _render_recipe_parts(atoms, variant)
    r = recipe.content
    meta = "".join([
        f'<span class="prep-time">Prep: {r.prep_time} min</span>' if r.prep_time else "",
        f'<span class="cook-time">Cook: {r.cook_time} min</span>' if r.cook_time else "",
        f'<span class="servings">Serves: {escape_html(r.servings)}</span>' if r.servings else "",
    ])
    instructions = "".join(
        f"<li><strong>Step {i}:</strong> {escape_html(step)}</li>"
        for i, step in enumerate(r.instructions, start=1)
    )
    rows = [
        _row(_cell(_picture(
            "/images/placeholder-recipe.jpg", r.title, f"{r.title} healthy recipe food photography"
        ))),
        _row(_cell(
            f"<h1>{escape_html(r.title)}</h1>",
            f"<p>{escape_html(r.description)}</p>" if r.description else "",
            f'<div class="meta">{meta}</div>' if meta else "",
        )),
        _row(
            _cell("<h2>Ingredients</h2>", _items(r.ingredients)),
            _cell("<h2>Instructions</h2>", f"<ol>{instructions}</ol>" if instructions else ""),
        ),
    ]
    if r.tips:
        rows.append(_row(_cell("<h2>Tips</h2>", _items(r.tips))))
    return _block("recipe-detail", variant, rows)


def _render_recipe_parts(atoms, variant=None) -> str:
    """Recipe block assembled from ingredient_list, steps and nutrition_facts atoms"""
    rows = []
    ingredients = _first(atoms, AtomType.INGREDIENT_LIST)
    if ingredients and ingredients.content.ingredients:
        rows.append(_row(_cell("<h2>Ingredients</h2>", _items([
            " ".join(part for part in (i.amount, i.unit, i.item) if part)
            for i in ingredients.content.ingredients
        ]))))
    steps = _first(atoms, AtomType.STEPS)
    if steps and steps.content.steps:
        rows.append(_row(_cell("<h2>Instructions</h2>", _steps_list(steps))))
    if _first(atoms, AtomType.NUTRITION_FACTS):
        rows.append(_row(_cell(_nutrition_list(_first(atoms, AtomType.NUTRITION_FACTS)))))
    return _block("recipe-detail", variant, rows)


def _steps_list(steps: ContentAtom) -> str:
    lis = []
    for i, step in enumerate(steps.content.steps, start=1):
        number = step.number or i
        title = f" {escape_html(step.title)}" if step.title else ""
        lis.append(f"<li><strong>Step {number}:</strong>{title} {escape_html(step.description)}</li>")
    return f"<ol>{''.join(lis)}</ol>"


def render_video(atoms, variant=None) -> str:
    video = _first(atoms, AtomType.VIDEO)
    if not video:
        return _block("video", variant, [])
    v = video.content
    return _block("video", variant, [_row(_cell(
        f'<a href="https://www.youtube.com/watch?v={escape_html(v.id)}">{escape_html(v.title)}</a>',
        f"<p>{escape_html(v.description)}</p>" if v.description else "",
    ))])


def render_banner(atoms, variant=None) -> str:
    cta = _first(atoms, AtomType.CTA)
    paragraph = _first(atoms, AtomType.PARAGRAPH)
    if cta:
        text, button_text, url = cta.content.text, cta.content.button_text, cta.content.url
    else:
        text, button_text, url = (paragraph.content.text if paragraph else ""), "Learn More", "/"
    return _block("banner", variant, [_row(_cell(
        f"<p>{escape_html(text)}</p>",
        f'<p><a href="{escape_html(url)}" class="button">{escape_html(button_text)}</a></p>',
    ))])


def render_speed_control(atoms, variant=None) -> str:
    guide = _first(atoms, AtomType.INTERACTIVE_GUIDE)
    steps = _first(atoms, AtomType.STEPS)
    if guide:
        g = guide.content
        rows = [_row(_cell(
            f"<h2>{escape_html(g.title)}</h2>",
            f'<p class="recommendation">{escape_html(g.recommendation)}</p>' if g.recommendation else "",
        ))]
        rows.extend(
            _row(_cell(f"<h3>{escape_html(tab.label)}</h3>"), _cell(f"<p>{escape_html(tab.content)}</p>"))
            for tab in g.tabs
        )
        return _block("speed-control", variant, rows)
    if steps and steps.content.steps:
        return _block("speed-control", variant, [_row(_cell(_steps_list(steps)))])
    return _block("speed-control", variant, [])


def render_carousel(atoms, variant=None) -> str:
    feature_set = _first(atoms, AtomType.FEATURE_SET)
    testimonials = _first(atoms, AtomType.TESTIMONIALS)
    items = []
    if feature_set:
        items = [(f.title, f.description) for f in feature_set.content.features]
    elif testimonials:
        items = [(t.author, t.quote) for t in testimonials.content.testimonials]
    return _block("carousel", variant, [
        _row(
            _cell(_picture("/images/placeholder-carousel.jpg", title)),
            _cell(f"<h3>{escape_html(title)}</h3>", f"<p>{escape_html(text)}</p>"),
        )
        for title, text in items
    ])


def render_collage(atoms, variant=None) -> str:
    feature_set = _first(atoms, AtomType.FEATURE_SET)
    rows = []
    if feature_set:
        for f in feature_set.content.features:
            rows.append(_row(_cell(
                _picture("/images/placeholder-card.jpg", f.title, f"{f.title} vitamix lifestyle"),
                f"<p>{escape_html(f.title)}</p>",
            )))
    return _block("collage", variant, rows)


def _anchor(text: str) -> str:
    return "".join(c if c.isalnum() else "-" for c in text.lower()).strip("-")


def render_toc(atoms, variant=None) -> str:
    entries = []
    for atom in atoms:
        if atom.type == AtomType.HEADING:
            entries.append(atom.content.text)
        elif atom.type == AtomType.LIST:
            entries.extend(atom.content.items)
    if not entries:
        return _block("toc", variant, [])
    links = "".join(f'<li><a href="#{escape_html(_anchor(e))}">{escape_html(e)}</a></li>' for e in entries)
    return _block("toc", variant, [_row(_cell("<h2>On This Page</h2>", f"<ul>{links}</ul>"))])


def render_form(atoms, variant=None) -> str:
    cta = _first(atoms, AtomType.CTA)
    if cta:
        text = cta.content.text or "Ready to get started?"
        button_text = cta.content.button_text or "Shop Now"
        url = cta.content.url or "/products"
    else:
        text, button_text, url = (
            "Ready to transform your kitchen with Vitamix?", "Shop Vitamix Blenders", "/products"
        )
    return _block("form", variant, [_row(_cell(
        f"<p>{escape_html(text)}</p>",
        f'<p><a href="{escape_html(url)}" class="button">{escape_html(button_text)}</a></p>',
    ))])


def render_tips(atoms, variant=None) -> str:
    tips = _first(atoms, AtomType.TIPS)
    if not tips or not tips.content.tips:
        return _block("tips", variant, [])
    rows = [_row(_cell("<h2>Pro Tips</h2>"))]
    rows.extend(_row(_cell(f"<p>{escape_html(tip)}</p>")) for tip in tips.content.tips)
    return _block("tips", variant, rows)


NUTRITION_LABELS = [
    ("protein", "Protein"),
    ("carbs", "Carbohydrates"),
    ("fat", "Fat"),
    ("fiber", "Fiber"),
    ("sugar", "Sugar"),
    ("sodium", "Sodium"),
]


def _nutrition_list(nutrition: ContentAtom) -> str:
    n = nutrition.content
    facts = []
    if n.calories:
        facts.append(f"<li><strong>Calories:</strong> {_number(n.calories)}</li>")
    for field, label in NUTRITION_LABELS:
        value = getattr(n, field)
        if value:
            facts.append(f"<li><strong>{label}:</strong> {escape_html(value)}</li>")
    return f"<h3>Nutrition Facts</h3><ul>{''.join(facts)}</ul>"


def render_nutrition_facts(atoms, variant=None) -> str:
    nutrition = _first(atoms, AtomType.NUTRITION_FACTS)
    if not nutrition:
        return _block("nutrition-facts", variant, [])
    return _block("nutrition-facts", variant, [_row(_cell(_nutrition_list(nutrition)))])


def render_generic(name: str, atoms: List[ContentAtom], variant: Optional[str] = None) -> str:
    """One row per renderable atom; a default line when nothing rendered"""
    rows = []
    for atom in atoms:
        c = atom.content
        if atom.type == AtomType.HEADING:
            rows.append(_row(_cell(f"<h{c.level}>{escape_html(c.text)}</h{c.level}>")))
        elif atom.type == AtomType.PARAGRAPH:
            rows.append(_row(_cell(f"<p>{escape_html(c.text)}</p>")))
        elif atom.type == AtomType.CTA:
            rows.append(_row(_cell(
                f"<p>{escape_html(c.text or 'Discover more')}</p>",
                f'<p><a href="{escape_html(c.url or "/products")}" class="button">'
                f"{escape_html(c.button_text or 'Learn More')}</a></p>",
            )))
        elif atom.type == AtomType.LIST and c.items:
            rows.append(_row(_cell(_items(c.items, "ol" if c.ordered else "ul"))))
        elif atom.type == AtomType.TIPS and c.tips:
            rows.append(_row(_cell("<h3>Tips</h3>", _items(c.tips))))
    if not rows:
        rows = [_row(_cell("<p>Explore our Vitamix products and recipes.</p>"))]
    return _block(name, variant, rows)


RENDERERS: Dict[str, Callable[..., str]] = {
    "hero": render_hero,
    "cards": render_cards,
    "columns": render_columns,
    "accordion": render_accordion,
    "pdp": render_pdp,
    "plp": render_plp,
    "comparison-cards": render_comparison_cards,
    "recommended-products": render_recommended_products,
    "recipe-detail": render_recipe_detail,
    "video": render_video,
    "banner": render_banner,
    "speed-control": render_speed_control,
    "carousel": render_carousel,
    "collage": render_collage,
    "toc": render_toc,
    "form": render_form,
    "tips": render_tips,
    "nutrition-facts": render_nutrition_facts,
}


# ============================================================================
# Entry points
# ============================================================================

def render_block(name: str, atoms: List[ContentAtom], variant: Optional[str] = None) -> str:
    renderer = RENDERERS.get(name)
    if renderer is None:
        return render_generic(name, atoms, variant)
    return renderer(atoms, variant)


def error_placeholder(name: str) -> str:
    return (
        f'<div class="{escape_html(name)} block-error">\n  <div>\n    <div>\n'
        f'      <p class="error-placeholder">Content temporarily unavailable</p>\n'
        f"    </div>\n  </div>\n</div>"
    )


def is_empty_block(html: str) -> bool:
    """True when the fragment has no text and no media once wrapper markup is ignored"""
    if not html or not html.strip():
        return True
    soup = BeautifulSoup(html, "html.parser")
    if soup.get_text(strip=True):
        return False
    return soup.find(MEDIA_TAGS) is None


def render_blocks(blocks: List[LayoutBlock], atoms: List[ContentAtom]) -> List[RenderedBlock]:
    """Render every block; never raises"""
    rendered: List[RenderedBlock] = []
    for block in blocks:
        block_atoms = [atoms[i] for i in block.atom_indices if 0 <= i < len(atoms)]
        try:
            html = render_block(block.block_name, block_atoms, block.variant)
        except Exception as e:
            logger.error(f"[RENDER] Block rendering failed [{block.block_name}]: {e}", exc_info=True)
            rendered.append(RenderedBlock(
                name=block.block_name,
                html=error_placeholder(block.block_name),
                atoms=block_atoms,
                error=True,
                error_message=str(e),
            ))
            continue

        if is_empty_block(html):
            logger.info(f"[RENDER] Skipping empty block: {block.block_name}")
            continue
        rendered.append(RenderedBlock(name=block.block_name, html=html, atoms=block_atoms))
    return rendered


def render_with_stats(blocks: List[LayoutBlock], atoms: List[ContentAtom]) -> RenderResult:
    rendered = render_blocks(blocks, atoms)
    return RenderResult(
        blocks=rendered,
        failed_count=sum(1 for b in rendered if b.error),
        total_count=len(rendered),
        skipped_count=len(blocks) - len(rendered),
    )


def build_page_html(title: str, description: str, blocks: List[RenderedBlock]) -> str:
    """Full standalone document for a rendered page"""
    blocks_html = "\n\n".join(b.html for b in blocks)
    return f"""<!DOCTYPE html>
<html>
<head>
  <meta charset="utf-8">
  <meta name="viewport" content="width=device-width, initial-scale=1">
  <title>{escape_html(title)}</title>
  <meta name="description" content="{escape_html(description)}">
  <link rel="stylesheet" href="/styles/styles.css">
</head>
<body>
  <header></header>
  <main>
{blocks_html}
  </main>
  <footer></footer>
</body>
</html>"""
