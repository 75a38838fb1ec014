"""Content atom validation and repair

Raw atoms from the completion service are checked per type. Missing required
fields are hard errors and drop the atom. Range and length problems are
repaired in place and reported as warnings. Malformed entries inside array
fields are filtered out instead of rejecting the whole atom. Atoms that pass
are converted into typed payload models.
"""

import copy
import logging
from typing import Any, Callable, Dict, List, Optional

from pydantic import ValidationError as PydanticValidationError

from pagestream_api.models.atoms import AtomType, ContentAtom
from pagestream_api.models.schemas import ValidationIssue, ValidationResult
from pagestream_api.utils.sanitization import strip_markup

logger = logging.getLogger(__name__)

MAX_HEADING_LENGTH = 200
MAX_PARAGRAPH_LENGTH = 2000
DEFAULT_PRIORITY = 5
DEFAULT_HEADING_LEVEL = 2
DEFAULT_CTA_TEXT = "Discover more"
DEFAULT_CTA_URL = "/products"
DEFAULT_VIDEO_TITLE = "Vitamix Video"
DEFAULT_GUIDE_TITLE = "Product Guide"


class _AtomCheck:
    """Collects errors and warnings for one atom"""

    def __init__(self, index: int, atom_type: str):
        self.index = index
        self.atom_type = atom_type
        self.errors: List[ValidationIssue] = []
        self.warnings: List[ValidationIssue] = []

    def error(self, field: str, message: str):
        self.errors.append(ValidationIssue(
            atom_index=self.index, atom_type=self.atom_type, field=field, message=message
        ))

    def warn(self, field: str, message: str):
        self.warnings.append(ValidationIssue(
            atom_index=self.index, atom_type=self.atom_type, field=field, message=message, auto_fixed=True
        ))


# ============================================================================
# Field helpers
# ============================================================================

def _clean_strings(value: Any) -> Any:
    """Strip markup from every string in a nested payload"""
    if isinstance(value, str):
        return strip_markup(value)
    if isinstance(value, list):
        return [_clean_strings(v) for v in value]
    if isinstance(value, dict):
        return {k: _clean_strings(v) for k, v in value.items()}
    return value


def _is_text(value: Any) -> bool:
    return isinstance(value, str) and bool(value.strip())


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _require_text(content: Dict[str, Any], field: str, check: _AtomCheck) -> bool:
    if not _is_text(content.get(field)):
        check.error(field, f"{field} is required")
        return False
    return True


def _require_list(content: Dict[str, Any], field: str, check: _AtomCheck) -> bool:
    if not isinstance(content.get(field), list):
        check.error(field, f"{field} must be an array")
        return False
    return True


def _string_list(values: Any) -> List[str]:
    if not isinstance(values, list):
        return []
    return [str(v).strip() for v in values if (_is_text(v) or _is_number(v))]


def _filter_entries(
    content: Dict[str, Any],
    field: str,
    keep: Callable[[Any], bool],
    check: _AtomCheck,
    label: str,
):
    entries = content[field]
    kept = [entry for entry in entries if keep(entry)]
    removed = len(entries) - len(kept)
    if removed:
        check.warn(field, f"Removed {removed} {label} with missing required fields")
    content[field] = kept


def _has_text_keys(*keys: str) -> Callable[[Any], bool]:
    return lambda entry: isinstance(entry, dict) and all(_is_text(entry.get(k)) for k in keys)


def _clean_price(content: Dict[str, Any], check: _AtomCheck, field: str = "price"):
    if field not in content or content[field] is None:
        return
    price = content[field]
    if isinstance(price, str):
        try:
            price = float(price.replace("$", "").replace(",", "").strip())
        except ValueError:
            price = None
    if not _is_number(price) or price < 0:
        check.warn(field, "Invalid price removed")
        content[field] = None
    else:
        content[field] = price


# ============================================================================
# Per-type rules
# ============================================================================

def _check_heading(content, check):
    if not _require_text(content, "text", check):
        return
    if len(content["text"]) > MAX_HEADING_LENGTH:
        content["text"] = content["text"][:MAX_HEADING_LENGTH]
        check.warn("text", f"Heading truncated to {MAX_HEADING_LENGTH} characters")
    level = content.get("level")
    if level is None:
        content["level"] = DEFAULT_HEADING_LEVEL
    elif not _is_number(level) or int(level) != level or not 1 <= level <= 6:
        content["level"] = DEFAULT_HEADING_LEVEL
        check.warn("level", f"Invalid heading level {level!r}, reset to {DEFAULT_HEADING_LEVEL}")


def _check_paragraph(content, check):
    if not _require_text(content, "text", check):
        return
    if len(content["text"]) > MAX_PARAGRAPH_LENGTH:
        content["text"] = content["text"][:MAX_PARAGRAPH_LENGTH]
        check.warn("text", f"Paragraph truncated to {MAX_PARAGRAPH_LENGTH} characters")


def _check_list(content, check):
    if not _require_list(content, "items", check):
        return
    items = _string_list(content["items"])
    if len(items) != len(content["items"]):
        check.warn("items", "Removed empty or non-text list items")
    content["items"] = items
    content["ordered"] = bool(content.get("ordered", False))


def _check_feature_set(content, check):
    if not _require_list(content, "features", check):
        return
    _filter_entries(content, "features", _has_text_keys("title"), check, "features")
    for feature in content["features"]:
        if not isinstance(feature.get("description"), str):
            feature["description"] = ""


def _check_faq_set(content, check):
    if not _require_list(content, "faqs", check):
        return
    _filter_entries(content, "faqs", _has_text_keys("question", "answer"), check, "FAQs")


def _check_steps(content, check):
    if not _require_list(content, "steps", check):
        return
    steps = []
    for i, step in enumerate(content["steps"]):
        if _is_text(step):
            steps.append({"number": i + 1, "title": "", "description": step})
        elif isinstance(step, dict) and (_is_text(step.get("title")) or _is_text(step.get("description"))):
            number = step.get("number")
            steps.append({
                "number": int(number) if _is_number(number) else i + 1,
                "title": step.get("title") if isinstance(step.get("title"), str) else "",
                "description": step.get("description") if isinstance(step.get("description"), str) else "",
            })
    if len(steps) != len(content["steps"]):
        check.warn("steps", "Removed malformed steps")
    content["steps"] = steps


def _check_table(content, check):
    has_headers = _require_list(content, "headers", check)
    has_rows = _require_list(content, "rows", check)
    if not (has_headers and has_rows):
        return
    content["headers"] = [str(h) for h in content["headers"]]
    rows = [[str(cell) for cell in row] for row in content["rows"] if isinstance(row, list)]
    if len(rows) != len(content["rows"]):
        check.warn("rows", "Removed malformed table rows")
    content["rows"] = rows


def _check_comparison(content, check):
    if not _require_list(content, "products", check):
        return
    _filter_entries(content, "products", _has_text_keys("name"), check, "comparison products")
    for product in content["products"]:
        _clean_price(product, check)
        for field in ("features", "pros", "cons"):
            product[field] = _string_list(product.get(field))
        if not isinstance(product.get("sku"), str):
            product["sku"] = str(product["sku"]) if _is_number(product.get("sku")) else ""
    if len(content["products"]) < 2:
        check.warn("products", "Comparison has fewer than 2 products")


def _check_cta(content, check):
    if not _is_text(content.get("text")):
        content["text"] = DEFAULT_CTA_TEXT
        check.warn("text", "Missing CTA text, using default")
    if not _is_text(content.get("url")):
        content["url"] = DEFAULT_CTA_URL
        check.warn("url", "Missing CTA url, using default")
    if not _is_text(content.get("buttonText")):
        content.pop("buttonText", None)


def _check_related(content, check):
    if not _require_list(content, "items", check):
        return
    _filter_entries(content, "items", _has_text_keys("title"), check, "related items")


def _check_product_detail(content, check):
    if not _require_text(content, "name", check):
        return
    _clean_price(content, check)
    content["features"] = _string_list(content.get("features"))
    if not isinstance(content.get("specs"), dict):
        content["specs"] = {}
    if not isinstance(content.get("sku"), str):
        content["sku"] = str(content["sku"]) if _is_number(content.get("sku")) else ""


def _check_recipe_detail(content, check):
    if not _require_text(content, "title", check):
        return
    for field in ("ingredients", "instructions"):
        if not isinstance(content.get(field), list):
            content[field] = []
            check.warn(field, f"{field} was not an array, reset to empty")
        else:
            content[field] = _string_list(content[field])
    content["tips"] = _string_list(content.get("tips"))
    for field in ("prepTime", "cookTime"):
        if field in content and not _is_number(content[field]):
            content.pop(field)
        elif field in content:
            content[field] = int(content[field])
    if _is_number(content.get("servings")):
        content["servings"] = str(content["servings"])
    if not isinstance(content.get("nutrition"), dict):
        content["nutrition"] = {}


def _check_interactive_guide(content, check):
    if not _is_text(content.get("title")):
        content["title"] = DEFAULT_GUIDE_TITLE
        check.warn("title", "Missing guide title, using default")
    if not _require_list(content, "tabs", check):
        return
    _filter_entries(content, "tabs", _has_text_keys("label"), check, "tabs")
    for tab in content["tabs"]:
        if not isinstance(tab.get("content"), str):
            tab["content"] = ""


def _check_nutrition_facts(content, check):
    if "calories" in content and not _is_number(content["calories"]):
        content.pop("calories")
        check.warn("calories", "Non-numeric calories removed")
    for field in ("protein", "carbs", "fat", "fiber", "sugar", "sodium"):
        if _is_number(content.get(field)):
            content[field] = str(content[field])
        elif field in content and not isinstance(content[field], str):
            content.pop(field)


def _check_ingredient_list(content, check):
    if not _require_list(content, "ingredients", check):
        return
    ingredients = []
    for entry in content["ingredients"]:
        if _is_text(entry):
            ingredients.append({"item": entry})
        elif isinstance(entry, dict) and _is_text(entry.get("item")):
            ingredients.append({
                "item": entry["item"],
                "amount": str(entry.get("amount") or ""),
                "unit": str(entry.get("unit") or ""),
            })
    if len(ingredients) != len(content["ingredients"]):
        check.warn("ingredients", "Removed malformed ingredients")
    content["ingredients"] = ingredients


def _check_tips(content, check):
    if not _require_list(content, "tips", check):
        return
    tips = _string_list(content["tips"])
    if len(tips) != len(content["tips"]):
        check.warn("tips", "Removed empty tips")
    content["tips"] = tips


def _check_testimonials(content, check):
    if not _require_list(content, "testimonials", check):
        return
    _filter_entries(content, "testimonials", _has_text_keys("quote"), check, "testimonials")


def _check_video(content, check):
    if _is_number(content.get("id")):
        content["id"] = str(content["id"])
    if not _require_text(content, "id", check):
        return
    if not _is_text(content.get("title")):
        content["title"] = DEFAULT_VIDEO_TITLE
        check.warn("title", "Missing video title, using default")


ATOM_RULES: Dict[AtomType, Callable[[Dict[str, Any], _AtomCheck], None]] = {
    AtomType.HEADING: _check_heading,
    AtomType.PARAGRAPH: _check_paragraph,
    AtomType.LIST: _check_list,
    AtomType.FEATURE_SET: _check_feature_set,
    AtomType.FAQ_SET: _check_faq_set,
    AtomType.STEPS: _check_steps,
    AtomType.TABLE: _check_table,
    AtomType.COMPARISON: _check_comparison,
    AtomType.CTA: _check_cta,
    AtomType.RELATED: _check_related,
    AtomType.PRODUCT_DETAIL: _check_product_detail,
    AtomType.RECIPE_DETAIL: _check_recipe_detail,
    AtomType.INTERACTIVE_GUIDE: _check_interactive_guide,
    AtomType.NUTRITION_FACTS: _check_nutrition_facts,
    AtomType.INGREDIENT_LIST: _check_ingredient_list,
    AtomType.TIPS: _check_tips,
    AtomType.TESTIMONIALS: _check_testimonials,
    AtomType.VIDEO: _check_video,
}


# ============================================================================
# Entry points
# ============================================================================

def _check_priority(raw: Dict[str, Any], check: _AtomCheck) -> int:
    priority = raw.get("priority")
    if priority is None:
        return DEFAULT_PRIORITY
    if _is_number(priority) and int(priority) == priority and 1 <= priority <= 10:
        return int(priority)
    check.warn("priority", f"Invalid priority {priority!r}, reset to {DEFAULT_PRIORITY}")
    return DEFAULT_PRIORITY


def validate_atom(raw: Any, index: int) -> tuple:
    """Validate one raw atom. Returns (atom or None, errors, warnings)."""
    if not isinstance(raw, dict):
        check = _AtomCheck(index, "unknown")
        check.error("atom", "Atom must be an object")
        return None, check.errors, check.warnings

    raw_type = raw.get("type")
    check = _AtomCheck(index, str(raw_type))
    try:
        atom_type = AtomType(raw_type)
    except ValueError:
        check.error("type", f"Unknown atom type {raw_type!r}")
        return None, check.errors, check.warnings

    if not isinstance(raw.get("content"), dict):
        check.error("content", "content must be an object")
        return None, check.errors, check.warnings

    content = _clean_strings(copy.deepcopy(raw["content"]))
    ATOM_RULES[atom_type](content, check)
    priority = _check_priority(raw, check)
    if check.errors:
        return None, check.errors, check.warnings

    image_hint = raw.get("imageHint") or raw.get("image_hint")
    try:
        atom = ContentAtom.build(
            atom_type,
            content,
            priority=priority,
            image_hint=strip_markup(image_hint) if _is_text(image_hint) else None,
        )
    except PydanticValidationError as e:
        check.error("content", f"Payload does not match {atom_type.value} schema: {e.error_count()} error(s)")
        return None, check.errors, check.warnings

    return atom, check.errors, check.warnings


def validate_atoms(raw_atoms: Optional[List[Any]]) -> ValidationResult:
    """
    Validate a list of raw atoms.

    Returns only atoms that passed hard validation; valid is False if any
    atom was dropped.
    """
    atoms: List[ContentAtom] = []
    errors: List[ValidationIssue] = []
    warnings: List[ValidationIssue] = []

    for index, raw in enumerate(raw_atoms or []):
        atom, atom_errors, atom_warnings = validate_atom(raw, index)
        errors.extend(atom_errors)
        warnings.extend(atom_warnings)
        if atom is not None:
            atoms.append(atom)
        else:
            logger.warning(
                f"[VALIDATE] Dropped atom {index} ({atom_errors[0].atom_type}): "
                f"{[e.message for e in atom_errors]}"
            )

    if errors or warnings:
        logger.info(
            f"[VALIDATE] totalAtoms={len(raw_atoms or [])} validAtoms={len(atoms)} "
            f"errors={len(errors)} warnings={len(warnings)}"
        )

    return ValidationResult(valid=not errors, atoms=atoms, errors=errors, warnings=warnings)
