"""Prompt enhancement for multi-variant image generation.

A single user prompt is turned into up to four provider prompts. Each one
carries the same style and preset clauses, and, when more than one variant is
requested, a per-variant diversity instruction so the provider does not return
four near-identical images.

Clause Order
------------
::

    [User prompt] [Style clause] [Preset clause] [Variant clause]

- **Style clause** only for ``dark`` and ``light`` style types.
- **Preset clause** only for the ``internal`` and ``proposals`` presets.
- **Variant clause** only when ``total_variants > 1``; indices 0-3 each have
  a dedicated instruction, later indices get none.

Clauses are appended with a single space. The function is pure: identical
inputs always produce identical output.

Usage
-----
::

    prompt = enhance_prompt("a cat", "dark", None, variant_index=1, total_variants=2)
"""

from __future__ import annotations

# ---------------------------------------------------------------------------
# Clause tables.
# ---------------------------------------------------------------------------

STYLE_CLAUSES: dict[str, str] = {
    "dark": "Use darker colors, shadows, and dramatic lighting.",
    "light": "Use lighter colors, soft lighting, and a cheerful atmosphere.",
}

PRESET_CLAUSES: dict[str, str] = {
    "internal": "Use a corporate style, professional and clean.",
    "proposals": "Make it bold, attention-grabbing, and visually striking.",
}

VARIANT_CLAUSES: tuple[str, ...] = (
    "Make this version unique with its own distinctive style and perspective.",
    "Create a completely different interpretation from the first version, "
    "with contrasting elements and viewpoint.",
    "Create a third unique version with different lighting, angle, and artistic "
    "approach from the previous versions.",
    "Create a fourth distinct version that explores a different aspect of the "
    "concept, with its own unique composition and elements.",
)


def style_prompt(base_prompt: str, style_type: str | None, style_preset: str | None) -> str:
    """Apply the style and preset clauses shared by every variant.

    Args:
        base_prompt: The user's prompt, used verbatim.
        style_type: ``dark``, ``light`` or anything else (no clause).
        style_preset: ``internal``, ``proposals`` or anything else (no clause).

    Returns:
        The prompt with zero, one or two clauses appended.
    """
    parts = [base_prompt]

    style_clause = STYLE_CLAUSES.get(style_type or "")
    if style_clause:
        parts.append(style_clause)

    preset_clause = PRESET_CLAUSES.get(style_preset or "")
    if preset_clause:
        parts.append(preset_clause)

    return " ".join(parts)


def enhance_prompt(
    base_prompt: str,
    style_type: str | None,
    style_preset: str | None,
    variant_index: int,
    total_variants: int,
) -> str:
    """Build the provider prompt for one variant.

    Args:
        base_prompt: The user's prompt.
        style_type: Requested style type, may be ``None``.
        style_preset: Requested style preset, may be ``None``.
        variant_index: Zero-based position of this variant.
        total_variants: Number of variants in the request.

    Returns:
        The enhanced prompt string. Never raises.
    """
    prompt = style_prompt(base_prompt, style_type, style_preset)

    if total_variants > 1 and 0 <= variant_index < len(VARIANT_CLAUSES):
        prompt = f"{prompt} {VARIANT_CLAUSES[variant_index]}"

    return prompt
