"""
Prompt composition for annotation-driven code changes.
Turns an annotation payload plus the user's comment into the prompt handed to the coding-agent CLI.
"""

from typing import Any, Dict, Optional


# ============================================================
# Templates
# ============================================================

_FAST_SUFFIX = "Make the change directly, no explanation needed."

_DETAILED_SUFFIX = "Make minimal changes. No explanation needed."

_DRAWING_TEMPLATE = """You are a Principal Front-End Engineer. Interpret the user's sketch and build a polished, production-ready React component from it.

## User's Request
"{comment}"

## Drawing Context
{context}

## Implementation Guidelines
- Use Tailwind CSS classes or inline styles consistent with the existing page
- Do NOT use hardcoded pixel positions; integrate with the page flow using flexbox, grid or relative positioning
- Treat rectangles as cards, containers, buttons or inputs depending on context; text as headings or labels
- Red marks in the drawing are instructions, not content
- Use semantic HTML and ARIA attributes where appropriate

Make the changes directly. Insert the component at the appropriate location in the page. No explanation needed."""


def _target_of(annotation: Dict[str, Any]) -> str:
    text = annotation.get("text") or ""
    selector = annotation.get("selector") or ""
    tag = (annotation.get("tagName") or "").lower()
    if text:
        return f'"{text[:50]}"'
    if selector:
        return f"`{selector}`"
    if tag:
        return f"<{tag}>"
    return ""


def _bbox_text(annotation: Dict[str, Any]) -> str:
    bbox = annotation.get("boundingBox") or {}
    return f"({bbox.get('x')}, {bbox.get('y')})"


def _drawing_context(annotation: Dict[str, Any], project_context: Dict[str, Any],
                     vision_description: Optional[str]) -> str:
    lines = []
    bbox = annotation.get("boundingBox")
    viewport = annotation.get("viewport") or project_context.get("viewport")
    if bbox and viewport and viewport.get("width") and viewport.get("height"):
        rel_x = bbox.get("x", 0) / viewport["width"] * 100
        rel_y = bbox.get("y", 0) / viewport["height"] * 100
        lines.append(f"**Drawing Location:** approximately {rel_x:.1f}% from left, {rel_y:.1f}% from top of viewport")
    elif bbox:
        lines.append(f"**Drawing Area:** {round(bbox.get('width', 0))}x{round(bbox.get('height', 0))}px")
    if project_context.get("pathname"):
        lines.append(f"**Page:** {project_context['pathname']}")
    nearby = annotation.get("nearbyElements") or []
    if nearby:
        lines.append("**Nearby DOM Elements (for placement reference):**")
        for el in nearby[:5]:
            desc = f"- <{str(el.get('tagName', '')).lower()}>"
            if el.get("text"):
                desc += f': "{el["text"][:50]}"'
            if el.get("selector"):
                desc += f" ({el['selector']})"
            lines.append(desc)
    if annotation.get("extractedText"):
        lines.append(f"**Text found in drawing:**\n{annotation['extractedText']}")
    if vision_description:
        lines.append(f"## Visual Analysis of Drawing\n{vision_description}")
    return "\n".join(lines) or "(no positional context)"


def build_prompt(
    annotation: Dict[str, Any],
    comment: str = "",
    project_context: Optional[Dict[str, Any]] = None,
    fast_mode: bool = True,
    vision_description: Optional[str] = None,
) -> str:
    """Compose the agent prompt for one annotation."""
    project_context = project_context or {}
    comment = comment or annotation.get("comment") or ""
    kind = annotation.get("type")

    if kind == "drawing":
        return _DRAWING_TEMPLATE.format(
            comment=comment or "Create a component based on this drawing",
            context=_drawing_context(annotation, project_context, vision_description),
        )

    if fast_mode:
        target = _target_of(annotation)
        if kind == "gesture":
            target = target or f"{annotation.get('gesture', 'gesture')} at {_bbox_text(annotation)}"
        return f"{comment}{f' (target: {target})' if target else ''}. {_FAST_SUFFIX}"

    prompt = f'Make this code change: "{comment or "No specific comment provided"}"\n\nElement: '
    if kind == "dom_selection":
        prompt += f"<{(annotation.get('tagName') or 'unknown').lower()}>"
        if annotation.get("selector"):
            prompt += f" | selector: {annotation['selector']}"
        if annotation.get("text"):
            prompt += f' | text: "{annotation["text"][:100]}"'
        elements = annotation.get("elements") or []
        if len(elements) > 1:
            prompt += f"\n{len(elements)} elements selected"
    elif kind == "gesture":
        prompt += f"gesture: {annotation.get('gesture', 'unknown')} at {_bbox_text(annotation)}"
        if annotation.get("target"):
            prompt += f" | target: {annotation['target']}"
    else:
        prompt += f"annotation at {_bbox_text(annotation)}"
    return f"{prompt}\n\n{_DETAILED_SUFFIX}"
