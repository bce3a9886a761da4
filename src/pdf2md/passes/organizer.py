"""Pass 4: organize extracted content into the final Markdown document.

Steps, in order:

1. Merge sections that continue across page breaks.
2. Repair heading levels that skip a level.
3. Pick where footnotes go from the document type.
4. Optionally prepend a linked table of contents.
5. Render sections, resolving footnote markers and image references.
6. Clean up whitespace, empty headings and rule variants.
"""

import logging
import re
from contextlib import contextmanager
from dataclasses import dataclass

from pdf2md.core.errors import OrganizationError
from pdf2md.models.profiles import (
    DocumentType,
    Footnote,
    FootnotePlacement,
    HeadingCorrection,
    ImageRef,
    RawContent,
    Section,
    StructureProfile,
    TocEntry,
)

log = logging.getLogger(__name__)

FOOTNOTE_PLACEMENT = {
    DocumentType.ACADEMIC: FootnotePlacement.DOCUMENT_END,
    DocumentType.BOOK: FootnotePlacement.SECTION_END,
    DocumentType.REPORT: FootnotePlacement.SECTION_END,
    DocumentType.MANUAL: FootnotePlacement.SECTION_END,
    DocumentType.MARKETING: FootnotePlacement.INLINE,
    DocumentType.LEGAL: FootnotePlacement.INLINE,
    DocumentType.OTHER: FootnotePlacement.INLINE,
}

# Existing [^1] markers and links are matched first so they are left alone
FOOTNOTE_MARKER = re.compile(
    r"(?P<keep>\[\^\d+\]|!?\[[^\]]*\]\([^)]*\))"
    r"|\[(?P<bracket>\d+)\](?!\()"
    r"|\((?P<paren>\d+)\)"
    r"|\^(?P<caret>\d+)"
)
IMAGE_REFERENCE = re.compile(r"\{\{image:([^}]+)\}\}|\[image:([^\]]+)\]")
TERMINAL_PUNCTUATION = re.compile(r"[.!?:;'\"]$")


@dataclass
class OrganizeOptions:
    include_toc: bool = True
    toc_max_level: int = 3
    add_section_spacing: bool = True


@contextmanager
def _step(name: str):
    """Report any failure inside the block as an OrganizationError."""
    try:
        yield
    except OrganizationError:
        raise
    except Exception as e:
        raise OrganizationError(name, str(e)) from e


# =============================================================================
# Continuations
# =============================================================================


def _find_root(section: Section, by_id: dict[str, Section]) -> Section:
    root = section
    seen = {section.id}
    while root.continues_from and root.continues_from in by_id:
        parent = by_id[root.continues_from]
        if parent.id in seen:
            log.warning(f"Continuation cycle at section {parent.id}")
            break
        seen.add(parent.id)
        root = parent
    return root


def _join_content(head: str, tail: str) -> str:
    head, tail = head.rstrip(), tail.strip()
    if not head:
        return tail
    if not tail:
        return head
    separator = "\n\n" if TERMINAL_PUNCTUATION.search(head) else " "
    return f"{head}{separator}{tail}"


def merge_continued_sections(sections: list[Section]) -> list[Section]:
    """Fold every continuation chain into its first section.

    Content is concatenated in document order, footnote and image refs are
    deduplicated, and chain members other than the root are dropped.
    Applying this twice gives the same result as applying it once.
    """
    by_id = {s.id: s for s in sections}
    chains: dict[str, list[Section]] = {}
    for section in sections:
        chains.setdefault(_find_root(section, by_id).id, []).append(section)

    merged: list[Section] = []
    for section in sections:
        chain = chains.get(section.id)
        if chain is None:
            continue
        if len(chain) == 1:
            merged.append(section)
            continue

        content = ""
        footnote_refs: list[str] = []
        image_refs: list[str] = []
        for member in chain:
            content = _join_content(content, member.content)
            footnote_refs.extend(member.footnote_refs)
            image_refs.extend(member.image_refs)

        merged.append(
            section.model_copy(
                update={
                    "content": content,
                    "footnote_refs": list(dict.fromkeys(footnote_refs)),
                    "image_refs": list(dict.fromkeys(image_refs)),
                }
            )
        )
    return merged


# =============================================================================
# Headings
# =============================================================================


def validate_heading_hierarchy(sections: list[Section]) -> dict[str, HeadingCorrection]:
    """Compute a corrected level for every section.

    The first heading may be level 1 or 2; later headings may go at most one
    level deeper than the previous heading. Level 0 (untitled text) is kept.
    """
    corrections: dict[str, HeadingCorrection] = {}
    last_level = 0

    for section in sections:
        if section.level == 0:
            corrections[section.id] = HeadingCorrection(original=0, corrected=0)
            continue

        corrected = section.level
        if last_level == 0:
            if section.level > 2:
                corrected = 1
        elif section.level > last_level + 1:
            corrected = last_level + 1

        corrections[section.id] = HeadingCorrection(
            original=section.level,
            corrected=corrected,
            was_fixed=corrected != section.level,
        )
        last_level = corrected

    return corrections


def heading_prefix(level: int) -> str:
    return "#" * level + " " if 1 <= level <= 6 else ""


# =============================================================================
# Footnotes, Images and TOC
# =============================================================================


def get_footnote_placement(document_type: DocumentType) -> FootnotePlacement:
    return FOOTNOTE_PLACEMENT.get(document_type, FootnotePlacement.INLINE)


def format_footnote(footnote_id: str, footnote: Footnote) -> str:
    return f"[^{footnote_id}]: {footnote.content}"


def format_footnote_block(footnotes: list[tuple[str, Footnote]]) -> str:
    if not footnotes:
        return ""
    lines = "\n".join(format_footnote(fid, f) for fid, f in footnotes)
    return f"\n\n---\n\n{lines}"


def normalize_footnote_markers(content: str) -> str:
    """Rewrite ``[1]``, ``(1)`` and ``^1`` markers as ``[^1]``."""

    def replace(match: re.Match) -> str:
        if match.group("keep"):
            return match.group("keep")
        number = match.group("bracket") or match.group("paren") or match.group("caret")
        return f"[^{number}]"

    return FOOTNOTE_MARKER.sub(replace, content)


def resolve_image_references(content: str, images: dict[str, ImageRef]) -> str:
    """Replace ``{{image:id}}`` and ``[image:id]`` with Markdown images.

    Decorative, unknown or uncropped images are removed.
    """

    def replace(match: re.Match) -> str:
        image_id = match.group(1) or match.group(2)
        image = images.get(image_id)
        if image is None or image.is_decorative or not image.data_url:
            return ""
        alt = image.description or f"Image {image_id}"
        return f"![{alt}]({image.data_url})"

    return IMAGE_REFERENCE.sub(replace, content)


def slugify(title: str) -> str:
    slug = re.sub(r"[^a-z0-9\s-]", "", title.lower())
    return re.sub(r"\s+", "-", slug)


def generate_toc(entries: list[TocEntry], max_level: int = 3) -> str:
    """Render TOC entries as an indented, anchor-linked list."""
    lines = ["## Table of Contents", ""]

    def render(entry: TocEntry, depth: int) -> None:
        if entry.level > max_level:
            return
        lines.append(f"{'  ' * depth}- [{entry.title}](#{slugify(entry.title)})")
        for child in entry.children:
            render(child, depth + 1)

    for entry in entries:
        render(entry, 0)

    lines.append("")
    return "\n".join(lines)


def render_section(section: Section, heading_level: int, images: dict[str, ImageRef]) -> str:
    parts: list[str] = []
    if section.title and heading_level > 0:
        parts.extend([f"{heading_prefix(heading_level)}{section.title}", ""])

    content = resolve_image_references(normalize_footnote_markers(section.content), images)
    if content.strip():
        parts.append(content)

    return "\n".join(parts)


# =============================================================================
# Cleanup
# =============================================================================


def cleanup_markdown(markdown: str) -> str:
    """Normalize whitespace, headings and rules.

    Runs of three or more blank lines collapse to two, trailing whitespace
    is stripped, empty headings are dropped, doubled heading markers are
    merged, rules become ``---``, and the text ends in exactly one newline.
    Idempotent.
    """
    cleaned = re.sub(r"[ \t]+$", "", markdown, flags=re.MULTILINE)
    cleaned = re.sub(r"^[-*+][ \t]*$", "", cleaned, flags=re.MULTILINE)
    cleaned = re.sub(r"^#{1,6}[ \t]*$", "", cleaned, flags=re.MULTILINE)
    cleaned = re.sub(r"^(#{1,6})(?:[ \t]+\1)+[ \t]+", r"\1 ", cleaned, flags=re.MULTILINE)
    cleaned = re.sub(r"^(?:-{3,}|\*{3,}|_{3,})$", "---", cleaned, flags=re.MULTILINE)
    cleaned = re.sub(r"\n{4,}", "\n\n\n", cleaned)
    return cleaned.strip() + "\n"


# =============================================================================
# Main Entry Point
# =============================================================================


def organize_content(
    raw: RawContent, structure: StructureProfile, options: OrganizeOptions | None = None
) -> str:
    """Assemble the final Markdown document.

    Raises:
        OrganizationError: Naming the step that failed.
    """
    options = options or OrganizeOptions()
    output: list[str] = []

    with _step("merge"):
        sections = merge_continued_sections(raw.sections)

    with _step("hierarchy"):
        corrections = validate_heading_hierarchy(sections)

    placement = get_footnote_placement(structure.document_type)

    if options.include_toc and structure.toc.entries:
        with _step("toc"):
            output.append(generate_toc(structure.toc.entries, options.toc_max_level))

    used: set[str] = set()
    chapter_notes: list[tuple[str, Footnote]] = []
    document_notes: list[tuple[str, Footnote]] = []

    for section in sections:
        correction = corrections.get(section.id)
        level = correction.corrected if correction else section.level

        if placement == FootnotePlacement.SECTION_END and level == 1 and chapter_notes:
            output.append(format_footnote_block(chapter_notes))
            output.append("")
            chapter_notes = []

        with _step(f"render {section.id}"):
            markdown = render_section(section, level, raw.images)
        if markdown.strip():
            output.append(markdown)
            if options.add_section_spacing:
                output.append("")

        for ref in section.footnote_refs:
            footnote = raw.footnotes.get(ref)
            if ref in used or footnote is None:
                continue
            used.add(ref)
            if placement == FootnotePlacement.INLINE:
                output.extend([format_footnote(ref, footnote), ""])
            elif placement == FootnotePlacement.SECTION_END:
                chapter_notes.append((ref, footnote))
            else:
                document_notes.append((ref, footnote))

    if chapter_notes:
        output.append(format_footnote_block(chapter_notes))

    if document_notes:
        output.extend(["", "---", "", "## Notes", ""])
        output.extend(format_footnote(fid, f) for fid, f in document_notes)

    with _step("cleanup"):
        markdown = cleanup_markdown("\n".join(output))

    log.info(
        f"Organized {len(sections)} sections "
        f"({sum(c.was_fixed for c in corrections.values())} heading fixes, "
        f"{len(used)} footnotes, placement {placement.value})"
    )
    return markdown
