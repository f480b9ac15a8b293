import re

SUMMARY_LENGTH = 150

takeaway_pattern = re.compile(r'^>\s*-\s*(.+)$')
concept_pattern = re.compile(r'\*\*([^*\n]+?)\*\*')


def extract_takeaways(content: str) -> list[str]:
    """
    Extract key takeaways from the closing blockquote of a lesson.

    The lesson prompt asks for the takeaways as `> - takeaway` lines at the very end,
    so only the trailing blockquote is considered.
    """
    lines = content.rstrip().splitlines()
    blockquote: list[str] = []
    for line in reversed(lines):
        stripped = line.strip()
        if not stripped.startswith('>'):
            break
        blockquote.append(stripped)

    takeaways = []
    for line in reversed(blockquote):
        match = takeaway_pattern.match(line)
        if match:
            takeaways.append(match.group(1).strip())
    return takeaways


def extract_summary(content: str, length: int = SUMMARY_LENGTH) -> str:
    """First paragraph that is neither a heading nor the takeaways blockquote"""
    for paragraph in content.split('\n\n'):
        paragraph = paragraph.strip()
        if not paragraph or paragraph.startswith(('#', '>')):
            continue
        if len(paragraph) > length:
            return paragraph[:length] + '...'
        return paragraph
    return ''


def extract_concepts(content: str) -> list[str]:
    """Bold terms of a lesson, unique and in order of appearance"""
    concepts: dict[str, str] = {}
    for match in concept_pattern.finditer(content):
        concept = match.group(1).strip()
        if concept:
            concepts.setdefault(concept.lower(), concept)
    return list(concepts.values())
