"""Architecture-docs context: the repository documentation a diff touches.

A repository can keep markdown notes under ``.arch-docs/``. Each file is split
at its headings, sections are ranked by keyword overlap with the pull request
(title, changed paths, imported modules, class and function names), and the
best ones are rendered into a block that the analysis prompts include as is.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from pr_analyst.config import (
    ARCH_DOCS_DIR,
    ARCH_DOCS_HEADING_WEIGHT,
    ARCH_DOCS_KEY_DOC_RELEVANCE,
    ARCH_DOCS_KEY_DOCS,
    ARCH_DOCS_MAX_KEYWORDS,
    ARCH_DOCS_MAX_SECTIONS,
    ARCH_DOCS_PATH_TOPICS,
    ARCH_DOCS_PHRASE_WEIGHT,
    ARCH_DOCS_RESULTS_PER_KEYWORD,
    ARCH_DOCS_STOPWORDS,
    ARCH_DOCS_WORD_WEIGHT,
)
from pr_analyst.models import FileChange

logger = logging.getLogger(__name__)

_HEADING_RE = re.compile(r"^(#{1,6})\s+(.+)$")
_NAME_SPLIT_RE = re.compile(r"[/\-_.]")
_JS_IMPORT_RE = re.compile(r"import\s+.*?\s+from\s+['\"]([^'\"]+)['\"]")
_PY_IMPORT_RE = re.compile(
    r"^[+\- ]?\s*(?:from\s+([\w.]+)\s+import|import\s+([\w.]+))", re.MULTILINE
)
_DEFINITION_RE = re.compile(r"\b(?:class|def|function)\s+(\w+)")


@dataclass(frozen=True)
class DocSection:
    heading: str
    level: int
    content: str


@dataclass(frozen=True)
class ArchDoc:
    """One markdown file split at its headings."""

    filename: str  # file stem, e.g. "architecture"
    title: str
    sections: list[DocSection] = field(default_factory=list)


@dataclass(frozen=True)
class RelevantSection:
    doc: ArchDoc
    section: DocSection
    relevance: int


def parse_doc(filename: str, text: str) -> ArchDoc:
    """Split markdown into heading-delimited sections.

    Text before the first heading belongs to no section. A level-1 heading
    that opens the file becomes the title; otherwise the file name does.
    """
    title = filename[:1].upper() + filename[1:].replace("-", " ")
    sections: list[DocSection] = []
    heading: Optional[str] = None
    level = 0
    body: list[str] = []

    for line in text.splitlines():
        match = _HEADING_RE.match(line)
        if not match:
            if heading is not None:
                body.append(line)
            continue
        if heading is not None:
            sections.append(DocSection(heading, level, "\n".join(body)))
        elif len(match.group(1)) == 1:
            title = match.group(2).strip()
        heading, level, body = match.group(2).strip(), len(match.group(1)), []

    if heading is not None:
        sections.append(DocSection(heading, level, "\n".join(body)))
    return ArchDoc(filename=filename, title=title, sections=sections)


def load_docs(repo_path: str | Path) -> list[ArchDoc]:
    """Parse every ``*.md`` file in the repository's docs folder, by name."""
    folder = Path(repo_path) / ARCH_DOCS_DIR
    if not folder.is_dir():
        return []
    try:
        paths = sorted(p for p in folder.iterdir() if p.suffix == ".md" and p.is_file())
    except OSError as e:
        logger.warning("Could not list %s: %s", folder, e)
        return []

    docs = []
    for path in paths:
        try:
            text = path.read_text(encoding="utf-8", errors="replace")
        except OSError as e:
            logger.warning("Skipping unreadable architecture doc %s: %s", path.name, e)
            continue
        docs.append(parse_doc(path.stem, text))
    return docs


def score_section(section: DocSection, query: str) -> int:
    text = f"{section.heading} {section.content}".lower()
    query = query.lower()
    relevance = 0
    if query in text:
        relevance += ARCH_DOCS_PHRASE_WEIGHT
    for word in query.split():
        if len(word) > 2:
            relevance += text.count(word) * ARCH_DOCS_WORD_WEIGHT
    if query in section.heading.lower():
        relevance += ARCH_DOCS_HEADING_WEIGHT
    return relevance


def search(docs: list[ArchDoc], query: str, max_results: int = 5) -> list[RelevantSection]:
    """Sections with a positive score, best first (ties keep document order)."""
    hits = []
    for doc in docs:
        for section in doc.sections:
            relevance = score_section(section, query)
            if relevance > 0:
                hits.append(RelevantSection(doc, section, relevance))
    hits.sort(key=lambda hit: -hit.relevance)
    return hits[:max_results]


def extract_keywords(
    files: list[FileChange], title: Optional[str] = None, diff_text: str = ""
) -> list[str]:
    """Search terms for a pull request, in discovery order."""
    keywords: dict[str, None] = {}

    def add(word: str) -> None:
        word = word.lower()
        if len(word) > 3 and word not in ARCH_DOCS_STOPWORDS:
            keywords.setdefault(word, None)

    for word in (title or "").split():
        add(word)

    for file in files:
        for part in _NAME_SPLIT_RE.split(file.path):
            add(part)
        path = file.path.lower()
        for fragment, topic in ARCH_DOCS_PATH_TOPICS.items():
            if fragment in path:
                keywords.setdefault(topic, None)

    modules = [m.group(1) for m in _JS_IMPORT_RE.finditer(diff_text)]
    modules += [m.group(1) or m.group(2) for m in _PY_IMPORT_RE.finditer(diff_text)]
    for module in modules:
        for part in _NAME_SPLIT_RE.split(module):
            add(part)
    for match in _DEFINITION_RE.finditer(diff_text):
        add(match.group(1))

    return list(keywords)[:ARCH_DOCS_MAX_KEYWORDS]


def build_context(
    docs: list[ArchDoc],
    files: list[FileChange],
    title: Optional[str] = None,
    diff_text: str = "",
) -> list[RelevantSection]:
    """The most relevant sections for this pull request.

    Each keyword contributes its best hits; a section found by several
    keywords keeps its highest score. The opening section of every key
    document is always offered at a low base relevance.
    """
    if not docs:
        return []

    best: dict[tuple[str, str], RelevantSection] = {}
    for keyword in extract_keywords(files, title, diff_text):
        for hit in search(docs, keyword, ARCH_DOCS_RESULTS_PER_KEYWORD):
            key = (hit.doc.filename, hit.section.heading)
            if key not in best or hit.relevance > best[key].relevance:
                best[key] = hit

    by_name = {doc.filename: doc for doc in docs}
    for name in ARCH_DOCS_KEY_DOCS:
        doc = by_name.get(name)
        if doc is None or not doc.sections:
            continue
        first = doc.sections[0]
        best.setdefault(
            (doc.filename, first.heading),
            RelevantSection(doc, first, ARCH_DOCS_KEY_DOC_RELEVANCE),
        )

    ranked = sorted(best.values(), key=lambda hit: -hit.relevance)
    return ranked[:ARCH_DOCS_MAX_SECTIONS]


def format_for_prompt(sections: list[RelevantSection]) -> str:
    if not sections:
        return ""
    parts = [
        "Repository Architecture Context:",
        "The following sections from the architecture documentation are "
        "relevant to this PR:",
        "",
    ]
    for hit in sections:
        parts += [
            f"[{hit.doc.title} - {hit.section.heading}]",
            hit.section.content.strip(),
            "---",
        ]
    return "\n".join(parts)


def load_context(
    repo_path: str | Path,
    files: list[FileChange],
    title: Optional[str] = None,
    diff_text: str = "",
) -> str:
    """Prompt-ready architecture context, or "" when the repo has no docs."""
    docs = load_docs(repo_path)
    if not docs:
        logger.debug("No architecture docs under %s", repo_path)
        return ""
    sections = build_context(docs, files, title, diff_text)
    logger.info(
        "Architecture docs: %d section(s) selected from %d document(s)",
        len(sections),
        len(docs),
    )
    return format_for_prompt(sections)
