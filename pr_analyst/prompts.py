"""System prompts and user message builders for each oracle call."""

from __future__ import annotations

from pr_analyst.config import PERSONA
from pr_analyst.models import (
    Action,
    AnalysisMode,
    Chunk,
    ChunkAnalysis,
    FileChange,
    FileStatus,
    Strategy,
)


def _header(name: str, output_format: str) -> str:
    return f"### {name}" if output_format == "markdown" else f"{name}:"


def _format_rules(output_format: str) -> str:
    if output_format == "markdown":
        return """**OUTPUT FORMATTING** (MARKDOWN):
- Use the exact headers shown (### Summary, ### Potential Risks, ### Complexity)
- Use inline code backticks for function, class and import names
- Use bullet points (-) for lists"""
    return """**OUTPUT FORMATTING** (TERMINAL/CLI):
- DO NOT use markdown headers (no ## or ###); use plain labels like "Summary:"
- Use simple bullet points with dashes (-)
- Keep lines concise and readable in monospace terminals"""


def _requested_sections(mode: AnalysisMode, output_format: str) -> str:
    sections = []
    if mode.summary:
        sections.append(
            f"{_header('Summary', output_format)}\n"
            "[Brief summary of what the change does and its purpose]"
        )
    if mode.risks:
        sections.append(
            f"{_header('Potential Risks', output_format)}\n"
            "[ONLY critical risks that would BREAK the build or cause runtime "
            "failures. Format each as \"- [File: path/to/file] Description "
            "(line X)\" or write \"None\" if there are no critical risks]"
        )
    if mode.complexity:
        sections.append(
            f"{_header('Complexity', output_format)}\n"
            "[A single number 1-5, where 1=trivial, 3=moderate, 5=very complex]"
        )
    return "\n\n".join(sections)


# ── per-file analysis ────────────────────────────────────────────────────────

FILE_ANALYSIS_SYSTEM = f"""{PERSONA}

Only flag risks that would actually prevent the code from building or running:
- Missing imports or incorrect import paths
- Type errors that block compilation
- Deleted or renamed exports that other files still use
- Circular dependencies causing build failures
- Syntax errors
- New imports that need a dependency manifest update

Do NOT include unused imports, code style, or minor refactoring suggestions.
Start directly with the analysis (no introductions) and omit any section that
is not requested."""


_STATUS_CONTEXT = {
    FileStatus.ADDED: (
        "This is a NEW FILE being added to the repository. "
        "The following is the COMPLETE NEW FILE:"
    ),
    FileStatus.DELETED: (
        "This file is being DELETED. Analyze what functionality is removed, "
        "whether the deletion breaks dependents, and whether tests or "
        "documentation need updating. The following shows the DELETED FILE "
        "and its removal:"
    ),
    FileStatus.RENAMED: (
        "This file is being RENAMED. Check that every importer follows the "
        "new path. The following is the diff:"
    ),
    FileStatus.MODIFIED: (
        "This is a MODIFIED FILE. The following is the diff that needs reviewing:"
    ),
}

_ARCH_GUIDANCE = (
    "Flag a change that contradicts the documented architecture only when it "
    "would break the build or the runtime."
)


def build_file_analysis_message(
    file: FileChange,
    content: str,
    mode: AnalysisMode,
    output_format: str = "terminal",
    title: str | None = None,
    group_paths: list[str] | None = None,
    full_content: bool = False,
    arch_context: str = "",
) -> str:
    """Build the user message for analyzing one file.

    ``full_content`` is True when ``content`` holds the whole file fetched
    from the source host rather than only the diff. ``arch_context`` is the
    rendered architecture-docs block, if any.
    """
    context = _STATUS_CONTEXT[file.status]
    if file.status in (FileStatus.ADDED, FileStatus.DELETED) and not full_content:
        context += " (full content not available, showing diff)"

    parts = [context, "", content, ""]
    label = f"Analyzing {file.display_name}"
    if group_paths:
        label += " (in group context)"
    parts.append(f"File: {label}")
    if file.old_path and file.status == FileStatus.RENAMED:
        parts.append(f"Previous path: {file.old_path}")
    if file.language:
        parts.append(f"Language: {file.language}")
    if group_paths:
        parts.append(f"Group: {', '.join(group_paths)}")
    if title:
        parts.append(f"PR Title: {title}")
    if arch_context:
        parts += ["", arch_context, "", _ARCH_GUIDANCE]

    parts += [
        "",
        "You MUST respond in EXACTLY this format:",
        "",
        _format_rules(output_format),
        "",
        _requested_sections(mode, output_format),
    ]
    return "\n".join(parts)


# ── agent reasoning ──────────────────────────────────────────────────────────

REASONING_SYSTEM = """You are a PR analysis agent. You have access to these tools:

- analyze_file: Analyze a single file from the diff. Returns a summary, risks and complexity.
- analyze_group: Analyze a group of related files (same directory or feature) one after another.
- synthesize: Combine all analyzed files into overall findings.

Think step by step, then answer with a single JSON object and nothing else."""


def build_strategy_message(files: list[FileChange], title: str | None, preview: int) -> str:
    """Build the planning request that picks an analysis strategy."""
    names = ", ".join(f.path for f in files[:preview])
    if len(files) > preview:
        names += f"... and {len(files) - preview} more"
    total_lines = sum(f.changed_lines for f in files)
    languages = sorted({f.language for f in files if f.language})
    choices = " | ".join(f'"{s.value}"' for s in Strategy)

    return f"""I need to analyze a PR with {len(files)} files.

PR Title: {title or 'Untitled'}
Files: {names}
Languages: {', '.join(languages) or 'unknown'}
Changed lines: {total_lines}

What analysis strategy should I use?
- comprehensive: Analyze all files thoroughly
- focused: Focus on high-risk/important files only
- deep-dive: Deep analysis of critical files, summary of others

Return JSON: {{"strategy": {choices}, "reasoning": "..."}}"""


def build_next_action_message(
    strategy: Strategy,
    analyzed_count: int,
    pending: list[FileChange],
    risk_count: int,
    insight_count: int,
    preview: int,
    required_before_synthesis: int,
) -> str:
    """Build the request that asks which action the loop should take next."""
    top = "\n".join(
        f"{i + 1}. {f.path} ({f.additions}+ {f.deletions}-, {f.status})"
        for i, f in enumerate(pending[:preview])
    )
    actions = " | ".join(f'"{a.value}"' for a in Action)

    return f"""Current state:
- Strategy: {strategy}
- Analyzed {analyzed_count} files
- Pending: {len(pending)} files
- Risks found: {risk_count}
- Insights: {insight_count}

Top priority pending files:
{top}

You MUST return an action to ANALYZE files. Available actions:
- "analyze_file": Analyze a single file (use for important/complex files)
- "analyze_group": Analyze multiple related files together (use for small related changes)
- "synthesize": ONLY when nearly all files are analyzed (need at least {required_before_synthesis} more before synthesizing)

Choose files from the priority list above. Return JSON with action and target file paths:
{{"action": {actions}, "reasoning": "why this action", "targets": ["path1", "path2"]}}"""


# ── synthesis ────────────────────────────────────────────────────────────────

SYNTHESIS_SYSTEM = f"""{PERSONA}

You are synthesizing per-file PR analysis findings into one overall review.
Describe the overall purpose and scope, how the changes fit together, and
the key components involved. Only repeat CRITICAL/BREAKING risks, remove
duplicate information, and focus on actionable, high-priority items."""


def build_synthesis_message(
    file_summaries: str,
    context_log: list[str],
    analyzed_count: int,
    output_format: str = "terminal",
    title: str | None = None,
    arch_context: str = "",
) -> str:
    """Build the user message for the file-level synthesis call."""
    arch_block = f"\n{arch_context}\n" if arch_context else ""
    return f"""You are synthesizing PR analysis findings from {analyzed_count} analyzed files.
{f'PR Title: {title}' if title else ''}

Analyzed Files Summary:
{file_summaries or 'No file summaries available'}

Current Context:
{chr(10).join(context_log) or 'No additional context'}
{arch_block}
{_format_rules(output_format)}

Please provide:

{_header('Summary', output_format)}
[Comprehensive overall PR summary]

{_header('Risks', output_format)}
[Critical risks only, "- [File: path/to/file] Description", or "None"]

{_header('Complexity', output_format)}
[Overall rating 1-5]

{_header('Recommendations', output_format)}
[Priority recommendations as "- " bullets]"""


# ── chunked path ─────────────────────────────────────────────────────────────


def build_chunk_message(
    chunk: Chunk,
    total: int,
    mode: AnalysisMode,
    output_format: str = "terminal",
    title: str | None = None,
    arch_context: str = "",
) -> str:
    """Build the user message for one chunk of an oversized diff."""
    parts = [
        f"You are analyzing chunk {chunk.index + 1} of {total} from a large pull request.",
    ]
    if title:
        parts.append(f"PR Title: {title} (chunk {chunk.index + 1}/{total})")
    if chunk.overlap_lines:
        parts.append(
            f"The first {chunk.overlap_lines} lines repeat the end of the "
            "previous chunk for context; do not report them twice."
        )
    parts += [
        "",
        "This is a portion of the PR diff:",
        chunk.content,
        "",
        "Keep the analysis concise and focused on this specific portion.",
        "",
    ]
    if arch_context:
        parts += [arch_context, "", _ARCH_GUIDANCE, ""]
    parts += [
        _format_rules(output_format),
        "",
        _requested_sections(mode, output_format),
    ]
    return "\n".join(parts)


def build_consolidation_message(
    analyses: list[ChunkAnalysis],
    risks: list[str],
    output_format: str = "terminal",
    title: str | None = None,
) -> str:
    """Build the final request that merges per-chunk analyses into one review."""
    combined = "\n\n".join(f"[Part {a.index + 1}] {a.summary}" for a in analyses)
    risk_lines = "\n".join(f"- {r}" for r in risks) or "None identified"

    return f"""This is a synthesized analysis from {len(analyses)} parts of a large pull request.
{f'PR Title: {title} (Aggregated from {len(analyses)} parts)' if title else ''}

Analysis Summary:
{combined}

Consolidated Risks Identified:
{risk_lines}

Please provide a cohesive, comprehensive analysis that synthesizes these parts into a unified review.

{_format_rules(output_format)}

{_header('Summary', output_format)}

{_header('Complexity', output_format)}
[Overall rating 1-5]

{_header('Recommendations', output_format)}"""
