"""MCP tool definitions for the pull-request analyst."""

from __future__ import annotations

import asyncio
import json
import logging
import traceback
from typing import Optional

from fastmcp import Context, FastMCP

from pr_analyst.analyzer import analyze as _analyze
from pr_analyst.analyzer import rank_files as _rank_files
from pr_analyst.cache import ResultCache
from pr_analyst.errors import InvalidRequestError
from pr_analyst.models import AnalysisMode, AnalysisOptions
from pr_analyst.source_host import GitHubSource, LocalGitSource, SourceHost

logger = logging.getLogger(__name__)


def _error_response(tool_name: str, error: Exception) -> str:
    """Build a structured JSON error response for MCP tool failures."""
    logger.error("Tool %s failed: %s\n%s", tool_name, error, traceback.format_exc())
    return json.dumps(
        {
            "status": "ERROR",
            "summary": f"Tool '{tool_name}' failed: {error}",
            "error": str(error),
            "error_type": type(error).__name__,
        },
        indent=2,
    )


def _make_progress_bridge(ctx: Context, loop: asyncio.AbstractEventLoop):
    """Create a sync callback that sends MCP log notifications during analysis.

    Uses ctx.log (not ctx.report_progress) because log notifications do not
    need a progressToken from the client. Safe to call from worker threads.
    """
    call_count = 0

    def on_progress(chars_so_far: int, elapsed: float, message: str) -> None:
        nonlocal call_count
        call_count += 1
        try:
            future = asyncio.run_coroutine_threadsafe(
                ctx.log(
                    message=f"[pr-analyst] {message}",
                    level="info",
                    logger_name="pr_analyst",
                ),
                loop,
            )
            future.result(timeout=2.0)
        except Exception as e:
            logger.warning("Log notification failed (call #%d): %s", call_count, e)

    return on_progress


def _build_source(
    github_repo: Optional[str],
    repo_path: Optional[str],
    head_ref: Optional[str],
    base_ref: Optional[str],
) -> Optional[SourceHost]:
    if github_repo and repo_path:
        raise InvalidRequestError("Pass either github_repo or repo_path, not both")
    if github_repo:
        owner, sep, name = github_repo.partition("/")
        if not sep or not owner or not name:
            raise InvalidRequestError(
                f"github_repo must look like 'owner/name', got {github_repo!r}"
            )
        return GitHubSource(owner, name, head_ref=head_ref or "HEAD", base_ref=base_ref)
    if repo_path:
        kwargs = {}
        if head_ref:
            kwargs["head_ref"] = head_ref
        if base_ref:
            kwargs["base_ref"] = base_ref
        return LocalGitSource(repo_path, **kwargs)
    return None


def register_tools(mcp: FastMCP, cache: Optional[ResultCache] = None) -> None:
    """Register all analysis tools on the given FastMCP server instance."""
    cache = cache or ResultCache()

    @mcp.tool()
    async def analyze_diff(
        diff: str,
        ctx: Context,
        title: Optional[str] = None,
        summary: bool = True,
        risks: bool = True,
        complexity: bool = True,
        output_format: str = "terminal",
        no_cache: bool = False,
        chunked: Optional[bool] = None,
        github_repo: Optional[str] = None,
        repo_path: Optional[str] = None,
        head_ref: Optional[str] = None,
        base_ref: Optional[str] = None,
        use_arch_docs: bool = True,
    ) -> str:
        """Analyze a pull-request diff: summary, critical risks and complexity.

        Small diffs are reviewed file by file in priority order and then
        synthesized; very large diffs are split into overlapping chunks that
        are reviewed in parallel.

        Args:
            diff: The unified diff output (e.g., from `git diff main...HEAD`)
            title: Optional pull-request title for extra context
            summary: Include a summary section
            risks: Include a potential-risks section
            complexity: Include a 1-5 complexity rating
            output_format: "terminal" (plain labels) or "markdown" (### headers)
            no_cache: Skip both reading and writing the result cache
            chunked: Force (true) or forbid (false) the chunked path;
                     chosen by diff size when omitted
            github_repo: Optional "owner/name" to fetch full added/deleted files
            repo_path: Optional local checkout to fetch full added/deleted files;
                       its .arch-docs/ folder, if any, adds architecture context
            head_ref: Ref holding new file contents (default HEAD)
            base_ref: Ref holding deleted file contents
            use_arch_docs: Include matching .arch-docs/ sections from repo_path
        """
        source = None
        try:
            source = _build_source(github_repo, repo_path, head_ref, base_ref)
            loop = asyncio.get_running_loop()
            on_progress = _make_progress_bridge(ctx, loop)

            result = await asyncio.to_thread(
                _analyze,
                diff,
                title,
                AnalysisMode(summary=summary, risks=risks, complexity=complexity),
                AnalysisOptions(
                    no_cache=no_cache,
                    chunked=chunked,
                    output_format=output_format,
                    use_arch_docs=use_arch_docs,
                    repo_path=repo_path,
                ),
                source=source,
                cache=cache,
                on_progress=on_progress,
            )
            return result.to_json()
        except Exception as e:
            return _error_response("analyze_diff", e)
        finally:
            if isinstance(source, GitHubSource):
                source.close()

    @mcp.tool()
    async def prioritize_files(diff: str) -> str:
        """List the files of a diff in the order the analyst would review them.

        Skipped paths (build output, lockfiles, vendored code) are omitted.

        Args:
            diff: The unified diff output
        """
        try:
            ranked = await asyncio.to_thread(_rank_files, diff)
            return json.dumps({"files": ranked, "total": len(ranked)}, indent=2)
        except Exception as e:
            return _error_response("prioritize_files", e)

    @mcp.tool()
    async def clear_cache() -> str:
        """Delete every cached analysis result."""
        try:
            removed = await asyncio.to_thread(cache.clear)
            return json.dumps({"status": "OK", "removed": removed}, indent=2)
        except Exception as e:
            return _error_response("clear_cache", e)
