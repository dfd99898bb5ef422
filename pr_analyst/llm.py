"""Bedrock inference client — the completion oracle behind every analysis step."""

from __future__ import annotations

import json
import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from pr_analyst.config import (
    ANALYSIS_TEMPERATURE,
    BEDROCK_CONNECT_TIMEOUT,
    BEDROCK_MAX_TOKENS,
    BEDROCK_MODEL_ID,
    BEDROCK_PROFILE,
    BEDROCK_READ_TIMEOUT,
    BEDROCK_REGION,
    CHUNK_MAX_WORKERS,
    USAGE_LOG_PATH,
)
from pr_analyst.errors import ConfigurationError, OracleError

logger = logging.getLogger(__name__)

# Type alias for progress callbacks: (chars_so_far, elapsed_seconds, message) -> None
ProgressCallback = Callable[[int, float, str], None]


@dataclass(frozen=True)
class Completion:
    """Text returned by the oracle plus its token accounting."""

    text: str
    input_tokens: int = 0
    output_tokens: int = 0
    stop_reason: str = "end_turn"

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens

    @property
    def truncated(self) -> bool:
        return self.stop_reason == "max_tokens"


# Signature shared by invoke() and the fakes used in tests:
# complete(system_prompt, user_message, *, tool, max_tokens, temperature, on_progress)
CompletionFn = Callable[..., Completion]

# Module-level client, created once and shared between threads
_client = None
_client_lock = threading.Lock()

# ── Usage log setup ──────────────────────────────────────────────────────────

_usage_logger = None
_usage_lock = threading.Lock()


def _get_usage_logger() -> logging.Logger:
    """Lazy-init a dedicated file logger for token usage."""
    global _usage_logger
    with _usage_lock:
        if _usage_logger is not None:
            return _usage_logger

        usage_logger = logging.getLogger("pr_analyst.usage")
        usage_logger.setLevel(logging.INFO)
        usage_logger.propagate = False  # Don't duplicate to root logger

        log_path = Path(USAGE_LOG_PATH)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        # Check before the handler creates the file
        needs_header = not log_path.exists() or log_path.stat().st_size == 0

        if not usage_logger.handlers:
            handler = logging.FileHandler(str(log_path), mode="a")
            handler.setFormatter(logging.Formatter("%(message)s"))
            usage_logger.addHandler(handler)

        if needs_header:
            usage_logger.info(
                "timestamp\tmodel\ttool\tinput_tokens\toutput_tokens\ttotal_tokens\tlatency_ms"
            )

        _usage_logger = usage_logger
        return _usage_logger


def _log_usage(
    tool: str,
    input_tokens: int,
    output_tokens: int,
    latency_ms: int,
) -> None:
    """Log token usage to both the usage log file and the standard logger."""
    total = input_tokens + output_tokens

    logger.info(
        "Bedrock usage [%s]: input=%d output=%d total=%d latency=%dms model=%s",
        tool,
        input_tokens,
        output_tokens,
        total,
        latency_ms,
        BEDROCK_MODEL_ID,
    )

    usage = _get_usage_logger()
    ts = datetime.now(timezone.utc).isoformat()
    usage.info(
        "%s\t%s\t%s\t%d\t%d\t%d\t%d",
        ts,
        BEDROCK_MODEL_ID,
        tool,
        input_tokens,
        output_tokens,
        total,
        latency_ms,
    )


# ── Bedrock client ───────────────────────────────────────────────────────────


def _session() -> boto3.Session:
    return boto3.Session(profile_name=BEDROCK_PROFILE, region_name=BEDROCK_REGION)


def _get_client():
    """Lazy-init the Bedrock Runtime client using the configured AWS profile."""
    global _client
    with _client_lock:
        if _client is None:
            _client = _session().client(
                "bedrock-runtime",
                config=BotoConfig(
                    retries={"max_attempts": 2, "mode": "adaptive"},
                    read_timeout=BEDROCK_READ_TIMEOUT,
                    connect_timeout=BEDROCK_CONNECT_TIMEOUT,
                    max_pool_connections=CHUNK_MAX_WORKERS,
                    tcp_keepalive=True,
                ),
            )
            logger.info(
                "Bedrock client initialized: profile=%s region=%s model=%s",
                BEDROCK_PROFILE,
                BEDROCK_REGION,
                BEDROCK_MODEL_ID,
            )
    return _client


def ensure_credentials() -> None:
    """Fail fast when the Bedrock profile has no usable AWS credentials.

    Raises:
        ConfigurationError: If the profile is unknown or carries no credentials
    """
    try:
        credentials = _session().get_credentials()
    except BotoCoreError as e:
        raise ConfigurationError(
            f"AWS profile '{BEDROCK_PROFILE}' is not usable: {e}",
            field="BEDROCK_PROFILE",
        ) from e
    if credentials is None:
        raise ConfigurationError(
            f"No AWS credentials found for profile '{BEDROCK_PROFILE}'",
            field="BEDROCK_PROFILE",
        )


def report_progress(
    on_progress: ProgressCallback | None,
    chars: int,
    elapsed: float,
    message: str,
) -> None:
    if on_progress is None:
        return
    try:
        on_progress(chars, elapsed, message)
    except Exception as cb_err:
        logger.warning("on_progress callback raised: %s", cb_err)


def invoke(
    system_prompt: str,
    user_message: str,
    tool: str = "unknown",
    max_tokens: int = BEDROCK_MAX_TOKENS,
    temperature: float = ANALYSIS_TEMPERATURE,
    on_progress: ProgressCallback | None = None,
) -> Completion:
    """
    Send a streaming inference request to Bedrock and return the completion.

    Args:
        system_prompt: The system/persona prompt
        user_message: The user message (diff, decision request, etc.)
        tool: Name of the calling step (for usage logging)
        max_tokens: Maximum tokens in the response
        temperature: Sampling temperature (lower = more focused)
        on_progress: Optional callback called during streaming with
                     (chars_so_far, elapsed_seconds, message)

    Returns:
        Completion with the response text, token usage and stop reason
        ('end_turn', 'max_tokens', 'stop_sequence' or 'stream_error').

    Raises:
        OracleError: If the Bedrock call fails before any text arrives
    """
    client = _get_client()

    body = {
        "anthropic_version": "bedrock-2023-05-31",
        "max_tokens": max_tokens,
        "temperature": temperature,
        "system": system_prompt,
        "messages": [
            {"role": "user", "content": user_message},
        ],
    }

    start = time.monotonic()
    logger.debug("Bedrock stream starting [%s] model=%s", tool, BEDROCK_MODEL_ID)

    # Declared outside try so partial results are accessible in except
    text_chunks: list[str] = []
    input_tokens = 0
    output_tokens = 0

    try:
        response = client.invoke_model_with_response_stream(
            modelId=BEDROCK_MODEL_ID,
            contentType="application/json",
            accept="application/json",
            body=json.dumps(body),
        )

        stop_reason = "unknown"
        chunk_count = 0
        total_chars = 0

        for event in response["body"]:
            if "chunk" not in event:
                for key in (
                    "internalServerException",
                    "modelStreamErrorException",
                    "throttlingException",
                    "validationException",
                ):
                    if key in event:
                        err_msg = event[key].get("message", str(event[key]))
                        logger.error(
                            "Bedrock stream error [%s]: %s: %s", tool, key, err_msg
                        )
                        raise OracleError(f"Bedrock stream error ({key}): {err_msg}")
                logger.warning(
                    "Unknown non-chunk event in stream: %s", list(event.keys())
                )
                continue

            try:
                chunk = json.loads(event["chunk"]["bytes"])
            except (json.JSONDecodeError, KeyError) as parse_err:
                logger.warning("Malformed stream chunk, skipping: %s", parse_err)
                continue

            chunk_type = chunk.get("type", "")

            if chunk_type == "content_block_delta":
                delta = chunk.get("delta", {})
                if delta.get("type") == "text_delta":
                    text = delta.get("text", "")
                    text_chunks.append(text)
                    total_chars += len(text)
                    chunk_count += 1

                    if chunk_count % 20 == 0:
                        elapsed = time.monotonic() - start
                        msg = f"[{tool}] streaming {total_chars} chars, {elapsed:.0f}s"
                        logger.debug("  %s", msg)
                        report_progress(on_progress, total_chars, elapsed, msg)

            elif chunk_type == "message_delta":
                stop_reason = chunk.get("delta", {}).get("stop_reason", "unknown")
                output_tokens = chunk.get("usage", {}).get("output_tokens", 0)

            elif chunk_type == "message_start":
                input_tokens = (
                    chunk.get("message", {}).get("usage", {}).get("input_tokens", 0)
                )

        full_text = "".join(text_chunks)
        latency_ms = int((time.monotonic() - start) * 1000)

        if total_chars > 0:
            elapsed = time.monotonic() - start
            report_progress(
                on_progress,
                total_chars,
                elapsed,
                f"[{tool}] complete {total_chars} chars, {elapsed:.0f}s",
            )

        if stop_reason == "unknown" and full_text:
            logger.warning(
                "Stream ended without message_delta for tool=%s. "
                "stop_reason is unknown -- stream may have been interrupted.",
                tool,
            )

        _log_usage(
            tool=tool,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            latency_ms=latency_ms,
        )

        if stop_reason == "max_tokens":
            logger.warning(
                "Response truncated (hit max_tokens=%d) for tool=%s. "
                "Output may be incomplete.",
                max_tokens,
                tool,
            )

        if not full_text:
            logger.warning("Empty response from Bedrock stream for tool=%s", tool)

        return Completion(
            text=full_text,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            stop_reason=stop_reason,
        )

    except OracleError:
        raise
    except (BotoCoreError, ClientError, KeyError, TypeError) as e:
        latency_ms = int((time.monotonic() - start) * 1000)
        partial = "".join(text_chunks)
        if partial:
            logger.error(
                "Bedrock stream failed after %dms with %d chars received: %s",
                latency_ms,
                len(partial),
                e,
            )
            _log_usage(
                tool=tool,
                input_tokens=input_tokens,
                output_tokens=output_tokens,
                latency_ms=latency_ms,
            )
            return Completion(
                text=partial,
                input_tokens=input_tokens,
                output_tokens=output_tokens,
                stop_reason="stream_error",
            )
        logger.error("Bedrock inference failed after %dms: %s", latency_ms, e)
        raise OracleError(f"Bedrock inference failed: {e}") from e
