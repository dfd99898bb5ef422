"""Shared fixtures: a scripted completion oracle and sample diffs."""

import threading

import pytest

from pr_analyst.llm import Completion

FILE_REPLY = """Summary:
Updates the module wiring.

Potential Risks:
None

Complexity: 2"""

SYNTHESIS_REPLY = """Summary:
The PR moves helpers into a new module and removes legacy code.

Risks:
None

Complexity: 2

Recommendations:
- Add tests for the new helper"""

DEFAULT_REPLIES = {
    "plan_strategy": '{"strategy": "comprehensive", "reasoning": "small PR"}',
    # Not JSON: forces the deterministic fallback decision
    "decide_next_action": "I would look at the biggest file first.",
    "analyze_file": FILE_REPLY,
    "synthesize": SYNTHESIS_REPLY,
    "analyze_chunk": FILE_REPLY,
    "consolidate_chunks": SYNTHESIS_REPLY,
}


class FakeOracle:
    """Completion function that replays scripted replies per step.

    ``replies`` maps a tool name (``"analyze_file[src/app.py]"``) or its
    prefix (``"analyze_file"``) to a string, an exception to raise, a list
    consumed one item per call (the last item repeats), or a callable taking
    ``(tool, user_message)``.
    """

    def __init__(self, replies=None, tokens=(10, 5)):
        self.replies = dict(DEFAULT_REPLIES)
        self.replies.update(replies or {})
        self.tokens = tokens
        self.calls = []
        self._lock = threading.Lock()

    def __call__(self, system_prompt, user_message, tool="unknown", **kwargs):
        with self._lock:
            self.calls.append((tool, user_message))
            prefix = tool.split("[", 1)[0]
            key = tool if tool in self.replies else prefix
            reply = self.replies.get(key, "")
            if isinstance(reply, list):
                reply = reply.pop(0) if len(reply) > 1 else reply[0]
        if callable(reply) and not isinstance(reply, Exception):
            reply = reply(tool, user_message)
        if isinstance(reply, Exception):
            raise reply
        return Completion(
            text=reply, input_tokens=self.tokens[0], output_tokens=self.tokens[1]
        )

    def tools(self, prefix=""):
        return [tool for tool, _ in self.calls if tool.startswith(prefix)]

    def messages(self, prefix):
        return [msg for tool, msg in self.calls if tool.startswith(prefix)]


class StubSource:
    """In-memory source host."""

    def __init__(self, files=None, head_ref="head", base_ref="base", error=None):
        self.files = files or {}
        self.head_ref = head_ref
        self.base_ref = base_ref
        self.error = error
        self.requests = []

    def get_file_content(self, path, ref=None):
        self.requests.append((path, ref))
        if self.error is not None:
            raise self.error
        return self.files.get((path, ref))


THREE_FILE_DIFF = """diff --git a/src/app.py b/src/app.py
index 1111111..2222222 100644
--- a/src/app.py
+++ b/src/app.py
@@ -1,3 +1,5 @@
 import os
-import sys
+import json
+from src.new_util import helper
+
 def main():
diff --git a/src/new_util.py b/src/new_util.py
new file mode 100644
index 0000000..3333333
--- /dev/null
+++ b/src/new_util.py
@@ -0,0 +1,2 @@
+def helper():
+    return 1
diff --git a/old/legacy.py b/old/legacy.py
deleted file mode 100644
index 4444444..0000000
--- a/old/legacy.py
+++ /dev/null
@@ -1,2 +0,0 @@
-def legacy():
-    return 0
"""


def make_diff(count, prefix="pkg/mod"):
    """A diff modifying ``count`` files with one added line each."""
    blocks = []
    for i in range(count):
        path = f"{prefix}{i}.txt"
        blocks.append(
            f"diff --git a/{path} b/{path}\n"
            f"--- a/{path}\n"
            f"+++ b/{path}\n"
            "@@ -1 +1,2 @@\n"
            " keep\n"
            f"+line {i}\n"
        )
    return "".join(blocks)


@pytest.fixture
def oracle():
    return FakeOracle()


@pytest.fixture
def three_file_diff():
    return THREE_FILE_DIFF
