"""
Continue-as-new pattern generator.

Emits the history compaction guard for long-running (`service`) workflows:
a start timestamp captured once in the run prologue, a threshold check on
history length and elapsed time, and a self re-invocation carrying the
declared variables forward. Any number of loop and signal nodes may ask for
it; the context's one-shot markers make sure it appears exactly once.
"""

from __future__ import annotations

import json
from typing import List

from workflow_codegen.compiler.codegen import INDENT
from workflow_codegen.compiler.context import FragmentKey, GeneratorContext
from workflow_codegen.errors import EmissionError

START_TIME_KEY = "_workflow_start_time"
RESET_COUNT_KEY = "_history_reset_count"


def compaction_active(ctx: GeneratorContext) -> bool:
    policy = ctx.long_running
    return bool(policy and policy.auto_compact)


def generate_compaction_guard(ctx: GeneratorContext) -> List[str]:
    """
    Return the guard lines (relative depth 0) the first time it is called for
    an auto-compacting workflow, and an empty list otherwise.
    """

    if not compaction_active(ctx):
        return []

    if ctx.once(FragmentKey.workflow_start_time):
        ctx.declare(f'workflow_start_time = state.get("{START_TIME_KEY}", workflow.time())')
        ctx.declare(f'history_reset_count = state.get("{RESET_COUNT_KEY}", 0)')

    if not ctx.once(FragmentKey.compaction_guard):
        return []

    policy = ctx.long_running
    if policy.max_history_events is None or policy.max_duration_ms is None:
        raise EmissionError("Long-running policy is missing its compaction thresholds")

    carried: List[str] = []
    if policy.preserve_state:
        for name, ident in ctx.variable_idents.items():
            carried.append(f"{INDENT * 3}{json.dumps(name)}: {ident},")
    carried.append(f'{INDENT * 3}"{START_TIME_KEY}": workflow.time(),')
    carried.append(f'{INDENT * 3}"{RESET_COUNT_KEY}": history_reset_count + 1,')

    lines = ctx.comment("Compact history once either threshold is exceeded")
    lines += [
        "history_length = workflow.info().get_current_history_length()",
        "elapsed_ms = (workflow.time() - workflow_start_time) * 1000",
        f"if history_length > {policy.max_history_events} or elapsed_ms > {policy.max_duration_ms}:",
        f"{INDENT}workflow.logger.info(",
        f'{INDENT * 2}"Continuing as new: history_length=%s elapsed_ms=%s resets=%s",',
        f"{INDENT * 2}history_length,",
        f"{INDENT * 2}elapsed_ms,",
        f"{INDENT * 2}history_reset_count,",
        f"{INDENT})",
        f"{INDENT}workflow.continue_as_new(",
        f"{INDENT * 2}{{",
        *carried,
        f"{INDENT * 2}}},",
        f"{INDENT * 2}workflow={ctx.options.class_name}.run,",
        f"{INDENT})",
    ]
    return lines
