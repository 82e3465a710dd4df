"""Run-length merging of consecutive arithmetic and movement instructions."""

from __future__ import annotations
from typing import List, Sequence, Tuple

from parser import Add, Instruction, Loop, MoveLeft, MoveRight, Subtract


MERGEABLE = (Add, Subtract, MoveLeft, MoveRight)


def optimize(instructions: Sequence[Instruction]) -> List[Instruction]:
    """Collapse each maximal run of same-kind counted instructions into one.

    Loop, Goto, Input and Output are boundaries: they are never merged with
    their neighbours. Loop bodies are optimized independently. Counts are
    summed as plain ints, so a merged count may exceed a byte and is applied
    by the tape in a single step.
    """
    optimized: List[Instruction] = []
    # (body to read, list to fill); nested loops are queued rather than recursed into.
    pending: List[Tuple[Sequence[Instruction], List[Instruction]]] = [(instructions, optimized)]
    while pending:
        body, target = pending.pop()
        _merge_runs(body, target, pending)
    return optimized


def _merge_runs(
    instructions: Sequence[Instruction],
    optimized: List[Instruction],
    pending: List[Tuple[Sequence[Instruction], List[Instruction]]],
) -> None:
    n = len(instructions)
    i = 0
    while i < n:
        current = instructions[i]
        if isinstance(current, Loop):
            body: List[Instruction] = []
            optimized.append(Loop(span=current.span, body=body))
            pending.append((current.body, body))
            i += 1
            continue
        if not isinstance(current, MERGEABLE):
            optimized.append(current)
            i += 1
            continue
        kind = type(current)
        total = current.count
        j = i + 1
        while j < n and type(instructions[j]) is kind:
            total += instructions[j].count
            j += 1
        if j == i + 1:
            optimized.append(current)
        else:
            span = current.span.cover(instructions[j - 1].span)
            optimized.append(kind(span=span, count=total))
        i = j
