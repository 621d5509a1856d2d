"""
Dualflow: Lazy Pull-Based Pipelines for Sync and Async Sources

A Python library for composing lazy data pipelines that work the same way on
regular iterables and on async sources. A pipeline stays synchronous as long
as everything in it is, and only becomes awaitable when some source or
transformation actually is.

Key Features:
- Immediate or deferred modality, decided once per stage on its first pull
- Step engine turning a (result, state) -> outcome rule into a stage
- Multicast with an evicting replay cache for independently paced readers
- Passive category splitting without read-ahead
- Bounded parallel execution (ordered or not) and prefetching
- Push sources with drop-oldest backpressure

Quick Start:
    import dualflow as df

    # Synchronous pipeline, no event loop involved
    df.pipe(range(10), df.map(lambda x: x * 2), df.take(5), df.to_list)

    # Deferred pipeline
    results = await df.pipe(urls, df.parallel(df.map(fetch), concurrency=8), df.to_list)

    # Operator chaining
    async for item in (data | df.map(transform) | df.filter(validate)).stream():
        process(item)
"""

import logging

from .base import Operator, Pipeline, compose, pipe
from .distribute import Distributor, distribute
from .errors import TransitionError, UsageError
from .multicast import Multicast, Subscriber, multicast
from .operators import (
    Batch,
    Chain,
    Distinct,
    Filter,
    FlatMap,
    Map,
    Parallel,
    Prefetch,
    Reduce,
    Take,
    Tap,
    batch,
    chain,
    distinct,
    filter,
    flat_map,
    map,
    parallel,
    prefetch,
    reduce,
    skip,
    take,
    tap,
)
from .pushable import PushHandle, PushSequence, pushable
from .result import DONE, KEEP, Done, Emit, EmitMany, Mode, Outcome, Result, Skip
from .sequence import Sequence, from_iterable, from_value
from .sinks import ForEach, for_each, to_list
from .step import StepOperator, step
from .tasks import Phase

logging.getLogger(__name__).addHandler(logging.NullHandler())

__all__ = [
    "Batch",
    "Chain",
    "DONE",
    "Distinct",
    "Distributor",
    "Done",
    "Emit",
    "EmitMany",
    "Filter",
    "FlatMap",
    "ForEach",
    "KEEP",
    "Map",
    "Mode",
    "Multicast",
    "Operator",
    "Outcome",
    "Parallel",
    "Phase",
    "Pipeline",
    "Prefetch",
    "PushHandle",
    "PushSequence",
    "Reduce",
    "Result",
    "Sequence",
    "Skip",
    "StepOperator",
    "Subscriber",
    "Take",
    "Tap",
    "TransitionError",
    "UsageError",
    "batch",
    "chain",
    "compose",
    "distinct",
    "distribute",
    "filter",
    "flat_map",
    "for_each",
    "from_iterable",
    "from_value",
    "map",
    "multicast",
    "parallel",
    "pipe",
    "prefetch",
    "pushable",
    "reduce",
    "skip",
    "step",
    "take",
    "tap",
    "to_list",
]
