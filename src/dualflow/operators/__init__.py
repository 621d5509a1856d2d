from .batch import Batch, batch
from .chain import Chain, chain
from .distinct import Distinct, distinct
from .filter import Filter, filter
from .flat_map import FlatMap, flat_map
from .map import Map, map
from .parallel import Parallel, parallel
from .prefetch import Prefetch, prefetch
from .reduce import Reduce, reduce
from .skip import Skip, skip
from .take import Take, take
from .tap import Tap, tap

__all__ = [
    "Batch",
    "Chain",
    "Distinct",
    "Filter",
    "FlatMap",
    "Map",
    "Parallel",
    "Prefetch",
    "Reduce",
    "Skip",
    "Take",
    "Tap",
    "batch",
    "chain",
    "distinct",
    "filter",
    "flat_map",
    "map",
    "parallel",
    "prefetch",
    "reduce",
    "skip",
    "take",
    "tap",
]
