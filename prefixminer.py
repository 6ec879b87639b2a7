#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
PrefixMiner: Prefix Worklist Generator

Picks the prefixes of a sorted wordlist that are worth searching exhaustively
(prefix + brute-forced suffix) within a fixed cracking session budget.

Features:
- Per-length prefix budget derived from session duration and crypt/s rate
- One streaming pass over the sorted wordlist per prefix length
- Bounded min-heap keeps only the most frequent prefixes of each length
- Counts already claimed by a selected longer prefix are removed from shorter ones
- Prefixes covered by a selected shorter prefix are dropped from the worklist
"""
import argparse
import heapq
import logging
import math
import os
import re
import signal
import sys
from pathlib import Path
from types import MappingProxyType
from typing import Dict, Iterable, Iterator, List, Mapping, Optional, Sequence, Tuple, Union

from tqdm import tqdm

# =============================================
# DEFAULTS
# =============================================
DEFAULT_CRYPT_PER_SECOND = int(os.environ.get('PREFIXMINER_CRYPT_PER_SEC', 20_000_000))
DEFAULT_DURATION = "168h"
DEFAULT_MIN_PREFIX_LEN = 4
DEFAULT_MAX_PREFIX_LEN = 7
DEFAULT_PASSWORDS_LEN = 10
DEFAULT_ALPHABET_SIZE = 95  # printable ASCII

# =============================================
# Logging
# =============================================
logging.basicConfig(
    level=logging.INFO,
    format="[%(asctime)s] %(message)s",
    datefmt="%H:%M:%S"
)
log = logging.getLogger(__name__)


def progress(it, **kw):
    """Progress bar on stderr, only when a human is watching"""
    return tqdm(it, disable=not sys.stderr.isatty(), leave=False, **kw)


def sigint_handler(signum, frame):
    log.warning("Interrupted by user, no worklist written")
    sys.exit(130)

# =============================================
# ERRORS
# =============================================
class PrefixMinerError(Exception):
    """Base class for every fatal prefixminer condition"""


class ConfigError(PrefixMinerError):
    """Invalid parameters, reported before any scan begins"""


class InvalidDuration(ConfigError):
    def __init__(self, text: str, reason: str = "cannot be parsed"):
        super().__init__(f"invalid duration {text!r}: {reason}")
        self.text = text


class InvalidRange(ConfigError):
    pass


class CorpusOrderError(PrefixMinerError):
    """The wordlist is not sorted; every count after this point would be wrong"""

    def __init__(self, line_no: int, previous: str, word: str):
        super().__init__(f"word list don't seem ordered at line {line_no:,}: {word!r} < {previous!r}")
        self.line_no = line_no
        self.previous = previous
        self.word = word


class CorpusReadError(PrefixMinerError):
    def __init__(self, filename, cause: Exception):
        super().__init__(f"can't read file({filename}): {cause}")
        self.filename = filename
        self.cause = cause

# =============================================
# Duration parsing
# =============================================
# Same units as Go's time.ParseDuration, so "168h" or "1h30m" work unchanged
DURATION_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "μs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}
DURATION_RE = re.compile(r'^([+-]?)((?:(?:\d+\.?\d*|\.\d+)(?:ns|us|µs|μs|ms|s|m|h))+|0)$')
DURATION_PART_RE = re.compile(r'(\d+\.?\d*|\.\d+)(ns|us|µs|μs|ms|s|m|h)')
# Go refuses anything past the int64 nanosecond range
MAX_DURATION_SECONDS = (2 ** 63 - 1) * 1e-9


def parse_duration(text: str) -> float:
    """Parse a Go-style duration ("168h", "1h30m", "1.5h") into seconds"""
    m = DURATION_RE.match(text.strip()) if text else None
    if not m:
        raise InvalidDuration(text)
    sign, body = m.groups()
    seconds = sum(float(value) * DURATION_UNITS[unit] for value, unit in DURATION_PART_RE.findall(body))
    if not math.isfinite(seconds) or seconds > MAX_DURATION_SECONDS:
        raise InvalidDuration(text, "out of range")
    return -seconds if sign == "-" else seconds

# =============================================
# BUDGET MODEL
# =============================================
class BudgetModel:
    """
    How many prefixes of each length fit in the session.

    The session is split evenly across the N prefix lengths. A prefix of
    length L leaves (password_len - L) characters to brute-force, so each
    prefix costs alphabet_size ** (password_len - L) guesses. One extra
    prefix character divides that cost by alphabet_size, hence every level
    holds alphabet_size times more prefixes than the previous one.
    """

    def __init__(self, duration_seconds: float, rate: int, alphabet_size: int,
                 password_len: int, min_len: int, max_len: int):
        if min_len < 1:
            raise InvalidRange(f"minimal prefix length must be at least 1 (got {min_len})")
        if max_len < min_len:
            raise InvalidRange(f"maximal prefix length {max_len} is below minimal prefix length {min_len}")
        if password_len < max_len:
            raise InvalidRange(f"password length {password_len} is below maximal prefix length {max_len}")
        if alphabet_size < 2:
            raise ConfigError(f"alphabet size must be at least 2 (got {alphabet_size})")
        if rate <= 0:
            raise ConfigError(f"crypt per second must be positive (got {rate})")
        if duration_seconds <= 0:
            raise InvalidDuration(str(duration_seconds), "must be positive")

        self.duration_seconds = duration_seconds
        self.rate = rate
        self.alphabet_size = alphabet_size
        self.password_len = password_len
        self.min_len = min_len
        self.max_len = max_len
        self.capacities: Tuple[int, ...] = self._compute()

    @property
    def levels(self) -> int:
        return self.max_len - self.min_len + 1

    def _compute(self) -> Tuple[int, ...]:
        guesses_per_level = int(self.duration_seconds / self.levels * self.rate)
        # integer division: alphabet_size ** 10 and up does not fit a float mantissa
        first = guesses_per_level // self.alphabet_size ** (self.password_len - self.min_len)
        capacities = [first]
        for _ in range(1, self.levels):
            capacities.append(capacities[-1] * self.alphabet_size)
        return tuple(capacities)

    def prefix_len(self, level: int) -> int:
        return self.min_len + level

    def report(self):
        for level, capacity in enumerate(self.capacities):
            log.info(f"candidates for prefix of length {self.prefix_len(level)} : {capacity:,}")

# =============================================
# BOUNDED TOP-K SELECTOR
# =============================================
class TopKSelector:
    """
    Min-heap of (count, prefix) that never grows past its capacity.

    When an insert overflows the capacity the least frequent entry is
    evicted. Among equal counts, which one goes is unspecified.
    """

    def __init__(self, capacity: int):
        if capacity < 0:
            raise ValueError(f"capacity must be >= 0 (got {capacity})")
        self.capacity = capacity
        self._heap: Optional[List[Tuple[int, str]]] = []

    def __len__(self):
        return len(self._heap) if self._heap is not None else 0

    def insert(self, prefix: str, count: int):
        if self._heap is None:
            raise RuntimeError("selector already drained")
        heapq.heappush(self._heap, (count, prefix))
        if len(self._heap) > self.capacity:
            heapq.heappop(self._heap)

    def drain_all(self) -> List[Tuple[int, str]]:
        """Hand over every retained entry; the selector is spent afterwards"""
        if self._heap is None:
            raise RuntimeError("selector already drained")
        entries, self._heap = self._heap, None
        return entries

# =============================================
# CORPUS
# =============================================
class SortedCorpus:
    """
    A sorted wordlist on disk, one word per line.

    Iterating reopens the file, so the reducer can stream it once per pass
    without holding it in memory.
    """

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)

    def __iter__(self) -> Iterator[str]:
        try:
            with self.path.open('r', encoding='utf-8', newline='') as f:
                for line in f:
                    if line.endswith("\n"):
                        line = line[:-1]
                    if line.endswith("\r"):
                        line = line[:-1]
                    yield line
        except (OSError, UnicodeDecodeError) as e:
            raise CorpusReadError(self.path, e) from e


# every pass streams the corpus again, so one-shot iterators are refused
Corpus = Union[Sequence[str], SortedCorpus]


def ordered(words: Iterable[str]) -> Iterator[str]:
    """Pass words through, failing on the first one that breaks the sort order"""
    previous = ""
    for line_no, word in enumerate(words, start=1):
        if word < previous:
            raise CorpusOrderError(line_no, previous, word)
        previous = word
        yield word

# =============================================
# MULTI-PASS STREAMING REDUCER
# =============================================
class PrefixReducer:
    """
    Selects the most frequent prefixes of every length, longest length first.

    Pass i streams the whole corpus while tracking the running prefix of
    every length >= min_len + i. When a longer prefix selected by an earlier
    pass ends, its count is taken off the shorter running prefixes: those
    words are already covered by the longer prefix.
    """

    def __init__(self, min_len: int, max_len: int, capacities: Sequence[int]):
        if max_len < min_len:
            raise InvalidRange(f"maximal prefix length {max_len} is below minimal prefix length {min_len}")
        if len(capacities) != max_len - min_len + 1:
            raise ValueError(f"expected {max_len - min_len + 1} capacities, got {len(capacities)}")
        self.min_len = min_len
        self.max_len = max_len
        self.capacities = tuple(capacities)

    @property
    def levels(self) -> int:
        return self.max_len - self.min_len + 1

    def run(self, corpus: Corpus) -> List[Mapping[str, int]]:
        """Run every pass and return the selected prefix -> count mapping per level"""
        if iter(corpus) is corpus:
            raise TypeError("corpus must be re-iterable (a list or a SortedCorpus), not a one-shot iterator")
        results: List[Optional[Mapping[str, int]]] = [None] * self.levels
        for level in range(self.levels - 1, -1, -1):
            log.info(f"Pass {self.levels - level}/{self.levels}: prefixes of length {self.min_len + level}")
            results[level] = self._run_pass(corpus, level, results)
            log.info(f" → kept {len(results[level]):,} prefixes of length {self.min_len + level}")
        return results

    def _run_pass(self, corpus: Corpus, level: int,
                  results: List[Optional[Mapping[str, int]]]) -> Mapping[str, int]:
        selector = TopKSelector(self.capacities[level])
        # accumulators, indexed by level; only level..levels-1 are used
        prefixes: List[Optional[str]] = [None] * self.levels
        counts = [0] * self.levels

        for word in progress(ordered(corpus), desc=f"pass {self.levels - level}", unit="word"):
            for j in range(self.levels - 1, level - 1, -1):
                prefix_len = self.min_len + j
                if len(word) < prefix_len:
                    continue
                prefix = word[:prefix_len]
                if prefix == prefixes[j]:
                    counts[j] += 1
                    continue
                if prefixes[j] is not None:
                    if j == level:
                        selector.insert(prefixes[j], counts[j])
                    elif prefixes[j] in results[j]:
                        claimed = results[j][prefixes[j]]
                        for k in range(level, j):
                            counts[k] -= claimed
                prefixes[j] = prefix
                counts[j] = 1

        if prefixes[level] is not None:
            selector.insert(prefixes[level], counts[level])

        selected: Dict[str, int] = {prefix: count for count, prefix in selector.drain_all()}
        return MappingProxyType(selected)

# =============================================
# REDUNDANCY ELIMINATOR
# =============================================
def eliminate_redundant(level_results: Sequence[Mapping[str, int]], min_len: int) -> List[Tuple[int, str]]:
    """
    Drop every selected prefix whose subspace a shorter selected prefix
    already covers.

    TODO: a backward then forward propagation pass would also catch prefixes
    covered by shorter ones that were evicted for lack of capacity.
    """
    worklist = []
    for i, selected in enumerate(level_results):
        kept = []
        for prefix, count in selected.items():
            covered = any(prefix[:min_len + j] in level_results[j] for j in range(i))
            if covered:
                log.debug(f"dropping {prefix!r}: covered by a shorter prefix")
                continue
            kept.append((count, prefix))
        kept.sort(key=lambda x: (-x[0], x[1]))
        worklist.extend(kept)
    return worklist


def format_worklist(worklist: Iterable[Tuple[int, str]]) -> Iterator[str]:
    for count, prefix in worklist:
        yield f"{count}:{prefix}"

# =============================================
# PIPELINE
# =============================================
def mine_prefixes(corpus: Corpus,
                  min_len: int = DEFAULT_MIN_PREFIX_LEN,
                  max_len: int = DEFAULT_MAX_PREFIX_LEN,
                  password_len: int = DEFAULT_PASSWORDS_LEN,
                  alphabet_size: int = DEFAULT_ALPHABET_SIZE,
                  crypt_per_second: int = DEFAULT_CRYPT_PER_SECOND,
                  duration: Union[str, float] = DEFAULT_DURATION) -> List[Tuple[int, str]]:
    """Budget, reduce, deduplicate: the whole computation, returning (count, prefix) pairs"""
    seconds = parse_duration(duration) if isinstance(duration, str) else float(duration)
    budget = BudgetModel(seconds, crypt_per_second, alphabet_size, password_len, min_len, max_len)
    budget.report()

    reducer = PrefixReducer(min_len, max_len, budget.capacities)
    level_results = reducer.run(corpus)

    worklist = eliminate_redundant(level_results, min_len)
    log.info(f"Worklist holds {len(worklist):,} prefixes")
    return worklist

# =============================================
# CLI
# =============================================
def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="PrefixMiner: prefixes worth a brute-force suffix search")
    parser.add_argument("-i", "--input", type=Path, required=True, help="Name of the sorted word file")
    parser.add_argument("--crypt-per-sec", type=int, default=DEFAULT_CRYPT_PER_SECOND,
                        help="Reported crypt per second (e.g. John the Ripper c/s or hashcat Speed.#*)")
    parser.add_argument("--duration", default=DEFAULT_DURATION,
                        help="Time to run the cracking session on all prefixes (e.g. 168h, 1h30m)")
    parser.add_argument("--min-prefix", type=int, default=DEFAULT_MIN_PREFIX_LEN,
                        help="Minimal length of the prefix space to search")
    parser.add_argument("--max-prefix", type=int, default=DEFAULT_MAX_PREFIX_LEN,
                        help="Maximal length of the prefix space to search")
    parser.add_argument("--pass-len", type=int, default=DEFAULT_PASSWORDS_LEN,
                        help="Size of the passwords that will be generated (prefix + bruteforce)")
    parser.add_argument("--alphabet-size", type=int, default=DEFAULT_ALPHABET_SIZE,
                        help="Cardinality of the alphabet used in bruteforce (e.g. 10 for decimal digits)")
    parser.add_argument("-o", "--output", type=Path, default=None, help="Write the worklist here instead of stdout")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)
    signal.signal(signal.SIGINT, sigint_handler)
    log.info(f"Reading word list: {args.input}")

    try:
        worklist = mine_prefixes(
            SortedCorpus(args.input),
            min_len=args.min_prefix,
            max_len=args.max_prefix,
            password_len=args.pass_len,
            alphabet_size=args.alphabet_size,
            crypt_per_second=args.crypt_per_sec,
            duration=args.duration,
        )
    except PrefixMinerError as e:
        log.error(str(e))
        return 1

    lines = list(format_worklist(worklist))
    if args.output:
        try:
            args.output.write_text("".join(line + "\n" for line in lines), encoding="utf-8")
        except OSError as e:
            log.error(f"can't write file({args.output}): {e}")
            return 1
        log.info(f" → {args.output} ({len(lines):,} prefixes)")
    else:
        for line in lines:
            print(line)
    return 0


if __name__ == "__main__":
    sys.exit(main())
