#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
ReverseLines: print every line of a file reversed.

Reversed wordlists turn suffixes into prefixes: reverse, sort, then feed the
result to prefixminer to find the suffixes worth searching.
"""
import argparse
import logging
import os
import sys
from concurrent.futures import ThreadPoolExecutor, as_completed
from pathlib import Path
from threading import Lock
from typing import List, Optional, TextIO

DEFAULT_WORKERS = int(os.environ.get('REVERSELINES_WORKERS', 4))
BATCH_SIZE = 128

logging.basicConfig(
    level=logging.INFO,
    format="[%(asctime)s] %(message)s",
    datefmt="%H:%M:%S"
)
log = logging.getLogger(__name__)


def reverse_line(text: str) -> str:
    return text[::-1]


class LineReverser:
    """
    Reads a file and hands batches of lines to a pool of workers.

    Workers write under a shared lock, so lines never interleave, but the
    order of batches in the output is whatever order the workers finish in.
    """

    def __init__(self, out: TextIO, max_workers: int = DEFAULT_WORKERS, batch_size: int = BATCH_SIZE):
        if max_workers < 1:
            raise ValueError(f"need at least one worker (got {max_workers})")
        self.out = out
        self.max_workers = max_workers
        self.batch_size = batch_size
        self._out_lock = Lock()

    def _process_batch(self, batch: List[str]) -> int:
        reversed_lines = [reverse_line(line) for line in batch]
        with self._out_lock:
            for line in reversed_lines:
                self.out.write(line + "\n")
        return len(reversed_lines)

    def reverse_file(self, path: Path) -> int:
        total = 0
        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            futures = []
            batch: List[str] = []
            with path.open('r', encoding='utf-8') as f:
                for line in f:
                    batch.append(line.rstrip("\r\n"))
                    if len(batch) >= self.batch_size:
                        futures.append(executor.submit(self._process_batch, batch))
                        batch = []
            if batch:
                futures.append(executor.submit(self._process_batch, batch))
            for future in as_completed(futures):
                total += future.result()
        return total


def reverse_file(path: Path, max_workers: int = DEFAULT_WORKERS, out: Optional[TextIO] = None) -> int:
    """Reverse every line of path onto out (stdout by default); returns the line count"""
    reverser = LineReverser(out if out is not None else sys.stdout, max_workers=max_workers)
    return reverser.reverse_file(Path(path))


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="ReverseLines: print each line of a file reversed")
    parser.add_argument("-i", "--input", type=Path, required=True, help="Input file")
    parser.add_argument("-w", "--workers", type=int, default=DEFAULT_WORKERS,
                        help=f"Number of workers (default: {DEFAULT_WORKERS})")
    args = parser.parse_args(argv)
    if args.workers < 1:
        parser.error("--workers must be at least 1")

    try:
        total = reverse_file(args.input, max_workers=args.workers)
    except (OSError, UnicodeDecodeError) as e:
        log.error(f"can't read({args.input}): {e}")
        return 1
    log.info(f"Reversed {total:,} lines")
    return 0


if __name__ == "__main__":
    sys.exit(main())
