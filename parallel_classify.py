#!/usr/bin/env python3
"""
Parallel grammar generation and LR classification.

Runs many independent trials (generate one grammar, ask every oracle about
it) across worker processes, puts the results back in trial order and splits
them into a labelled corpus:

    <out>/lr1/<size>/<id>        strict and reference oracles both accept
    <out>/lr_k/<size>/<id>       relaxed oracle accepts, strict one does not
    <out>/disputed/<size>/<id>   oracles contradict each other

Scratch files live in a per-batch temporary directory that is removed on
every exit path.
"""

import argparse
import multiprocessing as mp
import os
import random
import shutil
import sys
import tempfile
import time
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Tuple

from rich import box
from rich.console import Console
from rich.table import Table

from cfg_gen import Config, Renderer, generate_grammar, max_grammar_size
from lr_oracles import (RELAXED, REFERENCE, STRICT, OracleInvocationError,
                        OracleSet, Verdict, default_oracles)

CLASSES = ('lr1', 'lr_k', 'disputed')


class BatchError(Exception):
    #Scratch or output directory could not be created, written or removed.#

    def __init__(self, path, cause: BaseException):
        super().__init__(path, cause)
        self.path = Path(path)
        self.cause = cause

    def __str__(self) -> str:
        return f"{self.path}: {self.cause}"

# ============================================================================
# RESULTS
# ============================================================================

@dataclass(frozen=True)
class ClassificationResult:
    trial: int
    size: int
    grammar_text: str                   # canonical rendering
    paths: Dict[str, str]               # role -> scratch file fed to that oracle
    verdicts: Dict[str, Verdict]        # role -> verdict

    @property
    def is_lr1(self) -> bool:
        return self.verdicts[STRICT].accepted and self.verdicts[REFERENCE].accepted

    @property
    def is_lr_k(self) -> bool:
        # Strict rejection keeps LR(1) grammars out of this set
        return self.verdicts[RELAXED].accepted and not self.verdicts[STRICT].accepted

    @property
    def is_disputed(self) -> bool:
        strict = self.verdicts[STRICT].accepted
        return (strict != self.verdicts[REFERENCE].accepted or
                (strict and not self.verdicts[RELAXED].accepted))


@dataclass(frozen=True)
class CorpusPartition:
    size: int
    trials: int
    total: int                          # trials that produced a grammar
    lr1: Tuple[ClassificationResult, ...] = field(default=())
    lr_k: Tuple[ClassificationResult, ...] = field(default=())
    disputed: Tuple[ClassificationResult, ...] = field(default=())

    def classes(self) -> Iterator[Tuple[str, Tuple[ClassificationResult, ...]]]:
        yield 'lr1', self.lr1
        yield 'lr_k', self.lr_k
        yield 'disputed', self.disputed


def partition(size: int, trials: int, results: List[ClassificationResult]) -> CorpusPartition:
    return CorpusPartition(
        size=size,
        trials=trials,
        total=len(results),
        lr1=tuple(r for r in results if r.is_lr1),
        lr_k=tuple(r for r in results if r.is_lr_k),
        disputed=tuple(r for r in results if r.is_disputed),
    )

# ============================================================================
# SCRATCH / PERSISTENCE
# ============================================================================

@contextmanager
def scratch_dir(parent: Optional[str] = None):
    #Per-batch temporary directory, removed however the batch ends.#
    try:
        path = Path(tempfile.mkdtemp(prefix='cfg-gen-', dir=parent))
    except OSError as e:
        raise BatchError(parent or tempfile.gettempdir(), e) from e

    try:
        yield path
    except BaseException:
        shutil.rmtree(path, ignore_errors=True)
        raise

    try:
        shutil.rmtree(path)
    except OSError as e:
        raise BatchError(path, e) from e


def _missing_dirs(path: Path) -> List[Path]:
    missing = []
    while not path.exists() and path != path.parent:
        missing.append(path)
        path = path.parent
    return missing


def persist_partition(corpus: CorpusPartition, output_root) -> Dict[str, List[Path]]:
    """
    Write every classified grammar under `output_root/<class>/<size>/<id>`.

    Files are staged first and moved into place afterwards; on failure the
    moved files and any directories created for them are taken back out, so
    the corpus is either complete or absent.
    """
    output_root = Path(output_root)
    created: List[Path] = _missing_dirs(output_root)
    staging = output_root / f".staging-{uuid.uuid4().hex}"
    staged: List[Tuple[Path, Path]] = []
    moved: List[Path] = []
    current = output_root

    try:
        for class_name, results in corpus.classes():
            for result in results:
                name = uuid.uuid4().hex[:16]
                src = staging / class_name / str(corpus.size) / name
                current = src
                src.parent.mkdir(parents=True, exist_ok=True)
                src.write_text(result.grammar_text)
                staged.append((src, output_root / class_name / str(corpus.size) / name))

        for src, dest in staged:
            current = dest
            created.extend(_missing_dirs(dest.parent))
            dest.parent.mkdir(parents=True, exist_ok=True)
            os.replace(src, dest)
            moved.append(dest)
    except OSError as e:
        for dest in moved:
            dest.unlink(missing_ok=True)
        shutil.rmtree(staging, ignore_errors=True)
        # Deepest first; a directory that is not empty was not ours alone
        for directory in sorted(set(created), key=lambda p: len(p.parts), reverse=True):
            try:
                directory.rmdir()
            except OSError:
                pass
        raise BatchError(current, e) from e

    if staging.exists():
        try:
            shutil.rmtree(staging)
        except OSError as e:
            raise BatchError(staging, e) from e

    written: Dict[str, List[Path]] = {name: [] for name in CLASSES}
    for _, dest in staged:
        written[dest.parent.parent.name].append(dest)
    return written

# ============================================================================
# TRIALS
# ============================================================================

def trial_seed(config: Config, size: int, trial: int) -> int:
    # Independent of worker count, so a fixed seed gives a fixed corpus
    base_seed = config.seed if config.seed is not None else 42
    return base_seed * 1_000_003 + size * 100_003 + trial


def run_trial(config: Config, oracles: OracleSet, size: int, trial: int,
              scratch: Path) -> Optional[ClassificationResult]:
    #Generate one grammar and classify it. None when generation gave up.#
    rng = random.Random(trial_seed(config, size, trial))
    grammar = generate_grammar(config, rng, size)
    if grammar is None:
        return None

    workdir = Path(scratch) / str(trial)
    stem = str(trial)
    verdicts: Dict[str, Verdict] = {}
    paths: Dict[str, str] = {}
    try:
        workdir.mkdir()
        for role, oracle in oracles.items():
            verdicts[role] = oracle.classify(grammar, workdir, stem)
            paths[role] = str(oracle.grammar_path(workdir, stem))
    except OSError as e:
        raise BatchError(workdir, e) from e

    return ClassificationResult(trial, size, Renderer.to_canonical(grammar), paths, verdicts)


def _progress(done: int, trials: int):
    if done % 100 == 0 or done == trials:
        sys.stderr.write(f"\r[{done}/{trials} trials]")
        sys.stderr.flush()


def run_sequential(config: Config, oracles: OracleSet, size: int, trials: int,
                   scratch: Path) -> List[ClassificationResult]:
    results = []
    for trial in range(trials):
        result = run_trial(config, oracles, size, trial, scratch)
        if result is not None:
            results.append(result)
        _progress(trial + 1, trials)
    return results


def worker_process(worker_id: int, num_workers: int, config: Config, oracles: OracleSet,
                   size: int, trials: int, scratch: Path, queue: mp.Queue, stop_event):
    #Classify trials worker_id, worker_id + num_workers, ...#
    try:
        for trial in range(worker_id, trials, num_workers):
            if stop_event.is_set():
                break
            try:
                result = run_trial(config, oracles, size, trial, scratch)
            except Exception as e:
                # Anything run_sequential would raise must abort the batch here too
                queue.put(('fatal', trial, e))
                break
            queue.put(('result', trial, result))
    except KeyboardInterrupt:
        pass
    finally:
        queue.put(('done', worker_id, None))


def run_parallel(config: Config, oracles: OracleSet, size: int, trials: int,
                 scratch: Path, num_workers: int) -> List[ClassificationResult]:
    sys.stderr.write(f"[Starting {num_workers}-process classification of {trials} size-{size} grammars]\n")
    sys.stderr.flush()

    queue = mp.Queue()
    stop_event = mp.Event()
    workers = []
    for i in range(num_workers):
        p = mp.Process(target=worker_process,
                       args=(i, num_workers, config, oracles, size, trials, scratch,
                             queue, stop_event))
        p.start()
        workers.append(p)

    collected: Dict[int, ClassificationResult] = {}
    fatal: Optional[BaseException] = None
    active_workers = num_workers
    done = 0

    try:
        while active_workers > 0:
            msg_type, key, data = queue.get()
            if msg_type == 'result':
                done += 1
                if data is not None:
                    collected[key] = data
                _progress(done, trials)
            elif msg_type == 'fatal':
                fatal = data
                break
            elif msg_type == 'done':
                active_workers -= 1
    finally:
        stop_event.set()
        for p in workers:
            p.join(timeout=2.0)
            if p.is_alive():
                p.terminate()
                p.join(timeout=1.0)

    if fatal is not None:
        raise fatal
    return [collected[trial] for trial in sorted(collected)]

# ============================================================================
# BATCHES
# ============================================================================

def run_batch(size: int, trials: int, output_root, config: Optional[Config] = None,
              oracles: Optional[OracleSet] = None,
              workers: Optional[int] = None) -> CorpusPartition:
    """
    Generate and classify `trials` grammars of `size` rules, persist the
    partition under `output_root` and return it.

    Generation failures and negative verdicts only show up in the counts.
    BatchError and OracleInvocationError abort the batch with nothing written.
    """
    config = config or Config()
    oracles = oracles or default_oracles(config)

    with scratch_dir(config.scratch_root) as scratch:
        if workers and workers > 1:
            results = run_parallel(config, oracles, size, trials, scratch, workers)
        else:
            results = run_sequential(config, oracles, size, trials, scratch)
        corpus = partition(size, trials, results)
        persist_partition(corpus, output_root)

    sys.stderr.write(f"\n{summarize(corpus)}\n")
    sys.stderr.flush()
    return corpus


def generate(from_size: int, to_size: int, n: int, out_dir, config: Optional[Config] = None,
             oracles: Optional[OracleSet] = None,
             workers: Optional[int] = None) -> List[CorpusPartition]:
    #Run one batch of `n` trials for each size in [from_size, to_size).#
    return [run_batch(size, n, out_dir, config, oracles, workers)
            for size in range(from_size, to_size)]


def summarize(corpus: CorpusPartition) -> str:
    total = corpus.total
    return (f"[size {corpus.size}] LR(1): {len(corpus.lr1)}/{total} | "
            f"LR(k): {len(corpus.lr_k)}/{total} | "
            f"disputed: {len(corpus.disputed)}/{total} | "
            f"generated: {total}/{corpus.trials}")


def print_report(partitions: List[CorpusPartition], no_ansi: bool = False):
    if no_ansi:
        for corpus in partitions:
            print(summarize(corpus))
        return

    console = Console()
    table = Table(title="Grammar corpus", box=box.ROUNDED)
    table.add_column("Size", justify="right")
    table.add_column("Trials", justify="right")
    table.add_column("Generated", justify="right")
    table.add_column("LR(1)", justify="right")
    table.add_column("LR(k)", justify="right")
    table.add_column("Disputed", justify="right")
    for corpus in partitions:
        table.add_row(str(corpus.size), str(corpus.trials), str(corpus.total),
                      f"{len(corpus.lr1)}/{corpus.total}",
                      f"{len(corpus.lr_k)}/{corpus.total}",
                      str(len(corpus.disputed)))
    console.print(table)

# ============================================================================
# CLI
# ============================================================================

def parse_args(argv=None):
    parser = argparse.ArgumentParser(description='Generate and LR-classify random grammars')
    parser.add_argument('out', help='Base output directory for the corpus')
    parser.add_argument('--from-size', type=int, default=10, help='Smallest grammar size')
    parser.add_argument('--to-size', type=int, default=12, help='Largest grammar size (exclusive)')
    parser.add_argument('-n', '--trials', type=int, default=100, help='Trials per size')
    parser.add_argument('--workers', type=int, default=min(8, mp.cpu_count()),
                        help='Worker processes (1 = run in-process)')
    parser.add_argument('--seed', type=int, default=42)
    parser.add_argument('--bison', default='bison', help='Bison executable')
    parser.add_argument('--hyacc', default='hyacc', help='Hyacc executable')
    parser.add_argument('--nimbleparse', default='nimbleparse', help='grmtools nimbleparse executable')
    parser.add_argument('--hyacc-timeout', type=float, default=5.0,
                        help='Wall clock limit for the LR(k) check, in seconds')
    parser.add_argument('--scratch', help='Parent directory for scratch files')
    parser.add_argument('--no-ansi', action='store_true')

    args = parser.parse_args(argv)
    if args.from_size < 2 or args.from_size >= args.to_size:
        parser.error("need 2 <= --from-size < --to-size")
    largest = max_grammar_size(Config())
    if args.to_size - 1 > largest:
        parser.error(f"--to-size must be at most {largest + 1}; the alphabets only cover {largest} rules")
    if args.trials < 0 or args.workers < 1:
        parser.error("need --trials >= 0 and --workers >= 1")
    return args


def main(argv=None):
    args = parse_args(argv)

    config = Config(
        seed=args.seed,
        bison_cmd=args.bison,
        hyacc_cmd=args.hyacc,
        lrpar_cmd=args.nimbleparse,
        hyacc_timeout_s=args.hyacc_timeout,
        scratch_root=args.scratch,
    )

    sys.stderr.write("=" * 60 + "\n")
    sys.stderr.write("Random Grammar LR Corpus Generator\n")
    sys.stderr.write(f"Sizes: {args.from_size}..{args.to_size - 1} | Trials: {args.trials} | "
                     f"Workers: {args.workers}\n")
    sys.stderr.write(f"Output: {args.out}\n")
    sys.stderr.write("=" * 60 + "\n")
    sys.stderr.flush()

    start_time = time.time()
    try:
        partitions = generate(args.from_size, args.to_size, args.trials, args.out,
                              config, workers=args.workers)
    except (BatchError, OracleInvocationError) as e:
        sys.stderr.write(f"\n[FATAL: {e}]\n")
        sys.stderr.flush()
        sys.exit(1)
    except KeyboardInterrupt:
        sys.stderr.write("\n[Interrupted]\n")
        sys.exit(130)

    sys.stderr.write(f"\n[Complete in {time.time() - start_time:.1f}s]\n")
    print_report(partitions, args.no_ansi)


if __name__ == '__main__':
    main()
