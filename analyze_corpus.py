#!/usr/bin/env python3
"""
Corpus Checker for Classified Grammars

Walks a corpus written by parallel_classify.py and reports per-class and
per-size counts, duplicated grammars and mean grammar shape.
"""

import argparse
import hashlib
import statistics
import sys
from collections import Counter, defaultdict
from pathlib import Path
from typing import Any, Dict

from rich import box
from rich.console import Console
from rich.table import Table

from cfg_gen import Renderer
from parallel_classify import CLASSES


def analyze_corpus(base_dir) -> Dict[str, Any]:
    base_dir = Path(base_dir)
    counts: Dict[str, Counter] = {name: Counter() for name in CLASSES}
    shapes = defaultdict(list)          # class -> [(rules, alts, syms)]
    hashes = Counter()
    unreadable = []

    for class_name in CLASSES:
        class_dir = base_dir / class_name
        if not class_dir.is_dir():
            continue
        for size_dir in sorted(class_dir.iterdir()):
            if not size_dir.is_dir():
                continue
            try:
                size = int(size_dir.name)
            except ValueError:
                unreadable.append(str(size_dir))
                continue
            for path in sorted(size_dir.iterdir()):
                try:
                    text = path.read_text()
                    shape = Renderer.count(text)
                except (ValueError, UnicodeDecodeError, IsADirectoryError):
                    unreadable.append(str(path))
                    continue
                counts[class_name][size] += 1
                shapes[class_name].append(shape)
                hashes[hashlib.sha256(text.encode()).hexdigest()] += 1

    def mean(values):
        return round(statistics.mean(values), 2) if values else 0.0

    summary = {}
    for class_name in CLASSES:
        class_shapes = shapes[class_name]
        summary[class_name] = {
            'total': sum(counts[class_name].values()),
            'by_size': dict(sorted(counts[class_name].items())),
            'mean_rules': mean([s[0] for s in class_shapes]),
            'mean_alts': mean([s[1] for s in class_shapes]),
            'mean_syms': mean([s[2] for s in class_shapes]),
        }

    total = sum(hashes.values())
    return {
        'classes': summary,
        'grammars': total,
        'unique': len(hashes),
        'duplicates': sum(c - 1 for c in hashes.values() if c > 1),
        'unreadable': unreadable,
    }


def print_report(report: Dict[str, Any], no_ansi: bool = False):
    print(f"Grammars: {report['grammars']} | unique: {report['unique']} | "
          f"duplicates: {report['duplicates']}")
    if report['unreadable']:
        print(f"Unreadable files: {len(report['unreadable'])}")
        for path in report['unreadable'][:10]:
            print(f"  {path}")

    if no_ansi:
        for name, stats in report['classes'].items():
            print(f"{name}: {stats['total']} {stats['by_size']} "
                  f"rules={stats['mean_rules']} alts={stats['mean_alts']} syms={stats['mean_syms']}")
        return

    console = Console()
    table = Table(title="Corpus by class", box=box.ROUNDED)
    table.add_column("Class")
    table.add_column("Total", justify="right")
    table.add_column("By size")
    table.add_column("Rules", justify="right")
    table.add_column("Alts", justify="right")
    table.add_column("Syms", justify="right")
    for name, stats in report['classes'].items():
        by_size = ', '.join(f"{size}:{n}" for size, n in stats['by_size'].items())
        table.add_row(name, str(stats['total']), by_size, str(stats['mean_rules']),
                      str(stats['mean_alts']), str(stats['mean_syms']))
    console.print(table)


def main():
    parser = argparse.ArgumentParser(description='Summarize a classified grammar corpus')
    parser.add_argument('corpus', help='Base output directory of a corpus run')
    parser.add_argument('--no-ansi', action='store_true')
    args = parser.parse_args()

    if not Path(args.corpus).is_dir():
        sys.stderr.write(f"[ERROR: {args.corpus} is not a directory]\n")
        sys.exit(1)

    print_report(analyze_corpus(args.corpus), args.no_ansi)


if __name__ == '__main__':
    main()
