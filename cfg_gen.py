#!/usr/bin/env python3
#
#Random Context-Free Grammar Generator
#=====================================

#Builds random CFGs that are reachable, productive and free of the cheap
#degenerate shapes (duplicate alternatives, `X: X`, a sole empty production)
#so that the interesting question left is which LR class they belong to.

#GRAMMAR SHAPE:
#  - Size N = number of rules, root included
#  - Root rule is named `root`; other nonterminals are N-1 distinct upper-case letters
#  - Terminals are N distinct lower-case letters, rendered quoted: 'a'
#  - 1-3 alternatives per rule, 0-5 symbols per alternative (root: 1-5)

#RENDERINGS (see Renderer):
#  canonical:  %start root / %% / rules / %%               (Hyacc)
#  bison:      canonical with `%define lr.type canonical-lr` (Bison)
#  grmtools:   `LHS -> (): alt { } | ...`                   (nimbleparse)

#USAGE:
#  Sample:   python cfg_gen.py sample --size 5 --n 10 --seed 1337
#  Validate: python cfg_gen.py validate --n 2000 --min-size 2 --max-size 8
#

import argparse
import random
import re
import string
import sys
from collections import deque
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Set, Tuple, Union

from rich import box
from rich.console import Console
from rich.table import Table

ROOT_NAME = "root"

# ============================================================================
# GRAMMAR MODEL
# ============================================================================

@dataclass(slots=True, frozen=True)
class Terminal:
    name: str

    def __post_init__(self):
        if not isinstance(self.name, str):
            raise TypeError(f"terminal name must be a str, got {self.name!r}")

    def __str__(self) -> str:
        return f"'{self.name}'"


@dataclass(slots=True, frozen=True)
class NonTerminal:
    name: str

    def __post_init__(self):
        if not isinstance(self.name, str):
            raise TypeError(f"nonterminal name must be a str, got {self.name!r}")

    def __str__(self) -> str:
        return self.name


Symbol = Union[Terminal, NonTerminal]


@dataclass(slots=True, frozen=True)
class Alternative:
    #One right-hand side choice. Empty tuple is the epsilon production.#
    symbols: Tuple[Symbol, ...] = field(default=())

    def __post_init__(self):
        object.__setattr__(self, 'symbols', tuple(self.symbols))

    def __str__(self) -> str:
        return ' '.join(str(sym) for sym in self.symbols)

    def __len__(self) -> int:
        return len(self.symbols)

    def is_empty(self) -> bool:
        return not self.symbols

    def nonterminals(self) -> List[str]:
        # Order of first appearance, duplicates kept
        return [sym.name for sym in self.symbols if isinstance(sym, NonTerminal)]


@dataclass(slots=True, frozen=True)
class Rule:
    lhs: str
    alternatives: Tuple[Alternative, ...]

    def __post_init__(self):
        if not isinstance(self.lhs, str):
            raise TypeError(f"rule lhs must be a str, got {self.lhs!r}")
        object.__setattr__(self, 'alternatives', tuple(self.alternatives))

    def __str__(self) -> str:
        return f"{self.lhs}: " + ' | '.join(str(alt) for alt in self.alternatives)


@dataclass(slots=True, frozen=True)
class Grammar:
    #Ordered rules; rules[0] is the root/start rule.#
    rules: Tuple[Rule, ...]

    def __post_init__(self):
        object.__setattr__(self, 'rules', tuple(self.rules))

    @property
    def root(self) -> Rule:
        return self.rules[0]

    def rule(self, lhs: str) -> Optional[Rule]:
        for rule in self.rules:
            if rule.lhs == lhs:
                return rule
        return None

    def nonterminal_names(self) -> List[str]:
        return [rule.lhs for rule in self.rules]

    def terminal_names(self) -> List[str]:
        names = set()
        for rule in self.rules:
            for alt in rule.alternatives:
                names.update(sym.name for sym in alt.symbols if isinstance(sym, Terminal))
        return sorted(names)

    def counts(self) -> Tuple[int, int, int]:
        #(rules, alternatives, symbols)#
        alts = sum(len(rule.alternatives) for rule in self.rules)
        syms = sum(len(alt) for rule in self.rules for alt in rule.alternatives)
        return len(self.rules), alts, syms

    def __str__(self) -> str:
        return '\n'.join(f"{rule}\n;" for rule in self.rules)

# ============================================================================
# REACHABILITY / PRODUCTIVITY
# ============================================================================

def compute_reachable(alternatives: Iterable[Alternative], known: Set[str]) -> Set[str]:
    """Return `known` extended with every nonterminal referenced by `alternatives`."""
    reachable = set(known)
    for alt in alternatives:
        reachable.update(alt.nonterminals())
    return reachable


def unreachable_nonterminals(names: Iterable[str], reachable: Set[str]) -> Set[str]:
    return set(names) - set(reachable)


def productive_nonterminals(grammar: Grammar) -> Set[str]:
    """
    Monotone fixpoint over the non-root rules.

    A rule becomes productive once one of its alternatives consists only of
    terminals and already-productive nonterminals. An alternative with no
    nonterminals (epsilon included) is productive straight away.
    """
    productive: Set[str] = set()
    changed = True
    while changed:
        changed = False
        for rule in grammar.rules[1:]:
            if rule.lhs in productive:
                continue
            for alt in rule.alternatives:
                if all(isinstance(sym, Terminal) or sym.name in productive
                       for sym in alt.symbols):
                    productive.add(rule.lhs)
                    changed = True
                    break
    return productive


def is_productive(grammar: Grammar) -> bool:
    productive = productive_nonterminals(grammar)
    return all(rule.lhs in productive for rule in grammar.rules[1:])

# ============================================================================
# GRAMMAR GENERATION
# ============================================================================

class AlternativeExhausted(Exception):
    #No fresh, non-degenerate alternative could be drawn for a rule.#
    pass


@dataclass
class Config:
    min_alts: int = 1
    max_alts: int = 3
    min_syms: int = 0
    max_syms: int = 5
    root_min_syms: int = 1          # root never derives epsilon directly
    max_alt_retries: int = 50       # re-rolls per alternative before giving up
    nonterminal_alphabet: str = string.ascii_uppercase
    terminal_alphabet: str = string.ascii_lowercase
    root_name: str = ROOT_NAME
    seed: Optional[int] = None
    # Oracle engines
    bison_cmd: str = 'bison'
    hyacc_cmd: str = 'hyacc'
    lrpar_cmd: str = 'nimbleparse'
    hyacc_timeout_s: float = 5.0    # wall clock limit for the LR(k) check
    scratch_root: Optional[str] = None

    def __post_init__(self):
        if not 1 <= self.min_alts <= self.max_alts:
            raise ValueError(f"bad alternative bounds [{self.min_alts}, {self.max_alts}]")
        if not 0 <= self.min_syms <= self.max_syms:
            raise ValueError(f"bad symbol bounds [{self.min_syms}, {self.max_syms}]")
        if not 1 <= self.root_min_syms <= self.max_syms:
            raise ValueError(f"bad root symbol bounds [{self.root_min_syms}, {self.max_syms}]")


class GrammarGenerator:
    #Generates one random grammar over a fixed alphabet subset.#

    def __init__(self, rng: random.Random, config: Config,
                 nonterminals: List[str], terminals: List[str]):
        self.rng = rng
        self.config = config
        self.nonterminals = list(nonterminals)
        self.terminals = list(terminals)
        # The root is never a candidate symbol
        self.pool: List[Symbol] = ([Terminal(t) for t in self.terminals] +
                                   [NonTerminal(nt) for nt in self.nonterminals])

    def generate(self) -> Optional[Grammar]:
        """
        Expand rules lazily from a worklist seeded by the root's alternatives.

        Returns None when a selected nonterminal is never reached or the
        result is not productive. Both are ordinary outcomes.
        """
        root = self.gen_rule(self.config.root_name, is_root=True)
        rules = [root]
        reachable = compute_reachable(root.alternatives, set())
        seen = {root.lhs}
        worklist: deque = deque()
        self._discover(root, seen, worklist)

        while worklist:
            lhs = worklist.popleft()
            rule = self.gen_rule(lhs)
            rules.append(rule)
            reachable = compute_reachable(rule.alternatives, reachable)
            self._discover(rule, seen, worklist)

        if unreachable_nonterminals(self.nonterminals, reachable):
            return None

        grammar = Grammar(tuple(rules))
        if not is_productive(grammar):
            return None
        return grammar

    def _discover(self, rule: Rule, seen: Set[str], worklist: deque):
        for alt in rule.alternatives:
            for name in alt.nonterminals():
                if name not in seen:
                    seen.add(name)
                    worklist.append(name)

    def gen_rule(self, lhs: str, is_root: bool = False) -> Rule:
        no_alts = self.rng.randint(self.config.min_alts, self.config.max_alts)
        alts: List[Alternative] = []
        for _ in range(no_alts):
            alts.append(self._fresh_alt(lhs, is_root, no_alts == 1, alts))
        return Rule(lhs, tuple(alts))

    def _fresh_alt(self, lhs: str, is_root: bool, sole: bool,
                   taken: List[Alternative]) -> Alternative:
        rendered = {str(alt) for alt in taken}
        for _ in range(self.config.max_alt_retries):
            alt = self.gen_alt(lhs, is_root)
            # A sole empty production makes the nonterminal vacuous
            if sole and alt.is_empty():
                continue
            if str(alt) in rendered:
                continue
            return alt
        raise AlternativeExhausted(
            f"{lhs}: no fresh alternative after {self.config.max_alt_retries} draws")

    def gen_alt(self, lhs: str, is_root: bool = False) -> Alternative:
        min_syms = self.config.root_min_syms if is_root else self.config.min_syms
        no_syms = self.rng.randint(min_syms, self.config.max_syms)
        candidates = [sym for sym in self.pool
                      if not (isinstance(sym, NonTerminal) and sym.name == lhs)]

        if is_root and no_syms == 1:
            # `root: 'a'` would leave nothing downstream to expand
            nts = [sym for sym in candidates if isinstance(sym, NonTerminal)]
            return Alternative((self.rng.choice(nts),))

        return Alternative(tuple(self.rng.choice(candidates) for _ in range(no_syms)))


def max_grammar_size(config: Config) -> int:
    return min(len(config.nonterminal_alphabet) + 1, len(config.terminal_alphabet))


def select_alphabet(rng: random.Random, config: Config, size: int) -> Tuple[List[str], List[str]]:
    #Draw N-1 nonterminal names and N terminal names without replacement.#
    if size < 2:
        raise ValueError(f"grammar size must be >= 2, got {size}")
    if size > max_grammar_size(config):
        raise ValueError(f"alphabet too small for grammar size {size}")
    nonterminals = rng.sample(list(config.nonterminal_alphabet), size - 1)
    terminals = rng.sample(list(config.terminal_alphabet), size)
    return nonterminals, terminals


def generate_grammar(config: Config, rng: random.Random, size: int) -> Optional[Grammar]:
    #Generate a single candidate grammar of `size` rules, or None.#
    nonterminals, terminals = select_alphabet(rng, config, size)
    gen = GrammarGenerator(rng, config, nonterminals, terminals)
    try:
        return gen.generate()
    except AlternativeExhausted:
        return None

# ============================================================================
# RENDERING
# ============================================================================

_SYMBOL_RE = re.compile(r"'[^']*'|[A-Za-z_][A-Za-z0-9_]*")


class Renderer:
    #Renders grammars to the text each oracle engine reads.

    #All three forms share one body; only the header directives and the
    #per-alternative action blocks differ.
    #

    @staticmethod
    def to_canonical(grammar: Grammar) -> str:
        return f"%start {grammar.root.lhs}\n\n%%\n\n{grammar}\n\n%%\n"

    @staticmethod
    def to_bison(grammar: Grammar) -> str:
        return "%define lr.type canonical-lr\n" + Renderer.to_canonical(grammar)

    @staticmethod
    def to_grmtools(grammar: Grammar) -> str:
        lines = []
        for rule in grammar.rules:
            alts = ' | '.join(f"{alt} {{ }}".lstrip() for alt in rule.alternatives)
            lines.append(f"{rule.lhs} -> (): {alts}\n;")
        body = '\n'.join(lines)
        return f"%start {grammar.root.lhs}\n\n%%\n\n{body}\n\n%%\n"

    @staticmethod
    def to_grmtools_lexer(grammar: Grammar) -> str:
        lines = [f"{name} \"{name}\"" for name in grammar.terminal_names()]
        lines.append("[\\t\\n ]+ ;")
        return "%%\n" + '\n'.join(lines) + "\n"

    @staticmethod
    def count(text: str) -> Tuple[int, int, int]:
        """Re-parse (rules, alternatives, symbols) from any of the three renderings."""
        sections = text.split('%%')
        if len(sections) < 2:
            raise ValueError("no %% section marker in grammar text")
        body = sections[1]

        rules = alts = syms = 0
        for chunk in body.split('\n;'):
            if not chunk.strip():
                continue
            _, rhs = chunk.split(':', 1)
            rules += 1
            for alt in rhs.split('|'):
                alts += 1
                syms += len(_SYMBOL_RE.findall(alt.replace('{ }', '')))
        return rules, alts, syms

# ============================================================================
# MODES
# ============================================================================

def sample_mode(args, config: Config):
    #Print a handful of generated grammars and their shape.#
    rng = random.Random(config.seed)
    samples = []
    attempts = 0
    while len(samples) < args.n and attempts < args.n * 100:
        attempts += 1
        grammar = generate_grammar(config, rng, args.size)
        if grammar:
            samples.append(grammar)

    if not samples:
        print("No grammars generated")
        return

    for i, grammar in enumerate(samples[:args.show]):
        print(f"\n{'='*60}")
        print(f"GRAMMAR {i}")
        print('='*60)
        print(Renderer.to_canonical(grammar))

    if args.no_ansi:
        for grammar in samples:
            print("rules=%d alts=%d syms=%d" % grammar.counts())
    else:
        console = Console()
        table = Table(title=f"Grammars (size={args.size}, n={len(samples)}, "
                            f"attempts={attempts})", box=box.ROUNDED)
        table.add_column("Root")
        table.add_column("Rules", justify="right")
        table.add_column("Alts", justify="right")
        table.add_column("Syms", justify="right")
        for grammar in samples:
            no_rules, no_alts, no_syms = grammar.counts()
            table.add_row(str(grammar.root)[:50], str(no_rules), str(no_alts), str(no_syms))
        console.print(table)


def validate_mode(args, config: Config) -> bool:
    #Check structural invariants over many random grammars.#
    print(f"\n{'='*60}")
    print("RANDOM GRAMMAR VALIDATION SUITE")
    print('='*60)

    rng = random.Random(config.seed if config.seed is not None else 42)
    grammars = []
    attempts = 0
    for i in range(args.n):
        size = rng.randint(args.min_size, args.max_size)
        attempts += 1
        grammar = generate_grammar(config, rng, size)
        if grammar:
            grammars.append((size, grammar))

    print(f"\n[0] Generated {len(grammars)}/{attempts} grammars")
    if not grammars:
        print("  ✗ FAIL: nothing to validate")
        return False

    checks = {
        "Rule set equals reachable set": check_reachability,
        "Every non-root rule productive": lambda size, g: is_productive(g),
        "No duplicate alternatives": check_no_duplicates,
        "No trivial self-alias": check_no_self_alias,
        "Rule count equals size": lambda size, g: len(g.rules) == size,
        "Render/count round-trip": check_round_trip,
    }

    passed = 0
    failed = 0
    for n, (name, check) in enumerate(checks.items(), start=1):
        ok = sum(1 for size, g in grammars if check(size, g))
        print(f"\n[{n}] {name}")
        if ok == len(grammars):
            print(f"  ✓ PASS: {ok}/{len(grammars)}")
            passed += 1
        else:
            print(f"  ✗ FAIL: only {ok}/{len(grammars)}")
            failed += 1

    print(f"\n{'='*60}")
    if failed == 0:
        print(f"ALL TESTS PASSED ({passed}/{len(checks)} test groups)")
    else:
        print(f"FAILURES: {failed} test groups failed")
    print('='*60)
    return failed == 0


def check_reachability(size: int, grammar: Grammar) -> bool:
    reachable = set()
    frontier = [grammar.root.lhs]
    while frontier:
        rule = grammar.rule(frontier.pop())
        if rule is None:
            return False
        for name in compute_reachable(rule.alternatives, set()):
            if name not in reachable:
                reachable.add(name)
                frontier.append(name)
    return reachable == set(grammar.nonterminal_names()[1:])


def check_no_duplicates(size: int, grammar: Grammar) -> bool:
    return all(len({str(alt) for alt in rule.alternatives}) == len(rule.alternatives)
               for rule in grammar.rules)


def check_no_self_alias(size: int, grammar: Grammar) -> bool:
    return all(alt.symbols != (NonTerminal(rule.lhs),)
               for rule in grammar.rules for alt in rule.alternatives)


def check_round_trip(size: int, grammar: Grammar) -> bool:
    expected = grammar.counts()
    return all(Renderer.count(text) == expected for text in (
        Renderer.to_canonical(grammar),
        Renderer.to_bison(grammar),
        Renderer.to_grmtools(grammar)))

# ============================================================================
# CLI
# ============================================================================

def parse_args(argv=None):
    parser = argparse.ArgumentParser(description='Random context-free grammar generator')
    subparsers = parser.add_subparsers(dest='mode', required=True)

    sample = subparsers.add_parser('sample')
    sample.add_argument('--size', type=int, default=5, help='Number of rules, root included')
    sample.add_argument('--n', type=int, default=10)
    sample.add_argument('--show', type=int, default=3, help='Grammars to print in full')
    sample.add_argument('--max-alts', type=int, default=3)
    sample.add_argument('--max-syms', type=int, default=5)
    sample.add_argument('--seed', type=int, default=1337)
    sample.add_argument('--no-ansi', action='store_true')

    validate = subparsers.add_parser('validate')
    validate.add_argument('--n', type=int, default=2000)
    validate.add_argument('--min-size', type=int, default=2)
    validate.add_argument('--max-size', type=int, default=8)
    validate.add_argument('--seed', type=int, default=42)

    return parser.parse_args(argv)


def main(argv=None):
    args = parse_args(argv)

    bounds = {key: getattr(args, key) for key in ('max_alts', 'max_syms') if hasattr(args, key)}
    try:
        config = Config(seed=args.seed, **bounds)
    except ValueError as e:
        sys.stderr.write(f"[ERROR: {e}]\n")
        sys.exit(2)

    if args.mode == 'sample':
        sample_mode(args, config)
    elif args.mode == 'validate':
        if args.min_size < 2 or args.min_size > args.max_size:
            sys.stderr.write("[ERROR: need 2 <= --min-size <= --max-size]\n")
            sys.exit(2)
        success = validate_mode(args, config)
        sys.exit(0 if success else 1)


if __name__ == '__main__':
    main()
