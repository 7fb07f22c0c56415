#!/usr/bin/env python3
"""
Grammar model rendering and equality.
"""

import sys

from cfg_gen import Alternative, NonTerminal, Rule, Terminal
from sample_grammars import alt, lr1_grammar, nt, t


def test_symbol_kind_matters():
    assert Terminal('a') != NonTerminal('a')
    assert str(Terminal('a')) == "'a'"
    assert str(NonTerminal('A')) == "A"


def test_alternative_equality_is_by_rendering():
    first = alt(t('a'), nt('B'))
    second = Alternative([Terminal('a'), NonTerminal('B')])
    assert first == second
    assert str(first) == str(second) == "'a' B"
    assert alt(t('B')) != alt(nt('B'))


def test_empty_alternative_renders_empty():
    epsilon = Alternative()
    assert str(epsilon) == ""
    assert epsilon.is_empty()
    assert str(Rule('A', (alt(t('x')), epsilon))) == "A: 'x' | "


def test_root_rule_render():
    grammar = lr1_grammar()
    assert str(grammar.root) == "root: 'a' A 'c' | 'd' 'e'"
    assert str(grammar) == "root: 'a' A 'c' | 'd' 'e'\n;\nA: 'b'\n;"


def test_grammar_accessors():
    grammar = lr1_grammar()
    assert grammar.nonterminal_names() == ['root', 'A']
    assert grammar.terminal_names() == ['a', 'b', 'c', 'd', 'e']
    assert grammar.rule('A') == Rule('A', (alt(t('b')),))
    assert grammar.rule('Z') is None
    assert grammar.counts() == (2, 3, 6)


def test_nonterminals_keep_symbol_order():
    assert alt(nt('F'), t('x'), nt('B'), nt('F')).nonterminals() == ['F', 'B', 'F']


def test_names_must_be_strings():
    for make in (Terminal, NonTerminal):
        try:
            make(None)
        except TypeError:
            continue
        raise AssertionError(f"{make.__name__}(None) accepted")


if __name__ == '__main__':
    for name, fn in list(globals().items()):
        if name.startswith('test_'):
            fn()
            print(f"  ✓ {name}")
    sys.exit(0)
