#!/usr/bin/env python3
"""
Oracle adapters: output interpretation, timeouts, launch failures and,
where the engines are installed, real verdicts.
"""

import os
import shutil
import stat
import sys

import pytest

from lr_oracles import (BisonOracle, GrmtoolsOracle, HyaccOracle, OracleInvocationError,
                        OracleSet, Verdict, default_oracles, STRICT, RELAXED, REFERENCE)
from cfg_gen import Config
from sample_grammars import lr1_grammar, lr2_grammar, non_lr1_grammar

needs_bison = pytest.mark.skipif(shutil.which('bison') is None, reason="bison not installed")
needs_hyacc = pytest.mark.skipif(shutil.which('hyacc') is None, reason="hyacc not installed")
posix_only = pytest.mark.skipif(os.name != 'posix', reason="needs a POSIX shell")


# ----------------------------------------------------------------------------
# Interpretation
# ----------------------------------------------------------------------------

def test_bison_markers_reject():
    oracle = BisonOracle('bison')
    for err in ("g.y: warning: 1 shift/reduce conflict [-Wconflicts-sr]",
                "g.y: warning: 2 reduce/reduce conflicts",
                "g.y: warning: 2 nonterminals useless in grammar",
                "g.y: warning: 3 rules useless in grammar"):
        verdict = oracle.interpret(0, '', err)
        assert not verdict.accepted
        assert err in verdict.diagnostic


def test_bison_clean_run_accepts():
    verdict = BisonOracle('bison').interpret(0, '', '')
    assert verdict == Verdict(True, "err: \n")


def test_bison_failed_run_rejects():
    verdict = BisonOracle('bison').interpret(1, '', "g.y:3.1: error: syntax error")
    assert not verdict.accepted
    assert "exit code: 1" in verdict.diagnostic


def test_hyacc_max_k_accepts():
    out = "\n".join([
        "some banner",
        "while loop: k = 1",
        "while loop: k = 2",
        "Max K in LR(k): 2",
        "",
    ])
    verdict = HyaccOracle('hyacc').interpret(0, out, '')
    assert verdict.accepted
    assert verdict.diagnostic == "while loop: k = 1\nwhile loop: k = 2\nMax K in LR(k): 2"


def test_hyacc_fatal_marker_rejects():
    out = "laneHeadList is NULL\nwhile loop: k = 1\nMax K in LR(k): 1"
    verdict = HyaccOracle('hyacc').interpret(0, out, '')
    assert not verdict.accepted
    assert verdict.diagnostic == "laneHeadList is NULL\nwhile loop: k = 1"


def test_hyacc_without_max_k_rejects():
    verdict = HyaccOracle('hyacc').interpret(3, "while loop: k = 1\n", "boom")
    assert not verdict.accepted
    assert verdict.diagnostic == "exit code: 3\nwhile loop: k = 1\nerr: boom"


def test_grmtools_conflicts_reject():
    oracle = GrmtoolsOracle('nimbleparse')
    assert not oracle.interpret(1, '', "1 Shift/Reduce conflict").accepted
    assert not oracle.interpret(1, "Reduce/Reduce conflicts:", '').accepted
    assert not oracle.interpret(0, "Unused symbols: 'z'", '').accepted
    assert oracle.interpret(0, '', '').accepted


def test_grmtools_grammar_errors_reject():
    oracle = GrmtoolsOracle('nimbleparse')
    verdict = oracle.interpret(1, '', "Error: Unknown reference to 'Q' at line 5 column 12")
    assert not verdict.accepted
    assert "Unknown reference" in verdict.diagnostic
    # A failing exit without any recognised marker is not an acceptance either
    verdict = oracle.interpret(101, '', "thread 'main' panicked")
    assert not verdict.accepted
    assert verdict.diagnostic.startswith("exit code: 101")


def test_grmtools_empty_input_parse_failure_accepts():
    out = "Parsing error at line 1 column 1. Repair sequences found:\n   1: Insert a"
    assert GrmtoolsOracle('nimbleparse').interpret(1, out, '').accepted


# ----------------------------------------------------------------------------
# Process handling
# ----------------------------------------------------------------------------

def test_missing_engine_is_fatal(tmp_path):
    oracle = BisonOracle(str(tmp_path / 'no-such-bison'))
    with pytest.raises(OracleInvocationError) as excinfo:
        oracle.classify(lr1_grammar(), tmp_path, '0')
    assert 'no-such-bison' in str(excinfo.value)


@posix_only
def test_hyacc_timeout_is_a_rejection(tmp_path):
    script = tmp_path / 'slow-hyacc'
    script.write_text("#!/bin/sh\necho 'while loop: k = 1'\nexec sleep 10\n")
    script.chmod(script.stat().st_mode | stat.S_IEXEC)

    oracle = HyaccOracle(str(script), timeout_s=0.5)
    verdict = oracle.classify(lr1_grammar(), tmp_path, '0')
    assert not verdict.accepted
    assert verdict.diagnostic.startswith("timeout")


@posix_only
def test_relative_hyacc_path_survives_workdir_change(tmp_path, monkeypatch):
    bindir = tmp_path / 'bin'
    bindir.mkdir()
    script = bindir / 'fake-hyacc'
    script.write_text("#!/bin/sh\necho 'while loop: k = 1'\necho 'Max K in LR(k): 1'\n")
    script.chmod(script.stat().st_mode | stat.S_IEXEC)
    workdir = tmp_path / 'work'
    workdir.mkdir()

    monkeypatch.chdir(tmp_path)
    oracle = HyaccOracle(os.path.join('.', 'bin', 'fake-hyacc'))
    assert oracle.command == str(script)

    verdict = oracle.classify(lr1_grammar(), workdir, '0')
    assert verdict.accepted


def test_bare_hyacc_name_is_left_to_path_lookup():
    assert HyaccOracle('hyacc').command == 'hyacc'


@posix_only
def test_classify_writes_each_notation(tmp_path):
    true_cmd = shutil.which('true')
    if true_cmd is None:
        pytest.skip("no `true` executable")
    oracles = OracleSet(strict=BisonOracle(true_cmd),
                        relaxed=HyaccOracle(true_cmd),
                        reference=GrmtoolsOracle(true_cmd))
    verdicts = {role: oracle.classify(lr2_grammar(), tmp_path, '7')
                for role, oracle in oracles.items()}

    assert verdicts[STRICT].accepted
    assert not verdicts[RELAXED].accepted       # no "Max K" line from `true`
    assert verdicts[REFERENCE].accepted

    assert (tmp_path / '7.bison.y').read_text().startswith("%define lr.type canonical-lr")
    assert (tmp_path / '7.hyacc.y').read_text().startswith("%start root")
    assert "-> ():" in (tmp_path / '7.lrpar.y').read_text()
    assert (tmp_path / '7.lrpar.l').exists()
    assert (tmp_path / '7.lrpar.in').read_text() == ''


def test_default_oracles_follow_config():
    config = Config(bison_cmd='/opt/bison', hyacc_cmd='/opt/hyacc',
                    lrpar_cmd='/opt/nimbleparse', hyacc_timeout_s=2.5)
    oracles = default_oracles(config)
    assert oracles.strict.command == '/opt/bison'
    assert oracles.relaxed.command == '/opt/hyacc'
    assert oracles.relaxed.timeout_s == 2.5
    assert oracles.reference.command == '/opt/nimbleparse'
    assert [role for role, _ in oracles.items()] == [STRICT, RELAXED, REFERENCE]


# ----------------------------------------------------------------------------
# Real engines
# ----------------------------------------------------------------------------

@needs_bison
def test_bison_lr1(tmp_path):
    verdict = BisonOracle('bison').classify(lr1_grammar(), tmp_path, 'lr1')
    print(f"msg: {verdict.diagnostic}")
    assert verdict.accepted


@needs_bison
def test_bison_non_lr1(tmp_path):
    verdict = BisonOracle('bison').classify(non_lr1_grammar(), tmp_path, 'non_lr1')
    print(verdict.diagnostic)
    assert not verdict.accepted


@needs_bison
def test_bison_lr2_needs_more_lookahead(tmp_path):
    verdict = BisonOracle('bison').classify(lr2_grammar(), tmp_path, 'lr2')
    assert not verdict.accepted


@needs_hyacc
def test_hyacc_lr1(tmp_path):
    verdict = HyaccOracle('hyacc').classify(lr1_grammar(), tmp_path, 'lr1')
    print(f"msg: {verdict.diagnostic}")
    assert verdict.accepted


@needs_hyacc
def test_hyacc_lr2(tmp_path):
    verdict = HyaccOracle('hyacc').classify(lr2_grammar(), tmp_path, 'lr2')
    print(f"msg: {verdict.diagnostic}")
    assert verdict.accepted


if __name__ == '__main__':
    sys.exit(pytest.main([__file__, '-v']))
