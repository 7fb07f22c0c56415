#!/usr/bin/env python3
"""
LR classification oracles.

Each oracle renders a grammar into the notation its engine reads, runs the
engine as a subprocess and boils the captured output down to a Verdict.
The engines are black boxes; only their warnings and exit status matter.

  strict     GNU Bison, canonical LR(1) tables    -> conflicts mean "not LR(1)"
  relaxed    Hyacc in LR(k) mode                  -> "Max K in LR(k)" means LR(k)
  reference  grmtools nimbleparse                 -> conflicts mean "not LR(1)"

A grammar the engine rejects is an ordinary negative verdict. An engine that
cannot be started at all raises OracleInvocationError.
"""

import os
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Tuple

from cfg_gen import Config, Grammar, Renderer

STRICT = 'strict'
RELAXED = 'relaxed'
REFERENCE = 'reference'


@dataclass(frozen=True)
class Verdict:
    accepted: bool
    diagnostic: str


class OracleInvocationError(Exception):
    #The engine binary itself could not be executed.#

    def __init__(self, command: str, cause: BaseException):
        super().__init__(command, cause)
        self.command = command
        self.cause = cause

    def __str__(self) -> str:
        return f"cannot execute {self.command}: {self.cause}"


def run(cmd: List[str], timeout: Optional[float] = None,
        cwd: Optional[Path] = None) -> Tuple[int, str, str]:
    #Run `cmd`, returning (exit code, stdout, stderr).#
    try:
        proc = subprocess.run(cmd, capture_output=True, text=True, errors='replace',
                              timeout=timeout, cwd=cwd)
    except OSError as e:
        raise OracleInvocationError(cmd[0], e) from e
    return proc.returncode, proc.stdout, proc.stderr


def _as_text(output) -> str:
    # TimeoutExpired carries raw bytes even when text=True was requested
    if output is None:
        return ''
    if isinstance(output, bytes):
        return output.decode('utf-8', errors='replace')
    return output


class Oracle:
    #Common file handling; subclasses own rendering and output interpretation.#

    name = 'oracle'

    def __init__(self, command: str):
        self.command = command

    def render(self, grammar: Grammar) -> str:
        raise NotImplementedError

    def grammar_path(self, workdir: Path, stem: str) -> Path:
        return Path(workdir) / f"{stem}.{self.name}.y"

    def write(self, grammar: Grammar, workdir: Path, stem: str) -> Path:
        path = self.grammar_path(workdir, stem)
        path.write_text(self.render(grammar))
        return path

    def check(self, path: Path) -> Verdict:
        raise NotImplementedError

    def classify(self, grammar: Grammar, workdir: Path, stem: str) -> Verdict:
        return self.check(self.write(grammar, workdir, stem))

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.command!r})"


class BisonOracle(Oracle):
    #Canonical LR(1) via `%define lr.type canonical-lr`.#

    name = 'bison'
    MARKERS = ("shift/reduce", "reduce/reduce", "nonterminals useless", "rules useless")

    def render(self, grammar: Grammar) -> str:
        return Renderer.to_bison(grammar)

    def check(self, path: Path) -> Verdict:
        path = Path(path)
        code, out, err = run([self.command, str(path), '-o', str(path.with_suffix('.c'))])
        return self.interpret(code, out, err)

    def interpret(self, code: int, out: str, err: str) -> Verdict:
        msg = f"err: {err}\n"
        if code != 0:
            return Verdict(False, f"exit code: {code}\n{msg}")
        if any(marker in err for marker in self.MARKERS):
            return Verdict(False, msg)
        return Verdict(True, msg)


class HyaccOracle(Oracle):
    #LR(k) check with a hard wall clock limit. Timeout counts as a rejection.#

    name = 'hyacc'
    FATAL_MARKER = "laneHeadList is NULL"
    K_MARKER = "while loop: k ="
    MAX_K_MARKER = "Max K in LR(k): "

    def __init__(self, command: str, timeout_s: float = 5.0):
        # Hyacc runs inside the scratch workdir, so a relative path must be anchored here
        if os.sep in command or (os.altsep and os.altsep in command):
            command = os.path.abspath(command)
        super().__init__(command)
        self.timeout_s = timeout_s

    def render(self, grammar: Grammar) -> str:
        return Renderer.to_canonical(grammar)

    def check(self, path: Path) -> Verdict:
        path = Path(path)
        # Hyacc drops y.tab.c / y.output into its cwd
        try:
            code, out, err = run([self.command, path.name, '-K', '-c'],
                                 timeout=self.timeout_s, cwd=path.parent)
        except subprocess.TimeoutExpired as e:
            k_lines = [l for l in _as_text(e.stdout).split('\n') if self.K_MARKER in l]
            return Verdict(False, '\n'.join([f"timeout: no verdict after {self.timeout_s}s"] + k_lines))
        return self.interpret(code, out, err)

    def interpret(self, code: int, out: str, err: str) -> Verdict:
        out_lines = out.split('\n')
        k_lines = [l for l in out_lines if self.K_MARKER in l]

        if out_lines and self.FATAL_MARKER in out_lines[0]:
            return Verdict(False, '\n'.join([out_lines[0]] + k_lines))

        for line in reversed(out_lines):
            if self.MAX_K_MARKER in line:
                return Verdict(True, '\n'.join(k_lines + [line]))

        return Verdict(False, f"exit code: {code}\n" + '\n'.join(k_lines) + f"\nerr: {err}")


class GrmtoolsOracle(Oracle):
    #grmtools' own LR(1) check through nimbleparse.#

    name = 'lrpar'
    MARKERS = ("shift/reduce", "reduce/reduce", "unused")
    GRAMMAR_ERROR_MARKERS = ("error:", "error in", "unknown reference")
    # The input file is empty, so most grammars fail to parse it; that alone is fine
    PARSE_ERROR_MARKER = "parsing error"

    def render(self, grammar: Grammar) -> str:
        return Renderer.to_grmtools(grammar)

    def write(self, grammar: Grammar, workdir: Path, stem: str) -> Path:
        path = super().write(grammar, workdir, stem)
        # nimbleparse wants a lexer and an input alongside the grammar
        path.with_suffix('.l').write_text(Renderer.to_grmtools_lexer(grammar))
        path.with_suffix('.in').write_text('')
        return path

    def check(self, path: Path) -> Verdict:
        path = Path(path)
        code, out, err = run([self.command, '-y', 'grmtools', str(path.with_suffix('.l')),
                              str(path), str(path.with_suffix('.in'))])
        return self.interpret(code, out, err)

    def interpret(self, code: int, out: str, err: str) -> Verdict:
        text = f"{out}\n{err}"
        lowered = text.lower()
        if any(marker in lowered for marker in self.MARKERS + self.GRAMMAR_ERROR_MARKERS):
            return Verdict(False, f"err: {text}")
        if code != 0 and self.PARSE_ERROR_MARKER not in lowered:
            return Verdict(False, f"exit code: {code}\nerr: {text}")
        return Verdict(True, text)


@dataclass(frozen=True)
class OracleSet:
    strict: Oracle
    relaxed: Oracle
    reference: Oracle

    def items(self) -> Iterator[Tuple[str, Oracle]]:
        yield STRICT, self.strict
        yield RELAXED, self.relaxed
        yield REFERENCE, self.reference

    def as_dict(self) -> Dict[str, Oracle]:
        return dict(self.items())


def default_oracles(config: Config) -> OracleSet:
    return OracleSet(
        strict=BisonOracle(config.bison_cmd),
        relaxed=HyaccOracle(config.hyacc_cmd, config.hyacc_timeout_s),
        reference=GrmtoolsOracle(config.lrpar_cmd),
    )
