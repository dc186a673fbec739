"""Tests for CLI module."""

import subprocess
import sys
from pathlib import Path
import pytest

from nsrewrite.cli import (
    NsREPL, NsCompleter, ScriptRunner, load_custom_prelude, prelude_candidates, count_parens,
    BUILTIN_PRELUDES,
)


class TestBuiltinPreludes:
    """Tests for built-in prelude names."""

    def test_builtin_prelude_names(self):
        """All expected built-in preludes exist."""
        assert set(BUILTIN_PRELUDES.keys()) == {"none", "standard"}

    def test_standard_prelude_has_when(self):
        assert "when" in BUILTIN_PRELUDES["standard"]
        assert BUILTIN_PRELUDES["none"] == {}


class TestCountParens:
    """Tests for multi-line input detection."""

    def test_balanced(self):
        assert count_parens("(a (b) c)") == 0

    def test_open(self):
        assert count_parens("(defun f (x)") == 1

    def test_strings_ignored(self):
        """Parens inside strings do not count."""
        assert count_parens('(message "(")') == 0
        assert count_parens('(message "\\"(")') == 0

    def test_comments_ignored(self):
        """Parens inside comments do not count."""
        assert count_parens("(a ; )\n") == 1

    def test_too_many_closing(self):
        assert count_parens("a))") == -2


class TestREPLCommands:
    """Tests for REPL command handling."""

    def test_help_command(self):
        """Help command returns help text."""
        repl = NsREPL()
        result = repl.handle_command(":help")
        assert "namespace" in result.lower()
        assert "let-vars" in result.lower()

    def test_namespace_command(self):
        """Namespace command sets and shows the prefix."""
        repl = NsREPL()
        assert repl.handle_command(":namespace") == "No namespace set"
        result = repl.handle_command(":namespace foo-")
        assert "foo-" in result
        assert repl.namespace.prefix == "foo-"
        assert repl.handle_command(":namespace") == "Namespace: foo-"

    def test_bad_namespace(self):
        """A name that is not one token is rejected."""
        repl = NsREPL()
        result = repl.handle_command(":namespace a(b")
        assert result.startswith("Error:")
        assert repl.namespace is None

    def test_let_vars_command(self):
        """let-vars applies to the current and later namespaces."""
        repl = NsREPL()
        repl.handle_command(":namespace foo-")
        result = repl.handle_command(":let-vars on")
        assert "enabled" in result
        assert repl.namespace.let_vars
        repl.handle_command(":namespace bar-")
        assert repl.namespace.let_vars
        repl.handle_command(":let-vars off")
        assert not repl.namespace.let_vars

    def test_prelude_command(self):
        """Prelude command sets prelude."""
        repl = NsREPL()
        result = repl.handle_command(":prelude none")
        assert "none" in result.lower()
        assert not repl.env.is_macro("when")

    def test_unknown_prelude(self):
        """Unknown prelude returns error."""
        repl = NsREPL()
        result = repl.handle_command(":prelude nonexistent")
        assert "Unknown" in result

    def test_trace_command(self):
        """Trace command toggles tracing."""
        repl = NsREPL()
        assert repl.trace == False

        result = repl.handle_command(":trace on")
        assert repl.trace == True
        assert "enabled" in result.lower()

        result = repl.handle_command(":trace off")
        assert repl.trace == False
        assert "disabled" in result.lower()

    def test_trace_toggle(self):
        """Trace command without arg toggles."""
        repl = NsREPL()
        repl.handle_command(":trace")
        assert repl.trace == True

    def test_defs_and_reset(self):
        """defs lists loaded definitions, reset forgets them."""
        repl = NsREPL()
        assert repl.handle_command(":defs") == "No definitions"
        repl.process_line("(defvar v 1) (defun f () v)")
        defs = repl.handle_command(":defs")
        assert "Functions: f" in defs
        assert "Variables: v" in defs
        repl.handle_command(":reset")
        assert repl.handle_command(":defs") == "No definitions"

    def test_load_command(self, tmp_path):
        """load records definitions from a file without rewriting them."""
        source = tmp_path / "defs.el"
        source.write_text("(defvar foo-count 0)\n(defun foo-inc () (setq foo-count (1+ foo-count)))\n")
        repl = NsREPL()
        result = repl.handle_command(f":load {source}")
        assert "Loaded 2 forms" in result
        repl.handle_command(":namespace foo-")
        assert repl.process_line("(inc count)") == "(foo-inc foo-count)"

    def test_load_missing_file(self):
        repl = NsREPL()
        assert "Error" in repl.handle_command(":load /nonexistent/defs.el")

    def test_quit_command(self):
        """Quit command stops REPL."""
        repl = NsREPL()
        assert repl.running == True
        repl.handle_command(":quit")
        assert repl.running == False

    def test_unknown_command(self):
        """Unknown command returns error."""
        repl = NsREPL()
        result = repl.handle_command(":foobar")
        assert "Unknown" in result


class TestREPLProcessing:
    """Tests for rewriting input in the REPL."""

    def test_no_namespace_passes_through(self):
        """Without a namespace, forms are printed as read."""
        repl = NsREPL()
        assert repl.process_line("(defvar x 1)") == "(defvar x 1)"
        assert repl.env.is_variable_bound("x")

    def test_definitions_visible_to_later_input(self):
        """Each input is loaded, so later inputs see its definitions."""
        repl = NsREPL()
        repl.handle_command(":namespace foo-")
        assert repl.process_line("(defvar bar 1)") == "(defvar foo-bar 1)"
        assert repl.process_line("(defun baz () bar)") == "(defun foo-baz () foo-bar)"
        assert repl.process_line("(baz)") == "(foo-baz)"

    def test_define_namespace(self):
        """define-namespace forms are expanded regardless of the current namespace."""
        repl = NsREPL()
        assert repl.process_line("(define-namespace foo- (defvar bar 1) bar)") == \
            "(progn (defvar foo-bar 1) foo-bar)"
        assert repl.env.is_variable_bound("foo-bar")

    def test_mixed_block(self):
        """Plain forms around a define-namespace keep their order."""
        repl = NsREPL()
        repl.handle_command(":namespace a-")
        result = repl.process_line("(defvar x 1) (define-namespace b- (defvar y 1)) (defvar z x)")
        assert result.splitlines() == [
            "(defvar a-x 1)",
            "(progn (defvar b-y 1))",
            "(defvar a-z a-x)",
        ]

    def test_error(self):
        """Errors are reported, not raised."""
        repl = NsREPL()
        repl.handle_command(":namespace foo-")
        assert repl.process_line("(defun)").startswith("Error:")
        assert repl.process_line("(a b").startswith("Error:")

    def test_macro_arity_error(self):
        """A macro call missing its arguments is reported and the REPL keeps going."""
        repl = NsREPL()
        repl.handle_command(":namespace foo-")
        assert repl.process_line("(when)").startswith("Error:")
        assert repl.process_line("(dolist)").startswith("Error:")
        assert repl.process_line("(defvar x 1)") == "(defvar foo-x 1)"

    def test_run_without_banner(self, monkeypatch, tmp_path, capsys):
        """run(banner=False) prints only the results."""
        monkeypatch.setenv("HOME", str(tmp_path))
        inputs = iter([":namespace foo-", "(defvar x", " 1)"])

        def fake_input(prompt):
            try:
                return next(inputs)
            except StopIteration:
                raise EOFError

        monkeypatch.setattr("builtins.input", fake_input)
        repl = NsREPL()
        repl.run(banner=False)
        out = capsys.readouterr().out
        assert "nsrewrite -" not in out
        assert "(defvar foo-x 1)" in out

    def test_comments_and_blank(self):
        repl = NsREPL()
        assert repl.process_line("; nothing") is None
        assert repl.process_line("   ") is None

    def test_trace_output(self):
        """With tracing, step kinds follow the result."""
        repl = NsREPL()
        repl.handle_command(":namespace foo-")
        repl.handle_command(":trace on")
        result = repl.process_line("(defvar x 1)")
        assert result.splitlines()[0] == "(defvar foo-x 1)"
        assert "variable-definition" in result


class TestCompleter:
    """Tests for tab completion."""

    def setup_method(self):
        self.repl = NsREPL()
        self.completer = NsCompleter(self.repl)

    def test_commands(self):
        assert self.completer._get_matches(":na", ":na") == [":namespace"]

    def test_prelude_names(self):
        assert self.completer._get_matches("st", ":prelude st") == ["standard"]

    def test_on_off(self):
        assert self.completer._get_matches("o", ":trace o") == ["on", "off"]

    def test_known_names(self):
        """Names known to the environment complete in code."""
        self.repl.env.define_function("foo-bar")
        self.repl.env.define_variable("foo-baz")
        assert self.completer._get_matches("foo-", "(foo-") == ["foo-bar", "foo-baz"]


class TestCustomPrelude:
    """Tests for loading macro preludes from Python files."""

    def test_missing(self):
        assert load_custom_prelude("/nonexistent/prelude.py") is None
        assert load_custom_prelude("no-such-prelude") is None

    def test_candidates_for_path(self, tmp_path):
        """A .py path is its own only candidate, if it exists."""
        prelude = tmp_path / "p.py"
        assert prelude_candidates(str(prelude)) == []
        prelude.write_text("MACROS = {}\n")
        assert prelude_candidates(str(prelude)) == [prelude]

    def test_candidates_for_name(self, tmp_path, monkeypatch):
        """A bare name is searched for as NAME.py in the search paths, in order."""
        first, second = tmp_path / "a", tmp_path / "b"
        first.mkdir()
        second.mkdir()
        (second / "mine.py").write_text("MACROS = {}\n")
        monkeypatch.setattr("nsrewrite.cli.PRELUDE_SEARCH_PATHS", [first, second])
        assert prelude_candidates("mine") == [second / "mine.py"]
        assert prelude_candidates("other") == []

    def test_file_without_macros(self, tmp_path):
        """A file with no MACROS dict is not a prelude."""
        prelude = tmp_path / "empty.py"
        prelude.write_text("MACROS = [1, 2]\n")
        assert load_custom_prelude(str(prelude)) is None

    def test_broken_file(self, tmp_path):
        """A file that fails to import is not a prelude."""
        prelude = tmp_path / "broken.py"
        prelude.write_text("raise RuntimeError('boom')\n")
        assert load_custom_prelude(str(prelude)) is None

    def test_load(self, tmp_path):
        """A file defining MACROS can be used as a prelude."""
        prelude = tmp_path / "mine.py"
        prelude.write_text(
            "def incf(place):\n"
            "    return ['setq', place, ['1+', place]]\n"
            "MACROS = {'incf': incf}\n"
        )
        macros = load_custom_prelude(str(prelude))
        assert set(macros) == {"incf"}

        repl = NsREPL()
        assert repl.set_prelude(str(prelude))
        repl.handle_command(":namespace foo-")
        repl.process_line("(defvar n 0)")
        assert repl.process_line("(incf n)") == "(setq foo-n (1+ foo-n))"


class TestScriptRunner:
    """Tests for rewriting files and expressions."""

    def test_run_script(self, tmp_path, capsys):
        source = tmp_path / "a.el"
        source.write_text("(defvar bar 1)\n(defun baz () bar)\n")
        runner = ScriptRunner()
        runner.repl.set_namespace("foo-")
        assert runner.run_script(source) == 0
        assert capsys.readouterr().out == "(defvar foo-bar 1)\n(defun foo-baz () foo-bar)\n"

    def test_run_script_error(self, tmp_path, capsys):
        """An error aborts with exit code 1 and names the file."""
        source = tmp_path / "bad.el"
        source.write_text("(defvar bar 1)\n(defun)\n")
        runner = ScriptRunner()
        runner.repl.set_namespace("foo-")
        assert runner.run_script(source) == 1
        captured = capsys.readouterr()
        assert captured.out == ""
        assert captured.err.startswith(f"{source}: Error:")

    def test_missing_script(self, capsys):
        runner = ScriptRunner()
        assert runner.run_script(Path("/nonexistent/a.el")) == 1

    def test_run_expression_wrapped(self, capsys):
        runner = ScriptRunner()
        runner.wrap = True
        runner.repl.set_namespace("foo-")
        assert runner.run_expression("(defvar a 1) a") == 0
        assert capsys.readouterr().out == "(progn (defvar foo-a 1) foo-a)\n"


class TestCLIIntegration:
    """Integration tests using subprocess."""

    def run_cli(self, *args, input=None):
        return subprocess.run(
            [sys.executable, "-m", "nsrewrite.cli", *args],
            capture_output=True, text=True, input=input
        )

    def test_help_flag(self):
        """--help flag works."""
        result = self.run_cli("--help")
        assert result.returncode == 0
        assert "nsrewrite" in result.stdout

    def test_version_flag(self):
        """--version flag works."""
        result = self.run_cli("--version")
        assert result.returncode == 0
        assert "0.1.0" in result.stdout

    def test_expression_mode(self):
        """Expression mode rewrites the expression."""
        result = self.run_cli("-n", "foo-", "-e", "(defvar bar 1) (defun baz () bar)")
        assert result.returncode == 0
        assert result.stdout == "(defvar foo-bar 1)\n(defun foo-baz () foo-bar)\n"

    def test_let_vars_flag(self):
        result = self.run_cli("-n", "foo-", "-l", "-e", "(let ((x 1)) x)")
        assert result.returncode == 0
        assert result.stdout.strip() == "(let ((foo-x 1)) foo-x)"

    def test_stdin_mode(self):
        """Filter mode reads the whole of stdin."""
        result = self.run_cli("-n", "foo-", input="(defvar bar 1)\n(list\n bar)\n")
        assert result.returncode == 0
        assert result.stdout == "(defvar foo-bar 1)\n(list foo-bar)\n"

    def test_file_with_define_namespace(self, tmp_path):
        """Files may carry their own define-namespace forms."""
        source = tmp_path / "mod.el"
        source.write_text(";; module\n(define-namespace mod- (defvar x 1) (defun get () x))\n(mod-get)\n")
        result = self.run_cli(str(source))
        assert result.returncode == 0
        assert result.stdout == "(progn (defvar mod-x 1) (defun mod-get () mod-x))\n(mod-get)\n"

    def test_error_exit_code(self):
        """Rewrite errors exit with code 1."""
        result = self.run_cli("-n", "foo-", "-e", "(defvar)")
        assert result.returncode == 1
        assert "Error" in result.stderr

    def test_macro_arity_exit_code(self):
        """A macro call missing its arguments is an error, not a crash."""
        result = self.run_cli("-n", "foo-", "-e", "(when)")
        assert result.returncode == 1
        assert "Error" in result.stderr
        assert "Traceback" not in result.stderr

    def test_bad_namespace(self):
        result = self.run_cli("-n", "a b", "-e", "(defvar x 1)")
        assert result.returncode == 1

    def test_unknown_prelude(self):
        result = self.run_cli("-p", "nonexistent", "-e", "(a)")
        assert result.returncode == 1
        assert "Unknown prelude" in result.stderr

    def test_trace_flag(self):
        """--trace prints a summary to stderr."""
        result = self.run_cli("-n", "foo-", "-t", "-e", "(defvar x 1)")
        assert result.returncode == 0
        assert "steps:" in result.stderr

    def test_defs_flag(self, tmp_path):
        """--defs loads definitions before rewriting."""
        defs = tmp_path / "defs.el"
        defs.write_text("(defun foo-helper () 1)\n")
        result = self.run_cli("-q", "-d", str(defs), "-n", "foo-", "-e", "(helper)")
        assert result.returncode == 0
        assert result.stdout.strip() == "(foo-helper)"

    def test_defs_reported_unless_quiet(self, tmp_path):
        """Loading --defs is reported on stderr, and -q silences it."""
        defs = tmp_path / "defs.el"
        defs.write_text("(defvar foo-v 1)\n")
        loud = self.run_cli("-d", str(defs), "-n", "foo-", "-e", "v")
        assert f"Loaded definitions from {defs}" in loud.stderr
        quiet = self.run_cli("-q", "-d", str(defs), "-n", "foo-", "-e", "v")
        assert quiet.returncode == 0
        assert quiet.stderr == ""
        assert quiet.stdout.strip() == "foo-v"


class TestExamples:
    """The example module rewritten with the example prelude."""

    EXAMPLES = Path(__file__).resolve().parents[2] / "examples"

    def test_counter_module(self):
        """Every definition and reference in the module is qualified."""
        result = subprocess.run(
            [sys.executable, "-m", "nsrewrite.cli",
             "-p", str(self.EXAMPLES / "custom_prelude.py"),
             "-n", "counter-", str(self.EXAMPLES / "counter.el")],
            capture_output=True, text=True
        )
        assert result.returncode == 0, result.stderr
        assert result.stdout.splitlines() == [
            '(defvar counter-total 0 "Running total.")',
            "(defvar counter-history nil)",
            '(defun counter-add (n) "Add N to the total and remember it." '
            "(setq counter-history (cons n counter-history)) "
            "(setq counter-total (+ counter-total n)))",
            "(defun counter-undo () (let ((last (prog1 (car counter-history) "
            "(setq counter-history (cdr counter-history))))) "
            "(if last (progn (setq counter-total (- counter-total last))))))",
            "(defalias 'counter-reset-total #'(lambda () "
            "(setq counter-total 0 counter-history nil)))",
            '(progn (defun counter-log-show (total) (let ((counter-log-line (format "%s" total))) '
            "(message counter-log-line))))",
        ]

    def test_prelude_macros(self):
        """The example prelude extends the standard macros."""
        macros = load_custom_prelude(str(self.EXAMPLES / "custom_prelude.py"))
        assert {"when", "dolist", "incf", "decf", "pop", "when-let"} <= set(macros)
