"""Tests for collection, noweb expansion, annotation and emission."""

import os
import stat
import tempfile
from pathlib import Path

import pytest

from orgtangle import (
    Config,
    ConfigurationError,
    Document,
    EmissionError,
    Phase,
    ReferenceExpansionError,
    SelfTangleError,
    Transaction,
    build_collection,
    collect,
    execute_transaction,
    tangle,
    tangle_document,
    tangle_ref,
)
from orgtangle.annotate import number_occurrences
from orgtangle.noweb import NowebResolver


def load(d, text, name="notes.org"):
    path = Path(d) / name
    path.write_text(text)
    return Document.load(str(path))


def tangled(d, text, config=None, target="out.txt"):
    """Tangle ``text`` as notes.org in ``d`` and return the content of ``target``."""
    tangle(load(d, text), config)
    return (Path(d) / target).read_text()


INHERITED_ORG = """\
#+PROPERTY: header-args :tangle all.txt
* Parent
:PROPERTIES:
:header-args: :tangle parent.txt
:header-args:python: :tangle parent.py
:END:
#+begin_src text
p
#+end_src
** Child
#+begin_src python
c
#+end_src
#+begin_src text :tangle local.txt
l
#+end_src
* Other
#+begin_src text
o
#+end_src
"""

INTERLEAVED_ORG = """\
#+PROPERTY: header-args :tangle out.txt
* foo
#+begin_src text
1
#+end_src
* bar
#+begin_src text
2
#+end_src
* foo
#+begin_src text
3
#+end_src
* bar
#+begin_src text
4
#+end_src
"""

NOWEB_ORG = """\
#+name: A
#+begin_src text
1
#+end_src
#+name: B
#+begin_src text
2
#+end_src
* Main
#+begin_src text :tangle out.txt :noweb yes
<<A>> <<B>> <<A>>
#+end_src
"""

EXCLUDED_ORG = """\
* COMMENT Skipped
#+name: dup
#+begin_src text :tangle out.txt
hidden
#+end_src
* Kept
#+begin_src text :tangle out.txt :noweb yes
<<dup>>
#+end_src
#+begin_comment
#+name: dup
#+begin_src text :tangle out.txt
in comment
#+end_src
#+end_comment
# #+name: dup
# #+begin_src text :tangle out.txt
# commented
# #+end_src
* Later
#+name: dup
#+begin_src text
visible
#+end_src
"""


# --- Collection ---


class TestCollect:
    def test_inherited_targets(self):
        with tempfile.TemporaryDirectory() as d:
            groups = collect(load(d, INHERITED_ORG))
            names = [os.path.basename(g.path) for g in groups]
            assert names == ["parent.txt", "parent.py", "local.txt", "all.txt"]
            assert [[f.code for f in g.fragments] for g in groups] == [["p"], ["c"], ["l"], ["o"]]

    def test_heading_path(self):
        with tempfile.TemporaryDirectory() as d:
            groups = collect(load(d, INHERITED_ORG))
            child = groups[1].fragments[0]
            assert child.heading_path == ("Parent", "Child")
            assert child.heading_label == "Child"

    def test_targets_are_absolute(self):
        with tempfile.TemporaryDirectory() as d:
            groups = collect(load(d, INHERITED_ORG))
            assert groups[0].path == os.path.join(d, "parent.txt")

    def test_document_order_across_headings(self):
        with tempfile.TemporaryDirectory() as d:
            groups = collect(load(d, INTERLEAVED_ORG))
            assert len(groups) == 1
            assert [f.code for f in groups[0].fragments] == ["1", "2", "3", "4"]

    def test_absent_tangle_excludes(self):
        doc = Document.parse("#+begin_src python\nx = 1\n#+end_src\n", "/tmp/notes.org")
        assert collect(doc) == []

    def test_tangle_yes_uses_document_name(self):
        with tempfile.TemporaryDirectory() as d:
            doc = load(d, "#+begin_src emacs-lisp :tangle yes\n(message \"hi\")\n#+end_src\n")
            assert collect(doc)[0].path == os.path.join(d, "notes.el")

    def test_bibliography_extension_override(self):
        with tempfile.TemporaryDirectory() as d:
            doc = load(d, "#+begin_src bibtex :tangle yes\n@book{x}\n#+end_src\n", "refs.org")
            groups = collect(doc)
            assert groups[0].path == os.path.join(d, "refs.bib")

    def test_language_without_known_extension(self):
        with tempfile.TemporaryDirectory() as d:
            doc = load(d, "#+begin_src nix :tangle yes\n{ }\n#+end_src\n")
            assert collect(doc)[0].path == os.path.join(d, "notes.nix")

    def test_configured_extension(self):
        with tempfile.TemporaryDirectory() as d:
            doc = load(d, "#+begin_src python :tangle yes\nx\n#+end_src\n")
            config = Config(extensions={"python": "py3"})
            assert collect(doc, config)[0].path == os.path.join(d, "notes.py3")

    def test_absolute_target(self):
        with tempfile.TemporaryDirectory() as d:
            target = os.path.join(d, "abs.txt")
            doc = Document.parse(f"#+begin_src text :tangle {target}\nx\n#+end_src\n")
            assert collect(doc)[0].path == target

    def test_home_target(self):
        with tempfile.TemporaryDirectory() as d:
            doc = Document.parse("#+begin_src text :tangle ~/home.txt\nx\n#+end_src\n")
            groups = collect(doc, Config(home_dir=d))
            assert groups[0].path == os.path.join(d, "home.txt")

    def test_tangle_yes_without_path(self):
        doc = Document.parse("* H\n#+begin_src python :tangle yes\nx\n#+end_src\n")
        with pytest.raises(ConfigurationError) as excinfo:
            collect(doc)
        assert "H" in str(excinfo.value)

    def test_relative_target_without_path(self):
        doc = Document.parse("#+begin_src python :tangle out.py\nx\n#+end_src\n")
        with pytest.raises(ConfigurationError):
            collect(doc)

    def test_self_tangle(self):
        with tempfile.TemporaryDirectory() as d:
            doc = load(d, "* Danger\n#+begin_src text :tangle notes.org\nx\n#+end_src\n")
            with pytest.raises(SelfTangleError) as excinfo:
                collect(doc)
            assert "Danger" in str(excinfo.value)
            assert isinstance(excinfo.value, ConfigurationError)

    def test_invalid_mode(self):
        with tempfile.TemporaryDirectory() as d:
            doc = load(d, "#+begin_src text :tangle a.txt :noweb bogus\nx\n#+end_src\n")
            with pytest.raises(ConfigurationError):
                collect(doc)

    def test_excluded_fragments(self):
        with tempfile.TemporaryDirectory() as d:
            collection = build_collection(load(d, EXCLUDED_ORG))
            assert [f.code for f in collection.groups[0].fragments] == ["<<dup>>"]
            assert [f.code for f in collection.references.lookup("dup")] == ["visible"]
            excluded = [f.code for f in collection.fragments if f.excluded]
            assert excluded == ["hidden", "in comment", "commented"]

    def test_excluded_never_fail_target_resolution(self):
        doc = Document.parse("* COMMENT Off\n#+begin_src python :tangle yes\nx\n#+end_src\n")
        assert collect(doc) == []


# --- Reference table ---


class TestReferenceTable:
    def test_names_and_noweb_refs(self):
        with tempfile.TemporaryDirectory() as d:
            doc = load(
                d,
                "#+name: one\n#+begin_src text :noweb-ref shared\na\n#+end_src\n"
                "#+begin_src text :noweb-ref shared\nb\n#+end_src\n",
            )
            references = build_collection(doc).references
            assert sorted(references.names()) == ["one", "shared"]
            assert [f.code for f in references.lookup("shared")] == ["a", "b"]
            assert "one" in references
            assert references.lookup("missing") == []


# --- Noweb ---


class TestNoweb:
    def test_multiple_markers_on_one_line(self):
        with tempfile.TemporaryDirectory() as d:
            assert tangled(d, NOWEB_ORG) == "1 2 1\n"

    def test_strip(self):
        with tempfile.TemporaryDirectory() as d:
            org = (
                "#+name: block1\n#+begin_src text\n2\n#+end_src\n"
                "#+begin_src text :tangle out.txt :noweb strip\n1<<block1>>\n#+end_src\n"
            )
            assert tangled(d, org) == "1\n"

    def test_no_expand_keeps_markers(self):
        with tempfile.TemporaryDirectory() as d:
            org = NOWEB_ORG.replace(":noweb yes", ":noweb no")
            assert tangled(d, org) == "<<A>> <<B>> <<A>>\n"

    def test_tangle_only(self):
        with tempfile.TemporaryDirectory() as d:
            org = NOWEB_ORG.replace(":noweb yes", ":noweb tangle").replace(
                "* Main\n", "* Main\n#+name: main\n"
            )
            assert tangled(d, org) == "1 2 1\n"
            doc = Document.load(os.path.join(d, "notes.org"))
            assert tangle_ref(doc, "main", annotate=False, phase=Phase.EXPORT) == "<<A>> <<B>> <<A>>"
            assert tangle_ref(doc, "main", annotate=False) == "1 2 1"

    def test_indentation_is_reapplied(self):
        with tempfile.TemporaryDirectory() as d:
            org = (
                "#+name: body\n#+begin_src python\na = 1\nif a:\n    b = 2\n#+end_src\n"
                "#+begin_src python :tangle out.py :noweb yes\ndef f():\n    <<body>>\n#+end_src\n"
            )
            expected = "def f():\n    a = 1\n    if a:\n        b = 2\n"
            assert tangled(d, org, target="out.py") == expected

    def test_recursive_expansion(self):
        with tempfile.TemporaryDirectory() as d:
            org = (
                "#+PROPERTY: header-args :noweb yes\n"
                "#+name: inner\n#+begin_src text\ni\n#+end_src\n"
                "#+name: middle\n#+begin_src text\n[<<inner>>]\n#+end_src\n"
                "#+begin_src text :tangle out.txt\n<<middle>>\n#+end_src\n"
            )
            assert tangled(d, org) == "[i]\n"

    def test_referent_uses_its_own_mode(self):
        with tempfile.TemporaryDirectory() as d:
            org = (
                "#+name: inner\n#+begin_src text\ni\n#+end_src\n"
                "#+name: middle\n#+begin_src text\n[<<inner>>]\n#+end_src\n"
                "#+begin_src text :tangle out.txt :noweb yes\n<<middle>>\n#+end_src\n"
            )
            assert tangled(d, org) == "[<<inner>>]\n"

    def test_noweb_ref_concatenation(self):
        with tempfile.TemporaryDirectory() as d:
            org = (
                "#+begin_src text :noweb-ref init\na\n#+end_src\n"
                "#+begin_src text :noweb-ref init\nb\n#+end_src\n"
                "#+begin_src text :tangle out.txt :noweb yes\n<<init>>\n#+end_src\n"
            )
            assert tangled(d, org) == "a\nb\n"

    def test_noweb_sep(self):
        with tempfile.TemporaryDirectory() as d:
            org = (
                '#+PROPERTY: header-args :noweb-sep ", "\n'
                "#+begin_src text :noweb-ref items\na\n#+end_src\n"
                "#+begin_src text :noweb-ref items\nb\n#+end_src\n"
                "#+begin_src text :tangle out.txt :noweb yes\n[<<items>>]\n#+end_src\n"
            )
            assert tangled(d, org) == "[a, b]\n"

    def test_unresolved_is_kept(self):
        with tempfile.TemporaryDirectory() as d:
            org = "#+begin_src text :tangle out.txt :noweb yes\nx <<missing>> y\n#+end_src\n"
            doc = load(d, org)
            collection = build_collection(doc)
            resolver = NowebResolver(collection.references, collection.config)
            assert resolver.resolve(collection.groups[0].fragments[0]) == "x <<missing>> y"
            assert [name for _, name in resolver.unresolved] == ["missing"]

    def test_unresolved_strict(self):
        with tempfile.TemporaryDirectory() as d:
            org = "#+begin_src text :tangle out.txt :noweb yes\n<<missing>>\n#+end_src\n"
            with pytest.raises(ReferenceExpansionError):
                tangle(load(d, org), Config(strict_references=True))
            assert not (Path(d) / "out.txt").exists()

    def test_depth_limit(self):
        with tempfile.TemporaryDirectory() as d:
            org = "#+name: loop\n#+begin_src text :tangle out.txt :noweb yes\n<<loop>>\n#+end_src\n"
            with pytest.raises(ReferenceExpansionError) as excinfo:
                tangle(load(d, org), Config(max_expansion_depth=5))
            assert "loop" in str(excinfo.value)
            assert not (Path(d) / "out.txt").exists()

    def test_depth_beyond_interpreter_stack(self):
        with tempfile.TemporaryDirectory() as d:
            org = "#+name: loop\n#+begin_src text :tangle out.txt :noweb yes\n<<loop>>\n#+end_src\n"
            with pytest.raises(ReferenceExpansionError) as excinfo:
                tangle(load(d, org), Config(max_expansion_depth=100000))
            assert "loop" in str(excinfo.value)
            assert not (Path(d) / "out.txt").exists()

    def test_tangle_ref_annotated(self):
        doc = Document.parse(
            "#+name: main\n#+begin_src python\nprint('hello')\n#+end_src\n", "/tmp/notes.org"
        )
        result = tangle_ref(doc, "main")
        assert result == (
            "# [[file:/tmp/notes.org::main]]\nprint('hello')\n# main ends here"
        )

    def test_tangle_ref_missing(self):
        doc = Document.parse("#+name: main\n#+begin_src python\nx\n#+end_src\n")
        with pytest.raises(ReferenceExpansionError):
            tangle_ref(doc, "nonexistent", annotate=False)


# --- Comments ---


class TestComments:
    def test_link(self):
        with tempfile.TemporaryDirectory() as d:
            org = (
                "* Code\n"
                "#+begin_src python :tangle out.py :comments link\nx = 1\n#+end_src\n"
                "#+begin_src python :tangle out.py :comments link\ny = 2\n#+end_src\n"
            )
            assert tangled(d, org, target="out.py") == (
                "# [[file:notes.org][Code:1]]\n"
                "x = 1\n"
                "# Code:1 ends here\n"
                "# [[file:notes.org][Code:2]]\n"
                "y = 2\n"
                "# Code:2 ends here\n"
            )

    def test_link_absolute(self):
        with tempfile.TemporaryDirectory() as d:
            org = "* Code\n#+begin_src python :tangle out.py :comments link\nx = 1\n#+end_src\n"
            content = tangled(d, org, Config(use_relative_file_links=False), target="out.py")
            assert content.startswith(f"# [[file:{os.path.join(d, 'notes.org')}][Code:1]]\n")

    def test_link_relative_from_subdirectory(self):
        with tempfile.TemporaryDirectory() as d:
            org = (
                "* Code\n"
                "#+begin_src python :tangle src/out.py :comments link :mkdirp yes\n"
                "x = 1\n#+end_src\n"
            )
            content = tangled(d, org, target="src/out.py")
            assert content.startswith("# [[file:../notes.org][Code:1]]\n")

    def test_brackets_in_label_are_escaped(self):
        with tempfile.TemporaryDirectory() as d:
            org = "* Parse [x] values\n#+begin_src python :tangle out.py :comments link\nx = 1\n#+end_src\n"
            assert tangled(d, org, target="out.py") == (
                "# [[file:notes.org][Parse \\[x\\] values:1]]\n"
                "x = 1\n"
                "# Parse [x] values:1 ends here\n"
            )

    def test_statistics_cookie_not_in_label(self):
        with tempfile.TemporaryDirectory() as d:
            org = "* TODO Project [1/3]\n#+begin_src python :tangle out.py :comments link\nx = 1\n#+end_src\n"
            content = tangled(d, org, target="out.py")
            assert content.startswith("# [[file:notes.org][Project:1]]\n")

    def test_language_comment_syntax(self):
        with tempfile.TemporaryDirectory() as d:
            org = "* Lisp\n#+begin_src emacs-lisp :tangle out.el :comments link\n(foo)\n#+end_src\n"
            assert tangled(d, org, target="out.el") == (
                ";; [[file:notes.org][Lisp:1]]\n(foo)\n;; Lisp:1 ends here\n"
            )

    def test_comment_end_syntax(self):
        with tempfile.TemporaryDirectory() as d:
            org = "* Style\n#+begin_src css :tangle out.css :comments link\na {}\n#+end_src\n"
            assert tangled(d, org, target="out.css") == (
                "/* [[file:notes.org][Style:1]] */\na {}\n/* Style:1 ends here */\n"
            )

    def test_occurrence_per_heading_per_target(self):
        with tempfile.TemporaryDirectory() as d:
            org = (
                "* H\n"
                "#+begin_src python :tangle a.py :comments link\na1\n#+end_src\n"
                "#+begin_src python :tangle b.py :comments link\nb1\n#+end_src\n"
                "#+begin_src python :tangle a.py :comments link\na2\n#+end_src\n"
            )
            tangle(load(d, org))
            a = (Path(d) / "a.py").read_text()
            b = (Path(d) / "b.py").read_text()
            assert "[H:1]]\na1\n" in a
            assert "[H:2]]\na2\n" in a
            assert "[H:1]]\nb1\n" in b

    def test_occurrences_with_interleaved_headings(self):
        with tempfile.TemporaryDirectory() as d:
            group = collect(load(d, INTERLEAVED_ORG))[0]
            assert number_occurrences(group.fragments) == [1, 1, 2, 2]

    def test_before_any_heading(self):
        with tempfile.TemporaryDirectory() as d:
            org = "#+begin_src python :tangle out.py :comments link\nx = 1\n#+end_src\n"
            assert tangled(d, org, target="out.py") == (
                "# [[file:notes.org][No heading:1]]\nx = 1\n# No heading:1 ends here\n"
            )

    def test_org(self):
        with tempfile.TemporaryDirectory() as d:
            org = (
                "* Setup\nPrepare the thing.\n\n"
                "#+begin_src python :tangle out.py :comments org\nx = 1\n#+end_src\n"
                "#+begin_src python :tangle out.py :comments org\ny = 2\n#+end_src\n"
            )
            assert tangled(d, org, target="out.py") == (
                "# Prepare the thing.\nx = 1\n# Setup\ny = 2\n"
            )

    def test_both(self):
        with tempfile.TemporaryDirectory() as d:
            org = "* Setup\nText.\n#+begin_src python :tangle out.py :comments both\nx = 1\n#+end_src\n"
            assert tangled(d, org, target="out.py") == (
                "# Text.\n# [[file:notes.org][Setup:1]]\nx = 1\n# Setup:1 ends here\n"
            )

    def test_noweb(self):
        with tempfile.TemporaryDirectory() as d:
            org = (
                "* Main\n"
                "#+begin_src python :tangle out.py :noweb yes :comments noweb\n"
                "def main():\n    <<body>>\n#+end_src\n"
                "* Parts\n#+name: body\n#+begin_src python\nprint('hi')\n#+end_src\n"
            )
            assert tangled(d, org, target="out.py") == (
                "# [[file:notes.org][Main:1]]\n"
                "def main():\n"
                "    # [[file:notes.org::body]]\n"
                "    print('hi')\n"
                "    # body ends here\n"
                "# Main:1 ends here\n"
            )

    def test_empty_body(self):
        with tempfile.TemporaryDirectory() as d:
            org = "* E\n#+begin_src python :tangle out.py :comments link\n#+end_src\n"
            assert tangled(d, org, target="out.py") == (
                "# [[file:notes.org][E:1]]\n# E:1 ends here\n"
            )


# --- Emission ---


class TestTangle:
    def test_simple(self):
        with tempfile.TemporaryDirectory() as d:
            doc = load(d, "* Hello\n#+begin_src python :tangle hello.py\nprint('hello')\n#+end_src\n")
            written = tangle(doc)
            assert written == [os.path.join(d, "hello.py")]
            assert (Path(d) / "hello.py").read_text() == "print('hello')\n"

    def test_document_order(self):
        with tempfile.TemporaryDirectory() as d:
            assert tangled(d, INTERLEAVED_ORG) == "1\n2\n3\n4\n"

    def test_excluded_never_emitted(self):
        with tempfile.TemporaryDirectory() as d:
            assert tangled(d, EXCLUDED_ORG) == "visible\n"

    def test_idempotent(self):
        with tempfile.TemporaryDirectory() as d:
            doc = load(d, NOWEB_ORG.replace(":noweb yes", ":noweb yes :comments link"))
            tangle(doc)
            first = (Path(d) / "out.txt").read_bytes()
            tangle(Document.load(os.path.join(d, "notes.org")))
            assert (Path(d) / "out.txt").read_bytes() == first

    def test_previous_output_superseded(self):
        with tempfile.TemporaryDirectory() as d:
            (Path(d) / "out.txt").write_text("stale content\nmore\n")
            assert tangled(d, NOWEB_ORG) == "1 2 1\n"

    def test_self_tangle_writes_nothing(self):
        with tempfile.TemporaryDirectory() as d:
            org = (
                "#+begin_src text :tangle other.txt\nfine\n#+end_src\n"
                "#+begin_src text :tangle notes.org\nbad\n#+end_src\n"
            )
            with pytest.raises(SelfTangleError):
                tangle(load(d, org))
            assert sorted(os.listdir(d)) == ["notes.org"]
            assert (Path(d) / "notes.org").read_text() == org

    def test_escaped_blocks(self):
        with tempfile.TemporaryDirectory() as d:
            org = (
                "* Doc\n#+begin_src org :tangle out.org\n"
                ",* Nested heading\n,#+begin_src python\nprint(1)\n,#+end_src\n"
                ",,#+begin_src deeper\n"
                "#+end_src\n"
            )
            assert tangled(d, org, target="out.org") == (
                "* Nested heading\n#+begin_src python\nprint(1)\n#+end_src\n,#+begin_src deeper\n"
            )

    def test_padline(self):
        with tempfile.TemporaryDirectory() as d:
            org = INTERLEAVED_ORG.replace(":tangle out.txt", ":tangle out.txt :padline yes")
            assert tangled(d, org) == "1\n\n2\n\n3\n\n4\n"

    def test_missing_directory(self):
        with tempfile.TemporaryDirectory() as d:
            org = "#+begin_src text :tangle sub/dir/out.txt\nx\n#+end_src\n"
            with pytest.raises(EmissionError):
                tangle(load(d, org))

    def test_mkdirp(self):
        with tempfile.TemporaryDirectory() as d:
            org = "#+begin_src text :tangle sub/dir/out.txt :mkdirp yes\nx\n#+end_src\n"
            assert tangled(d, org, target="sub/dir/out.txt") == "x\n"

    def test_tangle_mode(self):
        with tempfile.TemporaryDirectory() as d:
            org = "#+begin_src sh :tangle run.sh :tangle-mode o700\necho hi\n#+end_src\n"
            tangle(load(d, org))
            assert stat.S_IMODE(os.stat(Path(d) / "run.sh").st_mode) == 0o700

    def test_shebang(self):
        with tempfile.TemporaryDirectory() as d:
            org = '#+begin_src sh :tangle run.sh :shebang "#!/bin/sh"\necho hi\n#+end_src\n'
            assert tangled(d, org, target="run.sh") == "#!/bin/sh\necho hi\n"
            assert stat.S_IMODE(os.stat(Path(d) / "run.sh").st_mode) == 0o755


# --- Transaction ---


class TestTransaction:
    def test_tangle_document_writes_nothing(self):
        with tempfile.TemporaryDirectory() as d:
            tx = tangle_document(load(d, NOWEB_ORG))
            assert isinstance(tx, Transaction)
            assert not tx.is_empty()
            assert len(tx) == 1
            assert not (Path(d) / "out.txt").exists()

    def test_describe(self):
        with tempfile.TemporaryDirectory() as d:
            tx = tangle_document(load(d, NOWEB_ORG))
            descs = tx.describe()
            assert any("out.txt" in desc for desc in descs)

    def test_diffs(self):
        with tempfile.TemporaryDirectory() as d:
            tx = tangle_document(load(d, NOWEB_ORG))
            diffs = tx.diffs()
            assert len(diffs) == 1
            assert "+1 2 1" in diffs[0]

    def test_no_diff_when_up_to_date(self):
        with tempfile.TemporaryDirectory() as d:
            doc = load(d, NOWEB_ORG)
            execute_transaction(tangle_document(doc))
            assert tangle_document(doc).diffs() == []

    def test_empty(self):
        tx = tangle_document(Document.parse("* Nothing\n"))
        assert tx.is_empty()
        assert len(tx) == 0
        assert execute_transaction(tx) == []

    def test_repr(self):
        assert "Transaction(" in repr(Transaction())
