"""Tests for file_filter.py - test/docs/generated categories and path scopes."""

import pytest

from gitmem.file_filter import (
    DEFAULT_EXCLUDED,
    is_docs,
    is_excluded,
    is_generated,
    Scope,
    is_test,
    matches_pattern,
    resolve_excluded,
    resolve_scope,
)


class TestCategories:
    @pytest.mark.parametrize(
        "path",
        [
            "tests/test_app.py",
            "src/__tests__/button.tsx",
            "pkg/test/util.go",
            "web/spec/model_spec.rb",
            "src/button.test.tsx",
            "src/button.spec.ts",
            "server/handler_test.go",
        ],
    )
    def test_test_files(self, path):
        assert is_test(path)

    @pytest.mark.parametrize("path", ["src/app.py", "src/testing.py", "contest/main.c"])
    def test_not_test_files(self, path):
        assert not is_test(path)

    def test_docs(self):
        assert is_docs("README.md")
        assert is_docs("site/page.mdx")
        assert is_docs("docs/conf.py")
        assert not is_docs("src/markdown.py")

    @pytest.mark.parametrize(
        "path", ["package-lock.json", "web/yarn.lock", "dist/app.min.js", "dist/app.js.map", "go.sum"]
    )
    def test_generated(self, path):
        assert is_generated(path)

    def test_multiple_categories(self):
        assert is_test("docs/api.test.md")
        assert is_docs("docs/api.test.md")


class TestExclusion:
    def test_default_excludes_everything_noisy(self):
        assert is_excluded("tests/test_a.py")
        assert is_excluded("CHANGELOG.md")
        assert not is_excluded("src/a.py")

    def test_empty_categories(self):
        assert not is_excluded("tests/test_a.py", ())

    def test_resolve_flags(self):
        assert resolve_excluded() == DEFAULT_EXCLUDED
        assert resolve_excluded(include_tests=True) == ("docs", "generated")
        assert resolve_excluded(include_docs=True, include_generated=True) == ("test",)
        assert resolve_excluded(include_all=True) == ()
        assert resolve_excluded(base=("docs",)) == ("docs",)


class TestPatterns:
    @pytest.mark.parametrize(
        "path, pattern",
        [
            ("src/a.py", "src/"),
            ("src/a.py", "src"),
            ("src/deep/b.py", "src/*.py"),
            ("lib/x.min.js", "*.min.js"),
            ("packages/web/src/app.ts", "packages/*/src/*"),
            ("weird[1].py", "weird[1].py"),
        ],
    )
    def test_matches(self, path, pattern):
        assert matches_pattern(path, pattern)

    @pytest.mark.parametrize(
        "path, pattern",
        [
            ("lib/a.py", "src/"),
            ("src/a.pyc", "src/*.py"),
            ("SRC/a.py", "src/"),
            ("weird1.py", "weird[1].py"),
            ("packages/web/src/app.ts", "packages/*/src/"),
        ],
    )
    def test_does_not_match(self, path, pattern):
        assert not matches_pattern(path, pattern)


class TestScope:
    def test_empty_scope_matches_everything(self):
        assert Scope().is_empty
        assert Scope().matches("anything/at/all.py")
        assert Scope().sql("file_path") == ("", [])

    def test_include_and_exclude(self):
        scope = Scope(include=("src/", "lib/"), exclude=("src/vendor/",))
        assert scope.matches("src/a.py")
        assert scope.matches("lib/b.py")
        assert not scope.matches("docs/c.md")
        assert not scope.matches("src/vendor/d.py")

    def test_sql_fragment(self):
        scope = Scope(include=("src/", "*.py"), exclude=("src/vendor/", "a?[b]"))
        fragment, params = scope.sql("cf.file_path")

        assert fragment == (
            "(cf.file_path GLOB ? OR cf.file_path GLOB ?) "
            "AND cf.file_path NOT GLOB ? AND cf.file_path NOT GLOB ?"
        )
        assert params == ["src/*", "*.py", "src/vendor/*", "a[?][[]b]*"]

    def test_resolve_layers_flags_over_config(self):
        base = Scope(include=("src/",), exclude=("src/gen/",))

        assert resolve_scope(base=base) == base
        assert resolve_scope(include=["lib/"], base=base) == Scope(("lib/",), ("src/gen/",))
        assert resolve_scope(exclude=["*.lock"], base=base) == Scope(("src/",), ("src/gen/", "*.lock"))
        assert resolve_scope(include_all=True, base=base) == Scope()
        assert resolve_scope(exclude=["x/"], include_all=True, base=base) == Scope((), ("x/",))

    def test_patterns_are_normalized(self):
        scope = resolve_scope(include=["./src/", "/src/", ""], exclude=["/vendor/"])
        assert scope == Scope(include=("src/",), exclude=("vendor/",))
        assert scope.to_dict() == {"include": ["src/"], "exclude": ["vendor/"]}
