"""Tests for .env parsing and merging."""

from compose_sites.services.env_merger import merge_env_contents, parse_env


class TestParseEnv:
    def test_skips_comments_blank_and_malformed_lines(self):
        doc = parse_env("# comment\n\nAPP_ENV=prod\nnot a pair\n=novalue\nDEBUG=0\n")
        assert doc.order == ["APP_ENV", "DEBUG"]
        assert doc.values == {"APP_ENV": "prod", "DEBUG": "0"}

    def test_value_keeps_extra_equals(self):
        doc = parse_env("DATABASE_URL=postgres://u:p@db/app?sslmode=require&x=y")
        assert doc.values["DATABASE_URL"] == "postgres://u:p@db/app?sslmode=require&x=y"

    def test_accepts_crlf(self):
        doc = parse_env("A=1\r\nB=2\r\n")
        assert doc.values == {"A": "1", "B": "2"}

    def test_repeated_key_keeps_first_position_last_value(self):
        doc = parse_env("A=1\nB=2\nA=3")
        assert doc.order == ["A", "B"]
        assert doc.values["A"] == "3"

    def test_empty_and_none(self):
        assert parse_env("").order == []
        assert parse_env(None).order == []


class TestMergeEnvContents:
    def test_incoming_wins_and_order_is_preserved(self):
        existing = "APP_KEY=old\nDB_HOST=db\nDB_PORT=5432\n"
        incoming = "DB_PORT=6543\nNEW_ONE=1\nAPP_KEY=new\nNEW_TWO=2\n"

        merged = merge_env_contents(existing, incoming)

        assert merged == "APP_KEY=new\nDB_HOST=db\nDB_PORT=6543\nNEW_ONE=1\nNEW_TWO=2\n"

    def test_keys_only_in_existing_are_kept(self):
        merged = merge_env_contents("KEEP=me\nOTHER=x\n", "OTHER=y")
        assert merged == "KEEP=me\nOTHER=y\n"

    def test_existing_file_missing(self):
        assert merge_env_contents("", "A=1\nB=2") == "A=1\nB=2\n"

    def test_empty_incoming_returns_existing_untouched(self):
        existing = "# keep my comment\nA=1"
        assert merge_env_contents(existing, "") == existing
        assert merge_env_contents(existing, None) == existing

    def test_comments_are_dropped_once_merged(self):
        merged = merge_env_contents("# header\nA=1\n", "B=2")
        assert merged == "A=1\nB=2\n"
