"""Tests for PgDumpRunner against real subprocesses.

``pg_dump`` and ``psql`` are small shell scripts written to ``tmp_path``;
they exercise the streaming, exit-code, timeout and broken-pipe paths
without a PostgreSQL installation.
"""

import gzip
import signal
import sys
import time
from pathlib import Path

import pytest

from db_admin.backup.dump import PgDumpRunner
from db_admin.backup.manager import BackupManager
from db_admin.errors import DatabaseError, DatabaseTimeoutError

from conftest import TEST_URL, FakeAdapter

pytestmark = pytest.mark.skipif(sys.platform == "win32", reason="fake client tools are sh scripts")


def fake_tool(tmp_path: Path, name: str, body: str) -> str:
    """Write an executable ``sh`` script and return its path."""
    path = tmp_path / name
    path.write_text("#!/bin/sh\n" + body)
    path.chmod(0o755)
    return str(path)


@pytest.fixture
def spawned(monkeypatch) -> list:
    """Every process started by any runner during the test."""
    procs = []
    original = PgDumpRunner._spawn

    async def spawn(self, program, args, stdin):
        proc = await original(self, program, args, stdin)
        procs.append(proc)
        return proc

    monkeypatch.setattr(PgDumpRunner, "_spawn", spawn)
    return procs


def assert_reaped(procs: list) -> None:
    assert procs, "no subprocess was started"
    assert all(proc.returncode is not None for proc in procs)


class TestDump:
    """pg_dump output streamed (and gzipped) into the artifact."""

    async def test_streams_and_compresses(self, tmp_path: Path, spawned: list) -> None:
        pg_dump = fake_tool(
            tmp_path,
            "pg_dump",
            'printf "%s\\n" "-- password set: ${PGPASSWORD:+yes}"\n'
            'for arg in "$@"; do printf "%s\\n" "-- arg $arg"; done\n'
            'printf "CREATE TABLE public.authors (id integer);\\n"\n',
        )
        runner = PgDumpRunner(TEST_URL, pg_dump_path=pg_dump, timeout=10)
        artifact = tmp_path / "out.sql.gz"

        with open(artifact, "wb") as output:
            await runner.dump(output, runner.dump_args(["authors"]), compress=True)

        text = gzip.decompress(artifact.read_bytes()).decode()
        assert "-- password set: yes" in text
        assert "-- arg --table=public.authors" in text
        assert "s3cret" not in text
        assert text.endswith("CREATE TABLE public.authors (id integer);\n")
        assert_reaped(spawned)

    async def test_nonzero_exit_carries_stderr(self, tmp_path: Path, spawned: list) -> None:
        pg_dump = fake_tool(
            tmp_path,
            "pg_dump",
            "printf partial\n"
            "echo 'pg_dump: error: connection to server failed' >&2\n"
            "exit 1\n",
        )
        runner = PgDumpRunner(TEST_URL, pg_dump_path=pg_dump, timeout=10)

        with open(tmp_path / "out.sql", "wb") as output:
            with pytest.raises(DatabaseError, match="exited with code 1") as excinfo:
                await runner.dump(output, [], compress=False)

        assert "connection to server failed" in excinfo.value.data["detail"]
        assert_reaped(spawned)

    async def test_timeout_kills_child(self, tmp_path: Path, spawned: list) -> None:
        pg_dump = fake_tool(tmp_path, "pg_dump", "exec sleep 30\n")
        runner = PgDumpRunner(TEST_URL, pg_dump_path=pg_dump, timeout=0.5)

        start = time.monotonic()
        with open(tmp_path / "out.sql", "wb") as output:
            with pytest.raises(DatabaseTimeoutError, match="within 0.5s"):
                await runner.dump(output, [], compress=False)

        assert time.monotonic() - start < 10
        assert_reaped(spawned)
        assert spawned[0].returncode == -signal.SIGKILL

    async def test_missing_program(self, tmp_path: Path) -> None:
        runner = PgDumpRunner(TEST_URL, pg_dump_path=str(tmp_path / "nowhere"))
        with open(tmp_path / "out.sql", "wb") as output:
            with pytest.raises(DatabaseError, match="not found"):
                await runner.dump(output, [], compress=False)


class TestRestore:
    """Artifacts fed to psql stdin."""

    async def test_preamble_then_body(self, tmp_path: Path, spawned: list) -> None:
        captured = tmp_path / "captured.sql"
        psql = fake_tool(
            tmp_path,
            "psql",
            f"cat > '{captured}'\n"
            "echo 'NOTICE:  table \"authors\" does not exist, skipping' >&2\n",
        )
        artifact = tmp_path / "backup.sql.gz"
        artifact.write_bytes(gzip.compress(b"INSERT INTO public.authors VALUES (1);\n"))
        runner = PgDumpRunner(TEST_URL, psql_path=psql, timeout=10)

        warnings = await runner.restore(artifact, compressed=True, preamble="TRUNCATE TABLE authors;\n")

        assert captured.read_text() == (
            "TRUNCATE TABLE authors;\nINSERT INTO public.authors VALUES (1);\n"
        )
        assert warnings == ['NOTICE:  table "authors" does not exist, skipping']
        assert_reaped(spawned)

    async def test_early_exit_breaks_pipe(self, tmp_path: Path, spawned: list) -> None:
        """psql giving up mid-stream surfaces its exit code, not a pipe error."""
        psql = fake_tool(
            tmp_path,
            "psql",
            "head -c 16 > /dev/null\n"
            "echo 'ERROR:  syntax error at or near \"garbage\"' >&2\n"
            "exit 3\n",
        )
        artifact = tmp_path / "backup.sql"
        artifact.write_bytes(b"INSERT INTO public.authors VALUES (1);\n" * 50_000)
        runner = PgDumpRunner(TEST_URL, psql_path=psql, timeout=10)

        with pytest.raises(DatabaseError, match="exited with code 3") as excinfo:
            await runner.restore(artifact, compressed=False)

        assert "syntax error" in excinfo.value.data["detail"]
        assert_reaped(spawned)

    async def test_failure_tolerated_without_stop_on_error(
        self, tmp_path: Path, spawned: list
    ) -> None:
        psql = fake_tool(
            tmp_path,
            "psql",
            "cat > /dev/null\necho 'ERROR:  duplicate key value' >&2\nexit 3\n",
        )
        artifact = tmp_path / "backup.sql"
        artifact.write_bytes(b"INSERT INTO public.authors VALUES (1);\n")
        runner = PgDumpRunner(TEST_URL, psql_path=psql, timeout=10)

        warnings = await runner.restore(artifact, compressed=False, stop_on_error=False)

        assert warnings == ["ERROR:  duplicate key value"]
        assert_reaped(spawned)

    async def test_timeout_kills_child(self, tmp_path: Path, spawned: list) -> None:
        psql = fake_tool(tmp_path, "psql", "exec sleep 30\n")
        artifact = tmp_path / "backup.sql"
        artifact.write_bytes(b"SELECT 1;\n")
        runner = PgDumpRunner(TEST_URL, psql_path=psql, timeout=0.5)

        with pytest.raises(DatabaseTimeoutError):
            await runner.restore(artifact, compressed=False)

        assert_reaped(spawned)


class TestManagerWithRealRunner:
    """Failed dumps leave nothing behind in the backup directory."""

    @pytest.fixture
    def live(self, adapter: FakeAdapter, live_tables) -> FakeAdapter:
        live_tables({"authors": ["id", "name"]})
        adapter.on("SELECT COUNT(*) AS count", [{"count": 2}])
        return adapter

    async def test_timeout_removes_partial_artifact(
        self, manager: BackupManager, live: FakeAdapter, tmp_path: Path, spawned: list
    ) -> None:
        pg_dump = fake_tool(tmp_path, "pg_dump", "printf 'CREATE TABLE'\nexec sleep 30\n")
        manager.runner = PgDumpRunner(TEST_URL, pg_dump_path=pg_dump, timeout=0.5)

        with pytest.raises(DatabaseTimeoutError):
            await manager.backup_table("authors")

        assert list(manager.storage.directory.iterdir()) == []
        assert_reaped(spawned)

    async def test_exit_code_removes_partial_artifact(
        self, manager: BackupManager, live: FakeAdapter, tmp_path: Path, spawned: list
    ) -> None:
        pg_dump = fake_tool(tmp_path, "pg_dump", "printf 'CREATE TABLE'\necho 'out of memory' >&2\nexit 1\n")
        manager.runner = PgDumpRunner(TEST_URL, pg_dump_path=pg_dump, timeout=10)

        with pytest.raises(DatabaseError, match="exited with code 1"):
            await manager.backup_table("authors")

        assert list(manager.storage.directory.iterdir()) == []
