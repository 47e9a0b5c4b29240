import copy
import logging
import threading

import pandas as pd
import pytest
import typed_sqlite as db
from typed_sqlite import Int64, OpenFlags


@pytest.fixture
def seeded_file(tmp_path):
    """Path of a closed database file holding one table with two rows"""
    path = tmp_path / 'seeded.db'
    with db.connect(str(path)) as cn:
        db.run(cn, 'CREATE TABLE item (id INTEGER PRIMARY KEY, name TEXT)')
        db.run(cn, 'INSERT INTO item (name) VALUES (?), (?)', 'a', 'b')
    return path


class TestOpen:

    def test_missing_file_readonly(self, tmp_path):
        """Test opening a missing file read-only fails with OpenError"""
        path = tmp_path / 'missing.db'
        with pytest.raises(db.OpenError) as exc:
            db.Connection.open(str(path), OpenFlags.READONLY)
        assert exc.value.operation == 'open'
        assert 'missing.db' in str(exc.value)
        assert not path.exists()

    def test_missing_file_without_create(self, tmp_path):
        with pytest.raises(db.OpenError):
            db.Connection.open(str(tmp_path / 'missing.db'), 'readwrite')

    def test_create(self, tmp_path):
        path = tmp_path / 'new.db'
        with db.Connection.open(str(path), 'readwrite|create') as cn:
            assert not cn.closed
            db.run(cn, 'CREATE TABLE t (x)')
        assert path.exists()

    @pytest.mark.parametrize('flags', [OpenFlags.CREATE, 'readonly|create'])
    def test_invalid_flags(self, tmp_path, flags):
        with pytest.raises(ValueError):
            db.Connection.open(str(tmp_path / 'x.db'), flags)

    def test_readonly_rejects_writes(self, seeded_file):
        with db.Connection.open(str(seeded_file), OpenFlags.READONLY) as cn:
            assert db.select_scalar(cn, 'SELECT count(*) FROM item') == 2
            with pytest.raises(db.ExecutionError) as exc:
                db.run(cn, 'INSERT INTO item (name) VALUES (?)', 'c')
            assert exc.value.operation == 'step'

    def test_connect_url(self, seeded_file):
        """Test sqlite URLs carry the open mode"""
        with db.connect(f'sqlite:///{seeded_file}?mode=ro') as cn:
            assert cn.options.flags == OpenFlags.READONLY
            assert cn.select_scalar('SELECT name FROM item WHERE id = ?', 2, as_type=str) == 'b'
            with pytest.raises(db.ExecutionError):
                cn.run('DELETE FROM item')

    def test_connect_options_forms(self, seeded_file):
        """Test every accepted options form"""
        options = db.ConnectionOptions(database=seeded_file)
        with db.connect(options) as cn:
            assert cn.options.database == str(seeded_file)
            assert cn.select_scalar('SELECT count(*) FROM item') == 2
        with db.connect({'database': str(seeded_file), 'log_sql': False}) as cn:
            assert cn.options.log_sql is False
        with db.connect(database=str(seeded_file), timeout=1.0) as cn:
            assert cn.options.timeout == 1.0
        with db.connect(seeded_file, log_sql=False) as cn:
            assert cn.options.database == str(seeded_file)
            assert cn.options.log_sql is False

    def test_keyword_overrides_options(self, seeded_file):
        options = db.ConnectionOptions(database=str(seeded_file))
        with db.connect(options, data_loader=db.iterdict_data_loader) as cn:
            assert cn.options.data_loader is db.iterdict_data_loader
            assert cn.select('SELECT name FROM item WHERE id = 1') == [{'name': 'a'}]

    def test_private_memory_readonly(self):
        """Test a private in-memory database refuses read-only mode"""
        with pytest.raises(db.OpenError):
            db.Connection.open(':memory:', OpenFlags.READONLY)
        with pytest.raises(db.OpenError):
            db.connect('sqlite:///:memory:?mode=ro')

    def test_fullmutex_crosses_threads(self):
        """Test a FULLMUTEX handle can be used from another thread"""
        cn = db.Connection.open(':memory:', OpenFlags.READWRITE | OpenFlags.FULLMUTEX)
        result = []
        thread = threading.Thread(target=lambda: result.append(cn.select_scalar('SELECT 41 + 1')))
        thread.start()
        thread.join()
        assert result == [42]
        cn.close()


class TestLifecycle:

    def test_close_is_idempotent(self, sqlite_conn):
        sqlite_conn.close()
        sqlite_conn.close()
        assert sqlite_conn.closed
        assert repr(sqlite_conn) == '<Connection closed>'

    def test_closed_connection_refuses_work(self, sqlite_conn):
        sqlite_conn.close()
        with pytest.raises(db.MisuseError):
            sqlite_conn.prepare('SELECT 1')
        with pytest.raises(db.MisuseError):
            db.run(sqlite_conn, 'SELECT 1')

    def test_statement_outliving_connection(self, sqlite_conn):
        stmt = sqlite_conn.prepare('SELECT 1')
        sqlite_conn.close()
        with pytest.raises(db.MisuseError):
            stmt.step()
        stmt.finalize()

    def test_move(self, sqlite_conn):
        """Test move transfers the handle and the scope counter"""
        sqlite_conn.atomic(lambda: None)
        moved = sqlite_conn.move()

        assert sqlite_conn.closed
        assert sqlite_conn.scope_counter == 0
        assert moved.scope_counter == 1
        assert moved.select_scalar('SELECT count(*) FROM test_table') == 3
        with pytest.raises(db.MisuseError):
            sqlite_conn.select_scalar('SELECT 1')
        moved.close()

    def test_copy_is_refused(self, sqlite_conn):
        with pytest.raises(TypeError):
            copy.copy(sqlite_conn)
        with pytest.raises(TypeError):
            copy.deepcopy(sqlite_conn)

    def test_context_manager_closes(self):
        with db.connect(':memory:') as cn:
            assert cn.select_scalar('SELECT 1') == 1
        assert cn.closed

    def test_call_statistics(self, sqlite_conn):
        calls = sqlite_conn.calls
        sqlite_conn.run('UPDATE test_table SET value = 0')
        assert sqlite_conn.calls == calls + 1
        assert sqlite_conn.time >= 0


class TestQueries:

    def test_select_dataframe(self, sqlite_conn):
        df = db.select(sqlite_conn, 'SELECT name, value FROM test_table WHERE value > ? ORDER BY id', 15)
        assert isinstance(df, pd.DataFrame)
        assert list(df.columns) == ['name', 'value']
        assert df['name'].tolist() == ['Bob', 'Charlie']
        assert df.attrs['column_types'] == {'name': 'TEXT', 'value': 'INTEGER'}

    def test_select_empty_keeps_columns(self, sqlite_conn):
        df = db.select(sqlite_conn, 'SELECT name, value FROM test_table WHERE value < 0')
        assert df.empty
        assert list(df.columns) == ['name', 'value']

    def test_select_iterdict(self, sqlite_conn):
        rows = db.select(sqlite_conn, 'SELECT name FROM test_table ORDER BY id',
                         data_loader=db.iterdict_data_loader)
        assert rows == [{'name': 'Alice'}, {'name': 'Bob'}, {'name': 'Charlie'}]

    def test_select_pyarrow(self, sqlite_conn):
        df = db.select(sqlite_conn, 'SELECT id, name FROM test_table ORDER BY id',
                       data_loader=db.pandas_pyarrow_data_loader)
        assert isinstance(df['id'].dtype, pd.ArrowDtype)
        assert df['name'].tolist() == ['Alice', 'Bob', 'Charlie']

    def test_configured_data_loader(self):
        with db.connect(':memory:', data_loader=db.iterdict_data_loader) as cn:
            assert cn.select('SELECT 1 AS one') == [{'one': 1}]

    def test_select_row(self, sqlite_conn):
        row = db.select_row(sqlite_conn, 'SELECT id, name FROM test_table WHERE value = ?', 20,
                            types=(Int64, str))
        assert row == (2, 'Bob')
        assert db.select_row(sqlite_conn, 'SELECT id FROM test_table WHERE value = 0',
                             types=(Int64,)) is None

    def test_select_scalar(self, sqlite_conn):
        assert db.select_scalar(sqlite_conn, 'SELECT sum(value) FROM test_table') == 60
        assert db.select_scalar(sqlite_conn, 'SELECT avg(value) FROM test_table', as_type=float) == 20.0
        assert db.select_scalar(sqlite_conn, 'SELECT id FROM test_table WHERE 0') is None

    def test_run_returns_changed_rows(self, sqlite_conn):
        assert db.run(sqlite_conn, 'DELETE FROM test_table WHERE value >= ?', 20) == 2
        assert db.select_scalar(sqlite_conn, 'SELECT count(*) FROM test_table') == 1

    def test_execute_bad_argument_finalizes(self, sqlite_conn):
        with pytest.raises(db.MarshallingError):
            db.execute(sqlite_conn, 'SELECT ?', object())


class TestLogging:

    def test_sql_logged(self, sqlite_conn, caplog):
        with caplog.at_level(logging.DEBUG, logger='typed_sqlite.sql'):
            sqlite_conn.run('UPDATE test_table SET value = ? WHERE id = ?', 5, 1)
        assert 'UPDATE test_table' in caplog.text
        assert 'args: (5, 1)' in caplog.text

    def test_sql_logging_disabled(self, caplog):
        with db.connect(':memory:', log_sql=False) as cn:
            with caplog.at_level(logging.DEBUG, logger='typed_sqlite.sql'):
                cn.run('SELECT 1')
        assert 'SELECT 1' not in caplog.text

    def test_failure_logged(self, sqlite_conn, caplog):
        with caplog.at_level(logging.ERROR, logger='typed_sqlite.sql'):
            with pytest.raises(db.ExecutionError):
                sqlite_conn.run("INSERT INTO test_table (name, value) VALUES ('Alice', 1)")
        assert 'Error with query' in caplog.text


if __name__ == '__main__':
    __import__('pytest').main([__file__])
