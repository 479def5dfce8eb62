"""End-to-end fetch shapes against in-memory SQLite."""
from dataclasses import dataclass, field
from types import SimpleNamespace

import pandas as pd
import pytest
from extdb import ExtendedConnection, FetchShape, pandas_pyarrow_data_loader
from extdb.exceptions import QueryError, ShapeConstructionError

USERS = [
    {'id': 1, 'name': 'alice', 'status': 'active', 'score': 9.5},
    {'id': 2, 'name': 'bob', 'status': 'inactive', 'score': 7.0},
    {'id': 3, 'name': 'carol', 'status': 'active', 'score': 8.25},
]


@dataclass
class User:
    id: int = 0
    name: str = ''
    status: str = 'unknown'
    score: float = 0.0

    def __post_init__(self, suffix=''):
        self.display = f'{self.name}{suffix}'


@dataclass
class Tagged:
    id: int
    name: str
    tags: list = field(default_factory=list)


class TestFetchAll:

    def test_rows_in_cursor_order(self, sqlite_conn):
        rows = sqlite_conn.fetch_all('SELECT * FROM users ORDER BY id')
        assert rows == USERS
        assert list(rows[0]) == ['id', 'name', 'status', 'score']

    def test_transform_applied_to_each_row(self, sqlite_conn):
        rows = sqlite_conn.fetch_all('SELECT id, name FROM users ORDER BY id',
                                     transform=lambda row: {**row, 'name': row['name'].upper()})
        assert [r['name'] for r in rows] == ['ALICE', 'BOB', 'CAROL']

    def test_empty(self, sqlite_conn):
        assert sqlite_conn.fetch_all('SELECT * FROM users WHERE id = :id', {'id': 99}) == []

    def test_statement_without_rows(self, sqlite_conn):
        assert sqlite_conn.fetch_all("UPDATE users SET score = 0 WHERE id = :id", {'id': 99}) == []


class TestFetchAssoc:

    def test_keyed_on_first_column_last_wins(self, sqlite_conn):
        rows = sqlite_conn.fetch_assoc('SELECT id, name FROM t ORDER BY rowid', {})
        assert rows == {1: {'id': 1, 'name': 'c'}, 2: {'id': 2, 'name': 'b'}}

    def test_transform(self, sqlite_conn):
        rows = sqlite_conn.fetch_assoc('SELECT name, score FROM users ORDER BY id',
                                       transform=lambda row: row['score'])
        assert rows == {'alice': 9.5, 'bob': 7.0, 'carol': 8.25}

    def test_empty(self, sqlite_conn):
        assert sqlite_conn.fetch_assoc('SELECT id FROM users WHERE 0') == {}


class TestFetchCol:

    def test_first_column(self, sqlite_conn):
        assert sqlite_conn.fetch_col('SELECT name, id FROM users ORDER BY id') == ['alice', 'bob', 'carol']

    def test_transform_receives_scalar(self, sqlite_conn):
        assert sqlite_conn.fetch_col('SELECT id FROM users ORDER BY id', transform=lambda v: v * 10) == [10, 20, 30]

    def test_in_clause_expansion(self, sqlite_conn):
        names = sqlite_conn.fetch_col('SELECT name FROM users WHERE id IN (:ids) ORDER BY id',
                                      {'ids': [1, 3]})
        assert names == ['alice', 'carol']

    def test_empty_in_clause(self, sqlite_conn):
        assert sqlite_conn.fetch_col('SELECT name FROM users WHERE id IN (:ids)', {'ids': []}) == []


class TestFetchPairs:

    def test_pairs(self, sqlite_conn):
        assert sqlite_conn.fetch_pairs('SELECT id, name FROM users') == {1: 'alice', 2: 'bob', 3: 'carol'}

    def test_duplicate_keys_last_wins(self, sqlite_conn):
        assert sqlite_conn.fetch_pairs('SELECT id, name FROM t ORDER BY rowid') == {1: 'c', 2: 'b'}

    def test_transform_sees_every_row_in_order(self, sqlite_conn):
        seen = []

        def transform(value):
            seen.append(value)
            return value.upper()

        pairs = sqlite_conn.fetch_pairs('SELECT id, name FROM t ORDER BY rowid', transform=transform)
        assert seen == ['a', 'b', 'c']
        assert pairs == {1: 'C', 2: 'B'}

    def test_needs_two_columns(self, sqlite_conn):
        with pytest.raises(ShapeConstructionError):
            sqlite_conn.fetch_pairs('SELECT id FROM users')


class TestFetchOneAndValue:

    def test_fetch_one(self, sqlite_conn):
        assert sqlite_conn.fetch_one('SELECT * FROM users ORDER BY id') == USERS[0]

    def test_fetch_one_none(self, sqlite_conn):
        assert sqlite_conn.fetch_one('SELECT * FROM users WHERE id = :id', {'id': 99}) is None

    def test_fetch_value(self, sqlite_conn):
        assert sqlite_conn.fetch_value('SELECT COUNT(*) FROM users') == 3

    def test_fetch_value_none(self, sqlite_conn):
        assert sqlite_conn.fetch_value('SELECT id FROM users WHERE id = :id', {'id': 99}) is None


class TestFetchObjects:

    def test_default_namespace(self, sqlite_conn):
        obj = sqlite_conn.fetch_object('SELECT id, name FROM users WHERE id = :id', {'id': 2})
        assert obj == SimpleNamespace(id=2, name='bob')

    def test_fetch_object_none(self, sqlite_conn):
        assert sqlite_conn.fetch_object('SELECT * FROM users WHERE id = 99', cls=User) is None

    def test_round_trip(self, sqlite_conn):
        users = sqlite_conn.fetch_objects('SELECT * FROM users ORDER BY id', {}, User)
        assert [{k: getattr(u, k) for k in row} for u, row in zip(users, USERS)] == USERS

    def test_column_values_win_over_defaults(self, sqlite_conn):
        user = sqlite_conn.fetch_object('SELECT id, name FROM users WHERE id = 1', cls=User,
                                        ctor_args=('!',))
        assert user.name == 'alice'
        assert user.display == 'alice!'
        assert user.status == 'unknown'

    def test_dotted_path(self, sqlite_conn):
        objs = sqlite_conn.fetch_objects('SELECT id FROM users ORDER BY id', cls='types.SimpleNamespace')
        assert [o.id for o in objs] == [1, 2, 3]

    def test_empty(self, sqlite_conn):
        assert sqlite_conn.fetch_objects('SELECT * FROM users WHERE 0', cls=User) == []

    def test_unknown_type_fails_before_execution(self, sqlite_conn, recording_profiler):
        sqlite_conn.set_profiler(recording_profiler)
        sqlite_conn.bind_value('id', 1)

        with pytest.raises(ShapeConstructionError):
            sqlite_conn.fetch_object('SELECT * FROM users WHERE id = :id', cls='no_such_mod.User')

        assert recording_profiler.calls == []
        assert sqlite_conn.get_bind_values() == {}

    def test_ctor_args_without_post_init(self, sqlite_conn):
        sqlite_conn.bind_value('id', 1)

        with pytest.raises(ShapeConstructionError, match='__post_init__'):
            sqlite_conn.fetch_objects('SELECT * FROM users WHERE id = :id',
                                      cls='types.SimpleNamespace', ctor_args=('x',))

        assert sqlite_conn.get_bind_values() == {}

    def test_default_factory_fields(self, sqlite_conn):
        obj = sqlite_conn.fetch_object('SELECT id FROM users WHERE id = 1', cls=Tagged)
        assert obj.tags == []
        assert repr(obj) == 'Tagged(id=1, name=None, tags=[])'


class TestStagedValues:

    def test_staged_then_cleared(self, sqlite_conn):
        sqlite_conn.bind_values({'status': 'active'})
        ids = sqlite_conn.fetch_col('SELECT id FROM users WHERE status = :status ORDER BY id', {})
        assert ids == [1, 3]
        assert sqlite_conn.get_bind_values() == {}

    def test_call_site_overrides_staged(self, sqlite_conn, recording_profiler):
        sqlite_conn.set_profiler(recording_profiler)
        sqlite_conn.bind_value('status', 'active')
        sqlite_conn.bind_value('min_score', 8)

        names = sqlite_conn.fetch_col(
            'SELECT name FROM users WHERE status = :status AND score >= :min_score',
            {'status': 'inactive', 'min_score': 0})

        assert names == ['bob']
        assert recording_profiler.calls[0][2] == {'status': 'inactive', 'min_score': 0}

    def test_staged_values_apply_only_once(self, sqlite_conn):
        sqlite_conn.bind_value('id', 1)
        assert sqlite_conn.fetch_value('SELECT name FROM users WHERE id = :id') == 'alice'

        with pytest.raises(QueryError):
            sqlite_conn.fetch_value('SELECT name FROM users WHERE id = :id')


class TestBindTypes:

    def test_configured_coercion(self, sqlite_conn):
        assert sqlite_conn.fetch_value('SELECT typeof(:v)', {'v': '5'}) == 'text'

        typed = ExtendedConnection('sqlite::memory:', bind_types={'v': 'int'})
        assert typed.fetch_value('SELECT typeof(:v)', {'v': '5'}) == 'integer'

    def test_options_are_not_shared(self):
        bind_types = {'v': 'int'}
        cn = ExtendedConnection({'dsn': 'sqlite::memory:', 'bind_types': bind_types})
        bind_types['v'] = 'str'
        assert cn.fetch_value('SELECT typeof(:v)', {'v': '5'}) == 'integer'


class TestDispatchAndExtras:

    @pytest.mark.parametrize(('shape', 'expected'), [
        (FetchShape.COL, ['alice', 'bob', 'carol']),
        ('value', 'alice'),
        ('pairs', {'alice': 1, 'bob': 2, 'carol': 3}),
    ])
    def test_fetch_dispatch(self, sqlite_conn, shape, expected):
        assert sqlite_conn.fetch('SELECT name, id FROM users ORDER BY id', shape=shape) == expected

    def test_fetch_default_shape(self):
        cn = ExtendedConnection('sqlite::memory:', default_shape=FetchShape.ONE)
        assert cn.fetch('SELECT 1 AS id UNION ALL SELECT 2') == {'id': 1}

    def test_fetch_affected(self, sqlite_conn):
        count = sqlite_conn.fetch_affected('UPDATE users SET score = :score WHERE status = :status',
                                           {'score': 1.0, 'status': 'active'})
        assert count == 2
        assert sqlite_conn.fetch_col("SELECT score FROM users WHERE status = 'active'") == [1.0, 1.0]

    def test_perform_clears_staged_values(self, sqlite_conn):
        sqlite_conn.bind_value('name', 'dave')
        result = sqlite_conn.perform("INSERT INTO users (id, name, status) VALUES (4, :name, 'new')")
        assert result.rowcount == 1
        assert sqlite_conn.get_bind_values() == {}
        assert sqlite_conn.fetch_value('SELECT name FROM users WHERE id = 4') == 'dave'

    def test_fetch_frame(self, sqlite_conn):
        df = sqlite_conn.fetch_frame('SELECT id, name FROM users ORDER BY id')
        assert isinstance(df, pd.DataFrame)
        assert df['name'].tolist() == ['alice', 'bob', 'carol']

    def test_fetch_frame_empty_keeps_columns(self, sqlite_conn):
        df = sqlite_conn.fetch_frame('SELECT id, name FROM users WHERE 0',
                                     loader=pandas_pyarrow_data_loader)
        assert df.empty
        assert list(df.columns) == ['id', 'name']
