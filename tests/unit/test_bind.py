from extdb.bind import BindValues, merge_values


def test_add_overwrites_same_name():
    staged = BindValues()
    staged.add('status', 'active')
    staged.add('status', 'inactive')
    assert staged.get() == {'status': 'inactive'}


def test_update_applies_in_order():
    staged = BindValues()
    staged.add('a', 1)
    staged.update({'b': 2, 'a': 3})
    assert staged.get() == {'a': 3, 'b': 2}
    assert len(staged) == 2
    assert 'b' in staged


def test_get_returns_copy():
    staged = BindValues()
    staged.add('a', 1)
    copy = staged.get()
    copy['a'] = 99
    copy['z'] = 0
    assert staged.get() == {'a': 1}


def test_take_clears():
    staged = BindValues()
    staged.update({'a': 1, 'b': [1, 2]})
    assert staged.take() == {'a': 1, 'b': [1, 2]}
    assert staged.get() == {}
    assert staged.take() == {}


def test_merge_call_site_wins():
    assert merge_values({'k': 'staged', 's': 1}, {'k': 'call', 'c': 2}) == {
        'k': 'call', 's': 1, 'c': 2}


def test_merge_without_call_site_values():
    staged = {'k': 'staged'}
    merged = merge_values(staged, None)
    assert merged == {'k': 'staged'}
    assert merged is not staged
