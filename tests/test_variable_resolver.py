"""
Tests for VariableResolver and path helpers
"""

import pytest

from apiflow.flow_engine.errors import VariableExtractionError
from apiflow.flow_engine.variable_resolver import (
    MISSING,
    VariableResolver,
    find_placeholders,
    interpolate,
    parse_path,
    resolve_path,
)


class TestVariableResolver:
    """Test placeholder substitution"""

    def test_dollar_placeholder(self):
        """Test resolving ${name}"""
        resolver = VariableResolver({'user': 'ana'})

        assert resolver.resolve('hello ${user}') == 'hello ana'

    def test_mustache_placeholder(self):
        """Test resolving {{name}}"""
        resolver = VariableResolver({'token': 'abc'})

        assert resolver.resolve('Bearer {{token}}') == 'Bearer abc'

    def test_whitespace_inside_placeholder(self):
        resolver = VariableResolver({'token': 'abc'})

        assert resolver.resolve('{{ token }}') == 'abc'

    def test_nested_path(self):
        """Test resolving nested path"""
        resolver = VariableResolver({'user': {'contact': {'email': 'ana@example.com'}}})

        assert resolver.resolve('${user.contact.email}') == 'ana@example.com'

    def test_array_access(self):
        """Test array access in variables"""
        resolver = VariableResolver({'items': [{'name': 'Item 1'}, {'name': 'Item 2'}]})

        assert resolver.resolve('${items[1].name}') == 'Item 2'
        assert resolver.resolve('${items.0.name}') == 'Item 1'

    def test_dotted_binding_name_wins(self):
        resolver = VariableResolver({'user.id': 'flat', 'user': {'id': 'nested'}})

        assert resolver.resolve('${user.id}') == 'flat'

    def test_unbound_left_verbatim(self):
        """Unbound placeholders stay as written"""
        resolver = VariableResolver({'a': '1'})

        assert resolver.resolve('${a}-${b}-{{c}}') == '1-${b}-{{c}}'

    def test_string_forms(self):
        """Non-string values are rendered as text"""
        resolver = VariableResolver({
            'count': 3,
            'ratio': 1.5,
            'flag': True,
            'off': False,
            'nothing': None,
            'obj': {'a': 1, 'b': [1, 2]},
        })

        assert resolver.resolve('${count}') == '3'
        assert resolver.resolve('${ratio}') == '1.5'
        assert resolver.resolve('${flag}/${off}') == 'true/false'
        assert resolver.resolve('${nothing}') == 'null'
        assert resolver.resolve('${obj}') == '{"a":1,"b":[1,2]}'

    def test_dict_resolution(self):
        """Only string leaves are rewritten, keys untouched"""
        resolver = VariableResolver({'email': 'test@example.com'})

        data = {
            '${email}': 'key stays',
            'contact_email': '${email}',
            'count': 5,
            'active': True,
            'nested': {'subject': 'Hello {{email}}'},
        }

        result = resolver.resolve(data)
        assert result == {
            '${email}': 'key stays',
            'contact_email': 'test@example.com',
            'count': 5,
            'active': True,
            'nested': {'subject': 'Hello test@example.com'},
        }

    def test_list_resolution(self):
        """Test resolving variables in list"""
        resolver = VariableResolver({'value': 'test'})

        result = resolver.resolve(['${value}', 'static', 7, None])
        assert result == ['test', 'static', 7, None]

    def test_input_not_mutated(self):
        data = {'headers': {'Authorization': 'Bearer ${token}'}}
        interpolate(data, {'token': 'abc'})

        assert data == {'headers': {'Authorization': 'Bearer ${token}'}}

    def test_json_string_body_is_textual(self):
        """A JSON string body is substituted as text, never re-parsed"""
        body = '{"name": "${name}", "age": ${age}}'

        assert interpolate(body, {'name': 'Ana', 'age': 30}) == '{"name": "Ana", "age": 30}'

    def test_idempotent(self):
        bindings = {'a': 'x', 'b': {'c': [1, 2]}}
        value = {'url': '/${a}/${missing}', 'list': ['{{b.c}}', '${b}']}

        once = interpolate(value, bindings)
        assert interpolate(once, bindings) == once

    def test_none_bindings(self):
        assert interpolate('${a}', None) == '${a}'

    def test_find_unbound(self):
        resolver = VariableResolver({'a': 1})

        assert resolver.find_unbound({'x': '${a} ${b}', 'y': ['{{c}}', '${b}']}) == ['b', 'c']


class TestPaths:
    """Test path parsing and resolution"""

    def test_find_placeholders(self):
        assert find_placeholders('${a} and {{ b.c }} and ${d[0]}') == ['a', 'b.c', 'd[0]']
        assert find_placeholders(42) == []

    def test_parse_path(self):
        assert parse_path('data.token') == ['data', 'token']
        assert parse_path('$.items[0].id') == ['items', 0, 'id']
        assert parse_path("headers['x-id']") == ['headers', 'x-id']
        assert parse_path('$') == []

    @pytest.mark.parametrize('path', ['a..b', '.a', 'a.', 'a[0', 'a[x]', 'a[0]b'])
    def test_malformed_paths(self, path):
        with pytest.raises(VariableExtractionError):
            parse_path(path)

    def test_resolve_path(self):
        body = {'data': {'token': 'abc', 'items': [{'id': 1}, {'id': 2}]}, 'ok': None}

        assert resolve_path(body, 'data.token') == 'abc'
        assert resolve_path(body, '$.data.items[1].id') == 2
        assert resolve_path(body, 'ok') is None
        assert resolve_path(body, '') == body

    def test_missing_path(self):
        body = {'data': {'items': []}}

        assert resolve_path(body, 'data.nope') is MISSING
        assert resolve_path(body, 'data.items[0]') is MISSING
        assert resolve_path(body, 'data.items.token') is MISSING
        assert resolve_path('text', 'a') is MISSING
