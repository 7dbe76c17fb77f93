"""
Parameter tree unit tests
"""

import pytest
from starlette.datastructures import QueryParams

from resource_api.common.errors import ValidationError
from resource_api.common.params import as_list, params_to_tree, split_key


class TestSplitKey:
    """Key splitting tests"""

    def test_dotted(self):
        assert split_key("author.name") == (["author", "name"], False)

    def test_brackets(self):
        assert split_key("order[author][name]") == (["order", "author", "name"], False)

    def test_mixed(self):
        assert split_key("order[author].name") == (["order", "author", "name"], False)

    def test_list_marker(self):
        assert split_key("include[]") == (["include"], True)


class TestParamsToTree:
    """params_to_tree tests"""

    def test_none(self):
        assert params_to_tree(None) == {}

    def test_flat_values_kept(self):
        assert params_to_tree({"limit": "5", "title": "Alpha"}) == {"limit": "5", "title": "Alpha"}

    def test_nested_keys(self):
        tree = params_to_tree({"author.name": "Ann", "author[country]": "NZ", "order[year]": "desc"})
        assert tree == {
            "author": {"name": "Ann", "country": "NZ"},
            "order": {"year": "desc"},
        }

    def test_repeated_keys_accumulate(self):
        tree = params_to_tree([("attributes", "id"), ("attributes", "title"), ("attributes", "year")])
        assert tree == {"attributes": ["id", "title", "year"]}

    def test_list_marker_forces_list(self):
        assert params_to_tree([("include[]", "author")]) == {"include": ["author"]}

    def test_query_params(self):
        params = QueryParams("include=author&include=reviews&year[gte]=1990")
        assert params_to_tree(params) == {
            "include": ["author", "reviews"],
            "year": {"gte": "1990"},
        }

    def test_nested_mapping_merged(self):
        tree = params_to_tree({"author": {"name": "Ann"}, "author.country": "NZ"})
        assert tree == {"author": {"name": "Ann", "country": "NZ"}}

    def test_explicit_list_preserved(self):
        assert params_to_tree({"id": {"in": [1]}}) == {"id": {"in": [1]}}

    def test_empty_key_skipped(self):
        assert params_to_tree({"": "x", "a": "1"}) == {"a": "1"}

    def test_leaf_then_branch_conflict(self):
        with pytest.raises(ValidationError):
            params_to_tree([("author", "1"), ("author.name", "Ann")])

    def test_branch_then_leaf_conflict(self):
        with pytest.raises(ValidationError):
            params_to_tree([("author.name", "Ann"), ("author", "1")])


class TestAsList:
    """as_list tests"""

    def test_none(self):
        assert as_list(None) == []

    def test_comma_string(self):
        assert as_list("id, title,,year") == ["id", "title", "year"]

    def test_nested_lists(self):
        assert as_list(["id,title", "year"]) == ["id", "title", "year"]

    def test_scalar(self):
        assert as_list(3) == [3]
