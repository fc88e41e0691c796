"""Row-level table client: equality filters, Prefer header, verbs."""

import pytest

from forever_paws.api.backend import TableClient, eq_filters
from forever_paws.utils.exceptions import ApiError

from fakes import ANON_KEY, BACKEND

LETTERS = f"{BACKEND}/rest/v1/letters"


@pytest.fixture
def tables(http):
    return TableClient(http, BACKEND, ANON_KEY)


def last_request(http):
    return http.calls[-1][3]


def test_eq_filters():
    assert eq_filters({"user_id": "u1", "archived": False, "position": 3}) == {
        "user_id": "eq.u1",
        "archived": "eq.false",
        "position": "eq.3",
    }
    assert eq_filters(None) == {}


def test_select_sends_filters_and_columns(tables, http):
    http.add("GET", LETTERS, body=[{"id": "l1"}])

    rows = tables.select("letters", {"user_id": "u1"}, token="tok", columns="id", limit=5)

    request = last_request(http)
    assert rows == [{"id": "l1"}]
    assert request.params == {"select": "id", "user_id": "eq.u1", "limit": 5}
    assert request.api_key == ANON_KEY
    assert "Prefer" not in request.headers
    assert http.calls[-1][2] == "tok"


def test_insert_asks_for_representation(tables, http):
    http.add("POST", LETTERS, status=201, body=[{"id": "l1", "content": "hi"}])

    rows = tables.insert("letters", {"content": "hi"}, token="tok")

    request = last_request(http)
    assert rows == [{"id": "l1", "content": "hi"}]
    assert request.headers["Prefer"] == "return=representation"
    assert request.json_body == {"content": "hi"}


def test_update_patches_filtered_rows(tables, http):
    http.add("PATCH", LETTERS, body=[{"id": "l1", "content": "edited"}])

    tables.update("letters", {"content": "edited"}, {"id": "l1"}, token="tok")

    request = last_request(http)
    assert request.method == "PATCH"
    assert request.params == {"id": "eq.l1"}
    assert request.headers["Prefer"] == "return=representation"


def test_delete_removes_filtered_rows(tables, http):
    http.add("DELETE", LETTERS, body=[{"id": "l1"}])

    assert tables.delete("letters", {"id": "l1"}, token="tok") == [{"id": "l1"}]
    assert last_request(http).params == {"id": "eq.l1"}


def test_unfiltered_update_and_delete_are_refused(tables, http):
    with pytest.raises(ValueError):
        tables.update("letters", {"content": "x"}, {})
    with pytest.raises(ValueError):
        tables.delete("letters", {})
    assert http.calls == []


def test_error_status_raises_api_error(tables, http):
    http.add("GET", LETTERS, status=401, body={"message": "JWT expired"})

    with pytest.raises(ApiError) as info:
        tables.select("letters", {"user_id": "u1"}, token="tok")
    assert info.value.status_code == 401
