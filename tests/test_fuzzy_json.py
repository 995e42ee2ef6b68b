import json

import pytest

from dae.fuzzy_json import fuzzy_bool


@pytest.mark.parametrize(
    "document, expected",
    [
        ("0", False),
        ("1.5", True),
        ("-3", True),
        ('""', False),
        ('"0"', False),
        ('"false"', True),
        ("true", True),
        ("false", False),
        ("null", False),
    ],
)
def test_fuzzy_bool_accepts(document, expected):
    assert fuzzy_bool(json.loads(document)) is expected


@pytest.mark.parametrize("document", ["[]", "[1]", "{}", '{"a": 1}'])
def test_fuzzy_bool_rejects_containers(document):
    with pytest.raises(ValueError, match="not number, string or bool"):
        fuzzy_bool(json.loads(document))


def test_fuzzy_bool_in_object_hook():
    decoded = json.loads('{"udp": "1", "tls": 0}')
    assert {k: fuzzy_bool(v) for k, v in decoded.items()} == {"udp": True, "tls": False}