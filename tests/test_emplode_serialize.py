import json

import pytest
import yaml

from emplode.emplode_datatypes import EmplodeError
from emplode.emplode_scope import Scope
from emplode.emplode_serialize import apply_mapping, deserialize, detect_format, serialize, to_builtin


def build():
    root = Scope("root")
    root.add_var("seed", 1)
    root.add_var("rate", 0.5)
    root.add_var("name", "run")
    root.add_builtin_var("hidden", 9)
    root.add_function("f", lambda: 1)
    pop = root.add_scope("pop")
    pop.add_var("size", 100)
    pop.add_var("alive", True)
    return root


def test_to_builtin_skips_functions_and_builtins():
    assert to_builtin(build()) == {
        "seed": 1,
        "rate": 0.5,
        "name": "run",
        "pop": {"size": 100, "alive": True},
    }


def test_serialize_json_and_yaml():
    root = build()
    assert json.loads(serialize(root, fmt="json")) == to_builtin(root)
    assert yaml.safe_load(serialize(root, fmt="yaml")) == to_builtin(root)
    assert "\n" not in serialize(root, fmt="json", pretty=False)


def test_serialize_rejects_unknown_format():
    with pytest.raises(ValueError):
        serialize(build(), fmt="xml")


def test_yaml_keeps_declaration_order():
    text = serialize(build(), fmt="yaml")
    assert text.index("seed") < text.index("rate") < text.index("name") < text.index("pop")


def test_export_then_apply_to_fresh_tree():
    source = build()
    source["seed"].set_value(7)
    source["pop"]["size"].set_value(5)
    source["name"].set_string("other")
    data = deserialize(serialize(source, fmt="yaml"), fmt="yaml")

    target = build()
    apply_mapping(target, data)
    assert to_builtin(target) == to_builtin(source)


def test_apply_mapping_coerces_strings():
    root = build()
    apply_mapping(root, {"rate": "0.75", "pop": {"alive": "no"}})
    assert root["rate"].value == 0.75
    assert root["pop"]["alive"].value is False


def test_apply_mapping_errors():
    root = build()
    with pytest.raises(EmplodeError):
        apply_mapping(root, {"unknown": 1})
    with pytest.raises(EmplodeError):
        apply_mapping(root, {"seed": {"nested": 1}})
    with pytest.raises(EmplodeError):
        apply_mapping(root, {"seed": [1, 2]})


def test_deserialize():
    assert deserialize('{"a": 1}') == {"a": 1}
    assert deserialize(b"a: 1\nb: x\n") == {"a": 1, "b": "x"}
    assert deserialize("") == {}
    with pytest.raises(ValueError):
        deserialize("- 1\n- 2\n", fmt="yaml")


def test_detect_format():
    assert detect_format(filename="cfg.JSON") == "json"
    assert detect_format(filename="cfg.yml") == "yaml"
    assert detect_format("  {\"a\": 1}") == "json"
    assert detect_format("a: 1") == "yaml"
    assert detect_format() is None
