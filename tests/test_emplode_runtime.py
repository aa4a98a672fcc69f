import io
import json

import pytest
import yaml

from emplode.emplode_datatypes import ArityError, EmplodeError, EmplodeType
from emplode.emplode_runtime import Environment, TypeInfo, emplode_api_method


class Counter(EmplodeType):
    def __init__(self, count=0):
        self.count = count

    def setup_config(self, scope):
        scope.link_var("count", self, "count", "Current count")

    @emplode_api_method
    def bump(self, by: int = 1) -> int:
        """Add to the count."""
        self.count += by
        return self.count

    @emplode_api_method
    def reset(self) -> int:
        self.count = 0
        return self.count

    def not_exposed(self):
        return None


class Other(EmplodeType):
    pass


@pytest.fixture
def env():
    return Environment("world", echo_errors=False)


# --- Built-ins ---

def test_print_records_output(env):
    result = env.invoke("print", ["hello", 2.5])
    assert result.as_string() == "hello 2.5"
    assert env.output == ["hello 2.5"]


def test_print_from_config_text(env):
    env.load('print("a", 1);')
    assert env.output == ["a 1"]


def test_exists(env):
    env.root.add_var("seed", 1)
    assert env.invoke("exists", ["seed"]).value is True
    assert env.invoke("exists", ["nothing"]).value is False


def test_builtins_are_not_written(env):
    env.root.add_var("seed", 1)
    assert env.write() == "seed = 1;\n"


# --- Types and objects ---

def test_add_type_binds_marked_methods(env):
    info = env.add_type("Counter", Counter, "Counts things")
    assert isinstance(info, TypeInfo)
    assert sorted(m.name for m in info.member_functions) == ["bump", "reset"]
    assert info.member_functions[0].desc == "Add to the count."
    assert env.get_type(Counter) is info


def test_get_type_follows_subclasses(env):
    class Fancy(Counter):
        pass

    info = env.add_type("Counter", Counter)
    assert env.get_type(Fancy) is info
    assert env.get_type(Other) is None


def test_add_type_errors(env):
    env.add_type("Counter", Counter)
    with pytest.raises(EmplodeError):
        env.add_type("Counter", Counter)
    with pytest.raises(TypeError):
        env.add_type("Plain", dict)


def test_duplicate_member_function(env):
    info = env.add_type("Counter", Counter)
    with pytest.raises(EmplodeError):
        info.add_member_function("bump", Counter.bump)


def test_add_object_links_variables_and_members(env):
    env.add_type("Counter", Counter)
    counter = Counter(3)
    scope = env.add_object("counter", counter, "A counter")
    assert scope.type_name == "Counter"
    assert scope.host_object is counter
    assert scope["count"].value == 3

    assert env.invoke("bump", [2], scope=scope).value == 5
    assert counter.count == 5
    assert scope.lookup_entry("bump").is_function
    assert env.root.lookup_entry("bump") is None


def test_object_members_are_not_written(env):
    env.add_type("Counter", Counter)
    env.add_object("counter", Counter(2), "A counter")
    text = env.write()
    lines = text.splitlines()
    assert lines[0].startswith("counter = {")
    assert lines[0].endswith("// A counter")
    assert lines[1].startswith("  count = 2;")
    assert lines[2] == "}"
    assert "bump" not in text


def test_config_text_drives_object(env):
    env.add_type("Counter", Counter)
    counter = Counter()
    env.add_object("counter", counter)
    env.load("counter = { count = 10; bump(5); };")
    assert counter.count == 15


def test_add_object_without_type(env):
    with pytest.raises(EmplodeError):
        env.add_object("thing", Other())


def test_add_object_by_type_name_into_nested_scope(env):
    env.add_type("Counter", Counter)
    pop = env.root.add_scope("pop")
    scope = env.add_object("c", Counter(), type_name="Counter", scope=pop)
    assert pop["c"] is scope
    assert scope.root is env.root


# --- Invocation errors ---

def test_invoke_unknown_or_non_function(env):
    env.root.add_var("x", 1)
    with pytest.raises(EmplodeError):
        env.invoke("nope")
    with pytest.raises(EmplodeError):
        env.invoke("x")


def test_soft_arity_reports_and_continues(capsys):
    env = Environment()
    env.add_type("Counter", Counter)
    counter = Counter()
    scope = env.add_object("counter", counter)
    assert env.invoke("reset", [1], scope=scope).value == 0
    assert env.invoke("bump", [1, 2], scope=scope).value == 1
    assert env.errors == [
        "Error in call to function 'reset'; expected ZERO arguments, but received 1.",
        "Error in call to function 'bump'; expected 0 to 1 arguments, but received 2.",
    ]
    assert "expected ZERO arguments" in capsys.readouterr().err


def test_soft_arity_on_free_function(env):
    env.root.add_function("zero", lambda: 1)
    assert env.invoke("zero", [5]).value == 1
    assert len(env.errors) == 1


def test_strict_arity_from_constructor(env):
    strict = Environment(strict_arity=True, echo_errors=False)
    strict.root.add_function("zero", lambda: 1)
    with pytest.raises(ArityError):
        strict.invoke("zero", [5])
    assert strict.errors == []


def test_strict_arity_from_environment_variable(monkeypatch):
    monkeypatch.setenv("EMPLODE_STRICT_ARITY", "1")
    env = Environment(echo_errors=False)
    assert env.strict_arity is True
    env.add_type("Counter", Counter)
    scope = env.add_object("counter", Counter())
    with pytest.raises(ArityError):
        env.invoke("reset", [1], scope=scope)


def test_strict_arity_can_be_toggled(env):
    env.root.add_function("zero", lambda: 1)
    env.strict_arity = True
    with pytest.raises(ArityError):
        env.invoke("zero", [5])


def test_debug_output(monkeypatch, capsys):
    monkeypatch.setenv("EMPLODE_DEBUG", "1")
    env = Environment(echo_errors=False)
    env.add_type("Counter", Counter)
    assert "[DBG] TYPE Counter" in capsys.readouterr().err


# --- Files and data ---

def test_load_file_config_text(env, tmp_path):
    env.root.add_var("seed", 1)
    path = tmp_path / "run.cfg"
    path.write_text("seed = 5;  // from file\n", encoding="utf-8")
    env.load_file(path)
    assert env.root["seed"].value == 5


def test_load_file_yaml(env, tmp_path):
    env.root.add_var("seed", 1)
    pop = env.root.add_scope("pop")
    pop.add_var("size", 10)
    path = tmp_path / "run.yaml"
    path.write_text("seed: 9\npop:\n  size: 40\n", encoding="utf-8")
    env.load_file(str(path))
    assert env.root["seed"].value == 9
    assert pop["size"].value == 40


def test_dump_and_apply(env):
    env.root.add_var("seed", 1)
    env.root.add_var("name", "run")
    assert yaml.safe_load(env.dump()) == {"seed": 1, "name": "run"}
    env.apply({"seed": 4})
    assert json.loads(env.dump("json")) == {"seed": 4, "name": "run"}


def test_write_to_stream(env):
    env.root.add_var("seed", 1, "Seed")
    out = io.StringIO()
    env.write(out)
    assert out.getvalue() == "seed = 1;".ljust(40) + "// Seed\n"


def test_custom_comment_column():
    env = Environment(comment_column=12, echo_errors=False)
    env.root.add_var("seed", 1, "Seed")
    assert env.write() == "seed = 1;   // Seed\n"


def test_render(env):
    env.root.add_var("prefix", "run")
    env.root.add_var("update", 100)
    assert env.render("{{prefix}}-{{update}}.csv") == "run-100.csv"


def test_update_default(env):
    env.root.add_var("x", 1).set_default("2 + 2")
    assert env.write() == "x = 2 + 2;\n"
    env.update_default()
    assert env.write() == "x = 1;\n"
