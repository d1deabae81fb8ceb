"""Unit tests for class composition.

Tests cover:
- Built-in root classes and the rootClasses option
- Priority of config classes, the classes prop and <section>Class props
- Strings, lists, flag maps and functions as sources
- The $reset token
- The classes hook and classes events
"""

from formtree.classes import ClassSource, ClassSourceKind, merge_tokens
from formtree.runtime import FormRuntime
from formtree.types import NodeEventType


class TestClassSource:
    """Test source normalization."""

    def test_classifies_raw_values(self):
        """Should classify strings, lists, maps and callables."""
        assert ClassSource.of("a b").kind == ClassSourceKind.TOKENS
        assert ClassSource.of(["a", "b"]).kind == ClassSourceKind.TOKENS
        assert ClassSource.of({"a": True}).kind == ClassSourceKind.FLAG_MAP
        assert ClassSource.of(lambda node: "a").kind == ClassSourceKind.FN
        assert ClassSource.of(None) is None
        assert ClassSource.of(42) is None

    def test_function_result_is_classified(self):
        """A function returning a flag map should be evaluated as one."""
        source = ClassSource.of(lambda node: {"on": True, "off": False})
        assert source.evaluate(None) == ["on"]

    def test_merge_dedupes_keeping_first(self):
        """Should keep the first occurrence of a repeated token."""
        tokens = merge_tokens([ClassSource.of("a b"), ClassSource.of("b c a")], None)
        assert tokens == ["a", "b", "c"]

    def test_merge_reset(self):
        """A source starting with $reset should discard what came before."""
        tokens = merge_tokens(
            [ClassSource.of("a b"), ClassSource.of("$reset c"), ClassSource.of("d")],
            None,
        )
        assert tokens == ["c", "d"]


class TestComposition:
    """Test composing class strings on nodes."""

    def test_default_root_classes(self):
        """Every section should carry its formtree-<section> class."""
        runtime = FormRuntime()
        node = runtime.create_node({})

        assert node.resolve_classes("outer") == "formtree-outer"
        assert node.classes["help"] == "formtree-help"

    def test_classes_prop_strings(self):
        """String entries should be appended after the root classes."""
        runtime = FormRuntime()
        node = runtime.create_node({
            "classes": {"outer": "test-class-string1 test-class-string2"},
        })

        assert node.resolve_classes("outer") == "formtree-outer test-class-string1 test-class-string2"

    def test_classes_prop_functions(self):
        """Functions should receive the node and be evaluated on every call."""
        runtime = FormRuntime()
        node = runtime.create_node({
            "help": "first",
            "classes": {"help": lambda n: f"help-{n.props['help']}"},
        })
        assert node.resolve_classes("help") == "formtree-help help-first"

        node.props["help"] = "second"

        assert node.resolve_classes("help") == "formtree-help help-second"

    def test_classes_prop_flag_maps(self):
        """Flag maps should contribute only enabled names."""
        runtime = FormRuntime()
        node = runtime.create_node({
            "classes": {"label": {"is-on": True, "is-off": False}},
        })

        assert node.resolve_classes("label") == "formtree-label is-on"

    def test_section_class_prop_has_highest_priority(self):
        """<section>Class props should come last."""
        runtime = FormRuntime(config={"classes": {"input": "from-config"}})
        node = runtime.create_node({
            "classes": {"input": "from-prop"},
            "inputClass": "from-section",
        })

        assert node.resolve_classes("input") == "formtree-input from-config from-prop from-section"

    def test_reset_sequence(self):
        """$reset should drop lower-priority classes for that section only."""
        runtime = FormRuntime(config={"classes": {"input": "from-config"}})
        node = runtime.create_node({
            "classes": {"input": "$reset from-prop"},
            "inputClass": "extra",
        })

        assert node.resolve_classes("input") == "from-prop extra"
        assert node.resolve_classes("outer") == "formtree-outer"

        node.props["inputClass"] = "$reset only"

        assert node.resolve_classes("input") == "only"

    def test_config_classes_for_label(self):
        """The classes option should apply to every node beneath it."""
        runtime = FormRuntime(config={"classes": {"label": "foo-bar"}})
        group = runtime.create_node({"type": "group"})
        node = runtime.create_node({}, parent=group)

        assert node.resolve_classes("label") == "formtree-label foo-bar"

    def test_config_classes_apply_once(self):
        """A cascaded classes entry should not be read again as the node's own prop."""
        calls = []

        def outer(node):
            calls.append(node.id)
            return "x"

        runtime = FormRuntime(config={"classes": {"outer": outer}})
        node = runtime.create_node({})
        calls.clear()

        assert node.resolve_classes("outer") == "formtree-outer x"
        assert calls == [node.id]

    def test_root_classes_option(self):
        """A rootClasses function should replace the built-in defaults."""
        runtime = FormRuntime(config={
            "rootClasses": lambda section, node: {f"foo-{section}": True},
        })
        node = runtime.create_node({})

        assert node.resolve_classes("outer") == "foo-outer"
        assert node.resolve_classes("input") == "foo-input"

    def test_composition_is_idempotent(self):
        """Composing twice with unchanged inputs should give the same string."""
        runtime = FormRuntime()
        node = runtime.create_node({"outerClass": "a a b"})

        assert node.resolve_classes("outer") == node.resolve_classes("outer") == "formtree-outer a b"


class TestClassesHookAndEvents:
    """Test the classes hook stage and classes events."""

    def test_classes_hook_rewrites_tokens(self):
        """A classes handler may add or remove tokens."""
        runtime = FormRuntime()
        node = runtime.create_node({"outerClass": "drop-me keep-me"})

        def strip(record, next):
            record.classes = [c for c in record.classes if c != "drop-me"]
            return next(record)

        node.hook.classes(strip)

        assert node.resolve_classes("outer") == "formtree-outer keep-me"

    def test_classes_hook_swallow_gives_empty_string(self):
        """A swallowing handler should produce no classes."""
        runtime = FormRuntime()
        node = runtime.create_node({})
        node.hook.classes(lambda record, next: None)

        assert node.resolve_classes("outer") == ""

    def test_section_prop_change_emits_classes_event(self):
        """Changing a <section>Class prop should emit the recomposed string."""
        runtime = FormRuntime()
        node = runtime.create_node({})
        events = []
        node.on(NodeEventType.CLASSES, events.append)

        node.props["outerClass"] = "new-class"

        assert events[-1].payload == {"outer": "formtree-outer new-class"}

    def test_classes_prop_change_covers_removed_sections(self):
        """Sections dropped from the classes prop should be recomposed too."""
        runtime = FormRuntime()
        node = runtime.create_node({"classes": {"label": "old"}})
        events = []
        node.on(NodeEventType.CLASSES, events.append)

        node.props["classes"] = {"help": "new"}

        assert events[-1].payload == {"help": "formtree-help new", "label": "formtree-label"}
