"""Tests for the heuristic code classifier."""

import os
import sys

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from app.services.code_classifier import classify_chunk


class TestLanguageDetection:
    """Structural signatures pick the language."""

    def test_python_function(self):
        text = "import math\n\ndef hypotenuse(a, b):\n    return math.sqrt(a * a + b * b)\n"
        assert classify_chunk(text) == (True, "python")

    def test_python_class(self):
        assert classify_chunk("class Stack:\n    pass\n") == (True, "python")

    def test_c_include_and_printf(self):
        text = '#include <stdio.h>\nint main(void) {\n    printf("hi\\n");\n    return 0;\n}'
        assert classify_chunk(text) == (True, "c")

    def test_brace_for_loop_counts_as_c(self):
        """A bare for(...) { } block with no other marker is C-family code."""
        text = "for (i = 0; i < n; i++) {\n    total += values[i];\n}"
        assert classify_chunk(text) == (True, "c")

    def test_cpp_beats_c_family_loop(self):
        text = "#include <iostream>\nfor (int i = 0; i < 3; i++) {\n    std::cout << i;\n}"
        assert classify_chunk(text) == (True, "cpp")

    def test_java(self):
        text = "public class Hello {\n    public static void main(String[] args) {\n        System.out.println(\"Hello\");\n    }\n}"
        assert classify_chunk(text) == (True, "java")

    def test_javascript(self):
        text = "function greet(name) {\n  console.log('Hello ' + name);\n}"
        assert classify_chunk(text) == (True, "javascript")

    def test_java_import_is_not_python(self):
        assert classify_chunk("import java.util.List;\nList<String> names;") == (True, "java")


class TestNonCode:
    """Prose, empty text and ties are not code."""

    def test_prose(self):
        text = (
            "A loop repeats a block of statements while a condition holds. "
            "If you want to import data, first open the file."
        )
        assert classify_chunk(text) == (False, None)

    def test_empty(self):
        assert classify_chunk("") == (False, None)
        assert classify_chunk("   ") == (False, None)

    def test_tie_is_ambiguous(self):
        """Equal evidence for two languages is reported as prose."""
        text = "def run():\n    pass\nfunction run() {\n}"
        assert classify_chunk(text) == (False, None)
