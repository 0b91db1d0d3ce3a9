"""
Tests for the C emitter.

The generated C is checked as text: which keys are dispatched on, which are
written, and which collaborator calls each field shape turns into.
"""

import logging

import pytest

from jsgen.codegen import BANNER, CodeGenerator, FieldShape
from jsgen.extractor import scan_source
from jsgen.model import GeneratorConfig


def _generate(text: str, **config) -> str:
    models = scan_source(text)
    return CodeGenerator(models, config=GeneratorConfig(**config)).generate()


def _function(code: str, signature_prefix: str) -> list[str]:
    """Stripped lines of the function whose signature starts with the prefix."""
    lines = code.splitlines()
    start = next(i for i, line in enumerate(lines) if line.startswith(signature_prefix))
    end = next(i for i in range(start, len(lines)) if lines[i] == "}")
    return [line.strip() for line in lines[start : end + 1]]


def _has_sequence(lines: list[str], expected: list[str]) -> bool:
    for i in range(len(lines) - len(expected) + 1):
        if lines[i : i + len(expected)] == expected:
            return True
    return False


def _parse_keys(lines: list[str]) -> list[str]:
    return [
        line.split('"')[1]
        for line in lines
        if "strcmp(jsp->string," in line
    ]


def _stringify_keys(lines: list[str]) -> list[str]:
    return [line.split('"')[1] for line in lines if "jsb_key(jsb," in line]


SCALARS = """
JSON typedef struct {
    int id;
    char *name;
    double score;
    bool active;
    long total;
} Scalars;
"""


# ---------------------------------------------------------------------------
# Output unit
# ---------------------------------------------------------------------------


def test_preamble():
    code = _generate("")
    assert code.splitlines() == [BANNER, '#include "jsb.h"', '#include "jsp.h"', ""]


def test_custom_include_headers():
    code = _generate("", include_headers=("json/jsb.h", "json/jsp.h"))
    assert '#include "json/jsb.h"' in code
    assert '#include "json/jsp.h"' in code


def test_generation_is_deterministic():
    assert _generate(SCALARS) == _generate(SCALARS)


def test_parse_and_stringify_flags():
    code = _generate("JSONP struct p { int x; };\nJSONS struct s { int y; };")
    assert "int _parse_p(Jsp *jsp, struct p *out, JsGenAllocator *a) {" in code
    assert "_stringify_p(" not in code
    assert "int _stringify_s(Jsb *jsb, struct s *in) {" in code
    assert "_parse_s(" not in code


def test_all_entry_points():
    code = _generate("JSON typedef struct { int x; } Point;")
    for signature in [
        "int _parse_Point(Jsp *jsp, Point *out, JsGenAllocator *a) {",
        "int parse_Point(const char *json, Point *out, JsGenAllocator *a) {",
        "int _parse_Point_list(Jsp *jsp, Point **out, size_t *out_count, JsGenAllocator *a) {",
        "int parse_Point_list(const char *json, Point **out, size_t *out_count, JsGenAllocator *a) {",
        "int _stringify_Point(Jsb *jsb, Point *in) {",
        "char *stringify_Point_indent(Point *in, int indent) {",
        "#define stringify_Point(in) stringify_Point_indent((in), 0)",
        "char *stringify_Point_list_indent(Point *in, size_t count, int indent) {",
        "#define stringify_Point_list(in, count) stringify_Point_list_indent((in), (count), 0)",
    ]:
        assert signature in code


# ---------------------------------------------------------------------------
# Scalars, strings and round trips
# ---------------------------------------------------------------------------


def test_scalar_fields_round_trip_keys():
    code = _generate(SCALARS)
    parse = _function(code, "int _parse_Scalars(")
    stringify = _function(code, "int _stringify_Scalars(")
    expected = ["id", "name", "score", "active", "total"]
    assert _parse_keys(parse) == expected
    assert _stringify_keys(stringify) == expected


def test_scalar_reads_and_writes():
    code = _generate(SCALARS)
    parse = _function(code, "int _parse_Scalars(")
    stringify = _function(code, "int _stringify_Scalars(")

    assert "out->id = jsp->number;" in parse
    assert "out->score = jsp->number;" in parse
    assert "out->active = jsp->boolean;" in parse
    assert "out->total = jsp->number;" in parse

    assert "if (jsb_int(jsb, in->id)) return -1;" in stringify
    assert "if (jsb_number(jsb, in->score, 5)) return -1;" in stringify
    assert "if (jsb_bool(jsb, in->active)) return -1;" in stringify
    assert "if (jsb_int(jsb, in->total)) return -1;" in stringify
    assert "if (jsb_string(jsb, in->name)) return -1;" in stringify


def test_string_pointer_parse_allocates_from_arena():
    parse = _function(_generate(SCALARS), "int _parse_Scalars(")
    assert _has_sequence(
        parse,
        [
            "size_t s_len = jsp->string ? strlen(jsp->string) : 0;",
            "if (s_len > 0) {",
            "out->name = jsgen_malloc(a, s_len + 1);",
            "if (out->name == NULL) return -1;",
            "memcpy(out->name, jsp->string, s_len + 1);",
            "} else {",
            "out->name = NULL;",
            "}",
        ],
    )


def test_string_with_counter_records_length():
    code = _generate('JSON struct s { char *text sized_by("text_len"); size_t text_len; };')
    parse = _function(code, "int _parse_s(")
    assert "out->text_len = s_len;" in parse
    assert _parse_keys(parse) == ["text"]
    assert _stringify_keys(_function(code, "int _stringify_s(")) == ["text"]


def test_char_buffer_is_bounded_copy():
    code = _generate("JSON struct s { char name[32]; };")
    parse = _function(code, "int _parse_s(")
    stringify = _function(code, "int _stringify_s(")
    assert "if (jsp->string) strncpy(out->name, jsp->string, sizeof(out->name) - 1);" in parse
    assert "if (in->name != NULL) {" not in stringify
    assert "if (jsb_string(jsb, in->name)) return -1;" in stringify


def test_precision_follows_config():
    stringify = _function(
        _generate("JSON struct s { float f; };", number_precision=2), "int _stringify_s("
    )
    assert "if (jsb_number(jsb, in->f, 2)) return -1;" in stringify


# ---------------------------------------------------------------------------
# Null pointers
# ---------------------------------------------------------------------------


def test_null_pointer_key_is_omitted_on_stringify():
    stringify = _function(_generate(SCALARS), "int _stringify_Scalars(")
    assert _has_sequence(
        stringify,
        [
            "if (in->name != NULL) {",
            'if (jsb_key(jsb, "name")) return -1;',
            "if (jsb_string(jsb, in->name)) return -1;",
            "}",
        ],
    )
    assert "if (jsb_null(jsb)) return -1;" not in stringify


def test_missing_key_leaves_field_untouched_on_parse():
    parse = _function(_generate(SCALARS), "int _parse_Scalars(")
    # out->name is only assigned inside its own key branch
    name_branch = parse.index('} else if (strcmp(jsp->string, "name") == 0) {')
    next_branch = parse.index('} else if (strcmp(jsp->string, "score") == 0) {')
    for i, line in enumerate(parse):
        if line.startswith("out->name ="):
            assert name_branch < i < next_branch
    assert not any("memset" in line for line in parse)


def test_scalar_pointer():
    code = _generate("JSON struct s { int *maybe; };")
    parse = _function(code, "int _parse_s(")
    stringify = _function(code, "int _stringify_s(")
    assert _has_sequence(
        parse,
        [
            "if (jsp->type == JSP_TYPE_NULL) {",
            "out->maybe = NULL;",
            "} else {",
            "out->maybe = jsgen_malloc(a, sizeof(int));",
            "if (out->maybe == NULL) return -1;",
            "*out->maybe = jsp->number;",
            "}",
        ],
    )
    assert "if (jsb_int(jsb, *in->maybe)) return -1;" in stringify
    assert "if (in->maybe != NULL) {" in stringify


# ---------------------------------------------------------------------------
# Annotations
# ---------------------------------------------------------------------------


def test_alias_replaces_key():
    code = _generate('JSON struct s { char *name alias("x"); };')
    parse = _function(code, "int _parse_s(")
    stringify = _function(code, "int _stringify_s(")
    assert _parse_keys(parse) == ["x"]
    assert _stringify_keys(stringify) == ["x"]
    # "name" itself falls through to the skip branch
    assert not any('"name"' in line for line in parse + stringify)
    assert _has_sequence(parse, ["} else {", "err = jsp_skip(jsp);", "if (err) return err;"])


def test_alias_is_escaped_in_c_literals():
    code = _generate('JSON struct s { int x alias("a\\"b\\\\c"); };')
    assert 'if (strcmp(jsp->string, "a\\"b\\\\c") == 0) {' in _function(code, "int _parse_s(")
    assert 'if (jsb_key(jsb, "a\\"b\\\\c")) return -1;' in _function(code, "int _stringify_s(")


def test_ignored_field_is_not_generated():
    code = _generate("JSON struct s { int keep; int secret ignore(); };")
    assert "secret" not in code
    assert _parse_keys(_function(code, "int _parse_s(")) == ["keep"]


def test_ignoring_only_field_gives_empty_object():
    code = _generate("JSON struct s { int x ignore(); };")
    parse = _function(code, "int _parse_s(")
    stringify = _function(code, "int _stringify_s(")
    assert _has_sequence(
        parse,
        [
            "while (jsp_key(jsp) == 0) {",
            "err = jsp_skip(jsp);",
            "if (err) return err;",
            "}",
            "return jsp_end_object(jsp);",
        ],
    )
    assert stringify == [
        "int _stringify_s(Jsb *jsb, struct s *in) {",
        "if (jsb_begin_object(jsb)) return -1;",
        "return jsb_end_object(jsb);",
        "}",
    ]


# ---------------------------------------------------------------------------
# Arrays
# ---------------------------------------------------------------------------

SIZED = 'JSON struct s { int *items sized_by("n"); int n; };'


def test_sized_array_stringify_skips_counter():
    stringify = _function(_generate(SIZED), "int _stringify_s(")
    assert _stringify_keys(stringify) == ["items"]
    assert _has_sequence(
        stringify,
        [
            'if (jsb_key(jsb, "items")) return -1;',
            "if (jsb_begin_array(jsb)) return -1;",
            "for (size_t i = 0; i < (size_t)in->n; ++i) {",
            "if (jsb_int(jsb, in->items[i])) return -1;",
            "}",
            "if (jsb_end_array(jsb)) return -1;",
        ],
    )


def test_sized_array_parse_counts_and_allocates():
    parse = _function(_generate(SIZED), "int _parse_s(")
    assert _parse_keys(parse) == ["items"]
    assert _has_sequence(
        parse,
        [
            "err = jsp_begin_array(jsp);",
            "if (err) return err;",
            "size_t len = jsp_array_length(jsp);",
            "out->n = len;",
            "out->items = jsgen_malloc(a, sizeof(int) * len);",
            "if (len > 0 && out->items == NULL) return -1;",
            "for (size_t i = 0; i < len; i++) {",
            "err = jsp_value(jsp);",
            "if (err) return err;",
            "out->items[i] = jsp->number;",
            "}",
            "err = jsp_end_array(jsp);",
        ],
    )


def test_counter_declared_first_still_opens_dispatch_chain():
    parse = _function(
        _generate('JSON struct s { size_t n; float *v sized_by("n"); };'), "int _parse_s("
    )
    assert 'if (strcmp(jsp->string, "v") == 0) {' in parse
    assert not any(line.startswith("} else if") for line in parse)


def test_float_array_elements_keep_precision():
    stringify = _function(
        _generate('JSON struct s { float *v sized_by("n"); size_t n; };'), "int _stringify_s("
    )
    assert "if (jsb_number(jsb, in->v[i], 5)) return -1;" in stringify


def test_nested_array():
    code = _generate('JSON struct s { struct role *roles sized_by("count"); size_t count; };')
    parse = _function(code, "int _parse_s(")
    stringify = _function(code, "int _stringify_s(")
    assert "out->roles = jsgen_malloc(a, sizeof(struct role) * len);" in parse
    assert "err = _parse_role(jsp, &out->roles[i], a);" in parse
    assert "if (_stringify_role(jsb, &in->roles[i])) return -1;" in stringify


def test_bare_array_always_stringifies_empty(caplog):
    with caplog.at_level(logging.WARNING):
        code = _generate("JSON struct s { int scores[4]; };")
    stringify = _function(code, "int _stringify_s(")
    assert _has_sequence(
        stringify,
        [
            'if (jsb_key(jsb, "scores")) return -1;',
            "if (jsb_begin_array(jsb)) return -1;",
            "if (jsb_end_array(jsb)) return -1;",
        ],
    )
    assert not any("in->scores[i]" in line for line in stringify)
    assert "always stringifies as []" in caplog.text


def test_bare_array_parse_is_bounded_by_capacity():
    parse = _function(_generate("JSON struct s { int scores[4]; };"), "int _parse_s(")
    assert _has_sequence(
        parse,
        [
            "err = jsp_begin_array(jsp);",
            "if (err) return err;",
            "for (size_t i = 0; i < sizeof(out->scores) / sizeof(out->scores[0])"
            " && jsp_array_has_more(jsp); i++) {",
            "err = jsp_value(jsp);",
            "if (err) return err;",
            "out->scores[i] = jsp->number;",
            "}",
            "while (jsp_array_has_more(jsp)) {",
            "err = jsp_skip(jsp);",
            "if (err) return err;",
            "}",
            "err = jsp_end_array(jsp);",
        ],
    )
    assert not any("jsgen_malloc" in line for line in parse)


def test_fixed_array_with_counter_is_capped_not_allocated():
    parse = _function(
        _generate('JSON struct s { int v[2] sized_by("n"); int n; };'), "int _parse_s("
    )
    assert _has_sequence(
        parse,
        [
            "size_t len = jsp_array_length(jsp);",
            "if (len > sizeof(out->v) / sizeof(out->v[0])) len = sizeof(out->v) / sizeof(out->v[0]);",
            "out->n = len;",
            "for (size_t i = 0; i < len; i++) {",
            "err = jsp_value(jsp);",
            "if (err) return err;",
            "out->v[i] = jsp->number;",
            "}",
            # anything past the capacity is skipped before the array is closed
            "while (jsp_array_has_more(jsp)) {",
            "err = jsp_skip(jsp);",
            "if (err) return err;",
            "}",
            "err = jsp_end_array(jsp);",
        ],
    )
    assert not any("jsgen_malloc" in line for line in parse)


def test_allocated_array_is_not_drained():
    parse = _function(_generate(SIZED), "int _parse_s(")
    assert "while (jsp_array_has_more(jsp)) {" not in parse


def test_array_named_as_counter_keeps_its_key():
    code = _generate('JSON struct s { int *a sized_by("b"); int *b sized_by("c"); int c; };')
    parse = _function(code, "int _parse_s(")
    stringify = _function(code, "int _stringify_s(")
    assert _parse_keys(parse) == ["a", "b"]
    assert _stringify_keys(stringify) == ["a", "b"]
    assert "for (size_t i = 0; i < (size_t)in->c; ++i) {" in stringify


# ---------------------------------------------------------------------------
# Nested structs
# ---------------------------------------------------------------------------


def test_nested_pointer():
    code = _generate("JSON typedef struct { struct role *role; } User;")
    parse = _function(code, "int _parse_User(")
    stringify = _function(code, "int _stringify_User(")
    assert _has_sequence(
        parse,
        [
            "err = jsp_value(jsp);",
            "if (err) return err;",
            "if (jsp->type == JSP_TYPE_NULL) {",
            "out->role = NULL;",
            "} else {",
            "out->role = jsgen_malloc(a, sizeof(struct role));",
            "if (out->role == NULL) return -1;",
            "err = _parse_role(jsp, out->role, a);",
            "if (err) return err;",
            "}",
        ],
    )
    assert _has_sequence(
        stringify,
        [
            "if (in->role != NULL) {",
            'if (jsb_key(jsb, "role")) return -1;',
            "if (in->role == NULL) {",
            "if (jsb_null(jsb)) return -1;",
            "} else if (_stringify_role(jsb, in->role)) return -1;",
            "}",
        ],
    )


def test_nested_value():
    code = _generate("JSON typedef struct { Point origin; } Shape;")
    assert "err = _parse_Point(jsp, &out->origin, a);" in code
    assert "if (_stringify_Point(jsb, &in->origin)) return -1;" in code


# ---------------------------------------------------------------------------
# JSON literals
# ---------------------------------------------------------------------------

LITERAL = "JSON struct s { char *payload json_literal; };"


def test_json_literal_is_spliced_verbatim():
    stringify = _function(_generate(LITERAL), "int _stringify_s(")
    assert _has_sequence(
        stringify,
        [
            "if (in->payload != NULL) {",
            'if (jsb_key(jsb, "payload")) return -1;',
            "size_t plen = strlen(in->payload);",
            "if (plen > 0) {",
            "if (jsb_raw(jsb, in->payload, plen)) return -1;",
            "} else if (jsb_null(jsb)) return -1;",
            "}",
        ],
    )
    assert "if (jsb_string(jsb, in->payload)) return -1;" not in stringify


def test_json_literal_parse_captures_raw_span():
    parse = _function(_generate(LITERAL), "int _parse_s(")
    assert "char ob = (jsp->type == JSP_TYPE_OBJECT ? '{' : '[');" in parse
    assert "if (jsp->buffer[jsp->offset] == '\\\\') jsp->offset++;" in parse
    assert "memcpy(out->payload, &jsp->buffer[start], span);" in parse
    assert "out->payload[span] = '\\0';" in parse
    assert "err = jsp_skip_end(jsp);" in parse
    # not read as a parsed string
    assert not any("s_len" in line for line in parse)


def test_json_literal_on_non_string_is_ignored(caplog):
    with caplog.at_level(logging.WARNING):
        code = _generate("JSON struct s { int n json_literal; };")
    assert "if (jsb_int(jsb, in->n)) return -1;" in code
    assert "json_literal needs a char* field" in caplog.text


# ---------------------------------------------------------------------------
# List helpers
# ---------------------------------------------------------------------------


def test_list_parser_only_publishes_on_success():
    parse_list = _function(_generate(SCALARS), "int _parse_Scalars_list(")
    assert parse_list[1:3] == ["*out = NULL;", "*out_count = 0;"]
    assert _has_sequence(
        parse_list,
        [
            "err = jsp_end_array(jsp);",
            "if (err) return err;",
            "*out = items;",
            "*out_count = len;",
            "return 0;",
        ],
    )


def test_list_stringifier_frees_on_failure():
    wrapper = _function(_generate(SCALARS), "char *stringify_Scalars_list_indent(")
    assert _has_sequence(wrapper, ["fail:", "jsb_free(&jsb);", "return NULL;"])


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "decl, shape",
    [
        ("int x;", FieldShape.SCALAR),
        ("int *x;", FieldShape.SCALAR_POINTER),
        ("char *x;", FieldShape.STRING),
        ("char x[8];", FieldShape.STRING_BUFFER),
        ("char *x json_literal;", FieldShape.JSON_LITERAL),
        ('int *x sized_by("n"); int n;', FieldShape.ARRAY),
        ("int x[3];", FieldShape.ARRAY),
        ("struct t *x;", FieldShape.NESTED_POINTER),
        ("Thing x;", FieldShape.NESTED),
    ],
)
def test_classify(decl, shape):
    model = scan_source(f"JSON struct s {{ {decl} }};")[0]
    assert CodeGenerator([model]).classify(model.fields[0]) == shape
