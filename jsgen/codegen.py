"""
codegen.py -- Emit C parse/stringify functions for extracted models.

For a model `User` with parsing enabled we emit

    int _parse_User(Jsp *jsp, User *out, JsGenAllocator *a);
    int parse_User(const char *json, User *out, JsGenAllocator *a);
    int _parse_User_list(Jsp *jsp, User **out, size_t *out_count, JsGenAllocator *a);
    int parse_User_list(const char *json, User **out, size_t *out_count, JsGenAllocator *a);

and with stringify enabled

    int _stringify_User(Jsb *jsb, User *in);
    char *stringify_User_indent(User *in, int indent);
    char *stringify_User_list_indent(User *in, size_t count, int indent);

plus `stringify_User` / `stringify_User_list` convenience macros.  The
underscore-prefixed variants work on an existing parser/builder and are what
nested structs call into.

Generated parse code allocates only through the caller's arena
(`jsgen_malloc(a, size)`); nothing it returns needs to be freed field by
field.  Every fallible call returns its error code straight to the caller.
"""

import logging
from contextlib import contextmanager
from enum import Enum, auto
from pathlib import Path
from typing import Iterator, List, Optional

from .model import Field, GeneratorConfig, Model
from .type_resolver import JsonKind, JsonTypeInfo, TypeResolver, is_char_buffer

logger = logging.getLogger(__name__)

BANNER = "// Generated by jsgen. Do not edit."


def _c_string(text: str) -> str:
    """Escape text for the inside of a C string literal."""
    return text.replace("\\", "\\\\").replace('"', '\\"')


class FieldShape(Enum):
    """How a field's value is laid out, which decides the code we emit."""

    JSON_LITERAL = auto()  # char* holding raw JSON text
    STRING = auto()  # char*
    STRING_BUFFER = auto()  # char name[N]
    ARRAY = auto()  # sized_by(...) or brackets
    SCALAR = auto()
    SCALAR_POINTER = auto()
    NESTED_POINTER = auto()
    NESTED = auto()


class _CWriter:
    """Accumulates C source lines with four-space indentation."""

    def __init__(self):
        self.lines: List[str] = []
        self.level = 0

    def line(self, text: str = "") -> None:
        self.lines.append(("    " * self.level + text) if text else "")

    @contextmanager
    def block(self, opener: str, closer: str = "}") -> Iterator[None]:
        self.line(opener)
        self.level += 1
        try:
            yield
        finally:
            self.level -= 1
            if closer:
                self.line(closer)

    def text(self) -> str:
        return "\n".join(self.lines) + "\n"


class CodeGenerator:
    """Generates one C source unit for a batch of models."""

    def __init__(
        self,
        models: List[Model],
        resolver: Optional[TypeResolver] = None,
        config: Optional[GeneratorConfig] = None,
    ):
        self.models = models
        self.config = config or GeneratorConfig()
        self.resolver = resolver or TypeResolver(self.config.number_precision)

    # -- classification -----------------------------------------------------

    def classify(self, fld: Field) -> FieldShape:
        """Pick the emission strategy for a field."""
        info = self.resolver.resolve_field(fld)

        if info.kind == JsonKind.STRING:
            if is_char_buffer(fld):
                return FieldShape.STRING_BUFFER
            return FieldShape.JSON_LITERAL if fld.is_json_literal else FieldShape.STRING
        if fld.is_array:
            return FieldShape.ARRAY
        if info.is_scalar:
            return FieldShape.SCALAR_POINTER if fld.is_pointer else FieldShape.SCALAR
        return FieldShape.NESTED_POINTER if fld.is_pointer else FieldShape.NESTED

    def _check_model(self, model: Model) -> None:
        for fld in model.fields:
            shape = self.classify(fld)
            if fld.is_json_literal and shape != FieldShape.JSON_LITERAL:
                logger.warning(
                    "%s.%s: json_literal needs a char* field, got %r; treated as a plain field",
                    model.name,
                    fld.name,
                    fld.declared_type,
                )
            if model.stringify and shape == FieldShape.ARRAY and not fld.has_counter:
                logger.warning(
                    "%s.%s: array without sized_by() always stringifies as []",
                    model.name,
                    fld.name,
                )

    # -- top level ----------------------------------------------------------

    def generate(self) -> str:
        """Generate the whole output unit."""
        w = _CWriter()
        w.line(BANNER)
        for header in self.config.include_headers:
            w.line(f'#include "{header}"')
        w.line()
        for model in self.models:
            self._emit_model(w, model)
        return w.text()

    def _emit_model(self, w: _CWriter, model: Model) -> None:
        self._check_model(model)
        if model.parse:
            self._emit_parse_object(w, model)
            self._emit_parse_entry(w, model)
            self._emit_parse_list(w, model)
            self._emit_parse_list_entry(w, model)
        if model.stringify:
            self._emit_stringify_object(w, model)
            self._emit_stringify_wrappers(w, model)

    # -- parse --------------------------------------------------------------

    def _emit_parse_object(self, w: _CWriter, model: Model) -> None:
        s, n = model.simple_name, model.name
        with w.block(f"int _parse_{s}(Jsp *jsp, {n} *out, JsGenAllocator *a) {{"):
            w.line("(void)a;")
            w.line("int err = jsp_begin_object(jsp);")
            w.line("if (err) return err;")
            with w.block("while (jsp_key(jsp) == 0) {"):
                keyed = [f for f in model.fields if not f.is_counter_field]
                if not keyed:
                    self._emit_skip(w)
                else:
                    opener = "if"
                    for fld in keyed:
                        w.line(f'{opener} (strcmp(jsp->string, "{_c_string(fld.json_key)}") == 0) {{')
                        w.level += 1
                        self._emit_parse_field(w, fld)
                        w.level -= 1
                        opener = "} else if"
                    with w.block("} else {"):
                        self._emit_skip(w)
            w.line("return jsp_end_object(jsp);")
        w.line()

    @staticmethod
    def _emit_skip(w: _CWriter) -> None:
        w.line("err = jsp_skip(jsp);")
        w.line("if (err) return err;")

    def _emit_parse_entry(self, w: _CWriter, model: Model) -> None:
        s, n = model.simple_name, model.name
        with w.block(f"int parse_{s}(const char *json, {n} *out, JsGenAllocator *a) {{"):
            w.line("Jsp jsp = {0};")
            w.line("int err = jsp_init(&jsp, json, strlen(json));")
            w.line("if (err) return err;")
            w.line(f"err = _parse_{s}(&jsp, out, a);")
            w.line("jsp_free(&jsp);")
            w.line("return err;")
        w.line()

    def _emit_parse_list(self, w: _CWriter, model: Model) -> None:
        s, n = model.simple_name, model.name
        with w.block(
            f"int _parse_{s}_list(Jsp *jsp, {n} **out, size_t *out_count, JsGenAllocator *a) {{"
        ):
            w.line("*out = NULL;")
            w.line("*out_count = 0;")
            w.line("int err = jsp_begin_array(jsp);")
            w.line("if (err) return err;")
            w.line("size_t len = jsp_array_length(jsp);")
            w.line(f"{n} *items = jsgen_malloc(a, sizeof({n}) * len);")
            w.line("if (len > 0 && items == NULL) return -1;")
            with w.block("for (size_t i = 0; i < len; i++) {"):
                w.line(f"err = _parse_{s}(jsp, &items[i], a);")
                w.line("if (err) return err;")
            w.line("err = jsp_end_array(jsp);")
            w.line("if (err) return err;")
            w.line("*out = items;")
            w.line("*out_count = len;")
            w.line("return 0;")
        w.line()

    def _emit_parse_list_entry(self, w: _CWriter, model: Model) -> None:
        s, n = model.simple_name, model.name
        with w.block(
            f"int parse_{s}_list(const char *json, {n} **out, size_t *out_count, JsGenAllocator *a) {{"
        ):
            w.line("Jsp jsp = {0};")
            w.line("int err = jsp_init(&jsp, json, strlen(json));")
            w.line("if (err) return err;")
            w.line(f"err = _parse_{s}_list(&jsp, out, out_count, a);")
            w.line("jsp_free(&jsp);")
            w.line("return err;")
        w.line()

    def _emit_parse_field(self, w: _CWriter, fld: Field) -> None:
        shape = self.classify(fld)
        dest = f"out->{fld.name}"

        if shape == FieldShape.JSON_LITERAL:
            self._emit_parse_json_literal(w, fld)
        elif shape == FieldShape.STRING:
            self._emit_read_value(w)
            w.line("size_t s_len = jsp->string ? strlen(jsp->string) : 0;")
            if fld.has_counter:
                w.line(f"out->{fld.counter_field} = s_len;")
            with w.block("if (s_len > 0) {", closer=""):
                w.line(f"{dest} = jsgen_malloc(a, s_len + 1);")
                w.line(f"if ({dest} == NULL) return -1;")
                w.line(f"memcpy({dest}, jsp->string, s_len + 1);")
            with w.block("} else {"):
                w.line(f"{dest} = NULL;")
        elif shape == FieldShape.STRING_BUFFER:
            self._emit_read_value(w)
            w.line(f"if (jsp->string) strncpy({dest}, jsp->string, sizeof({dest}) - 1);")
        elif shape == FieldShape.ARRAY:
            self._emit_parse_array(w, fld)
        elif shape == FieldShape.SCALAR:
            info = self.resolver.resolve_field(fld)
            self._emit_read_value(w)
            w.line(f"{dest} = jsp->{info.parse_accessor};")
        elif shape == FieldShape.SCALAR_POINTER:
            info = self.resolver.resolve_field(fld)
            self._emit_read_value(w)
            with w.block("if (jsp->type == JSP_TYPE_NULL) {", closer=""):
                w.line(f"{dest} = NULL;")
            with w.block("} else {"):
                w.line(f"{dest} = jsgen_malloc(a, sizeof({fld.base_type}));")
                w.line(f"if ({dest} == NULL) return -1;")
                w.line(f"*{dest} = jsp->{info.parse_accessor};")
        elif shape == FieldShape.NESTED_POINTER:
            self._emit_read_value(w)
            with w.block("if (jsp->type == JSP_TYPE_NULL) {", closer=""):
                w.line(f"{dest} = NULL;")
            with w.block("} else {"):
                w.line(f"{dest} = jsgen_malloc(a, sizeof({fld.base_type}));")
                w.line(f"if ({dest} == NULL) return -1;")
                w.line(f"err = _parse_{fld.type_name}(jsp, {dest}, a);")
                w.line("if (err) return err;")
        else:
            w.line(f"err = _parse_{fld.type_name}(jsp, &{dest}, a);")
            w.line("if (err) return err;")

    @staticmethod
    def _emit_read_value(w: _CWriter) -> None:
        w.line("err = jsp_value(jsp);")
        w.line("if (err) return err;")

    def _emit_parse_json_literal(self, w: _CWriter, fld: Field) -> None:
        """
        Capture the raw text of an object/array value.

        jsp_value has just consumed the opening delimiter; walk the input
        until it is balanced again, copy the span, then let the parser skip
        past what we already read.
        """
        dest = f"out->{fld.name}"
        self._emit_read_value(w)
        with w.block("if (jsp->type == JSP_TYPE_NULL) {", closer=""):
            w.line(f"{dest} = NULL;")
        with w.block("} else {"):
            w.line("size_t start = jsp->offset - 1;")
            w.line("int depth = 1;")
            w.line("char ob = (jsp->type == JSP_TYPE_OBJECT ? '{' : '[');")
            w.line("char cb = (jsp->type == JSP_TYPE_OBJECT ? '}' : ']');")
            with w.block("while (jsp->offset < jsp->length && depth > 0) {"):
                w.line("if (jsp->buffer[jsp->offset] == '\\\\') jsp->offset++;")
                w.line("else if (jsp->buffer[jsp->offset] == ob) depth++;")
                w.line("else if (jsp->buffer[jsp->offset] == cb) depth--;")
                w.line("jsp->offset++;")
            w.line("size_t span = jsp->offset - start;")
            w.line(f"{dest} = jsgen_malloc(a, span + 1);")
            w.line(f"if ({dest} == NULL) return -1;")
            w.line(f"memcpy({dest}, &jsp->buffer[start], span);")
            w.line(f"{dest}[span] = '\\0';")
            w.line("err = jsp_skip_end(jsp);")
            w.line("if (err) return err;")

    def _emit_parse_array(self, w: _CWriter, fld: Field) -> None:
        dest = f"out->{fld.name}"
        w.line("err = jsp_begin_array(jsp);")
        w.line("if (err) return err;")
        cap = f"sizeof({dest}) / sizeof({dest}[0])" if fld.is_fixed_array else None
        if fld.has_counter:
            w.line("size_t len = jsp_array_length(jsp);")
            if cap:
                w.line(f"if (len > {cap}) len = {cap};")
            w.line(f"out->{fld.counter_field} = len;")
            if not cap:
                w.line(f"{dest} = jsgen_malloc(a, sizeof({fld.base_type}) * len);")
                w.line(f"if (len > 0 && {dest} == NULL) return -1;")
            loop = "for (size_t i = 0; i < len; i++) {"
        elif cap:
            loop = f"for (size_t i = 0; i < {cap} && jsp_array_has_more(jsp); i++) {{"
        else:
            loop = "for (size_t i = 0; jsp_array_has_more(jsp); i++) {"

        element = self.resolver.resolve_element(fld)
        with w.block(loop):
            if element.is_nested:
                w.line(f"err = _parse_{fld.type_name}(jsp, &{dest}[i], a);")
                w.line("if (err) return err;")
            else:
                self._emit_read_value(w)
                w.line(f"{dest}[i] = jsp->{element.parse_accessor};")
        if cap:
            # elements past the declared capacity are read and dropped
            with w.block("while (jsp_array_has_more(jsp)) {"):
                self._emit_skip(w)
        w.line("err = jsp_end_array(jsp);")
        w.line("if (err) return err;")

    # -- stringify ----------------------------------------------------------

    def _emit_stringify_object(self, w: _CWriter, model: Model) -> None:
        s, n = model.simple_name, model.name
        with w.block(f"int _stringify_{s}(Jsb *jsb, {n} *in) {{"):
            w.line("if (jsb_begin_object(jsb)) return -1;")
            for fld in model.fields:
                if not fld.is_counter_field:
                    self._emit_stringify_field(w, fld)
            w.line("return jsb_end_object(jsb);")
        w.line()

    def _emit_stringify_field(self, w: _CWriter, fld: Field) -> None:
        shape = self.classify(fld)
        src = f"in->{fld.name}"
        key = f'if (jsb_key(jsb, "{_c_string(fld.json_key)}")) return -1;'

        if shape == FieldShape.STRING_BUFFER:
            w.line(key)
            w.line(f"if (jsb_string(jsb, {src})) return -1;")
            return

        # a NULL pointer leaves the key out entirely
        wrapped = fld.is_pointer
        if wrapped:
            w.line(f"if ({src} != NULL) {{")
            w.level += 1

        w.line(key)
        if shape == FieldShape.JSON_LITERAL:
            w.line(f"size_t plen = strlen({src});")
            with w.block("if (plen > 0) {", closer=""):
                w.line(f"if (jsb_raw(jsb, {src}, plen)) return -1;")
            w.line("} else if (jsb_null(jsb)) return -1;")
        elif shape == FieldShape.STRING:
            w.line(f"if (jsb_string(jsb, {src})) return -1;")
        elif shape == FieldShape.ARRAY:
            self._emit_stringify_array(w, fld)
        elif shape in (FieldShape.SCALAR, FieldShape.SCALAR_POINTER):
            value = f"*{src}" if shape == FieldShape.SCALAR_POINTER else src
            w.line(f"if ({self._write_call(self.resolver.resolve_field(fld), value)}) return -1;")
        elif shape == FieldShape.NESTED_POINTER:
            with w.block(f"if ({src} == NULL) {{", closer=""):
                w.line("if (jsb_null(jsb)) return -1;")
            w.line(f"}} else if (_stringify_{fld.type_name}(jsb, {src})) return -1;")
        else:
            w.line(f"if (_stringify_{fld.type_name}(jsb, &{src})) return -1;")

        if wrapped:
            w.level -= 1
            w.line("}")

    def _emit_stringify_array(self, w: _CWriter, fld: Field) -> None:
        src = f"in->{fld.name}"
        w.line("if (jsb_begin_array(jsb)) return -1;")
        # without sized_by there is no length to iterate: always []
        if fld.has_counter:
            element = self.resolver.resolve_element(fld)
            with w.block(f"for (size_t i = 0; i < (size_t)in->{fld.counter_field}; ++i) {{"):
                if element.is_nested:
                    w.line(f"if (_stringify_{fld.type_name}(jsb, &{src}[i])) return -1;")
                else:
                    w.line(f"if ({self._write_call(element, f'{src}[i]')}) return -1;")
        w.line("if (jsb_end_array(jsb)) return -1;")

    @staticmethod
    def _write_call(info: JsonTypeInfo, value: str) -> str:
        if info.precision is not None:
            return f"jsb_{info.writer}(jsb, {value}, {info.precision})"
        return f"jsb_{info.writer}(jsb, {value})"

    def _emit_stringify_wrappers(self, w: _CWriter, model: Model) -> None:
        s, n = model.simple_name, model.name
        with w.block(f"char *stringify_{s}_indent({n} *in, int indent) {{"):
            w.line("Jsb jsb = {.pp = indent};")
            with w.block(f"if (_stringify_{s}(&jsb, in)) {{"):
                w.line("jsb_free(&jsb);")
                w.line("return NULL;")
            w.line("return jsb_get(&jsb);")
        w.line()
        w.line(f"#define stringify_{s}(in) stringify_{s}_indent((in), 0)")
        w.line()
        with w.block(f"char *stringify_{s}_list_indent({n} *in, size_t count, int indent) {{"):
            w.line("Jsb jsb = {.pp = indent};")
            w.line("if (jsb_begin_array(&jsb)) goto fail;")
            with w.block("for (size_t i = 0; i < count; i++) {"):
                w.line(f"if (_stringify_{s}(&jsb, &in[i])) goto fail;")
            w.line("if (jsb_end_array(&jsb)) goto fail;")
            w.line("return jsb_get(&jsb);")
            w.line("fail:")
            w.line("jsb_free(&jsb);")
            w.line("return NULL;")
        w.line()
        w.line(
            f"#define stringify_{s}_list(in, count) stringify_{s}_list_indent((in), (count), 0)"
        )
        w.line()


# ---------------------------------------------------------------------------
# Output
# ---------------------------------------------------------------------------


def write_output(code: str, out_path: str | Path) -> Path:
    """Write generated code to a file and return the path."""
    out_path = Path(out_path)
    out_path.parent.mkdir(parents=True, exist_ok=True)
    out_path.write_text(code)
    return out_path
