"""C header text to IR for FFI bindings.

Phases:
1. Comments are stripped (doc comments are kept for the next declaration)
2. Preprocessor lines: literal #defines become Consts, the rest is skipped.
   Conditionals are not evaluated; every branch is read as written.
3. Tokens are grouped into top-level declarations.
4. Each declaration is parsed with a small C declarator grammar.

Pointers become Ptr<pointee>. Ownership of pointers crossing the function
boundary is guessed from naming conventions and marked as heuristic.
"""

from __future__ import annotations

import bisect
import re
from dataclasses import dataclass

from ..context import Context
from ..diagnostics import FatalParseError, LocalParseWarning
from ..ir import (
    CallingConvention,
    Const,
    Discriminant,
    Enum,
    Field,
    FuncType,
    Function,
    Length,
    LinkName,
    Metadata,
    Module,
    Nullable,
    Number,
    Opaque,
    Other,
    Ownership,
    Param,
    ReadOnly,
    Ref,
    Repr,
    SourceLocation,
    String,
    Struct,
    Type,
    TypeItem,
    Variadic,
    Variant,
    heuristic,
    ref,
    transform,
)
from .document import ParseOptions, ParseResult

# Sorted word tuple -> canonical builtin name
PRIMITIVES: dict[tuple[str, ...], str] = {
    ("void",): "Unit",
    ("char",): "c_char",
    ("char", "signed"): "c_schar",
    ("char", "unsigned"): "c_uchar",
    ("short",): "c_short",
    ("int", "short"): "c_short",
    ("short", "signed"): "c_short",
    ("int", "short", "signed"): "c_short",
    ("short", "unsigned"): "c_ushort",
    ("int", "short", "unsigned"): "c_ushort",
    ("int",): "c_int",
    ("signed",): "c_int",
    ("int", "signed"): "c_int",
    ("unsigned",): "c_uint",
    ("int", "unsigned"): "c_uint",
    ("long",): "c_long",
    ("int", "long"): "c_long",
    ("long", "signed"): "c_long",
    ("int", "long", "signed"): "c_long",
    ("long", "unsigned"): "c_ulong",
    ("int", "long", "unsigned"): "c_ulong",
    ("long", "long"): "c_longlong",
    ("int", "long", "long"): "c_longlong",
    ("long", "long", "signed"): "c_longlong",
    ("int", "long", "long", "signed"): "c_longlong",
    ("long", "long", "unsigned"): "c_ulonglong",
    ("int", "long", "long", "unsigned"): "c_ulonglong",
    ("float",): "f32",
    ("double",): "f64",
    ("double", "long"): "f64",
    ("_Bool",): "bool",
    ("bool",): "bool",
}

PRIMITIVE_WORDS = frozenset({"void", "char", "short", "int", "long", "float", "double", "signed", "unsigned", "_Bool", "bool"})

TYPEDEF_NAMES: dict[str, str] = {
    "size_t": "usize",
    "ssize_t": "isize",
    "ptrdiff_t": "isize",
    "intptr_t": "isize",
    "uintptr_t": "usize",
    "int8_t": "i8",
    "int16_t": "i16",
    "int32_t": "i32",
    "int64_t": "i64",
    "uint8_t": "u8",
    "uint16_t": "u16",
    "uint32_t": "u32",
    "uint64_t": "u64",
}

QUALIFIERS = frozenset(
    {
        "const",
        "volatile",
        "restrict",
        "__restrict",
        "__restrict__",
        "extern",
        "static",
        "inline",
        "__inline",
        "__inline__",
        "register",
        "__extension__",
        "_Noreturn",
    }
)

CALLING_CONVENTIONS = {
    "__cdecl": "cdecl",
    "__stdcall": "stdcall",
    "__fastcall": "fastcall",
    "__vectorcall": "vectorcall",
}

TYPE_STARTERS = frozenset({"struct", "union", "enum", "const", "volatile"})

CONSTRUCTOR_SUFFIXES = ("_create", "_new", "_alloc")
DESTRUCTOR_SUFFIXES = ("_destroy", "_free", "_release")

_CONDITIONAL = re.compile(r"#\s*(if|ifdef|ifndef|elif|else|endif)\b")
_DEFINE = re.compile(r"#\s*define\s+([A-Za-z_]\w*)(\(?)\s*(.*)$", re.S)
_INT_LITERAL = re.compile(r"^(-?)(0[xX][0-9a-fA-F]+|0[0-7]*|[1-9]\d*)([uUlL]*)$")
_FLOAT_LITERAL = re.compile(r"^-?(\d+\.\d*|\.\d+|\d+)([eE][-+]?\d+)?[fFlL]?$")
_STRING_LITERAL = re.compile(r'^"((?:\\.|[^"\\])*)"$')
_TOKEN = re.compile(
    r"""\s*(?:
        (?P<id>[A-Za-z_]\w*)
      | (?P<num>0[xX][0-9a-fA-F]+[uUlL]*|\d+\.\d*(?:[eE][-+]?\d+)?[fFlL]?|\.\d+(?:[eE][-+]?\d+)?[fFlL]?|\d+[eE][-+]?\d+[fFlL]?|\d+[uUlL]*)
      | (?P<str>"(?:\\.|[^"\\])*")
      | (?P<chr>'(?:\\.|[^'\\])*')
      | (?P<punct>\.\.\.|<<|>>|->|[{}()\[\];,*=:<>+\-~!&|^/%?.#])
    )""",
    re.X,
)


@dataclass
class Token:
    kind: str
    text: str
    pos: int


@dataclass
class _Decl:
    tokens: list[Token]
    docs: str | None


class _ParseFailure(Exception):
    """Raised inside a declaration; the declaration is skipped."""

    def __init__(self, msg: str, pos: int) -> None:
        super().__init__(msg)
        self.msg = msg
        self.pos = pos


def parse_cheader(text: str, ctx: Context, options: ParseOptions | None = None) -> ParseResult:
    """Translate C header text into a root Module.

    Raises FatalParseError when braces or parentheses do not balance.
    """
    if options is None:
        options = ParseOptions()
    parser = _HeaderParser(text, ctx, options)
    module = parser.parse()
    ctx.interner.intern_module(module)
    return ParseResult(module, parser.diagnostics)


def _module_name(source: str) -> str:
    stem = re.split(r"[\\/]", source)[-1]
    if "." in stem:
        stem = stem.rsplit(".", 1)[0]
    return re.sub(r"[^0-9A-Za-z]", "_", stem).strip("_").lower() or "ffi"


def _clean_doc(raw: str) -> str:
    if raw.startswith(("///", "//!")):
        lines = [raw[3:]]
    else:
        lines = raw[3:-2].split("\n")
    out = []
    for line in lines:
        line = line.strip()
        if line.startswith("*"):
            line = line[1:].strip()
        out.append(line)
    return "\n".join(out).strip()


class _HeaderParser:
    def __init__(self, text: str, ctx: Context, options: ParseOptions) -> None:
        self.raw = text
        self.ctx = ctx
        self.options = options
        self.diagnostics: list = []
        self.items: dict[str, object] = {}
        self.tag_alias: dict[str, str] = {}
        self.defined_tags: set[str] = set()
        self.used_tags: dict[str, tuple[str, int]] = {}
        self.stripped = ""
        self.docs: list[tuple[int, int, str]] = []
        self.line_starts = [0] + [m.end() for m in re.finditer("\n", text)]

    # ------------------------------------------------------------
    # locations and diagnostics
    # ------------------------------------------------------------

    def line_col(self, pos: int) -> tuple[int, int]:
        i = bisect.bisect_right(self.line_starts, pos) - 1
        return i + 1, pos - self.line_starts[i] + 1

    def location(self, pos: int) -> SourceLocation:
        line, col = self.line_col(pos)
        return SourceLocation(self.options.source, line, col)

    def warn(self, message: str, pos: int) -> None:
        diag = LocalParseWarning(message, str(self.location(pos)))
        self.diagnostics.append(diag)
        self.ctx.report(diag)

    def doc_before(self, pos: int) -> str | None:
        """Doc comment separated from pos by whitespace only."""
        for _, end, text in reversed(self.docs):
            if end > pos:
                continue
            if self.stripped[end:pos].strip() == "":
                return text
            return None
        return None

    # ------------------------------------------------------------
    # phases 1-3
    # ------------------------------------------------------------

    def strip_comments(self, text: str) -> str:
        out = []
        i = 0
        n = len(text)
        while i < n:
            c = text[i]
            if c == '"' or c == "'":
                j = i + 1
                while j < n and text[j] != c:
                    j += 2 if text[j] == "\\" else 1
                out.append(text[i : j + 1])
                i = j + 1
            elif text.startswith("/*", i):
                j = text.find("*/", i + 2)
                if j < 0:
                    line, col = self.line_col(i)
                    raise FatalParseError(f"{self.options.source}: unterminated comment", line, col)
                comment = text[i : j + 2]
                if comment.startswith(("/**", "/*!")) and len(comment) > 4:
                    self.docs.append((i, j + 2, _clean_doc(comment)))
                out.append(re.sub(r"[^\n]", " ", comment))
                i = j + 2
            elif text.startswith("//", i):
                j = text.find("\n", i)
                if j < 0:
                    j = n
                comment = text[i:j]
                if comment.startswith(("///", "//!")):
                    if self.docs and self.docs[-1][2] and text[self.docs[-1][1] : i].strip() == "":
                        start, _, prev = self.docs.pop()
                        self.docs.append((start, j, prev + "\n" + _clean_doc(comment)))
                    else:
                        self.docs.append((i, j, _clean_doc(comment)))
                out.append(" " * (j - i))
                i = j
            else:
                out.append(c)
                i += 1
        return "".join(out)

    def preprocess(self, text: str) -> tuple[str, list[Const]]:
        """Blank out directives; literal #defines become Consts."""
        consts: list[Const] = []
        conditional_at: int | None = None
        out = list(text)
        pos = 0
        lines = text.split("\n")
        i = 0
        while i < len(lines):
            start = pos
            line = lines[i]
            full = line
            count = 1
            while full.endswith("\\") and i + count < len(lines):
                full = full[:-1] + " " + lines[i + count]
                count += 1
            span = sum(len(lines[i + k]) + 1 for k in range(count))
            stripped = full.strip()
            if stripped.startswith("#"):
                if _CONDITIONAL.match(stripped) and conditional_at is None:
                    conditional_at = start + line.index("#")
                m = _DEFINE.match(stripped)
                if m is not None and not m.group(2):
                    const = self.define_const(m.group(1), m.group(3).strip(), start)
                    if const is not None:
                        consts.append(const)
                for k in range(start, min(start + span, len(out))):
                    if out[k] != "\n":
                        out[k] = " "
            pos += span
            i += count
        if conditional_at is not None:
            self.warn("preprocessor conditionals are not evaluated; all branches were read", conditional_at)
        return "".join(out), consts

    def define_const(self, name: str, body: str, pos: int) -> Const | None:
        while body.startswith("(") and body.endswith(")"):
            body = body[1:-1].strip()
        meta = Metadata(docs=self.doc_before(pos), source=self.location(pos))
        m = _INT_LITERAL.match(body)
        if m is not None:
            digits = m.group(2)
            if digits.lower().startswith("0x"):
                value = int(digits, 16)
            elif len(digits) > 1 and digits.startswith("0"):
                value = int(digits, 8)
            else:
                value = int(digits)
            if m.group(1):
                value = -value
            unsigned = "u" in m.group(3).lower() or value > 2**63 - 1
            return Const(name, ref("u64" if unsigned else "i64"), Number(value), metadata=meta)
        if _FLOAT_LITERAL.match(body):
            return Const(name, ref("f64"), Number(float(body.rstrip("fFlL"))), metadata=meta)
        m = _STRING_LITERAL.match(body)
        if m is not None:
            value = bytes(m.group(1), "utf-8").decode("unicode_escape")
            return Const(name, ref("String"), String(value), metadata=meta)
        return None

    def tokenize(self, text: str) -> list[Token]:
        tokens = []
        pos = 0
        n = len(text)
        while pos < n:
            m = _TOKEN.match(text, pos)
            if m is None or m.end() == pos:
                if text[pos:].strip() == "":
                    break
                skip = len(text[pos:]) - len(text[pos:].lstrip())
                line, col = self.line_col(pos + skip)
                raise FatalParseError(f"{self.options.source}: unexpected character {text[pos + skip]!r}", line, col)
            kind = m.lastgroup or "punct"
            tokens.append(Token(kind, m.group(kind), m.start(kind)))
            pos = m.end()
        return tokens

    def check_balance(self, tokens: list[Token]) -> None:
        stack: list[Token] = []
        pairs = {")": "(", "}": "{", "]": "["}
        for tok in tokens:
            if tok.kind != "punct":
                continue
            if tok.text in "({[":
                stack.append(tok)
            elif tok.text in pairs:
                if not stack or stack[-1].text != pairs[tok.text]:
                    line, col = self.line_col(tok.pos)
                    raise FatalParseError(f"{self.options.source}: unbalanced '{tok.text}'", line, col)
                stack.pop()
        if stack:
            line, col = self.line_col(stack[-1].pos)
            raise FatalParseError(f"{self.options.source}: unclosed '{stack[-1].text}'", line, col)

    def split_declarations(self, tokens: list[Token]) -> list[_Decl]:
        decls: list[_Decl] = []
        current: list[Token] = []
        depth = 0
        extern_blocks = 0
        i = 0
        while i < len(tokens):
            tok = tokens[i]
            if (
                depth == 0
                and tok.text == "extern"
                and i + 1 < len(tokens)
                and tokens[i + 1].text == '"C"'
            ):
                if i + 2 < len(tokens) and tokens[i + 2].text == "{":
                    extern_blocks += 1
                    i += 3
                else:
                    i += 2
                continue
            if depth == 0 and tok.text == "}" and extern_blocks > 0 and not current:
                extern_blocks -= 1
                i += 1
                continue
            if tok.kind == "punct" and tok.text in "({[":
                depth += 1
            elif tok.kind == "punct" and tok.text in ")}]":
                depth -= 1
            current.append(tok)
            ended = depth == 0 and tok.text == ";"
            if depth == 0 and tok.text == "}" and self._is_function_body(current):
                ended = True
            if ended:
                decls.append(_Decl(current, self.doc_before(current[0].pos)))
                current = []
            i += 1
        if current:
            self.warn("declaration is missing a terminating ';'", current[0].pos)
        return decls

    @staticmethod
    def _is_function_body(tokens: list[Token]) -> bool:
        depth = 0
        for i in range(len(tokens) - 1, -1, -1):
            t = tokens[i].text
            if t == "}":
                depth += 1
            elif t == "{":
                depth -= 1
                if depth == 0:
                    return i > 0 and tokens[i - 1].text == ")" and tokens[0].text != "typedef"
        return False

    # ------------------------------------------------------------
    # phase 4
    # ------------------------------------------------------------

    def parse(self) -> Module:
        self.stripped = self.strip_comments(self.raw)
        text, consts = self.preprocess(self.stripped)
        tokens = self.tokenize(text)
        self.check_balance(tokens)
        for const in consts:
            self.add(const)
        for decl in self.split_declarations(tokens):
            try:
                _DeclParser(self, decl).parse_top()
            except _ParseFailure as e:
                self.warn(f"declaration skipped: {e.msg}", e.pos)
        self.settle_tags()
        items = list(self.items.values())
        if self.tag_alias:
            items = [self.rename_tags(item) for item in items]
        name = self.options.module_name or _module_name(self.options.source)
        return Module(name, items, metadata=Metadata(source=SourceLocation(self.options.source)))

    def settle_tags(self) -> None:
        """Merge late tag definitions into their typedef names and declare
        tags that were only ever used behind a pointer."""
        for tag, alias in self.tag_alias.items():
            definition = self.items.get(tag)
            target = self.items.get(alias)
            if tag == alias or not isinstance(definition, TypeItem) or not isinstance(target, TypeItem):
                continue
            if target.typ.annotation(Opaque) is not None and definition.typ.annotation(Opaque) is None:
                t = definition.typ
                self.items[alias] = TypeItem(Type(t.kind, alias, t.params, t.args, t.annotations, target.typ.metadata))
                del self.items[tag]
        for tag, (keyword, pos) in self.used_tags.items():
            if tag in self.items or tag in self.tag_alias:
                continue
            annotations: tuple = (Opaque(),)
            if keyword == "union":
                annotations += (Repr("union"),)
            self.items[tag] = TypeItem(Type(Struct(()), tag, annotations=annotations, metadata=Metadata(source=self.location(pos))))

    def add(self, item) -> None:
        existing = self.items.get(item.name)
        if existing is not None and isinstance(existing, TypeItem) and isinstance(item, TypeItem):
            if existing.typ.annotation(Opaque) is not None and item.typ.annotation(Opaque) is None:
                self.items[item.name] = item
            return
        if existing is not None:
            return
        self.items[item.name] = item

    def rename_tags(self, item):
        def fix(t: Type) -> Type:
            if isinstance(t.kind, Ref) and t.kind.name in self.tag_alias:
                return Type(Ref(self.tag_alias[t.kind.name]), t.name, t.params, t.args, t.annotations, t.metadata)
            return t

        if isinstance(item, TypeItem):
            return TypeItem(transform(item.typ, fix))
        if isinstance(item, Function):
            params = tuple(
                Param(p.name, transform(p.typ, fix), p.default, p.annotations) for p in item.params
            )
            return Function(item.name, params, transform(item.ret, fix), item.type_params, item.annotations, item.metadata)
        return item


class _DeclParser:
    """Recursive-descent parser over one declaration's tokens."""

    def __init__(self, owner: _HeaderParser, decl: _Decl) -> None:
        self.owner = owner
        self.tokens = decl.tokens
        self.docs = decl.docs
        self.pos = 0

    def peek(self, offset: int = 0) -> Token | None:
        i = self.pos + offset
        return self.tokens[i] if i < len(self.tokens) else None

    def at(self, text: str) -> bool:
        tok = self.peek()
        return tok is not None and tok.text == text

    def next(self) -> Token:
        tok = self.peek()
        if tok is None:
            raise _ParseFailure("unexpected end of declaration", self.tokens[-1].pos)
        self.pos += 1
        return tok

    def expect(self, text: str) -> Token:
        tok = self.next()
        if tok.text != text:
            raise _ParseFailure(f"expected '{text}', got '{tok.text}'", tok.pos)
        return tok

    def fail(self, msg: str) -> _ParseFailure:
        tok = self.peek() or self.tokens[-1]
        return _ParseFailure(msg, tok.pos)

    def meta(self, pos: int) -> Metadata:
        return Metadata(docs=self.docs, source=self.owner.location(pos))

    def skip_balanced(self) -> None:
        depth = 0
        while True:
            tok = self.next()
            if tok.text == "(":
                depth += 1
            elif tok.text == ")":
                depth -= 1
                if depth == 0:
                    return

    # ------------------------------------------------------------
    # top level
    # ------------------------------------------------------------

    def parse_top(self) -> None:
        start = self.tokens[0].pos
        if self.at("typedef"):
            self.next()
            self.parse_typedef(start)
            return
        base, is_const, convention = self.specifiers(register=True)
        if self.at(";") or self.peek() is None:
            return
        while True:
            name, typ, direct_fn, decl_cc = self.declarator(base, is_const)
            if name is None:
                raise self.fail("declaration without a name")
            if direct_fn is not None:
                self.add_function(name, direct_fn, decl_cc or convention, start)
            else:
                self.owner.warn(f"variable '{name}' is not bound", start)
            if self.at("{"):
                self.owner.warn(f"inline definition of '{name}' is not bound", start)
                self.owner.items.pop(name, None)
                return
            if self.at(","):
                self.next()
                continue
            if self.at(";") or self.peek() is None:
                return
            raise self.fail(f"unexpected '{self.peek().text}'")

    def parse_typedef(self, start: int) -> None:
        base, is_const, _ = self.specifiers(register=False, typedef=True)
        while True:
            name, typ, direct_fn, _ = self.declarator(base, is_const)
            if name is None:
                raise self.fail("typedef without a name")
            self.add_typedef(name, typ, start)
            if self.at(","):
                self.next()
                continue
            return

    def add_typedef(self, name: str, typ: Type, start: int) -> None:
        owner = self.owner
        meta = self.meta(start)
        kind = typ.kind
        if isinstance(kind, (Struct, FuncType)) or (isinstance(kind, Enum)):
            # typedef of an inline definition or a function type names it
            owner.add(TypeItem(Type(kind, name, annotations=typ.annotations, metadata=meta)))
            return
        if isinstance(kind, Ref) and not typ.args and typ.annotation(Other) is not None:
            tag_kind = typ.annotation(Other)
            if tag_kind.kind == "c_tag":
                tag = kind.name
                if tag in owner.defined_tags:
                    if tag != name:
                        definition = owner.items.pop(tag, None)
                        if isinstance(definition, TypeItem):
                            owner.tag_alias[tag] = name
                            t = definition.typ
                            owner.add(TypeItem(Type(t.kind, name, t.params, t.args, t.annotations, t.metadata)))
                            return
                    return
                owner.tag_alias[tag] = name
                annotations: tuple = (Opaque(),)
                if tag_kind.payload() == "union":
                    annotations = (Opaque(), Repr("union"))
                owner.add(TypeItem(Type(Struct(()), name, annotations=annotations, metadata=meta)))
                return
        owner.add(TypeItem(Type(kind, name, typ.params, typ.args, typ.annotations, meta)))

    def add_function(self, name: str, fn: Type, convention: str | None, start: int) -> None:
        kind = fn.kind
        if not isinstance(kind, FuncType):
            raise self.fail(f"'{name}' is not a function")
        annotations: list = [CallingConvention(convention or "cdecl"), LinkName(name)]
        if fn.annotation(Variadic) is not None:
            annotations.append(Variadic())
        params = list(kind.params)
        ret = kind.ret
        if ret.is_ref("Ptr"):
            if name.endswith(CONSTRUCTOR_SUFFIXES):
                ret = _ownership(ret, "owned", "constructor_suffix").annotate(Nullable(True))
            else:
                ret = _ownership(ret, "borrowed", "default_borrow")
        for i, p in enumerate(params):
            if not p.typ.is_ref("Ptr"):
                continue
            if i == 0 and name.endswith(DESTRUCTOR_SUFFIXES):
                typ = _ownership(p.typ, "consumed", "destructor_suffix")
            elif p.typ.annotation(ReadOnly) is not None:
                typ = _ownership(p.typ, "borrowed", "const_pointee")
            else:
                typ = _ownership(p.typ, "borrowed", "default_borrow")
            params[i] = Param(p.name, typ, p.default, p.annotations)
        self.owner.add(Function(name, tuple(params), ret, annotations=tuple(annotations), metadata=self.meta(start)))

    # ------------------------------------------------------------
    # specifiers
    # ------------------------------------------------------------

    def specifiers(self, register: bool, typedef: bool = False) -> tuple[Type, bool, str | None]:
        """Base type, whether it is const, and any calling convention seen."""
        words: list[str] = []
        named: Type | None = None
        is_const = False
        convention = None
        while True:
            tok = self.peek()
            if tok is None or tok.kind != "id":
                break
            text = tok.text
            if text in QUALIFIERS:
                is_const = is_const or text == "const"
                self.next()
            elif text in ("__attribute__", "__declspec", "__asm__", "__asm"):
                self.next()
                self.skip_balanced()
            elif text in CALLING_CONVENTIONS:
                convention = CALLING_CONVENTIONS[text]
                self.next()
            elif text in PRIMITIVE_WORDS:
                if named is not None:
                    break
                words.append(text)
                self.next()
            elif text in ("struct", "union", "enum"):
                if named is not None or words:
                    break
                named = self.tagged(register or typedef)
            else:
                if named is not None or words:
                    break
                nxt = self.peek(1)
                if (
                    re.fullmatch(r"[A-Z_][A-Z0-9_]*", text)
                    and nxt is not None
                    and (nxt.text in PRIMITIVE_WORDS or nxt.text in TYPE_STARTERS or nxt.text in TYPEDEF_NAMES)
                ):
                    # export macro such as WLR_API before the real type
                    self.next()
                    continue
                self.next()
                named = ref(TYPEDEF_NAMES.get(text, text))
        if named is not None:
            return named, is_const, convention
        if not words:
            raise self.fail("expected a type")
        key = tuple(sorted(words))
        builtin = PRIMITIVES.get(key)
        if builtin is None:
            raise self.fail(f"unsupported type '{' '.join(words)}'")
        return ref(builtin), is_const, convention

    def tagged(self, register: bool) -> Type:
        keyword = self.next()
        tag = None
        if self.peek() is not None and self.peek().kind == "id" and self.peek().text not in ("__attribute__",):
            tag = self.next().text
        while self.at("__attribute__"):
            self.next()
            self.skip_balanced()
        if not self.at("{"):
            if tag is None:
                raise self.fail(f"anonymous {keyword.text} without a body")
            self.owner.used_tags.setdefault(tag, (keyword.text, keyword.pos))
            if keyword.text != "enum" and self.at(";") and register:
                self.owner.add(
                    TypeItem(
                        Type(
                            Struct(()),
                            tag,
                            annotations=(Opaque(),) + ((Repr("union"),) if keyword.text == "union" else ()),
                            metadata=self.meta(keyword.pos),
                        )
                    )
                )
            return ref(tag).annotate(Other("c_tag", keyword.text))
        self.expect("{")
        if keyword.text == "enum":
            typ = Type(Enum(self.enum_body()))
        else:
            fields = self.struct_body()
            annotations = (Repr("union"),) if keyword.text == "union" else ()
            typ = Type(Struct(fields), annotations=annotations)
        self.expect("}")
        while self.at("__attribute__"):
            self.next()
            self.skip_balanced()
        if tag is None:
            return typ
        self.owner.defined_tags.add(tag)
        self.owner.add(TypeItem(Type(typ.kind, tag, annotations=typ.annotations, metadata=self.meta(keyword.pos))))
        return ref(tag).annotate(Other("c_tag", keyword.text))

    def enum_body(self) -> tuple[Variant, ...]:
        variants = []
        while not self.at("}"):
            tok = self.next()
            if tok.kind != "id":
                raise _ParseFailure(f"expected an enumerator, got '{tok.text}'", tok.pos)
            annotations: tuple = ()
            if self.at("="):
                self.next()
                expr = []
                depth = 0
                while self.peek() is not None and not (depth == 0 and self.peek().text in (",", "}")):
                    t = self.next()
                    depth += t.text == "("
                    depth -= t.text == ")"
                    expr.append(t.text)
                text = "".join(expr)
                value = _int_value(text)
                if value is not None:
                    annotations = (Discriminant(value),)
                else:
                    annotations = (Other("discriminant_expr", text),)
            variants.append(Variant(tok.text, annotations=annotations))
            if self.at(","):
                self.next()
        return tuple(variants)

    def struct_body(self) -> tuple[Field, ...]:
        fields: list[Field] = []
        while not self.at("}"):
            base, is_const, _ = self.specifiers(register=True)
            if self.at(";"):
                self.next()
                if isinstance(base.kind, Struct):
                    # C11 anonymous member; the generated name marks it as such
                    name = f"anon{len(fields)}"
                    fields.append(Field(name, base, (Other("anonymous_member"),)))
                continue
            while True:
                name, typ, _, _ = self.declarator(base, is_const)
                annotations: tuple = ()
                if self.at(":"):
                    self.next()
                    width = self.next()
                    annotations = (Other("bitfield", _int_value(width.text) or 0),)
                if name is not None:
                    fields.append(Field(name, _drop_tag(typ), annotations))
                elif not annotations:
                    raise self.fail("field without a name")
                if self.at(","):
                    self.next()
                    continue
                break
            self.expect(";")
        return tuple(fields)

    # ------------------------------------------------------------
    # declarators
    # ------------------------------------------------------------

    def declarator(self, base: Type, is_const: bool) -> tuple[str | None, Type, Type | None, str | None]:
        """(name, type, direct function type or None, calling convention)."""
        name, wrap, direct, convention = self._declarator()
        typ, _ = wrap((base, is_const))
        direct_fn = typ if direct and isinstance(typ.kind, FuncType) else None
        return name, typ, direct_fn, convention

    def _declarator(self):
        pointers: list[bool] = []
        convention = None
        while True:
            if self.at("*"):
                self.next()
                pointers.append(False)
            elif self.peek() is not None and self.peek().text in ("const", "volatile", "restrict", "__restrict", "__restrict__"):
                tok = self.next()
                if pointers and tok.text == "const":
                    pointers[-1] = True
            elif self.peek() is not None and self.peek().text in CALLING_CONVENTIONS:
                convention = CALLING_CONVENTIONS[self.next().text]
            elif self.at("__attribute__"):
                self.next()
                self.skip_balanced()
            else:
                break
        name = None
        inner = None
        if self.at("(") and self.peek(1) is not None and self.peek(1).text in ("*", "^") + tuple(CALLING_CONVENTIONS):
            self.next()
            name, inner, _, inner_cc = self._declarator()
            convention = convention or inner_cc
            self.expect(")")
        elif self.peek() is not None and self.peek().kind == "id" and self.peek().text not in QUALIFIERS:
            name = self.next().text
        suffixes = []
        while True:
            if self.at("["):
                self.next()
                size = []
                while not self.at("]"):
                    size.append(self.next().text)
                self.expect("]")
                suffixes.append(("array", "".join(size)))
            elif self.at("("):
                self.next()
                suffixes.append(("fn", self.parameters()))
            else:
                break
        while self.at("__attribute__") or (self.peek() is not None and self.peek().text in ("__asm__", "__asm")):
            self.next()
            self.skip_balanced()

        def wrap(pair: tuple[Type, bool]) -> tuple[Type, bool]:
            typ, const = pair
            for ptr_const in pointers:
                typ, const = _pointer(typ, const), ptr_const
            for kind, payload in reversed(suffixes):
                if kind == "array":
                    arr = ref("Array", _drop_tag(typ))
                    length = _int_value(payload)
                    if length is not None:
                        arr = arr.annotate(Length(length))
                    elif payload:
                        arr = arr.annotate(Other("length_expr", payload))
                    typ, const = arr, False
                else:
                    params, variadic = payload
                    fn = Type(FuncType(params, _drop_tag(typ)))
                    if variadic:
                        fn = fn.annotate(Variadic())
                    typ, const = fn, False
            if inner is not None:
                return inner((typ, const))
            return typ, const

        direct = inner is None and bool(suffixes) and suffixes[0][0] == "fn"
        return name, wrap, direct, convention

    def parameters(self) -> tuple[tuple[Param, ...], bool]:
        params: list[Param] = []
        variadic = False
        if self.at("void") and self.peek(1) is not None and self.peek(1).text == ")":
            self.next()
            self.expect(")")
            return (), False
        while not self.at(")"):
            if self.at("..."):
                self.next()
                variadic = True
                continue
            try:
                base, is_const, _ = self.specifiers(register=False)
                name, typ, _, _ = self.declarator(base, is_const)
            except _ParseFailure as e:
                self.owner.warn(f"parameter type not understood: {e.msg}", e.pos)
                depth = 0
                while not (depth == 0 and (self.at(",") or self.at(")"))):
                    t = self.next()
                    depth += t.text in "(["
                    depth -= t.text in ")]"
                name = None
                typ = ref("Unknown").with_metadata(heuristic("unknown_fragment", "unparsed parameter"))
            typ = _drop_tag(typ)
            if typ.is_ref("Array"):
                typ = _pointer(typ.args[0], False)
            params.append(Param(name, typ))
            if self.at(","):
                self.next()
        self.expect(")")
        return tuple(params), variadic


def _drop_tag(typ: Type) -> Type:
    """Strip the struct/union/enum keyword marker from a tagged reference."""
    if isinstance(typ.kind, Ref) and typ.annotation(Other) is not None:
        kept = tuple(a for a in typ.annotations if not (isinstance(a, Other) and a.tag == "c_tag"))
        return Type(typ.kind, typ.name, typ.params, typ.args, kept, typ.metadata)
    return typ


def _pointer(pointee: Type, const: bool) -> Type:
    if isinstance(pointee.kind, FuncType):
        return pointee
    ptr = ref("Ptr", _drop_tag(pointee))
    if const:
        ptr = ptr.annotate(ReadOnly())
    return ptr


def _ownership(ptr: Type, mode: str, evidence: str) -> Type:
    return ptr.annotate(Ownership(mode)).with_metadata(heuristic("pointer_ownership", evidence))


def _int_value(text: str) -> int | None:
    text = text.strip()
    while text.startswith("(") and text.endswith(")"):
        text = text[1:-1].strip()
    m = _INT_LITERAL.match(text)
    if m is None:
        return None
    digits = m.group(2)
    if digits.lower().startswith("0x"):
        value = int(digits, 16)
    elif len(digits) > 1 and digits.startswith("0"):
        value = int(digits, 8)
    else:
        value = int(digits)
    return -value if m.group(1) else value


