"""File kinds understood by the broken file generator and its argument lists."""

import subprocess
from enum import Enum
from typing import Any


class Lang(Enum):
    """Kind of input files; the value is the name used in the configuration."""

    PYTHON = "python"
    JAVASCRIPT = "js"
    LUA = "lua"
    GO = "go"
    RUST = "rust"
    BINARY = "binary"
    TEXT = "text"
    SLINT = "slint"
    JSVUESVELTE = "jsvuesvelte"


def _tokens(*parts: str | tuple[str, ...]) -> tuple[str, ...]:
    """Join token groups; plain strings are split on whitespace, tuples are kept as they are."""
    result: list[str] = []
    for part in parts:
        result.extend(part.split() if isinstance(part, str) else part)
    return tuple(result)


_SLINT_ARGS = _tokens(
    'Rectangle width height : ; phx px := = { } < > bool int float => <= <=> =>',
    '(_) pure callback - ^^ ^ / * + . _ == // @ @image-url @tr ( ) "',
    ("import ",),
    "from changed , return # transparent inherits Window false true clicked() %",
    "init debug accept visible property string",
    ("in-out ", "in-out property"),
    "[ ] out",
    ("out property",),
    "in",
    ("in property",),
    "export || != [string] length x y z min-width max-width opacity animation-tick",
    "accessible-role component icon Palette Palette.background TextInputInterface",
    "Colors Key Math abs abs acos ceil clamp log max mod sqrt pow TableColumn",
    "StandardListViewItem PointerScrollEvent PointerEvent Point KeyboardModifiers KeyEvent",
    "if /* */ angle brush color duration easing image percent physical-length",
    "relative-font-size to-float [0] [100] [999999999] self self. parent parent.",
    "? ! function root root. public for",
    ("for r[idx] in",),
    "in animate states global",
    ("export global",),
)

_PYTHON_ARGS = _tokens(
    "noqa #",
    ("'", '"'),
    "False await else import pass None break except in raise True class finally",
    "is return and continue for lambda float int bool try as def from nonlocal while",
    "assert del global not with async elif if or yield __init__ pylint : ? [",
    ('"', '"""', "'", "]", "}", "%", 'f"', "f'"),
    "< <= >= > . , == != { = | \\ ; _ - ** * / ! ( ) (True) {} () []",
    ("\n", "\t", "# fmt: skip", "# fmt: off", "# fmt: on", "# fmt: noqa", "# noqa", "# type:", "is not"),
    "None False True",
    (
        "is None", "is not None", "is False", "is True", "is not ", "is not True", "is not False",
        "is not None", "is False", "is True", "is not True",
    ),
)

_JAVASCRIPT_ARGS = _tokens(
    ": ? [",
    ('"', '"""', "'", "]", "}", "%", 'f"', "f'"),
    "< <= >= > . , == != { = | \\ ; _ - ** * / ! ( ) (True) {} () [] pylint",
    ("\n", "\t", "#", "'", '"'),
    "// abstract arguments await boolean break byte case catch char class const",
    "continue debugger default delete do double else enum eval export extends false",
    "final finally float for function goto if implements import in instanceof int",
    "interface let long native new null package private protected public return short",
    "static super switch synchronized this throw throws transient true try typeof var",
    "void volatile while with yield",
    (" " * 32,),
)

_JS_VUE_SVELTE_ARGS = _JAVASCRIPT_ARGS

_LUA_ARGS = _tokens(
    "and break do else elseif end false for function if in local nil not or repeat",
    "return then true until while + - * / % ^ # == ~= <= >= < > = ( ) { } [ ] ; : , . .. ...",
    ('"', "'", "''", '""'),
)

# "|", "||", "|=", "--", "-=" cause some problems
_GO_ARGS = _tokens(
    "< <= [ + & += &= && == != ( ) - * ] ^ *= ^= <- > >= { } / << /= <<= ++ = := , ; %",
    ">> %= >>= ! ... . : &^ &^= ~",
    "break default func interface select case defer go map struct chan else goto package",
    "switch const fallthrough if range type continue for import return var",
    "append cap complex delete len panic",
    (" " * 88,),
    "https",
)

# "|", "||", "|=", "--", "-=", "\0", "->" cause some problems
_RUST_ARGS = _tokens(
    "as break const continue crate else enum extern false fn for if impl in let loop",
    "match mod move mut pub ref return self Self static struct super trait true type",
    "unsafe use where while async await dyn abstract become box do final macro override",
    "priv typeof unsized virtual yield try union 'static dyn r# // /// //// //! //!!",
    "/*! /*!! /* /** /*** */ **/ ***/",
    ("\r", "\n", " ", "\t"),
    "b \\ / '",
    ('"',),
    "0x 0b 0o u8 i8 u16 i16 u32 i32 u64 i64 u128 i128 usize isize f32 f64 { + - * / % ^",
    "! & && << >> += *= /= %= ^= &= <<= >>= = == != > < >= <= @ _ . .. ... ..= , ; : ::",
    "=> $ ? ~ { } [ ] ( )",
)

_TOKENS: dict[Lang, tuple[str, ...]] = {
    Lang.PYTHON: _PYTHON_ARGS,
    Lang.JAVASCRIPT: _JAVASCRIPT_ARGS,
    Lang.LUA: _LUA_ARGS,
    Lang.GO: _GO_ARGS,
    Lang.RUST: _RUST_ARGS,
    Lang.SLINT: _SLINT_ARGS,
    Lang.JSVUESVELTE: _JS_VUE_SVELTE_ARGS,
}

GENERATOR_PROGRAM = "create_broken_files"


def broken_files_arguments(settings: Any, lang: Lang) -> list[str]:
    """Build the argument list for the broken file generator."""
    base = (
        f"-i {settings.valid_input_files_dir} "
        f"-o {settings.temp_possible_broken_files_dir} "
        f"-n {settings.broken_files_for_each_file}"
    )
    if lang is Lang.BINARY:
        return base.split(" ")
    if lang is Lang.TEXT:
        return f"{base} -c".split(" ")

    arguments = f"{base} -c -s".split(" ")
    arguments.extend(_TOKENS[lang])
    if lang is Lang.PYTHON:
        arguments.append("-m")
    return arguments


def create_broken_files(settings: Any, lang: Lang) -> subprocess.Popen:
    """Start the broken file generator with piped output."""
    return subprocess.Popen(
        [GENERATOR_PROGRAM, *broken_files_arguments(settings, lang)],
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
    )