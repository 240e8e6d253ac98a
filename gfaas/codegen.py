"""
Entry-point code generation

Reads function declarations from gfaas.toml and emits, per function, the
sandboxed entry source compiled to wasm32-wasi plus one Python module of
typed client stubs:

    [functions.partial_sum]
    source = "src/partial_sum.rs"
    inputs = ["list[uint]"]
    output = "uint"

Input files are read in argv order, the output path is the last argument.
bytes and str travel raw, everything else as JSON.
"""

import logging
import re
import tomllib
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Tuple

from .errors import ConfigError

logger = logging.getLogger(__name__)

CONFIG_FILE = "gfaas.toml"
STUB_FILE = "gfaas_stubs.py"

_SCALARS: Dict[str, Tuple[str, str]] = {
    # declared name: (python annotation, rust type)
    "bytes": ("bytes", "Vec<u8>"),
    "str": ("str", "String"),
    "int": ("int", "i64"),
    "uint": ("int", "u64"),
    "float": ("float", "f64"),
    "bool": ("bool", "bool"),
}
_RAW = ("bytes", "str")
_IDENT = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


@dataclass(frozen=True)
class TypeSpec:
    """A declared input or output type"""
    declared: str
    python: str
    rust: str

    @property
    def raw(self) -> bool:
        return self.declared in _RAW


def parse_type(declared: str) -> TypeSpec:
    """
    Parse a declared type: a scalar, list[T] or dict[str, T].

    Raises:
        ConfigError: If the type is not supported
    """
    text = declared.strip()
    if text in _SCALARS:
        python, rust = _SCALARS[text]
        return TypeSpec(text, python, rust)

    if text.startswith("list[") and text.endswith("]"):
        inner = parse_type(text[5:-1])
        if inner.declared == "bytes":
            raise ConfigError("list[bytes] is not supported")
        return TypeSpec(text, f"List[{inner.python}]", f"Vec<{inner.rust}>")

    if text.startswith("dict[") and text.endswith("]"):
        key, sep, value = text[5:-1].partition(",")
        if not sep or key.strip() != "str":
            raise ConfigError(f"Only dict[str, T] is supported, got {declared!r}")
        inner = parse_type(value)
        return TypeSpec(text, f"Dict[str, {inner.python}]", f"std::collections::HashMap<String, {inner.rust}>")

    raise ConfigError(f"Unsupported type {declared!r}")


@dataclass(frozen=True)
class FunctionSpec:
    """One routine declared in gfaas.toml"""
    name: str
    source: Path
    inputs: Tuple[TypeSpec, ...]
    output: TypeSpec


def load_functions(config_path: Path) -> List[FunctionSpec]:
    """
    Read function declarations.

    Raises:
        ConfigError: If the file is missing, malformed or declares unsupported types
    """
    config_path = Path(config_path)
    try:
        with open(config_path, "rb") as f:
            data = tomllib.load(f)
    except FileNotFoundError:
        raise ConfigError(f"Code generation config not found: {config_path}")
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"Failed to parse {config_path}: {e}")

    functions = data.get("functions")
    if not isinstance(functions, dict) or not functions:
        raise ConfigError(f"No [functions.<name>] tables in {config_path}")

    specs = []
    for name, table in functions.items():
        if not _IDENT.match(name):
            raise ConfigError(f"Invalid function name {name!r}")
        try:
            source = config_path.parent / table["source"]
            inputs = tuple(parse_type(t) for t in table.get("inputs", []))
            output = parse_type(table.get("output", "bytes"))
        except (KeyError, TypeError, AttributeError) as e:
            raise ConfigError(f"Malformed declaration of {name}: {e}")
        specs.append(FunctionSpec(name=name, source=source, inputs=inputs, output=output))
    return specs


def _read_input(index: int, ty: TypeSpec) -> str:
    var = f"in{index}"
    lines = [
        f"    let {var} = fs::read(&args[{index}]).expect(\"reading input {index}\");",
    ]
    if ty.declared == "bytes":
        pass
    elif ty.declared == "str":
        lines.append(f"    let {var} = String::from_utf8({var}).expect(\"valid UTF-8 in input {index}\");")
    else:
        lines.append(f"    let {var}: {ty.rust} = serde_json::from_slice(&{var}).expect(\"decoding input {index}\");")
    return "\n".join(lines)


def _write_output(ty: TypeSpec) -> str:
    if ty.declared == "bytes":
        return "    let res: Vec<u8> = res;"
    if ty.declared == "str":
        return "    let res: Vec<u8> = res.into_bytes();"
    return "    let res: Vec<u8> = serde_json::to_vec(&res).expect(\"encoding output\");"


def generate_entry_source(spec: FunctionSpec) -> str:
    """Entry source: the routine itself followed by a main() reading argv"""
    try:
        body = spec.source.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"Failed to read source of {spec.name}: {e}")

    reads = "\n".join(_read_input(i, ty) for i, ty in enumerate(spec.inputs))
    call_args = ", ".join(f"in{i}" for i in range(len(spec.inputs)))
    return (
        f"{body.rstrip()}\n"
        "\n"
        "fn main() {\n"
        "    use std::fs;\n"
        "\n"
        "    let mut args: Vec<String> = std::env::args().skip(1).collect();\n"
        "    let out = args.pop().expect(\"output path\");\n"
        f"    assert_eq!(args.len(), {len(spec.inputs)}, \"wrong number of inputs\");\n"
        f"{reads}\n"
        "\n"
        f"    let res = {spec.name}({call_args});\n"
        f"{_write_output(spec.output)}\n"
        "    fs::write(out, res).expect(\"writing output\");\n"
        "}\n"
    )


def generate_client_stub(specs: List[FunctionSpec]) -> str:
    """Python module exposing one RemoteTask per routine"""
    lines = [
        '"""Client stubs generated by gfaas codegen. Do not edit."""',
        "from typing import Dict, List",
        "",
        "from gfaas.task import RemoteTask",
        "",
    ]
    for spec in specs:
        params = ", ".join(ty.python for ty in spec.inputs)
        lines.append("")
        lines.append(f"# ({params}) -> {spec.output.python}")
        lines.append(f"{spec.name} = RemoteTask({spec.name!r}, return_type={spec.output.python})")
    return "\n".join(lines) + "\n"


class CodeGenerator:
    """
    Writes entry sources and client stubs.

    Args:
        config_path: Path to gfaas.toml
        entry_dir: Directory receiving <name>.rs (the module crate's src/bin)
        stub_path: Python file receiving the client stubs
    """

    def __init__(self, config_path: Path, entry_dir: Path, stub_path: Path):
        self.config_path = Path(config_path)
        self.entry_dir = Path(entry_dir)
        self.stub_path = Path(stub_path)

    def generate(self) -> List[Path]:
        specs = load_functions(self.config_path)
        self.entry_dir.mkdir(parents=True, exist_ok=True)

        written = []
        for spec in specs:
            path = self.entry_dir / f"{spec.name}.rs"
            path.write_text(generate_entry_source(spec), encoding="utf-8")
            written.append(path)
            logger.debug(f"Generated entry source {path}")

        self.stub_path.write_text(generate_client_stub(specs), encoding="utf-8")
        written.append(self.stub_path)
        logger.info(f"Generated {len(specs)} entry point(s) and client stubs in {self.stub_path}")
        return written
