"""FlatBuffers schema generator for reflection dumps.

Reads a decompiler `dump.cs`, extracts the enums and IFlatbufferObject
structs it declares, writes them out as a FlatBuffers `.fbs` schema and
hands that schema to `flatc`.

Usage:
    python fbsgen.py --dump dump.cs --output BlueArchive.fbs --compiler lib/flatc.exe
"""

import argparse
import re
import subprocess
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import NamedTuple

DEFAULT_DUMP = Path("dump.cs")
DEFAULT_OUTPUT = Path("BlueArchive.fbs")
DEFAULT_COMPILER = Path("lib") / "flatc.exe"
DEFAULT_NAMESPACE = "FlatData"
DEFAULT_LANGUAGE = "csharp"

COMPILER_LANGUAGES = ("csharp", "cpp", "java", "python", "go", "rust", "ts")
SCOPED_ENUMS_FLAG = "--scoped-enums"

DUPLICATE_OVERWRITE = "overwrite"
DUPLICATE_ERROR = "error"
DUPLICATE_POLICIES = (DUPLICATE_OVERWRITE, DUPLICATE_ERROR)

COMPILER_FAILED_EXIT_STATUS = 3


# ===--- CLI config contracts ---=== #


@dataclass(frozen=True)
class GenerateConfig:
    dump: Path
    output: Path
    compiler: Path
    language: str
    compiler_output_dir: Path | None
    namespace: str
    dump_namespace: str | None
    on_duplicate: str
    skip_compile: bool


VALID_ERROR_CODES = {
    "INVALID_NAMESPACE",
    "OUTPUT_OVERWRITES_INPUT",
}
_NAMESPACE_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*(\.[A-Za-z_][A-Za-z0-9_]*)*$")


class ConfigError(Exception):
    def __init__(self, code: str, message: str, suggestion: str | None = None):
        if code not in VALID_ERROR_CODES:
            raise ValueError(f"Unknown config error code: {code}")
        super().__init__(message)
        self.code = code
        self.message = message
        self.suggestion = suggestion


def validate_namespace(raw: str, flag: str) -> str:
    if _NAMESPACE_RE.match(raw):
        return raw
    raise ConfigError(
        "INVALID_NAMESPACE",
        f"Invalid namespace for {flag}: {raw!r}",
        "Namespaces are dotted identifiers (for example FlatData or Game.Data).",
    )


def build_argument_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Generate a FlatBuffers schema from a reflection dump"
    )

    parser.add_argument("--dump", type=Path, default=DEFAULT_DUMP)
    parser.add_argument("--output", type=Path, default=DEFAULT_OUTPUT)
    parser.add_argument("--compiler", type=Path, default=DEFAULT_COMPILER)
    parser.add_argument(
        "--language", choices=COMPILER_LANGUAGES, default=DEFAULT_LANGUAGE
    )
    parser.add_argument("--compiler-output-dir", type=Path, default=None)
    parser.add_argument("--namespace", type=str, default=DEFAULT_NAMESPACE)
    parser.add_argument("--dump-namespace", type=str, default=None)
    parser.add_argument(
        "--on-duplicate", choices=DUPLICATE_POLICIES, default=DUPLICATE_OVERWRITE
    )
    parser.add_argument("--skip-compile", action="store_true", default=False)

    return parser


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = build_argument_parser()
    return parser.parse_args(argv)


def validate_config(args: argparse.Namespace) -> GenerateConfig:
    namespace = validate_namespace(args.namespace, "--namespace")

    # An empty --dump-namespace selects the global namespace.
    dump_namespace = args.dump_namespace
    if dump_namespace:
        dump_namespace = validate_namespace(dump_namespace, "--dump-namespace")

    if Path(args.dump).resolve() == Path(args.output).resolve():
        raise ConfigError(
            "OUTPUT_OVERWRITES_INPUT",
            f"--output would overwrite the dump: {args.output}",
            "Pass a different --output path for the generated schema.",
        )

    return GenerateConfig(
        dump=args.dump,
        output=args.output,
        compiler=args.compiler,
        language=args.language,
        compiler_output_dir=args.compiler_output_dir,
        namespace=namespace,
        dump_namespace=dump_namespace,
        on_duplicate=args.on_duplicate,
        skip_compile=bool(args.skip_compile),
    )


def build_config(argv: list[str] | None = None) -> GenerateConfig:
    return validate_config(parse_args(argv))


# ===--- Pipeline errors ---=== #


VALID_PIPELINE_ERROR_CODES = {
    "DUMP_READ_FAILED",
    "SCHEMA_WRITE_FAILED",
    "DUPLICATE_DEFINITION",
    "COMPILER_LAUNCH_FAILED",
    "COMPILER_EXIT_NONZERO",
}


class PipelineError(Exception):
    """Fatal failure in one of the generation stages.

    Subclasses fix the code; the code set is closed so callers and tests can
    branch on it the same way they branch on ConfigError.code.
    """

    code = ""

    def __init__(self, message: str):
        if self.code not in VALID_PIPELINE_ERROR_CODES:
            raise ValueError(f"Unknown pipeline error code: {self.code}")
        super().__init__(message)
        self.message = message


class DumpReadError(PipelineError):
    code = "DUMP_READ_FAILED"


class SchemaWriteError(PipelineError):
    code = "SCHEMA_WRITE_FAILED"


class DuplicateDefinitionError(PipelineError):
    code = "DUPLICATE_DEFINITION"

    def __init__(self, kind: str, owner: str, key: object):
        super().__init__(f"Duplicate {kind} {key!r} in {owner}")
        self.kind = kind
        self.owner = owner
        self.key = key


class CompilerLaunchError(PipelineError):
    code = "COMPILER_LAUNCH_FAILED"


class CompilerExitError(PipelineError):
    code = "COMPILER_EXIT_NONZERO"

    def __init__(self, result: "CompilerResult"):
        super().__init__(
            f"Compiler exited with status {result.returncode}: {' '.join(result.command)}"
        )
        self.result = result


# ===--- Schema model ---=== #


class EnumMember(NamedTuple):
    value: int
    name: str


class RecordField(NamedTuple):
    name: str
    type_name: str


@dataclass(frozen=True)
class EnumDefinition:
    """One `enum` block: symbolic constants in first-seen dump order."""

    name: str
    members: tuple[EnumMember, ...] = ()


@dataclass(frozen=True)
class RecordDefinition:
    """One `table` block.

    type_name is kept verbatim from the dump; it is never resolved against
    the other definitions in the model.
    """

    name: str
    fields: tuple[RecordField, ...] = ()


@dataclass(frozen=True)
class SchemaModel:
    """Everything extracted from one dump, in first-seen order.

    Attributes:
        enums: Enum definitions. Names are unique.
        records: Record definitions. Names are unique among records (an enum
            and a record may share a name; the schema compiler rejects that,
            this tool does not).
    """

    enums: tuple[EnumDefinition, ...] = ()
    records: tuple[RecordDefinition, ...] = ()

    def enum(self, name: str) -> EnumDefinition | None:
        return next((e for e in self.enums if e.name == name), None)

    def record(self, name: str) -> RecordDefinition | None:
        return next((r for r in self.records if r.name == name), None)

    @property
    def member_count(self) -> int:
        return sum(len(e.members) for e in self.enums)

    @property
    def field_count(self) -> int:
        return sum(len(r.fields) for r in self.records)


# ===--- Dump parsing ---=== #


@dataclass(frozen=True)
class ParseOptions:
    """Knobs for parse_dump.

    Attributes:
        dump_namespace: Only collect declarations whose `// Namespace:` header
            equals this value. None collects every namespace; "" selects the
            global namespace.
        on_duplicate: DUPLICATE_OVERWRITE keeps the first-seen position and
            the last-seen value. DUPLICATE_ERROR raises
            DuplicateDefinitionError instead.
    """

    dump_namespace: str | None = None
    on_duplicate: str = DUPLICATE_OVERWRITE


DEFAULT_PARSE_OPTIONS = ParseOptions()


@dataclass(frozen=True)
class DeclarationBlock:
    name: str
    namespace: str
    line_number: int
    body_lines: tuple[str, ...] = ()


_DUMP_NAMESPACE_RE = re.compile(r"^\s*//\s*Namespace:\s*(.*?)\s*$")
_ENUM_DECL_RE = re.compile(
    r"^\s*(?:[a-z]+\s+)*enum\s+(.+?)\s*//\s*TypeDefIndex:\s*\d+\s*$"
)
_RECORD_DECL_RE = re.compile(
    r"^\s*(?:[a-z]+\s+)*struct\s+(\S+?)\s*:.*\bIFlatbufferObject\b"
)
_ENUM_MEMBER_RE = re.compile(
    r"^\s*(?:[a-z]+\s+)*const\s+\S+\s+(\w+)\s*=\s*(-?\d+)\s*;"
)
_RECORD_FIELD_RE = re.compile(r"^\s*public\s+(.+)\s+(\S+)\s*\{\s*get;\s*\}")


def _next_nonblank(lines: list[str], start: int) -> int:
    index = start
    while index < len(lines) and not lines[index].strip():
        index += 1
    return index


def _find_closing_brace(lines: list[str], start: int) -> int | None:
    for index in range(start, len(lines)):
        if lines[index].strip() == "}":
            return index
    return None


def find_declaration_blocks(
    text: str, declaration_re: re.Pattern[str]
) -> list[DeclarationBlock]:
    """Find brace-bounded declarations whose header matches declaration_re.

    A body runs from the `{` line after the header to the first line holding
    only `}`. Braces that share a line with other text (`{ get; }`, one-line
    method bodies) never close a block, and scanning resumes after the
    closing line, so adjacent declarations cannot bleed into each other.
    """
    lines = text.splitlines()
    blocks: list[DeclarationBlock] = []
    namespace = ""
    index = 0
    while index < len(lines):
        line = lines[index]
        ns_match = _DUMP_NAMESPACE_RE.match(line)
        if ns_match:
            namespace = ns_match.group(1)
            index += 1
            continue

        decl_match = declaration_re.match(line)
        if decl_match is None:
            index += 1
            continue

        open_index = _next_nonblank(lines, index + 1)
        if open_index >= len(lines) or lines[open_index].strip() != "{":
            index += 1
            continue

        close_index = _find_closing_brace(lines, open_index + 1)
        if close_index is None:
            # No later declaration can close either.
            break

        blocks.append(
            DeclarationBlock(
                name=decl_match.group(1).strip(),
                namespace=namespace,
                line_number=index + 1,
                body_lines=tuple(lines[open_index + 1 : close_index]),
            )
        )
        index = close_index + 1

    return blocks


def find_enum_blocks(text: str) -> list[DeclarationBlock]:
    return find_declaration_blocks(text, _ENUM_DECL_RE)


def find_record_blocks(text: str) -> list[DeclarationBlock]:
    return find_declaration_blocks(text, _RECORD_DECL_RE)


def _store(target: dict, key, value, kind: str, owner: str, on_duplicate: str) -> None:
    if key in target and on_duplicate == DUPLICATE_ERROR:
        raise DuplicateDefinitionError(kind, owner, key)
    target[key] = value


def parse_enum_members(
    body_lines,
    owner: str = "<enum>",
    on_duplicate: str = DUPLICATE_OVERWRITE,
) -> tuple[EnumMember, ...]:
    """Extract `const` members, keyed by numeric value."""
    by_value: dict[int, str] = {}
    for line in body_lines:
        m = _ENUM_MEMBER_RE.match(line)
        if m is None:
            continue
        _store(by_value, int(m.group(2)), m.group(1), "enum value", owner, on_duplicate)
    return tuple(EnumMember(value, name) for value, name in by_value.items())


def parse_record_fields(
    body_lines,
    owner: str = "<struct>",
    on_duplicate: str = DUPLICATE_OVERWRITE,
) -> tuple[RecordField, ...]:
    """Extract `{ get; }` properties, keyed by field name.

    The field name is the last token before the accessor; everything between
    `public` and that token is the type expression.
    """
    by_name: dict[str, str] = {}
    for line in body_lines:
        m = _RECORD_FIELD_RE.match(line)
        if m is None:
            continue
        _store(by_name, m.group(2), m.group(1).strip(), "field", owner, on_duplicate)
    return tuple(RecordField(name, type_name) for name, type_name in by_name.items())


def _namespace_selected(block: DeclarationBlock, options: ParseOptions) -> bool:
    return options.dump_namespace is None or block.namespace == options.dump_namespace


def parse_dump(text: str, options: ParseOptions = DEFAULT_PARSE_OPTIONS) -> SchemaModel:
    """Build a SchemaModel from dump text.

    A dump without any recognizable declaration yields an empty model.

    Raises:
        DuplicateDefinitionError: options.on_duplicate is DUPLICATE_ERROR and a
            type name, enum value or field name repeats.
    """
    enums: dict[str, EnumDefinition] = {}
    for block in find_enum_blocks(text):
        if not _namespace_selected(block, options):
            continue
        members = parse_enum_members(block.body_lines, block.name, options.on_duplicate)
        _store(
            enums,
            block.name,
            EnumDefinition(block.name, members),
            "enum",
            "dump",
            options.on_duplicate,
        )

    records: dict[str, RecordDefinition] = {}
    for block in find_record_blocks(text):
        if not _namespace_selected(block, options):
            continue
        fields = parse_record_fields(block.body_lines, block.name, options.on_duplicate)
        _store(
            records,
            block.name,
            RecordDefinition(block.name, fields),
            "struct",
            "dump",
            options.on_duplicate,
        )

    return SchemaModel(enums=tuple(enums.values()), records=tuple(records.values()))


def load_dump(path: Path, options: ParseOptions = DEFAULT_PARSE_OPTIONS) -> SchemaModel:
    """Read a UTF-8 dump from disk and parse it.

    Raises:
        DumpReadError: File missing, unreadable or not valid UTF-8.
        DuplicateDefinitionError: Propagated from parse_dump.
    """
    try:
        text = Path(path).read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as err:
        raise DumpReadError(f"Cannot read dump {path}: {err}") from err
    return parse_dump(text, options)


# ===--- Schema emission ---=== #


SCHEMA_INDENT = "    "


@dataclass(frozen=True)
class FileWriteResult:
    """Result of writing the generated schema.

    Attributes:
        filename: Filename written, e.g. "BlueArchive.fbs".
        path: Absolute path of the written file.
        line_count: Number of newline characters in the written content.
        byte_count: Number of bytes written (UTF-8 encoded).
    """

    filename: str
    path: Path
    line_count: int
    byte_count: int


def format_enum_block(enum: EnumDefinition) -> list[str]:
    lines = [f"enum {enum.name} : int {{"]
    for member in enum.members:
        lines.append(f"{SCHEMA_INDENT}{member.name} = {member.value},")
    lines.append("}")
    lines.append("")
    return lines


def format_record_block(record: RecordDefinition) -> list[str]:
    lines = [f"table {record.name} {{"]
    for field in record.fields:
        lines.append(f"{SCHEMA_INDENT}{field.name}: {field.type_name};")
    lines.append("}")
    lines.append("")
    return lines


def assemble_schema_source(model: SchemaModel, namespace: str = DEFAULT_NAMESPACE) -> str:
    """Render the complete .fbs text for a model.

    Output format:
        namespace FlatData;

        enum Rarity : int {
            N = 0,
        }

        table Hero {
            Id: int;
        }

    Enum blocks come first, then table blocks, each in model order and each
    followed by one blank line. Returns a string with a trailing newline.
    """
    lines = [f"namespace {namespace};", ""]
    for enum in model.enums:
        lines.extend(format_enum_block(enum))
    for record in model.records:
        lines.extend(format_record_block(record))
    return "\n".join(lines) + "\n"


def write_schema(
    path: Path, model: SchemaModel, namespace: str = DEFAULT_NAMESPACE
) -> FileWriteResult:
    """Write the rendered schema to disk, replacing any existing file.

    Thin I/O shell over assemble_schema_source. Creates missing parent
    directories. A failed write leaves whatever was written in place; the
    caller re-runs the generator.

    Args:
        path: Target .fbs path.
        model: Parsed schema model.
        namespace: Namespace for the `namespace` declaration.

    Returns:
        FileWriteResult for the written file.

    Raises:
        SchemaWriteError: Directory creation or the write failed.
    """
    path = Path(path)
    content = assemble_schema_source(model, namespace)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("w", encoding="utf-8", newline="\n") as f:
            f.write(content)
        resolved = path.resolve()
        file_bytes = resolved.read_bytes()
    except OSError as err:
        raise SchemaWriteError(f"Cannot write schema {path}: {err}") from err
    return FileWriteResult(
        filename=path.name,
        path=resolved,
        line_count=content.count("\n"),
        byte_count=len(file_bytes),
    )


# ===--- Compiler invocation ---=== #


@dataclass(frozen=True)
class CompilerResult:
    """Outcome of one compiler run.

    Attributes:
        command: Full argv that was executed.
        returncode: Process exit status.
        stdout: Captured standard output, decoded as UTF-8.
        stderr: Captured standard error, decoded as UTF-8.
    """

    command: tuple[str, ...]
    returncode: int
    stdout: str
    stderr: str

    @property
    def succeeded(self) -> bool:
        return self.returncode == 0


def build_compiler_command(
    compiler: Path,
    schema_path: Path,
    language: str = DEFAULT_LANGUAGE,
    output_dir: Path | None = None,
) -> list[str]:
    command = [str(compiler), f"--{language}", SCOPED_ENUMS_FLAG]
    if output_dir is not None:
        command.extend(["-o", str(output_dir)])
    command.append(str(schema_path))
    return command


def run_compiler(
    compiler: Path,
    schema_path: Path,
    language: str = DEFAULT_LANGUAGE,
    output_dir: Path | None = None,
) -> CompilerResult:
    """Run the schema compiler and wait for it to exit.

    The exit status is returned, not checked; pass the result to
    check_compiler_result to turn a non-zero status into an error.

    Raises:
        CompilerLaunchError: The executable is missing or cannot be started,
            or output_dir cannot be created.
    """
    command = build_compiler_command(compiler, schema_path, language, output_dir)
    try:
        if output_dir is not None:
            Path(output_dir).mkdir(parents=True, exist_ok=True)
        completed = subprocess.run(
            command,
            capture_output=True,
            text=True,
            encoding="utf-8",
            errors="replace",
            check=False,
        )
    except OSError as err:
        raise CompilerLaunchError(f"Cannot launch compiler {compiler}: {err}") from err
    return CompilerResult(
        command=tuple(command),
        returncode=completed.returncode,
        stdout=completed.stdout or "",
        stderr=completed.stderr or "",
    )


def check_compiler_result(result: CompilerResult) -> CompilerResult:
    if not result.succeeded:
        raise CompilerExitError(result)
    return result


def forward_compiler_output(result: CompilerResult) -> None:
    if result.stdout:
        print(result.stdout, end="" if result.stdout.endswith("\n") else "\n")
    if result.stderr:
        print(
            result.stderr,
            end="" if result.stderr.endswith("\n") else "\n",
            file=sys.stderr,
        )


# ===--- Summary report ---=== #


COMPILER_STATUS_SKIPPED = "skipped"


@dataclass(frozen=True)
class GenerationSummary:
    """Data for the post-generation console report.

    Attributes:
        dump_path: Dump path as given on the command line.
        namespace: Namespace declared in the schema.
        schema: Write result for the .fbs file.
        enum_count: Number of enum blocks emitted.
        member_count: Total enum members across all enums.
        table_count: Number of table blocks emitted.
        field_count: Total fields across all tables.
        compiler_status: "skipped", or "exit <status>" after a compiler run.
    """

    dump_path: str
    namespace: str
    schema: FileWriteResult
    enum_count: int
    member_count: int
    table_count: int
    field_count: int
    compiler_status: str


def build_generation_summary(
    config: GenerateConfig,
    model: SchemaModel,
    schema: FileWriteResult,
    compiler_result: CompilerResult | None = None,
) -> GenerationSummary:
    if compiler_result is None:
        compiler_status = COMPILER_STATUS_SKIPPED
    else:
        compiler_status = f"exit {compiler_result.returncode}"
    return GenerationSummary(
        dump_path=str(config.dump),
        namespace=config.namespace,
        schema=schema,
        enum_count=len(model.enums),
        member_count=model.member_count,
        table_count=len(model.records),
        field_count=model.field_count,
        compiler_status=compiler_status,
    )


def format_generation_summary(summary: GenerationSummary) -> str:
    """Render a GenerationSummary as the console report.

    Counts use thousands separators. Returns a string with exactly one
    trailing newline.
    """
    lines: list[str] = []
    lines.append("FlatBuffers schema generated:")
    lines.append("")
    lines.append(f"  Dump:       {summary.dump_path}")
    lines.append(f"  Schema:     {summary.schema.path}")
    lines.append(f"  Namespace:  {summary.namespace}")
    lines.append("")
    lines.append("  Declarations:")
    lines.append(
        f"    {'Enums:':<11}{summary.enum_count:>6,}  ({summary.member_count:,} members)"
    )
    lines.append(
        f"    {'Tables:':<11}{summary.table_count:>6,}  ({summary.field_count:,} fields)"
    )
    lines.append("")
    lines.append(
        f"  Written: {summary.schema.line_count:,} lines, "
        f"{summary.schema.byte_count:,} bytes"
    )
    lines.append(f"  Compiler:   {summary.compiler_status}")
    lines.append("")
    return "\n".join(lines)


def print_generation_summary(summary: GenerationSummary) -> None:
    print(format_generation_summary(summary), end="")


# ===--- Main generation ---=== #


def run_generate(config: GenerateConfig) -> GenerationSummary:
    """Execute the complete pipeline for a GenerateConfig.

    parse dump -> write schema -> run compiler (unless skipped) -> summary.
    Compiler output is forwarded before its exit status is checked.

    Raises:
        DumpReadError: Dump not readable.
        DuplicateDefinitionError: Duplicate found under DUPLICATE_ERROR.
        SchemaWriteError: Schema not writable.
        CompilerLaunchError: Compiler could not be started.
        CompilerExitError: Compiler exited non-zero.
    """
    print(f"Parsing: {config.dump}")
    options = ParseOptions(
        dump_namespace=config.dump_namespace,
        on_duplicate=config.on_duplicate,
    )
    model = load_dump(config.dump, options)
    print(
        f"  Extracted: {len(model.enums)} enums, {len(model.records)} structs"
    )

    schema = write_schema(config.output, model, config.namespace)
    print(f"  Written: {schema.line_count} lines to {schema.path}")

    compiler_result = None
    if not config.skip_compile:
        print(f"Compiling: {config.compiler} --{config.language}")
        compiler_result = run_compiler(
            config.compiler,
            schema.path,
            config.language,
            config.compiler_output_dir,
        )
        forward_compiler_output(compiler_result)
        check_compiler_result(compiler_result)

    summary = build_generation_summary(config, model, schema, compiler_result)
    print_generation_summary(summary)
    return summary


def main(argv: list[str] | None = None):
    try:
        config = build_config(argv)
    except ConfigError as err:
        print(f"Config error [{err.code}]: {err.message}")
        if err.suggestion:
            print(f"Hint: {err.suggestion}")
        raise SystemExit(1) from err

    try:
        run_generate(config)
    except CompilerExitError as err:
        print(f"Error [{err.code}]: {err.message}")
        raise SystemExit(COMPILER_FAILED_EXIT_STATUS) from err
    except PipelineError as err:
        print(f"Error [{err.code}]: {err.message}")
        raise SystemExit(1) from err


if __name__ == "__main__":
    main()
