import argparse
import stat
import sys
from collections.abc import Callable
from pathlib import Path

import pytest

GENERATOR_DIR = Path(__file__).resolve().parent.parent
if str(GENERATOR_DIR) not in sys.path:
    sys.path.insert(0, str(GENERATOR_DIR))

import fbsgen  # noqa: E402

RARITY_DUMP = """// Namespace: FlatData
public enum Rarity // TypeDefIndex: 12
{
\t// Fields
\tpublic int value__; // 0x0
\tpublic const Rarity N = 0;
\tpublic const Rarity R = 1;
\tpublic const Rarity SR = 2;
}
"""

HERO_DUMP = """// Namespace: FlatData
public struct Hero : IFlatbufferObject // TypeDefIndex: 40
{
\t// Properties
\tpublic ByteBuffer ByteBuffer { get; }
\tpublic long Id { get; }
\tpublic string Name { get; }
\tpublic Rarity Rarity { get; }

\t// Methods
\tpublic static Hero GetRootAsHero(ByteBuffer _bb) { }
\tpublic void __init(int _i, ByteBuffer _bb) { }
}
"""


@pytest.fixture
def sample_dump_text() -> str:
    return RARITY_DUMP + "\n" + HERO_DUMP


@pytest.fixture
def existing_paths(tmp_path: Path, sample_dump_text: str) -> dict[str, Path]:
    dump = tmp_path / "dump.cs"
    dump.write_text(sample_dump_text, encoding="utf-8")

    return {
        "dump": dump,
        "output": tmp_path / "out" / "Schema.fbs",
        "compiler": tmp_path / "flatc",
    }


@pytest.fixture
def missing_path(tmp_path: Path) -> Path:
    return tmp_path / "missing"


@pytest.fixture
def make_args(existing_paths: dict[str, Path]) -> Callable[..., argparse.Namespace]:
    def _make_args(**overrides: object) -> argparse.Namespace:
        base_args: dict[str, object] = {
            "dump": existing_paths["dump"],
            "output": existing_paths["output"],
            "compiler": existing_paths["compiler"],
            "language": "csharp",
            "compiler_output_dir": None,
            "namespace": "FlatData",
            "dump_namespace": None,
            "on_duplicate": "overwrite",
            "skip_compile": True,
        }
        base_args.update(overrides)
        return argparse.Namespace(**base_args)

    return _make_args


@pytest.fixture
def make_config(make_args: Callable[..., argparse.Namespace]) -> Callable[..., fbsgen.GenerateConfig]:
    def _make_config(**overrides: object) -> fbsgen.GenerateConfig:
        return fbsgen.validate_config(make_args(**overrides))

    return _make_config


@pytest.fixture
def make_fake_compiler(tmp_path: Path) -> Callable[..., Path]:
    """Write an executable stand-in for flatc.

    The script echoes its argv on stdout, writes stderr_text to stderr, and
    exits with exit_code.
    """
    if sys.platform == "win32":
        pytest.skip("fake compiler relies on a shebang script")

    def _make_fake_compiler(
        *, exit_code: int = 0, stderr_text: str = "", name: str = "fake_flatc"
    ) -> Path:
        script = tmp_path / name
        script.write_text(
            f"#!{sys.executable}\n"
            "import sys\n"
            "print('flatc args: ' + ' '.join(sys.argv[1:]))\n"
            f"sys.stderr.write({stderr_text!r})\n"
            f"sys.exit({exit_code})\n",
            encoding="utf-8",
        )
        script.chmod(script.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        return script

    return _make_fake_compiler


@pytest.fixture
def make_enum() -> Callable[..., fbsgen.EnumDefinition]:
    def _make_enum(name: str, members: list[tuple[int, str]]) -> fbsgen.EnumDefinition:
        return fbsgen.EnumDefinition(
            name, tuple(fbsgen.EnumMember(value, member) for value, member in members)
        )

    return _make_enum


@pytest.fixture
def make_record() -> Callable[..., fbsgen.RecordDefinition]:
    def _make_record(name: str, fields: list[tuple[str, str]]) -> fbsgen.RecordDefinition:
        return fbsgen.RecordDefinition(
            name, tuple(fbsgen.RecordField(field, type_name) for field, type_name in fields)
        )

    return _make_record
