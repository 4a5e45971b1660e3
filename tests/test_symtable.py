import pytest

from magikoopa.symtable import Symbol, SymTable

TABLE = """
newcode.elf:     file format elf32-littlearm

SYMBOL TABLE:
00300000 l    d  .text\t00000000 .text
00300010 g     F .text\t00000020 __text_start
00300040 g     F .text\t00000008 _Z3fooi
00300050 g     F .text\t00000004 _Zbroken
"""


@pytest.fixture
def table(tmp_path):
    path = tmp_path / "newcode.sym"
    path.write_text(TABLE)
    symbols = SymTable()
    symbols.load(path)
    return symbols


def test_loads_plain_symbol(table):
    assert table.get("__text_start") == 0x300010
    assert table.symbols["__text_start"] == Symbol(0x300010, 0x20, False)


def test_demangles_names(table):
    assert table.get("foo(int)") == 0x300040
    assert table.symbols["foo(int)"].was_mangled is True
    assert "_Z3fooi" not in table


def test_unparseable_mangled_names_skipped(table):
    assert "_Zbroken" not in table
    assert len(table) == 3


def test_missing_symbol(table):
    assert table.find("nothing") is None
    with pytest.raises(KeyError):
        table.get("nothing")


def test_missing_file_adds_nothing(tmp_path):
    symbols = SymTable()
    symbols.load(tmp_path / "absent.sym")
    assert len(symbols) == 0


def test_parse_line_rejects_short_and_non_hex():
    symbols = SymTable()
    assert symbols.parse_line("SYMBOL TABLE:") is None
    assert symbols.parse_line("zz g F .text 00000004 name") is None
    assert len(symbols) == 0


def test_clear(table):
    table.clear()
    assert len(table) == 0
    assert table.find("__text_start") is None