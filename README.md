# magikoopa

Tools for patching the code of a 3DS title with your own compiled code.

Given a working directory that holds the title's `code.bin` and
`exheader.bin`, together with the outputs of building your new code and its
loader (`newcode.bin`, `newcode.sym`, `loader/loader.bin`,
`loader/loader.sym`), magikoopa:

- checks that `Makefile`, `loader/Makefile`, `code.bin` and `exheader.bin`
  are present,
- keeps a backup of the original `code.bin` and `exheader.bin` in `bak/`
  and can restore them from it,
- works out where the loader and the new code go from the code set layout
  of the backed-up exheader (`PatchLayout`),
- writes `loader/source/newcodeinfo.h` with the offset and size of the new
  code,
- places loader text, new code and loader data into `code.bin`,
- applies the hooks described in `.hks` files,
- enlarges the data segment in `exheader.bin`, clears the BSS size and adds
  SVC 0x70 (ControlProcessMemory) to the ARM11 kernel capabilities,
- copies the results to the paths configured in the project's
  `<project>.mkproj.user` file, if any.

## Installing

```
pip install .
```

For running the tests:

```
pip install .[test]
pytest
```

## Command line

```
magikoopa PATH COMMAND
```

`PATH` is the working directory. Every command first checks it, creates the
backup in `bak/` if it is missing and prints the layout (game name, loader
offset, loader maximum size, new code offset). The commands are:

| command | effect |
|---------|--------|
| `info` | only shows the layout |
| `restore` | copies `bak/code.bin` and `bak/exheader.bin` back into place |
| `prepare` | restores the originals and prints `CODEADDR=0x…` for building the new code |
| `newcode` | reads `newcode.sym` and the hooks, writes `newcode_info.h` as `loader/source/newcodeinfo.h`, and prints `CODEADDR=0x… DATAADDR=0x…` for building the loader |
| `insert` | links new code and loader, patches `code.bin` and `exheader.bin`, copies the results and prints the final status |

A typical run is `prepare`, your own build of the new code with the printed
`CODEADDR`, `newcode`, your own build of the loader with the printed
addresses, then `insert`. Errors are printed as `error: …` and give exit
status 1.

## Hook files

Hooks are read from every `*.hks` file directly in `source/` and `hooks/`
(and in `loader/source/` and `loader/hooks/` for the loader). Each entry
starts with a name followed by a colon at the start of a line; its settings
follow on lines indented with spaces or tabs. `#` starts a comment.

```
PlayerUpdateHook:
    type: softbranch
    addr: 0x00123456
    func: PlayerUpdate
    opcode: pre

ReturnOne:
    type: patch
    addr: 0x00200000
    data: 0x01 00 A0 E3
```

Numbers are decimal, or hexadecimal with a `0x` prefix.

| type | keys | effect |
|------|------|--------|
| `branch` | `addr`, `link`, `func` or `dest` | writes a `B`/`BL` at `addr` |
| `softbranch` / `soft_branch` | `addr`, `func` or `dest`, optional `opcode` (`pre`, `post`, `ignore`) | branches to a stub that saves registers, calls the function, restores them and returns, optionally replaying the overwritten instruction |
| `patch` | `addr`, and `data` (hex) or `src` + `len` | writes raw bytes, or copies `len` bytes from symbol `src` |
| `symbol` / `symptr` / `sym_ptr` | `addr`, `sym` | writes the address of a symbol |

Addresses below `0x100000` are rejected. Invalid entries are skipped and
reported as `path:line: error: Hook: message`.

## Library

- `magikoopa.files` – `MemoryFile` and `ExternalFile`, seekable files with
  `Endianness`-aware `read8`…`read64`, `write8`…`write64`, float and
  string helpers; both work as context managers.
- `magikoopa.exheader` – `Exheader`, the NCCH extended header with its
  `SystemControlInfo`, `CodeSetInfo` and `AccessControlInfo` parts;
  `to_bytes()` and `save()` write it back, `describe()` gives a readable dump.
- `magikoopa.symtable` – `SymTable`, loaded from `objdump -t` output, with
  C++ names demangled by `magikoopa.demangle.demangle`. `get()` raises
  `KeyError` for an unknown name, `find()` returns `None`.
- `magikoopa.hooks` – the hook types, `HookInfo`, `make_branch_opcode` and
  `offset_opcode`.
- `magikoopa.hooklinker` – `parse_hook_file` and `HookLinker`, which loads
  `.hks` files (`LoadMode.FILE`, `DIR` or `SUBDIRS`) and applies them.
- `magikoopa.issues` – `IssueLog` collects warnings and errors from build
  output; `build_editor_command` fills `%path%`, `%line%` and `%column%`
  in an editor command template.
- `magikoopa.patchmaker` – `PatchMaker`, `PatchLayout`, `align` and
  `merge_kernel_caps`.

```python
from magikoopa.files import ExternalFile
from magikoopa.exheader import Exheader
from magikoopa.demangle import demangle

with ExternalFile("exheader.bin") as file:
    print(Exheader(file).describe())

print(demangle("_Z3fooi"))  # foo(int)
```

## What it does not do

magikoopa does not compile anything and starts no other programs: building
the new code and the loader with the printed `CODEADDR`/`DATAADDR` values is
left to your own `make` runs. It has no graphical window; `IssueLog` and
`build_editor_command` only prepare the issue list and the editor command,
they do not open an editor. It reads no archive or compressed file formats.