# usdcrate

`usdcrate` reads binary USD crate files (`.usdc`), including crate layers
stored inside USDZ archives. It reads the crate's structural sections
(tokens, strings, fields, field sets, paths and specs) when a file is opened.
Field values are decoded into plain Python data only when they are asked for.

## Installation

```
pip install usdcrate
```

## Reading a crate file

```python
from usdcrate.data import read_file
from usdcrate.sdf import Path, path

data = read_file("scene.usdc")

root = Path.abs_root()
print(data.spec_type(root))     # SpecType.PSEUDO_ROOT
print(data.list(root))          # field names of the root spec

children = data.get(root, "primChildren")
print(children.kind, children.data)

normals = data.get(path("/World.normals"), "default")
```

`read_file` loads the whole file into memory. `CrateData.open(stream, safe)`
accepts any seekable binary stream, and that stream must stay open while
values are being fetched. When `safe` is true, the indices that connect
the sections are checked before the specs are built.

Paths can be passed as `Path` objects or as strings. `has_spec`, `has_field`,
`spec_type` and `list` query what the file holds. `get` decodes a single field
and returns a `usdcrate.sdf.Value`. A `Value` holds a `ValueKind` and its
`data`: numbers, lists, strings, `Path`s, `ListOp`s, `Reference`s,
`Payload`s, `LayerOffset`s, dictionaries, or `(time, Value)` pairs for time
samples. Vector, matrix and quaternion values come back as flat lists of
components.

`into_specs()` decodes every field in one pass. It returns a mapping from
each path to a `(SpecType, {field name: Value})` pair. Any field that cannot
be decoded is left out.

## Reading a USDZ archive

```python
from usdcrate.usdz import Archive

with Archive.open("model.usdz") as archive:
    print(len(archive), archive.file_names())
    root_layer = archive.find_root_layer()
    data = archive.read(root_layer)
```

`find_root_layer` returns the first entry that ends in `.usdc`, `.usda` or
`.usd`. `Archive.read` only accepts `.usdc` entries. Any other extension
raises an error, and that includes nested `.usdz` archives.

## Lower-level pieces

- `usdcrate.crate.CrateFile` holds the structural sections of a crate file.
  `validate()` checks their indices, and `decompress_lz4` unpacks the
  file's LZ4 blocks, both single and chunked.
- `usdcrate.decode.ValueDecoder` turns a `ValueRep` into a `Value`.
- `usdcrate.arrays` reads scalar and array values at the offset a
  `ValueRep` points to.
- `usdcrate.coding` contains the compressed integer coding that crate files
  use: `decode_ints`, `encode_ints` and `encoded_buffer_size`.
- `usdcrate.layout` defines the on-disk records `Bootstrap`, `Section`,
  `ValueRep`, `ListOpHeader`, `Type` and `Version`.
- `usdcrate.sdf` defines the scene description types `Path`, `SpecType`,
  `Specifier`, `Permission`, `Variability`, `ListOp`, `Reference`,
  `Payload`, `LayerOffset` and `Value`.

A malformed or unsupported file raises `usdcrate.layout.CrateError`, which
is a subclass of `ValueError`.

## What it does not do

- Only crate files from version 0.4.0 up to 0.10.x can be read. Older
  layouts are rejected.
- Text layers (`.usda`) are not parsed, and this includes text layers inside
  USDZ archives.
- Nothing is written. Files can only be read.
- Layers are not composed. References, payloads and sublayers are returned
  as stored and are never followed.
- Nested dictionaries and a few rarely used value types (such as integer
  list ops and path expressions) are reported as unsupported.
- There is no command-line tool.