# bcvkit

bcvkit helps run bootc container images as libvirt virtual machines.
It builds libvirt domain XML, lists and filters the bootc volumes in a
storage pool, uploads disk images into a pool, and provides helpers for
defining and starting VMs. It calls `virsh` and `podman` on the host, so
both must be installed and on `PATH` for those parts to work.

## Installation

```
pip install .
```

To run the test suite as well:

```
pip install ".[test]"
pytest
```

## Command line

The package installs one command, `bcvkit`, with one subcommand,
`libvirt list-volumes`:

```
bcvkit --help
bcvkit libvirt list-volumes --pool default
bcvkit libvirt list-volumes --pool default --detailed
bcvkit libvirt list-volumes --pool default --json
```

Options of `list-volumes`:

- `--pool NAME`: storage pool to search (default `default`).
- `--json`: print pretty-printed JSON instead of a table.
- `--detailed`: add format, path and creation time columns to the table.
- `--source-image TEXT`: keep only volumes whose source image contains TEXT.
- `--all`: list every volume, not only bootc volumes.
- `-c URI`, `--connect URI`: hypervisor connection URI passed to `virsh -c`.

A volume counts as a bootc volume if it carries bootc metadata or if its
name starts with `bootc-`. Metadata is read from a JSON `<description>`
starting with `bcvk volume: `, or else from `bootc:source-image`,
`bootc:source-digest` and `bootc:created` elements in the volume XML.

The command exits with status 1 and prints the message if `virsh` fails.
Logging goes to stderr; set `BCVKIT_LOG` to a level name such as `debug`
(the default is `info`).

## Library use

### Domain XML

`bcvkit.domain.DomainBuilder` is an immutable builder: every `with_*`
method returns a new builder. `build_xml()` renders the XML for the host
architecture, as detected by `ArchConfig.detect()`:

```python
from bcvkit.domain import DomainBuilder

xml = (
    DomainBuilder()
    .with_name("demo")
    .with_memory(4096)
    .with_vcpus(4)
    .with_disk("/var/lib/libvirt/images/demo.raw")
    .with_network("bridge=virbr0")
    .with_metadata("bootc:source-image", "quay.io/fedora/fedora-bootc:42")
    .build_xml()
)
```

These network values are accepted:

- `none`: no interface.
- `default` (or no network set): no interface in the XML.
- `user`: user-mode networking.
- `bridge=<name>`: a bridged interface.
- Any other value is used as the name of a libvirt network.

`with_vnc(port)` adds VNC graphics, `with_kernel_args(...)` adds a
`<cmdline>`, and `with_qemu_args([...])` adds a `qemu:commandline`
section. A name is required (`ValueError` otherwise); memory defaults to
4096 MiB and vCPUs to 2.

### Volumes

`bcvkit.volumes` parses `virsh` output and formats sizes:

```python
from bcvkit.volumes import format_size, parse_virsh_size

parse_virsh_size("5.00 GiB")   # 5368709120
format_size(1536)              # "1.5KB"
```

`ListVolumesOptions` queries one pool (`list_pool_volumes`,
`get_volume_info`), filters the results (`filter_volumes`) and renders
them (`render_human`, `render_json`). `run(opts)` does all of this and
prints the result. Failures raise `VirshError`.

### Uploads

`bcvkit.upload.UploadOptions` chooses a volume name: the one given, or
`bootc-` plus the last component of the image reference, with `:`, `/`
and `.` replaced by `-`. `get_cached_volume_name(digest)` appends the
first 12 characters of the digest (after any `sha256:`).
`upload_to_libvirt(disk_path, size, digest)` checks the pool, deletes
any volume of the same name, creates a raw volume of the given size and
uploads the disk image into it, raising `UploadError` on failure.

`default_disk_size(image_size)` returns twice the image size with a
4 GiB minimum. `metadata_xml` and `insert_volume_metadata` produce
bootc `<metadata>` blocks for a volume.

### VMs

`bcvkit.vm` offers `generate_unique_vm_name`, `create_disk_path`
(an unused `.raw` path in the default pool, or in a directory you pass),
`get_libvirt_storage_pool_path`, `find_available_ssh_port`,
`ssh_qemu_args` and `define_and_start_domain`, which raise `VmError`
on failure.

### Container images

`bcvkit.podman.get_image_size` asks podman for the size in bytes of a
local image. `get_system_info` reads podman's storage configuration.
Both raise `PodmanError` on failure.

## What bcvkit does not do

bcvkit does not install a container image to a disk image: uploads
expect an existing disk file. It does not generate SSH keys or SMBIOS
credentials, run ephemeral VMs, or open SSH sessions. Its only command
is `libvirt list-volumes`; there are no commands to run, start, stop,
inspect, remove or upload VMs; those steps are available only through
the library functions above.