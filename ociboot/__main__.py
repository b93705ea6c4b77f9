import json
import logging
from pathlib import Path

import click
import httpx

import ociboot
from ociboot.errors import InvalidReferenceError, OCIBootError
from ociboot.oci import Registry, Store, copy_image
from ociboot.oci.credentials import DockerCredentials
from ociboot.oci.descriptor import ANNOTATION_REF_NAME
from ociboot.oci.image import ManifestImage
from ociboot.oci.reference import parse_named

DEFAULT_STORE_PATH = Path("~/.ociboot")


class Group(click.Group):
    """Reports library errors as CLI errors instead of tracebacks"""

    def invoke(self, ctx):
        try:
            return super().invoke(ctx)
        except (OCIBootError, httpx.HTTPError) as e:
            if ctx.obj is not None and ctx.obj.debug:
                raise
            raise click.ClickException(str(e)) from e


class CLIContext:
    def __init__(self, store_path: Path, debug: bool = False):
        if debug:
            logging.basicConfig(level=logging.DEBUG)
        self.debug = debug
        self.store_path = store_path.expanduser()
        self._store = None

    @property
    def store(self) -> Store:
        if self._store is None:
            self._store = Store(self.store_path)
        return self._store


def registry_options(f):
    f = click.option(
        "--docker-config-path",
        help="Docker config file to read credentials from, may be repeated",
        multiple=True,
        type=click.Path(dir_okay=False, path_type=Path),
    )(f)
    f = click.option(
        "--insecure", help="Use plain http, skip TLS verification", is_flag=True
    )(f)
    f = click.option(
        "-p", "--password", help="Password", default=None, envvar="OCIBOOT_PASSWORD"
    )(f)
    f = click.option(
        "-u", "--username", help="Username", default=None, envvar="OCIBOOT_USERNAME"
    )(f)
    return f


def open_registry(username, password, insecure: bool, docker_config_path) -> Registry:
    return Registry(
        username=username,
        password=password,
        insecure=insecure,
        credentials=DockerCredentials(docker_config_path),
    )


@click.group(cls=Group)
@click.option(
    "--store-path",
    help="Path of the local image store",
    default=DEFAULT_STORE_PATH,
    envvar="OCIBOOT_STORE_PATH",
    show_default=True,
    type=click.Path(file_okay=False, path_type=Path),
)
@click.option("-d", "--debug", help="Debug output", is_flag=True)
@click.pass_context
def cli(ctx, store_path: Path, debug: bool):
    ctx.obj = CLIContext(store_path=store_path, debug=debug)


@cli.command()
@click.option("--tag", help="Optional tag of the image", default=None)
@click.option(
    "--rootfs-file",
    help="Path to a root fs file",
    required=True,
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
)
@click.option(
    "--initramfs-file",
    help="Path to an initramfs file",
    required=True,
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
)
@click.option(
    "--kernel-file",
    help="Path to a kernel file (usually ending with 'vmlinuz')",
    required=True,
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
)
@click.option("--command-line", help="Kernel command line", default=None)
@click.pass_obj
def build(
    obj: CLIContext,
    tag: str | None,
    rootfs_file: Path,
    initramfs_file: Path,
    kernel_file: Path,
    command_line: str | None,
):
    """Build a boot image and store it locally."""
    if tag is not None:
        try:
            parse_named(tag)
        except InvalidReferenceError as e:
            raise click.BadParameter(str(e), param_hint="--tag") from e
    image = ociboot.build_boot_image(
        kernel=kernel_file,
        initramfs=initramfs_file,
        rootfs=rootfs_file,
        command_line=command_line,
    )
    obj.store.build(image, ref=tag)
    click.echo(f"Successfully built {image.descriptor.digest}")


@cli.command()
@click.argument("ref")
@registry_options
@click.pass_obj
def push(
    obj: CLIContext, ref: str, username, password, insecure: bool, docker_config_path
):
    """Push a local image to its registry."""
    image = obj.store.resolve(ref)
    with open_registry(username, password, insecure, docker_config_path) as reg:
        reg.push(ref, image)
    click.echo(f"Pushed {ref} ({image.descriptor.digest})")


@cli.command()
@click.argument("ref")
@registry_options
@click.pass_obj
def pull(
    obj: CLIContext, ref: str, username, password, insecure: bool, docker_config_path
):
    """Pull an image from a registry into the local store."""
    with open_registry(username, password, insecure, docker_config_path) as reg:
        image = copy_image(obj.store, reg, ref)
    click.echo(f"Pulled {ref} ({image.descriptor.digest})")


LAYER_KINDS = {kind: media_type for media_type, kind in ociboot.LAYER_MEDIA_TYPES.items()}


@cli.command()
@click.argument("ref")
@click.option(
    "--layer",
    help="Layer to fetch instead of the manifest",
    type=click.Choice(sorted(LAYER_KINDS)),
    default=None,
)
@registry_options
@click.pass_obj
def url(
    obj: CLIContext,
    ref: str,
    layer: str | None,
    username,
    password,
    insecure: bool,
    docker_config_path,
):
    """Print the URL and headers to fetch a manifest or boot layer of a remote image."""
    media_type = LAYER_KINDS[layer] if layer is not None else None
    with open_registry(username, password, insecure, docker_config_path) as reg:
        info = reg.url(ref, media_type=media_type)
    click.echo(json.dumps(info, indent=2))


@cli.command()
@click.argument("source")
@click.argument("target")
@click.pass_obj
def tag(obj: CLIContext, source: str, target: str):
    """Name the image SOURCE refers to TARGET."""
    descriptor = obj.store.fuzzy_resolve(source, strict=True)
    obj.store.tag(descriptor.digest, target)


@cli.command()
@click.argument("ref")
@click.pass_obj
def untag(obj: CLIContext, ref: str):
    """Remove a name, the image stays in the store."""
    if not obj.store.untag(ref):
        raise click.ClickException(f"No such tag: {ref}")


@cli.command()
@click.argument("ref")
@click.pass_obj
def delete(obj: CLIContext, ref: str):
    """Delete all index entries for REF."""
    try:
        removed = obj.store.delete(ref)
    except InvalidReferenceError:
        removed = 0
    if not removed:
        descriptor = obj.store.fuzzy_resolve(ref, strict=True)
        removed = obj.store.delete(descriptor.digest)
    click.echo(f"Deleted {removed} entries")


def _split_ref_name(ref_name: str | None) -> tuple[str, str]:
    if not ref_name:
        return "<none>", "<none>"
    try:
        ref = parse_named(ref_name)
    except InvalidReferenceError:
        return "<none>", "<none>"
    return ref.name, ref.tag or "<none>"


@cli.command(name="list")
@click.pass_obj
def list_(obj: CLIContext):
    """List all images available locally."""
    descriptors = sorted(
        obj.store.list(),
        key=lambda d: (_ref_name(d), d.digest),
    )
    rows = [("REPOSITORY", "TAG", "IMAGE ID")]
    for descriptor in descriptors:
        repository, tag = _split_ref_name(_ref_name(descriptor))
        rows.append((repository, tag, descriptor.encoded[:12]))
    widths = [max(12, *(len(row[i]) for row in rows)) for i in range(2)]
    for repository, tag, image_id in rows:
        click.echo(f"{repository:<{widths[0]}} {tag:<{widths[1]}} {image_id}")


def _ref_name(descriptor) -> str:
    return (descriptor.annotations or {}).get(ANNOTATION_REF_NAME, "")


@cli.command()
@click.argument("ref")
@click.pass_obj
def inspect(obj: CLIContext, ref: str):
    """Show the descriptor, manifest and config of a local image."""
    descriptor = obj.store.fuzzy_resolve(ref, strict=True)
    image = obj.store.layout.image(descriptor)
    if not isinstance(image, ManifestImage):
        raise click.ClickException(f"{ref} is not a manifest image")
    config = ociboot.read_config(image.config())
    output = {
        "descriptor": image.descriptor.model_dump(exclude_none=True),
        "manifest": image.manifest().model_dump(exclude_none=True),
        "config": config.model_dump(exclude_none=True),
    }
    click.echo(json.dumps(output, indent=2))


if __name__ == "__main__":
    cli()
