"""CLI entry point for certmgmt.

Invoked as::

    certmgmt [OPTIONS] COMMAND [ARGS]...

or, during development::

    python -m certmgmt.cli.main

Commands
--------
serve              Run the HTTP server
list               List installed certificates
install            Install a certificate with a caller-generated key pair
rotate             Rotate a certificate with a caller-generated key pair
revoke             Revoke certificates by id
load-ca-bundle     Replace the trusted CA bundle
can-generate-csr   Ask whether the target can generate a CSR
dev-ca init        Create a development CA
dev-ca issue       Issue a certificate from the development CA
"""
from __future__ import annotations

import datetime
import logging
import sys
from pathlib import Path

import click
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from certmgmt.certificates.models import Certificate, CertificateType, KeyPair, KeyType
from certmgmt.config import CertManagerConfig, build_service, load_config
from certmgmt.errors import CertManagementError
from certmgmt.lifecycle.messages import FinalizeRequest, LoadCertificateRequest
from certmgmt.service import CertificateManagementService

console = Console()


# ------------------------------------------------------------------
# Root group
# ------------------------------------------------------------------


@click.group()
@click.version_option(package_name="certmgmt")
@click.option(
    "--config",
    "config_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="JSON configuration file.",
)
@click.option(
    "--store-dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Certificate store directory (overrides the config file).",
)
@click.option(
    "--ca-bundle-path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="CA bundle PEM file (overrides the config file).",
)
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"]),
    default="WARNING",
    show_default=True,
)
@click.pass_context
def cli(
    ctx: click.Context,
    config_path: Path | None,
    store_dir: Path | None,
    ca_bundle_path: Path | None,
    log_level: str,
) -> None:
    """Target-side certificate install, rotation, CA bundle and revocation management"""
    logging.basicConfig(level=getattr(logging, log_level))
    config = load_config(config_path)
    updates: dict[str, object] = {}
    if store_dir is not None:
        updates["store_dir"] = store_dir
    if ca_bundle_path is not None:
        updates["ca_bundle_path"] = ca_bundle_path
    ctx.obj = config.model_copy(update=updates)


def _service(ctx: click.Context) -> CertificateManagementService:
    config: CertManagerConfig = ctx.obj
    if config.store_dir is None:
        console.print(
            "[yellow]Warning:[/yellow] no --store-dir configured; "
            "changes are kept in memory and discarded on exit."
        )
    return build_service(config)


def _fail(exc: CertManagementError) -> None:
    console.print(f"[red]Error:[/red] [{exc.code.value}] {escape(exc.message)}")
    sys.exit(1)


def _read_certificate(path: Path) -> Certificate:
    return Certificate(type=CertificateType.CT_X509, certificate=path.read_bytes())


@cli.command(name="version")
def version_command() -> None:
    """Show version information."""
    from certmgmt import __version__

    console.print(f"[bold]certmgmt[/bold] v{__version__}")


# ------------------------------------------------------------------
# serve
# ------------------------------------------------------------------


@cli.command(name="serve")
@click.option("--host", default="127.0.0.1", show_default=True, help="Bind address.")
@click.option("--port", type=int, default=8080, show_default=True, help="TCP port.")
@click.pass_context
def serve_command(ctx: click.Context, host: str, port: int) -> None:
    """Run the HTTP server."""
    from certmgmt.server import routes
    from certmgmt.server.app import run_server

    routes.configure(ctx.obj)
    run_server(host=host, port=port)


# ------------------------------------------------------------------
# list
# ------------------------------------------------------------------


@cli.command(name="list")
@click.pass_context
def list_command(ctx: click.Context) -> None:
    """List installed certificates."""
    infos = _service(ctx).get_certificates()
    if not infos:
        console.print("[yellow]No certificates installed.[/yellow]")
        return

    table = Table(title="Installed Certificates", show_header=True)
    table.add_column("Certificate ID", style="cyan")
    table.add_column("Subject")
    table.add_column("Not After")
    table.add_column("Endpoints")
    table.add_column("Modified")

    for info in infos:
        cert = info.certificate.load_x509()
        endpoints = ", ".join(f"{e.type.value}:{e.endpoint}" for e in info.endpoints) or "(none)"
        table.add_row(
            info.certificate_id,
            cert.subject.rfc4514_string(),
            cert.not_valid_after_utc.isoformat(),
            endpoints,
            _format_ns(info.modification_time),
        )

    console.print(table)
    console.print(f"\nTotal: {len(infos)} certificate(s)")


def _format_ns(nanoseconds: int) -> str:
    return datetime.datetime.fromtimestamp(
        nanoseconds / 1e9, tz=datetime.timezone.utc
    ).isoformat(timespec="seconds")


# ------------------------------------------------------------------
# install / rotate
# ------------------------------------------------------------------


def _session_options(func):  # type: ignore[no-untyped-def]
    func = click.option(
        "--ca",
        "ca_files",
        multiple=True,
        type=click.Path(exists=True, dir_okay=False, path_type=Path),
        help="CA certificate PEM to load as the new bundle (repeatable).",
    )(func)
    func = click.option(
        "--key",
        "key_file",
        required=True,
        type=click.Path(exists=True, dir_okay=False, path_type=Path),
        help="PEM private key matching the certificate.",
    )(func)
    func = click.option(
        "--cert",
        "cert_file",
        required=True,
        type=click.Path(exists=True, dir_okay=False, path_type=Path),
        help="PEM certificate signed by your CA.",
    )(func)
    return click.argument("certificate_id")(func)


def _run_client_keyed_session(
    ctx: click.Context,
    operation: str,
    certificate_id: str,
    cert_file: Path,
    key_file: Path,
    ca_files: tuple[Path, ...],
) -> None:
    service = _service(ctx)
    try:
        key = KeyPair(private_key=key_file.read_bytes(), public_key=b"").load_private_key()
    except CertManagementError as exc:
        _fail(exc)
        return
    steps = [
        LoadCertificateRequest(
            certificate=_read_certificate(cert_file),
            key_pair=KeyPair.from_private_key(key),
            certificate_id=certificate_id,
            ca_certificates=tuple(_read_certificate(p) for p in ca_files),
        ),
        FinalizeRequest(),
    ]
    run = service.install if operation == "install" else service.rotate
    try:
        for _ in run(steps):
            pass
    except CertManagementError as exc:
        _fail(exc)
    verb = "Installed" if operation == "install" else "Rotated"
    console.print(f"[green]{verb}[/green] certificate [bold]{certificate_id}[/bold]")
    if ca_files:
        console.print(f"  CA bundle: {len(ca_files)} certificate(s)")


@cli.command(name="install")
@_session_options
@click.pass_context
def install_command(
    ctx: click.Context,
    certificate_id: str,
    cert_file: Path,
    key_file: Path,
    ca_files: tuple[Path, ...],
) -> None:
    """Install a new certificate as CERTIFICATE_ID."""
    _run_client_keyed_session(ctx, "install", certificate_id, cert_file, key_file, ca_files)


@cli.command(name="rotate")
@_session_options
@click.pass_context
def rotate_command(
    ctx: click.Context,
    certificate_id: str,
    cert_file: Path,
    key_file: Path,
    ca_files: tuple[Path, ...],
) -> None:
    """Replace the certificate installed as CERTIFICATE_ID."""
    _run_client_keyed_session(ctx, "rotate", certificate_id, cert_file, key_file, ca_files)


# ------------------------------------------------------------------
# revoke
# ------------------------------------------------------------------


@cli.command(name="revoke")
@click.argument("certificate_ids", nargs=-1, required=True)
@click.pass_context
def revoke_command(ctx: click.Context, certificate_ids: tuple[str, ...]) -> None:
    """Revoke one or more CERTIFICATE_IDS."""
    result = _service(ctx).revoke_certificates(certificate_ids)
    for cid in result.revoked:
        console.print(f"[red]Revoked[/red] certificate [bold]{cid}[/bold]")
    for error in result.errors:
        console.print(
            f"[yellow]Not revoked[/yellow] [bold]{error.certificate_id}[/bold]: "
            f"[{error.code.value}] {escape(error.error_message)}"
        )
    if result.errors:
        sys.exit(1)


# ------------------------------------------------------------------
# load-ca-bundle
# ------------------------------------------------------------------


@cli.command(name="load-ca-bundle")
@click.argument(
    "pem_files",
    nargs=-1,
    required=True,
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
)
@click.pass_context
def load_ca_bundle_command(ctx: click.Context, pem_files: tuple[Path, ...]) -> None:
    """Replace the CA bundle with the certificates in PEM_FILES."""
    try:
        bundle = _service(ctx).load_ca_bundle(_read_certificate(p) for p in pem_files)
    except CertManagementError as exc:
        _fail(exc)
        return
    console.print(f"[green]Loaded[/green] CA bundle with {len(bundle)} certificate(s)")


# ------------------------------------------------------------------
# can-generate-csr
# ------------------------------------------------------------------


@cli.command(name="can-generate-csr")
@click.option(
    "--key-type",
    type=click.Choice([k.value for k in KeyType]),
    default=KeyType.KT_RSA.value,
    show_default=True,
)
@click.option(
    "--certificate-type",
    type=click.Choice([c.value for c in CertificateType]),
    default=CertificateType.CT_X509.value,
    show_default=True,
)
@click.option("--key-size", type=int, default=2048, show_default=True)
@click.pass_context
def can_generate_csr_command(
    ctx: click.Context, key_type: str, certificate_type: str, key_size: int
) -> None:
    """Report whether the target can generate a CSR with these parameters."""
    can_generate = _service(ctx).can_generate_csr(
        key_type=KeyType(key_type),
        certificate_type=CertificateType(certificate_type),
        key_size=key_size,
    )
    if can_generate:
        console.print("[green]yes[/green]")
    else:
        console.print("[red]no[/red]")
        sys.exit(1)


# ------------------------------------------------------------------
# dev-ca
# ------------------------------------------------------------------


@cli.group(name="dev-ca")
def dev_ca_group() -> None:
    """Development CA for labs and demos."""


@dev_ca_group.command(name="init")
@click.argument("out_dir", type=click.Path(file_okay=False, path_type=Path))
@click.option("--common-name", default="certmgmt Development CA", show_default=True)
def dev_ca_init_command(out_dir: Path, common_name: str) -> None:
    """Create a development CA in OUT_DIR (ca.pem, ca-key.pem)."""
    from certmgmt.certificates.ca import DevelopmentCA

    ca = DevelopmentCA.generate(common_name=common_name)
    out_dir.mkdir(parents=True, exist_ok=True)
    (out_dir / "ca.pem").write_bytes(ca.certificate().certificate)
    (out_dir / "ca-key.pem").write_bytes(ca.ca_key_pem())
    console.print(f"[green]Created[/green] development CA in {out_dir}")


@dev_ca_group.command(name="issue")
@click.argument("common_name")
@click.option(
    "--ca-dir",
    required=True,
    type=click.Path(exists=True, file_okay=False, path_type=Path),
    help="Directory created by 'dev-ca init'.",
)
@click.option(
    "--out-dir",
    required=True,
    type=click.Path(file_okay=False, path_type=Path),
    help="Where to write cert.pem and key.pem.",
)
@click.option("--validity-days", type=int, default=365, show_default=True)
def dev_ca_issue_command(
    common_name: str, ca_dir: Path, out_dir: Path, validity_days: int
) -> None:
    """Issue a certificate and key for COMMON_NAME."""
    from certmgmt.certificates.ca import DevelopmentCA

    ca = DevelopmentCA.from_pem(
        (ca_dir / "ca.pem").read_bytes(), (ca_dir / "ca-key.pem").read_bytes()
    )
    cert, key_pair = ca.issue(common_name, validity_days=validity_days)
    out_dir.mkdir(parents=True, exist_ok=True)
    (out_dir / "cert.pem").write_bytes(cert.certificate)
    (out_dir / "key.pem").write_bytes(key_pair.private_key)
    console.print(f"[green]Issued[/green] certificate for [bold]{common_name}[/bold] in {out_dir}")


if __name__ == "__main__":
    cli()
