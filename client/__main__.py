"""
Command line front end for the issuer and verifier.

    python -m client issue --subject CS101 --lat 12.9716 --lng 77.5946 --minutes 5 --png qr.png
    python -m client scan --student 21CS001 --lat 12.97165 --lng 77.59465 TOKEN
"""
import base64
import logging
import sys
import time

import click

from client import API_URL
from client.api_client import AttendanceApiClient
from client.devices import FixedLocationProvider, PastedTokenCapture
from client.issuer import SessionIssuer, IssuerState
from client.verifier import ScanVerifier, VerifierState
from utils.geo_utils import accuracy_status


@click.group()
@click.option("--api", "api_url", default=API_URL, show_default=True, help="Attendance API base URL")
@click.option("--verbose", is_flag=True)
@click.pass_context
def cli(ctx, api_url, verbose):
    logging.basicConfig(level=logging.DEBUG if verbose else logging.WARNING,
                        format="%(asctime)s %(levelname)s: %(message)s")
    ctx.obj = AttendanceApiClient(api_url)


@cli.command()
@click.option("--subject", required=True)
@click.option("--lat", type=float, required=True)
@click.option("--lng", type=float, required=True)
@click.option("--radius", type=float, default=None, help="Allowed radius in meters")
@click.option("--minutes", type=click.IntRange(1, 30), default=5, show_default=True)
@click.option("--png", type=click.Path(dir_okay=False, writable=True), default=None,
              help="Write the QR code image here")
@click.pass_obj
def issue(api, subject, lat, lng, radius, minutes, png):
    """Start a session and show its countdown until it expires (Ctrl+C stops it)."""
    issuer = SessionIssuer(api, FixedLocationProvider(lat, lng), duration_minutes=minutes, allowed_radius=radius)
    issuer.select_subject(subject)
    issuer.request_location()
    session = issuer.start()
    if session is None:
        raise click.ClickException(issuer.error)

    click.echo(f"Session {session['id']} for {subject}")
    click.echo(f"Token: {issuer.token}")
    if png:
        with open(png, "wb") as f:
            f.write(base64.b64decode(issuer.qr_image))
        click.echo(f"QR code written to {png}")

    try:
        while issuer.state is IssuerState.ACTIVE:
            click.echo(f"\rTime left {issuer.formatted_time_left}  Present {issuer.present_count}  ", nl=False)
            time.sleep(1)
    except KeyboardInterrupt:
        issuer.stop()
    finally:
        issuer.close()
    click.echo(f"\nSession {issuer.state.value}. Present: {issuer.present_count}")


@cli.command()
@click.option("--student", required=True)
@click.option("--lat", type=float, required=True)
@click.option("--lng", type=float, required=True)
@click.option("--accuracy", type=float, default=None, help="GPS accuracy in meters")
@click.argument("token")
@click.pass_obj
def scan(api, student, lat, lng, accuracy, token):
    """Verify a pasted session token and mark attendance."""
    if accuracy is not None:
        level, message = accuracy_status(accuracy)
        click.echo(f"Location accuracy {round(accuracy)}m ({level}): {message}")

    verifier = ScanVerifier(api, student, FixedLocationProvider(lat, lng, accuracy), PastedTokenCapture(token))
    verifier.enter()
    verifier.start_scanning()
    verifier.close()

    click.echo(f"{verifier.state.value}: {verifier.message}")
    if verifier.state not in (VerifierState.SUCCESS, VerifierState.ALREADY_MARKED):
        sys.exit(1)


if __name__ == "__main__":
    cli()
