import sys
from pathlib import Path

import typer

from joinkeeper.tokens import codec

app = typer.Typer()


def _read_token(token: str) -> str:
    """Accept the token itself, or '-' to read it from stdin."""
    if token == "-":
        return sys.stdin.read().strip()
    return token


@app.command("decode")
def decode_token(token: str = typer.Argument(..., help="Join token, or '-' for stdin")):
    """Print the kubeconfig embedded in a join token."""
    try:
        document = codec.decode(_read_token(token))
    except codec.DecodeError as e:
        print(f"❌ {e}", file=sys.stderr)
        raise typer.Exit(code=1)
    sys.stdout.write(document.decode("utf-8"))


@app.command("encode")
def encode_token(path: Path = typer.Argument(..., exists=True, dir_okay=False, help="Kubeconfig file")):
    """Pack a kubeconfig file into a join token."""
    print(codec.encode(path.read_bytes()))


@app.command("rewrite-port")
def rewrite_port(
    token: str = typer.Argument(..., help="Join token, or '-' for stdin"),
    port: int = typer.Option(..., "--port", "-p", help="External API server port"),
):
    """Point a join token at another API server port."""
    try:
        document = codec.decode(_read_token(token))
        updated, _ = codec.rewrite_port(document, port)
    except codec.TokenCodecError as e:
        print(f"❌ {e}", file=sys.stderr)
        raise typer.Exit(code=1)
    print(codec.encode(updated))


@app.command("id")
def token_id(
    token: str = typer.Argument(..., help="Join token, or '-' for stdin"),
    role: str = typer.Option(..., "--role", "-r", help="Token role (controller or worker)"),
):
    """Print the public identifier of a join token."""
    try:
        config = codec.ClientConfig.from_yaml(codec.decode(_read_token(token)))
        print(codec.extract_token_id(config, role))
    except codec.TokenCodecError as e:
        print(f"❌ {e}", file=sys.stderr)
        raise typer.Exit(code=1)
