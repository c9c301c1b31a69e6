"""
Offline management of the OAuth client registry file.

    omnidrop-client add svc-a --name "Service A" --scope tasks:write
    omnidrop-client disable svc-a
    omnidrop-client list

The running server notices the changed file on the next token request.
"""
import argparse
import os
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional, Sequence

import yaml

from omnidrop.client_registry import RegistryError, ensure_registry_file, parse_registry
from omnidrop.config import DATA_DIR
from omnidrop.models.oauth_client import OAuthClient
from omnidrop.security import generate_client_secret, hash_secret

DEFAULT_REGISTRY = DATA_DIR / "oauth-clients.yaml"


def default_registry_path() -> Path:
    return Path(os.environ.get("OMNIDROP_OAUTH_CLIENTS_FILE") or DEFAULT_REGISTRY).expanduser()


def load_clients(path: Path) -> Dict[str, OAuthClient]:
    ensure_registry_file(path)
    return parse_registry(path.read_text(encoding="utf-8"))


def save_clients(path: Path, clients: Dict[str, OAuthClient]) -> None:
    """Rewrite the registry through a 0600 temp file and an atomic rename."""
    document = {
        "clients": [
            client.model_dump(mode="json", exclude_none=True) for client in clients.values()
        ]
    }
    tmp_path = path.with_name(f".{path.name}.tmp")
    fd = os.open(tmp_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "w", encoding="utf-8") as f:
        yaml.safe_dump(document, f, sort_keys=False)
    os.replace(tmp_path, path)
    os.chmod(path, 0o600)


def upsert_client(
    path: Path,
    client_id: str,
    name: str,
    scopes: Sequence[str],
    secret: Optional[str] = None,
) -> str:
    """
    Creates the client, or rotates its secret and replaces its name and
    scopes if it already exists. Returns the plaintext secret.
    """
    clients = load_clients(path)
    secret = secret or generate_client_secret()
    now = datetime.now(timezone.utc).replace(microsecond=0)

    existing = clients.get(client_id)
    clients[client_id] = OAuthClient(
        client_id=client_id,
        name=name,
        client_secret_hash=hash_secret(secret),
        scopes=list(scopes),
        created_at=existing.created_at if existing else now,
        updated_at=now if existing else None,
        disabled=False,
    )
    save_clients(path, clients)
    return secret


def disable_client(path: Path, client_id: str) -> bool:
    clients = load_clients(path)
    client = clients.get(client_id)
    if client is None:
        return False
    clients[client_id] = client.model_copy(
        update={"disabled": True, "updated_at": datetime.now(timezone.utc).replace(microsecond=0)}
    )
    save_clients(path, clients)
    return True


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Manage OmniDrop OAuth clients")
    parser.add_argument(
        "--file",
        type=Path,
        default=None,
        help="Registry file (default: $OMNIDROP_OAUTH_CLIENTS_FILE or ~/.local/share/omnidrop/oauth-clients.yaml)",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    add = commands.add_parser("add", help="Create or update a client")
    add.add_argument("client_id")
    add.add_argument("--name", required=True, help="Client's user-friendly name")
    add.add_argument(
        "--scope",
        dest="scopes",
        action="append",
        required=True,
        help="Granted scope, repeatable (e.g. tasks:write, files:*, *)",
    )
    add.add_argument("--secret", help="Client secret (generated when omitted)")

    disable = commands.add_parser("disable", help="Disable a client")
    disable.add_argument("client_id")

    commands.add_parser("list", help="List enabled clients")
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    path = (args.file or default_registry_path()).expanduser()

    try:
        if args.command == "add":
            secret = upsert_client(path, args.client_id, args.name, args.scopes, args.secret)
            print(f"Client '{args.client_id}' saved to {path}")
            if not args.secret:
                print(f"client_secret: {secret}")
                print("Store this secret now; it cannot be recovered.")
        elif args.command == "disable":
            if not disable_client(path, args.client_id):
                print(f"Client '{args.client_id}' not found in {path}", file=sys.stderr)
                return 1
            print(f"Client '{args.client_id}' disabled")
        else:
            for client in load_clients(path).values():
                if not client.disabled:
                    print(f"{client.client_id}\t{client.name}\t{' '.join(client.scopes)}")
    except (OSError, RegistryError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
