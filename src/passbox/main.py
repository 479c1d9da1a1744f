#!/usr/bin/env python3
"""passbox - A command line tool for managing passwords.

Credentials live in a single encrypted file protected by one master
password (Argon2id + XSalsa20-Poly1305 via pynacl).

Basic workflow:

    passbox init                               # create password.data
    passbox add -c email -u user@example.com   # add a password
    passbox list                               # list all passwords
"""

import argparse
import getpass
import sys
from importlib.metadata import PackageNotFoundError, version

from . import __version__
from .config import Settings, get_master_password_default
from .errors import AmbiguousMatch, PassboxError
from .vault import Vault, VaultState

MASK = "******"


def get_settings(args) -> Settings:
    """Resolve settings from environment and --file."""
    return Settings.from_env(vault_path=getattr(args, "file", None))


def get_master_password(args, prompt="Enter master password: "):
    """Get master password from --master, $PASSWORD_MASTER, or a prompt.

    Security note: passing the master password in a flag or environment
    variable exposes it to other local users via the process list. Only do
    this in isolated environments.
    """
    if getattr(args, "master", None):
        return args.master
    env_password = get_master_password_default()
    if env_password:
        return env_password
    return getpass.getpass(prompt)


def open_vault(args) -> Vault:
    """Open and unlock (or bootstrap) the vault named by args."""
    vault = Vault.open(settings=get_settings(args))
    try:
        vault.unlock_or_bootstrap(get_master_password(args))
    except PassboxError:
        vault.close()
        raise
    return vault


def report_audit(vault):
    """Warn when an operation went through but its audit line was lost."""
    if vault.audit_failed:
        print(f"Warning: could not write audit log {vault.audit.log_path}", file=sys.stderr)


def cmd_init(args):
    """Create a new vault file."""
    settings = get_settings(args)
    vault = Vault.open(settings=settings)

    with vault:
        if vault.state is not VaultState.UNINITIALIZED:
            print(f"Vault already exists: {vault.path}", file=sys.stderr)
            return

        if getattr(args, "master", None) or get_master_password_default():
            password = get_master_password(args)
        else:
            password = getpass.getpass("Enter master password: ")
            confirm = getpass.getpass("Confirm master password: ")
            if password != confirm:
                print("Passwords do not match", file=sys.stderr)
                sys.exit(1)

        vault.unlock_or_bootstrap(password)

    report_audit(vault)
    print(f"Vault created at {vault.path}")


def cmd_add(args):
    """Add a new password or update an existing one."""
    with open_vault(args) as vault:
        if args.pw is not None:
            secret = args.pw
            confirm = args.cpw if args.cpw is not None else args.pw
        else:
            secret = getpass.getpass("type the password: ")
            confirm = getpass.getpass("repeat the password: ")

        entry_id, updated = vault.add(
            args.category, args.account, secret,
            site=args.site or "", tips=args.tips or "", confirm=confirm,
        )

    report_audit(vault)
    if updated:
        print(f"password {entry_id} updated")
    else:
        print(f"add password {entry_id} success")


def cmd_remove(args):
    """Remove passwords by id, by label/account, or all of them."""
    if not (args.id or args.category or args.account or args.all):
        print("Nothing to remove: give --id, --category/--account, or --all", file=sys.stderr)
        sys.exit(1)

    with open_vault(args) as vault:
        if args.id:
            ids = vault.remove(args.id, args.all)
        elif args.category or args.account:
            ids = vault.remove_by_account(args.category, args.account, args.all)
        else:
            ids = vault.clear()

    report_audit(vault)
    print("deleted passwords:")
    for entry_id in ids:
        print(entry_id)


def format_table(rows):
    """Render rows (first row is the header) as aligned columns."""
    widths = [max(len(row[i]) for row in rows) for i in range(len(rows[0]))]
    lines = []
    for row in rows:
        lines.append("  ".join(cell.ljust(width) for cell, width in zip(row, widths)).rstrip())
    return "\n".join(lines)


def cmd_list(args):
    """List all passwords."""
    rows = [["ID", "CATEGORY", "ACCOUNT", "PASSWORD", "SITE", "TIPS"]]

    def sink(entry):
        rows.append([
            entry.id,
            entry.label,
            entry.account,
            entry.secret if args.show else MASK,
            entry.site,
            entry.tips,
        ])

    with open_vault(args) as vault:
        count = vault.list_to(sink)

    report_audit(vault)
    if count == 0:
        print("No passwords.")
        return
    print(format_table(rows))


def cmd_version(args):
    """Display version."""
    print(get_version())


def get_version():
    try:
        return version("passbox")
    except PackageNotFoundError:
        return __version__


def main(argv=None):
    parser = argparse.ArgumentParser(
        prog='passbox',
        description="passbox - command line tool for managing passwords"
    )
    parser.add_argument(
        '--version',
        action='version',
        version=f"%(prog)s {get_version()}"
    )
    subparsers = parser.add_subparsers(dest='command', help='Commands')

    # Options shared by every command that touches the vault
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument('--file', help='Path to vault file (default: $PASSBOX_FILE or password.data)')
    common.add_argument('--master', help='Master password (default: $PASSWORD_MASTER)')

    # version
    subparsers.add_parser('version', help='Display version')

    # init
    subparsers.add_parser('init', parents=[common], help='Create a new password vault')

    # add
    add_parser = subparsers.add_parser('add', parents=[common],
                                       help='Add a new password or update an old one')
    add_parser.add_argument('-c', '--category', default='', help='Password label')
    add_parser.add_argument('-u', '--account', default='', help='Account (username or email)')
    add_parser.add_argument('--site', help='Site the account belongs to')
    add_parser.add_argument('--tips', help='Hint to remember the password')
    add_parser.add_argument('--pw', '--password', dest='pw', help='The password (prompted if omitted)')
    add_parser.add_argument('--cpw', '--confirm-password', dest='cpw', help='Confirm password')

    # remove
    remove_parser = subparsers.add_parser('remove', parents=[common], help='Remove passwords')
    remove_parser.add_argument('--id', default='', help='Password id or id prefix')
    remove_parser.add_argument('-c', '--category', default='', help='Password label')
    remove_parser.add_argument('-u', '--account', default='', help='Account')
    remove_parser.add_argument('-a', '--all', action='store_true',
                               help='Remove all found passwords (alone: remove every password)')

    # list
    list_parser = subparsers.add_parser('list', parents=[common], help='List all passwords')
    list_parser.add_argument('--show', action='store_true', help='Show passwords instead of masking them')

    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        sys.exit(1)

    commands = {
        'version': cmd_version,
        'init': cmd_init,
        'add': cmd_add,
        'remove': cmd_remove,
        'list': cmd_list,
    }

    try:
        commands[args.command](args)
    except AmbiguousMatch as e:
        print(f"Error: {e} (use --all to remove all of them)", file=sys.stderr)
        sys.exit(1)
    except PassboxError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == '__main__':
    main()
