#!/usr/bin/env python3
"""
CLI tool for managing CloudHub users.

Usage:
    python3 manage_users.py create --email alice@example.com --password secret --name Alice
    python3 manage_users.py list
    python3 manage_users.py reset-password --email alice@example.com --password newpass
    python3 manage_users.py deactivate --email alice@example.com
    python3 manage_users.py activate --email alice@example.com
    python3 manage_users.py accounts --email alice@example.com

Settings come from the same environment variables as the server
(CLOUDHUB_DB_PATH, CLOUDHUB_DATA_DIR, SECRET_KEY / SECRET_KEY_FILE).
"""

import sys
import argparse
from pathlib import Path

from cloudhub.config import load_config, load_secret_key
from cloudhub.main import build_services


def _open_store():
    config = load_config()
    config['secret_key'] = load_secret_key(Path(config['secret_key_file']))
    account_store, aggregator = build_services(config)
    return account_store, aggregator


def _require_user(store, email):
    row = store.get_user_by_email(email, include_inactive=True)
    if not row:
        print(f"ERROR: User '{email}' not found.")
        sys.exit(1)
    return row


def cmd_create(args):
    store, _ = _open_store()
    try:
        store.create_user(email=args.email, password=args.password, name=args.name or args.email)
    except ValueError as e:
        print(f"ERROR: {e}")
        sys.exit(1)
    print(f"✓ Created user '{args.email}'")


def cmd_list(args):
    store, _ = _open_store()
    rows = store.list_users()
    if not rows:
        print("No users found.")
        return
    fmt = "{:<5} {:<30} {:<25} {:<20} {:<8}"
    print(fmt.format("ID", "Email", "Name", "Last Login", "Active"))
    print("-" * 92)
    for r in rows:
        print(fmt.format(
            r['id'],
            r['email'],
            r['name'] or '',
            r['last_login'] or 'never',
            'yes' if r['is_active'] else 'no',
        ))


def cmd_reset_password(args):
    store, _ = _open_store()
    row = _require_user(store, args.email)
    store.update_user(row['id'], password=args.password)
    print(f"✓ Password updated for '{args.email}'")


def cmd_deactivate(args):
    store, _ = _open_store()
    row = _require_user(store, args.email)
    store.update_user(row['id'], is_active=0)
    print(f"✓ User '{args.email}' deactivated")


def cmd_activate(args):
    store, _ = _open_store()
    row = _require_user(store, args.email)
    store.update_user(row['id'], is_active=1)
    print(f"✓ User '{args.email}' activated")


def cmd_accounts(args):
    store, aggregator = _open_store()
    row = _require_user(store, args.email)
    stats = aggregator.storage_stats(row['id'])
    if not stats['stats']:
        print(f"No cloud services linked for '{args.email}'.")
        return
    fmt = "{:<10} {:>16} {:>16} {:>16} {:>8}"
    print(fmt.format("Provider", "Used", "Limit", "Available", "Used %"))
    print("-" * 70)
    for s in stats['stats']:
        print(fmt.format(
            s['provider'],
            s['used'],
            s['limit'] if s['limit'] is not None else 'unlimited',
            s['available'] if s['available'] is not None else '-',
            f"{s['percentage']:.1f}" if s['percentage'] is not None else '-',
        ))


def main():
    parser = argparse.ArgumentParser(description='Manage CloudHub users')
    sub = parser.add_subparsers(dest='command', required=True)

    # create
    p_create = sub.add_parser('create', help='Create a new user')
    p_create.add_argument('--email', required=True)
    p_create.add_argument('--password', required=True)
    p_create.add_argument('--name', default=None)

    # list
    sub.add_parser('list', help='List all users')

    # reset-password
    p_reset = sub.add_parser('reset-password', help='Reset a user password')
    p_reset.add_argument('--email', required=True)
    p_reset.add_argument('--password', required=True)

    # deactivate
    p_deact = sub.add_parser('deactivate', help='Deactivate (soft-delete) a user')
    p_deact.add_argument('--email', required=True)

    # activate
    p_act = sub.add_parser('activate', help='Re-activate a deactivated user')
    p_act.add_argument('--email', required=True)

    # accounts
    p_acc = sub.add_parser('accounts', help="Show a user's linked cloud services and usage ledger")
    p_acc.add_argument('--email', required=True)

    args = parser.parse_args()

    dispatch = {
        'create': cmd_create,
        'list': cmd_list,
        'reset-password': cmd_reset_password,
        'deactivate': cmd_deactivate,
        'activate': cmd_activate,
        'accounts': cmd_accounts,
    }
    dispatch[args.command](args)


if __name__ == '__main__':
    main()
