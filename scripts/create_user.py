"""Create a user in the SQLite DB.

Usage:
  python scripts/create_user.py --username alice --password '...' [--admin]

Use this to recover access when every admin password is lost; the web UI
only creates the first admin through /setup.
"""

import argparse
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))

from boxmgr.auth.crud import UsernameExistsError, create_user
from boxmgr.config import load_config
from boxmgr.db import connect, init_db


def main() -> None:
    ap = argparse.ArgumentParser()
    ap.add_argument("--username", required=True)
    ap.add_argument("--password", required=True)
    ap.add_argument("--admin", action="store_true", help="grant admin rights")
    args = ap.parse_args()

    cfg = load_config()
    init_db(cfg.DB_DSN)

    with connect(cfg.DB_DSN) as conn:
        try:
            u = create_user(conn, username=args.username, password=args.password, is_admin=args.admin)
        except UsernameExistsError:
            print(f"User already exists: {args.username.strip().lower()}")
            sys.exit(1)

    print("Created user:")
    print(u)


if __name__ == "__main__":
    main()
