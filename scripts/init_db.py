import sys
from pathlib import Path

# Ensure project root is on sys.path when running as a script
ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))

from boxmgr.auth.crud import ensure_auth_secret
from boxmgr.config import load_config
from boxmgr.db import init_db


def main() -> None:
    cfg = load_config()
    init_db(cfg.DB_DSN)
    # Generates and stores a signing secret unless AUTH_SECRET is set.
    ensure_auth_secret(cfg)

    print(f"DB initialized: {cfg.DB_DSN}")


if __name__ == "__main__":
    main()
