"""Write a local .env for the story studio and create the stories table."""
from __future__ import annotations

import argparse
import shutil
import sys
from pathlib import Path
from typing import Dict

from dotenv import dotenv_values

REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from story_studio import create_app  # noqa: E402
from story_studio.config import Config  # noqa: E402
from story_studio.db_utils import ensure_database_schema  # noqa: E402

DEFAULT_ENV_PATH = REPO_ROOT / ".env"
DEFAULT_DATABASE_URL = f"sqlite:///{REPO_ROOT / 'instance' / 'stories.db'}"
BACKUP_SUFFIX = ".bak"


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description=(
            "Create or update a .env file with the settings the story generator needs "
            "and create the stories table."
        )
    )
    parser.add_argument("--flask-app", default="wsgi.py", help="Entry point used by Flask (default: wsgi.py)")
    parser.add_argument("--secret-key", help="Secret key for Flask sessions (optional).")
    parser.add_argument("--openai-api-key", help="Credential for the text and image provider.")
    parser.add_argument(
        "--database-url",
        help=f"Relational store connection string (default: {DEFAULT_DATABASE_URL}).",
    )
    parser.add_argument(
        "--illustration-storage",
        choices=("inline", "blob"),
        help="Keep illustrations inline in the row or upload them to the blob bucket.",
    )
    parser.add_argument("--blob-bucket", help="Bucket used when illustration storage is 'blob'.")
    parser.add_argument(
        "--env-path",
        type=Path,
        default=DEFAULT_ENV_PATH,
        help="Path to the .env file that should be created/updated.",
    )
    parser.add_argument(
        "--skip-db",
        action="store_true",
        help="Only update the .env file without touching the database.",
    )
    return parser.parse_args()


def read_env(path: Path) -> Dict[str, str]:
    if not path.exists():
        return {}
    return {key: value for key, value in dotenv_values(path).items() if value is not None}


def write_env(path: Path, values: Dict[str, str]) -> None:
    if path.exists():
        backup_path = path.with_suffix(path.suffix + BACKUP_SUFFIX)
        shutil.copy(path, backup_path)
        print(f"Existing {path.name} backed up to {backup_path.name}.")
    lines = [f"{key}={value}" for key, value in values.items()]
    path.write_text("\n".join(lines) + "\n")
    print(f"Updated environment variables written to {path}.")


def update_env_file(args: argparse.Namespace) -> Dict[str, str]:
    env_data = read_env(args.env_path)
    env_data.setdefault("DATABASE_URL", DEFAULT_DATABASE_URL)

    optional_updates = {
        "SECRET_KEY": args.secret_key,
        "OPENAI_API_KEY": args.openai_api_key,
        "DATABASE_URL": args.database_url,
        "ILLUSTRATION_STORAGE": args.illustration_storage,
        "BLOB_BUCKET": args.blob_bucket,
    }
    env_data["FLASK_APP"] = args.flask_app
    env_data.update({key: value for key, value in optional_updates.items() if value})

    write_env(args.env_path, env_data)
    return env_data


def initialize_database(database_url: str) -> None:
    if database_url.startswith("sqlite:///"):
        Path(database_url[len("sqlite:///"):]).parent.mkdir(parents=True, exist_ok=True)

    class SetupConfig(Config):
        DATABASE_URL = database_url
        SQLALCHEMY_DATABASE_URI = database_url

    app = create_app(SetupConfig)
    with app.app_context():
        ensure_database_schema()
    print(f"Stories table ready at {database_url}.")


def main() -> None:
    args = parse_args()
    env_values = update_env_file(args)

    if not args.skip_db:
        initialize_database(env_values["DATABASE_URL"])
    else:
        print("Database initialization skipped.")

    print("\nSetup complete! Summary:")
    for key in sorted(env_values):
        value = env_values[key]
        if key in {"SECRET_KEY", "OPENAI_API_KEY"}:
            value = "****"
        print(f"  {key}={value}")


if __name__ == "__main__":
    main()
