import asyncio
import sys
import argparse
from pathlib import Path

# Add project root to sys.path
project_root = Path(__file__).resolve().parent.parent
sys.path.append(str(project_root))

from kaspa_curator.services.database import Database

async def reset(database: Database):
    """Delete the SQLite file with its WAL/SHM siblings and rebuild the schema."""
    path = database.db_path
    for candidate in (path, Path(f"{path}-wal"), Path(f"{path}-shm")):
        if candidate.exists():
            candidate.unlink()
            print(f"Removed {candidate}")
    await database.init()
    print(f"Fresh database ready at {path}")

def main():
    parser = argparse.ArgumentParser(description="Reset the curator database")
    parser.add_argument("--yes", action="store_true", help="Skip the confirmation prompt")
    parser.add_argument("--db", type=Path, help="Database path (defaults to settings)")
    args = parser.parse_args()

    database = Database(args.db)
    if not args.yes:
        answer = input(f"This deletes every judged tweet in {database.db_path}. Continue? [y/N] ")
        if answer.strip().lower() != "y":
            print("Aborted.")
            return

    asyncio.run(reset(database))

if __name__ == "__main__":
    main()
