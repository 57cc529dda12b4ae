import asyncio
import sys

from database import db, ensure_schema, get_database_url
from tasks import purge_expired_trash


async def check(purge: bool = False):
    try:
        await db.connect()
    except Exception as e:
        print(f"Connection failed ({get_database_url()}): {e}")
        sys.exit(1)

    try:
        print("Successfully connected to database!")
        await ensure_schema()
        print("Schema is up to date")
        if purge:
            purged = await purge_expired_trash()
            print(f"Purged {purged} old deleted task(s)")
    finally:
        await db.disconnect()


if __name__ == "__main__":
    asyncio.run(check(purge="--purge" in sys.argv[1:]))
