"""Script to create an API key for a clinician."""

import argparse
import asyncio

from vetscribe.auth.security import create_api_key
from vetscribe.db.session import async_session_maker, init_db


async def main(name: str, owner: str):
    """Create an API key."""
    print("Initializing database...")
    await init_db()

    print(f"Creating API key for {owner}...")
    async with async_session_maker() as db:
        api_key, full_key = await create_api_key(db, name=name, owner=owner)
        await db.commit()

        print("\n" + "=" * 60)
        print("API KEY CREATED SUCCESSFULLY")
        print("=" * 60)
        print(f"\nAPI Key: {full_key}")
        print(f"Key ID:  {api_key.id}")
        print(f"Owner:   {api_key.owner}")
        print("\nSAVE THIS KEY NOW - IT WILL NOT BE SHOWN AGAIN!")
        print("=" * 60)


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--name", default="Clinic Key")
    parser.add_argument("--owner", default="admin")
    args = parser.parse_args()
    asyncio.run(main(args.name, args.owner))
